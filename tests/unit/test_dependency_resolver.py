import pytest

from brave.errors import DependencyCycleError
from brave.MODELS.bravefile import BaseImage, Bravefile
from brave.MODELS.compose_file import ComposeFile, ComposeService
from brave.RUNNERS.dependency_resolver import DependencyResolver


def _service(name, **kwargs):
    return ComposeService(name=name, image=kwargs.pop("image", f"{name}/1.0"), **kwargs)


def test_explicit_dependencies_come_first():
    compose = ComposeFile(services={
        "web": _service("web", depends_on=["api"]),
        "api": _service("api", depends_on=["db"]),
        "db": _service("db"),
        "cache": _service("cache"),
    })
    assert DependencyResolver().resolve_order(compose) == ["db", "api", "web", "cache"]


def test_base_image_builder_is_a_dependency():
    compose = ComposeFile(services={
        "app": _service("app", build=True, bravefile_build=Bravefile(
            image="app/1.0", base=BaseImage(image="base-img/1.0", location="local"))),
        "base": ComposeService(name="base", base=True, bravefile_build=Bravefile(
            image="base-img/1.0", base=BaseImage(image="alpine/3.16"))),
    })
    assert compose.dependencies("app") == {"base"}
    assert compose.base_dependents("base") == ["app"]
    assert DependencyResolver().resolve_order(compose) == ["base", "app"]


def test_unknown_dependencies_are_ignored():
    compose = ComposeFile(services={"web": _service("web", depends_on=["elsewhere"])})
    assert DependencyResolver().resolve_order(compose) == ["web"]


def test_cycle_is_rejected():
    compose = ComposeFile(services={
        "a": _service("a", depends_on=["b"]),
        "b": _service("b", depends_on=["c"]),
        "c": _service("c", depends_on=["a"]),
    })
    with pytest.raises(DependencyCycleError) as e:
        DependencyResolver().resolve_order(compose)
    assert e.value.service == "a"
