import pytest

from brave.BUILDERS.image_builder import ImageBuilder
from brave.errors import BuildError, DeploymentCancelledError, ImageExistsError, ValidationError
from brave.MODELS.bravefile import PUBLIC_IMAGE_SERVER, BaseImage, Bravefile, Packages
from brave.MODELS.service_definition import CopyCommand, RunCommand, Service
from brave.REGISTRY.image_reference import BraveImage
from brave.RUNNERS.cancellation import CancellationToken
from brave.RUNTIME.client import ExecResult
from brave.RUNTIME.remotes import Remote


@pytest.fixture
def builder(settings, backend, image_store, remotes, client):
    return ImageBuilder(settings, backend, image_store, remotes, lambda remote: client)


def _bravefile(**kwargs):
    kwargs.setdefault("image", "alpine-python/1.0")
    kwargs.setdefault("base", BaseImage(image="alpine/3.16", location="public"))
    return Bravefile(**kwargs)


def test_target_image(builder):
    assert builder.target_image(_bravefile(image="web"), "x86_64") == BraveImage("web", "1.0", "x86_64")
    legacy = _bravefile(image="web", service=Service(version="2.0"))
    assert builder.target_image(legacy, "aarch64") == BraveImage("web", "2.0", "aarch64")


def test_build_from_public_base(builder, client, image_store, tmp_path):
    (tmp_path / "app.py").write_text("print('hi')")
    bravefile = _bravefile(
        packages=Packages(manager="apk", system=["python3"]),
        copy=[CopyCommand(source="app.py", target="/root/app.py")],
        run=[RunCommand(command="python3", args=["/root/app.py"])],
    )

    image = builder.build(bravefile, context_dir=str(tmp_path))

    assert image == BraveImage("alpine-python", "1.0", "x86_64")
    assert image_store.exists(image)
    [launch] = client.called("launch")
    assert launch[2] == "alpine/3.16"
    assert launch[5] == PUBLIC_IMAGE_SERVER
    commands = [c[2] for c in client.called("execute")]
    assert commands == [["apk", "update"], ["apk", "add", "--no-cache", "python3"],
                        ["python3", "/root/app.py"]]
    assert client.called("push_path")[0][2] == str(tmp_path / "app.py")
    # build unit and published image are gone
    assert client.instances == {}
    assert client.images == {}


def test_build_from_local_base_imports_archive(builder, client, image_store, make_archive):
    image_store.import_archive(make_archive("base-img_1.0_x86_64.tar.gz"))
    bravefile = _bravefile(image="app/1.0", base=BaseImage(image="base-img/1.0", location="local"),
                           run=[RunCommand(command="true")])

    builder.build(bravefile)
    assert len(client.called("import_image")) == 1
    assert image_store.exists(BraveImage("app", "1.0", "x86_64"))
    assert client.images == {}


def test_failed_step_cleans_up(builder, client, image_store):
    client.exec_results["make"] = ExecResult(2, stderr="no rule")
    bravefile = _bravefile(run=[RunCommand(command="make")])

    with pytest.raises(BuildError) as e:
        builder.build(bravefile)
    assert "exit code 2" in str(e.value)
    assert client.instances == {}
    assert image_store.list() == []


def test_existing_image_is_a_conflict(builder, client, image_store, make_archive):
    image_store.import_archive(make_archive("alpine-python_1.0_x86_64.tar.gz"))
    with pytest.raises(ImageExistsError):
        builder.build(_bravefile())
    assert client.called("launch") == []


def test_invalid_bravefile(builder, backend):
    with pytest.raises(ValidationError):
        builder.build(_bravefile(packages=Packages(system=["curl"])))
    assert backend.starts == 0


def test_cancelled_build_cleans_up(builder, client, image_store):
    token = CancellationToken()
    client.after("launch", token.cancel)

    with pytest.raises(DeploymentCancelledError):
        builder.build(_bravefile(run=[RunCommand(command="true")]), token=token)
    assert client.instances == {}
    assert client.called("execute") == []


def test_pull_from_private_remote(builder, client, remotes, image_store):
    remotes.save(Remote(name="prod", url="https://10.0.0.5:8443", cert="c", key="k"))
    client.images["f" * 64] = "alpine-python/1.0"

    image = builder.build(Bravefile.for_remote_import("prod", "alpine-python/1.0"))

    assert image == BraveImage("alpine-python", "1.0", "x86_64")
    assert image_store.exists(image)
    assert client.called("launch") == []


def test_build_for_another_remote_transfers_image(builder, client, remotes, image_store):
    remotes.save(Remote(name="prod", url="https://10.0.0.5:8443", cert="c", key="k"))
    bravefile = _bravefile(run=[RunCommand(command="true")], service=Service(name="prod:web"))

    image = builder.build(bravefile)

    assert image_store.exists(image)
    assert list(client.images.values()) == ["alpine-python_1.0_x86_64"]
    [imported] = client.called("import_image")
    assert imported[1] == str(image_store.resolve(image))

    # already built and already on the remote: neither step repeats
    builder.build(bravefile)
    assert len(client.called("launch")) == 1
    assert len(client.called("import_image")) == 1


def test_existing_image_is_still_transferred(builder, client, remotes, image_store, make_archive):
    remotes.save(Remote(name="prod", url="https://10.0.0.5:8443", cert="c", key="k"))
    image_store.import_archive(make_archive("alpine-python_1.0_x86_64.tar.gz"))

    image = builder.build(_bravefile(service=Service(name="prod:web")))

    assert image == BraveImage("alpine-python", "1.0", "x86_64")
    assert client.called("launch") == []
    assert list(client.images.values()) == ["alpine-python_1.0_x86_64"]


def test_pull_fills_in_remote_architecture(builder, client, remotes, image_store):
    remotes.save(Remote(name="prod", url="https://10.0.0.5:8443", cert="c", key="k"))
    client.images["f" * 64] = "app_1.0_x86_64"

    image = builder.build(Bravefile.for_remote_import("prod", "app"))

    assert image == BraveImage("app", "1.0", "x86_64")
    assert image_store.exists(image)
