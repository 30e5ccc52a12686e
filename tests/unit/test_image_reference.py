import pytest

from brave.errors import ValidationError
from brave.REGISTRY.image_reference import BraveImage


def test_parse_full_identity():
    image = BraveImage.parse("alpine-python/1.0/x86_64")
    assert image == BraveImage("alpine-python", "1.0", "x86_64")
    assert image.is_complete
    assert image.archive_name == "alpine-python_1.0_x86_64.tar.gz"
    assert str(image) == "alpine-python/1.0/x86_64"


def test_parse_partial_and_remote_prefix():
    image = BraveImage.parse("prod:alpine-python/1.0")
    assert image.name == "alpine-python"
    assert image.version == "1.0"
    assert image.architecture == ""
    assert str(image) == "alpine-python/1.0"

    remote, image = BraveImage.parse_with_remote("prod:alpine-python")
    assert remote == "prod"
    assert str(image) == "alpine-python"


@pytest.mark.parametrize("reference", ["", "a/b/c/d", "bad name/1.0", "/1.0", "web/1.0/x86 64"])
def test_parse_rejects_malformed(reference):
    with pytest.raises(ValidationError):
        BraveImage.parse(reference)


def test_parse_legacy_splits_on_last_dash():
    image = BraveImage.parse_legacy("brave-base-alpine-edge-1.0")
    assert image.name == "brave-base-alpine-edge"
    assert image.version == "1.0"
    assert image.legacy_archive_name == "brave-base-alpine-edge-1.0.tar.gz"

    with pytest.raises(ValidationError):
        BraveImage.parse_legacy("nodash")


def test_from_filename():
    assert BraveImage.from_filename("web_2.1_aarch64.tar.gz") == BraveImage("web", "2.1", "aarch64")
    with pytest.raises(ValidationError):
        BraveImage.from_filename("web_2.1_aarch64.zip")
    with pytest.raises(ValidationError):
        BraveImage.from_filename("web-2.1.tar.gz")
    assert BraveImage.from_any_filename("web-2.1.tar.gz") == BraveImage("web", "2.1")


def test_with_defaults_keeps_set_components():
    image = BraveImage("web", "2.0").with_defaults("1.0", "x86_64")
    assert image == BraveImage("web", "2.0", "x86_64")
