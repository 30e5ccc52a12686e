import os

import pytest

from brave.errors import FileOverwriteError, ImageExistsError, ImageNotFoundError, ValidationError
from brave.REGISTRY.image_reference import BraveImage
from brave.REGISTRY.image_store import ImageStore
from brave.UTILS.hashing import file_md5


def test_import_writes_archive_and_hash(image_store, make_archive):
    path = make_archive("alpine-python_1.0_x86_64.tar.gz")
    image = image_store.import_archive(path)

    assert image == BraveImage("alpine-python", "1.0", "x86_64")
    stored = image_store.store_dir / "alpine-python_1.0_x86_64.tar.gz"
    assert stored.exists()
    assert image_store.hash(image) == file_md5(path)
    assert os.path.exists(path)


def test_import_rejects_duplicates_and_bad_names(image_store, make_archive):
    image_store.import_archive(make_archive("web_1.0_x86_64.tar.gz"))
    with pytest.raises(ImageExistsError):
        image_store.import_archive(make_archive("web_1.0_x86_64.tar.gz"))
    with pytest.raises(ValidationError):
        image_store.import_archive(make_archive("web.tar.gz"))


def test_resolve_picks_newest_version(image_store, make_archive):
    for version in ("1.9", "1.10", "1.2"):
        image_store.import_archive(make_archive(f"web_{version}_x86_64.tar.gz"))

    assert image_store.resolve(BraveImage("web")).name == "web_1.10_x86_64.tar.gz"
    assert image_store.resolve(BraveImage("web", "1.9")).name == "web_1.9_x86_64.tar.gz"
    assert image_store.identity_of(BraveImage("web")) == BraveImage("web", "1.10", "x86_64")
    with pytest.raises(ImageNotFoundError):
        image_store.resolve(BraveImage("web", "1.0", "aarch64"))


def test_resolve_falls_back_to_legacy_archive(image_store):
    legacy = image_store.store_dir / "old-app-1.0.tar.gz"
    legacy.write_bytes(b"old")
    (image_store.store_dir / "old-app-1.0.tar.gz.md5").write_text("abc")

    image = BraveImage.parse_legacy("old-app-1.0")
    assert image_store.resolve(image) == legacy
    assert [i.legacy for i in image_store.list()] == [True]


def test_delete_removes_both_files(image_store, make_archive):
    image = image_store.import_archive(make_archive("web_1.0_x86_64.tar.gz"))
    image_store.delete(image)
    assert not image_store.exists(image)
    assert list(image_store.store_dir.iterdir()) == []


def test_delete_without_hash_leaves_archive(image_store, make_archive):
    image = image_store.import_archive(make_archive("web_1.0_x86_64.tar.gz"))
    (image_store.store_dir / "web_1.0_x86_64.tar.gz.md5").unlink()

    with pytest.raises(ImageNotFoundError):
        image_store.delete(image)
    assert image_store.exists(image)


def test_add_archive_requires_complete_identity(image_store, make_archive):
    with pytest.raises(ValidationError):
        image_store.add_archive(BraveImage("web", "1.0"), make_archive("x.tar.gz"))


def test_add_archive_move(image_store, make_archive):
    source = make_archive("build.tar.gz")
    image_store.add_archive(BraveImage("web", "1.0", "x86_64"), source, move=True)
    assert not os.path.exists(source)
    assert not list(image_store.store_dir.glob("*.part"))


def test_export_refuses_to_overwrite(image_store, make_archive, tmp_path):
    image = image_store.import_archive(make_archive("web_1.0_x86_64.tar.gz"))
    out = tmp_path / "out"
    out.mkdir()

    destination = image_store.export(image, str(out))
    assert destination.read_bytes() == b"rootfs"
    with pytest.raises(FileOverwriteError):
        image_store.export(image, str(out))


def test_list_reports_size_and_age(tmp_path, make_archive):
    store = ImageStore(str(tmp_path / "images"))
    store.import_archive(make_archive("web_1.0_x86_64.tar.gz", b"x" * 1500))

    [stored] = store.list()
    assert stored.image == BraveImage("web", "1.0", "x86_64")
    assert stored.human_size == "1.5kB"
    assert stored.created == "just now"
