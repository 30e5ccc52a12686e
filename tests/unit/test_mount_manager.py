import pytest

from brave.errors import RemoteError, UnitNotFoundError, ValidationError
from brave.MANAGERS.mount_manager import (
    VOLUME_PREFIX, HostMounter, MountManager, clean_mount_target_path, device_name, parse_mount_source,
)
from brave.RUNTIME.client import InstanceInfo


class RecordingMounter(HostMounter):
    def __init__(self):
        self.exposed = []
        self.withdrawn = []

    def expose(self, host_path, unit, target):
        self.exposed.append(host_path)
        return "/vm" + host_path

    def withdraw(self, daemon_path):
        self.withdrawn.append(daemon_path)


@pytest.fixture
def units(client):
    for name in ("a", "b"):
        client.instances[name] = InstanceInfo(name=name, status="Running")
    return client


@pytest.mark.parametrize("target,expected", [
    ("data", "/data"),
    ("/data/", "/data"),
    ("data//logs/", "/data/logs"),
    ("\\srv\\www", "/srv/www"),
    ("", "/"),
])
def test_clean_mount_target_path(target, expected):
    assert clean_mount_target_path(target) == expected


def test_device_name_is_stable_for_equivalent_targets():
    assert device_name("a", "/data/") == device_name("a", "data")
    assert device_name("a", "/data") != device_name("b", "/data")
    assert device_name("a", "/data").startswith("brave_")


def test_parse_mount_source(tmp_path):
    assert parse_mount_source("web:/srv") == ("web", "/srv")
    assert parse_mount_source(str(tmp_path)) == ("", str(tmp_path))
    for bad in ("a:b:c", ":/srv", "web:"):
        with pytest.raises(ValidationError):
            parse_mount_source(bad)


def test_mount_host_path(units, tmp_path):
    mounter = RecordingMounter()
    manager = MountManager(units, "brave", mounter)
    manager.mount(str(tmp_path), "a", "data/")

    device = units.instances["a"].devices[device_name("a", "/data")]
    assert device == {"type": "disk", "source": "/vm" + str(tmp_path), "path": "/data"}
    assert [str(m) for m in manager.list_mounts("a")] == [f"/vm{tmp_path} on: /data"]

    manager.unmount("a", "/data")
    assert units.instances["a"].devices == {}
    assert mounter.withdrawn == ["/vm" + str(tmp_path)]


def test_mount_into_missing_unit(units, tmp_path):
    with pytest.raises(UnitNotFoundError):
        MountManager(units, "brave").mount(str(tmp_path), "ghost", "/data")


def test_failed_device_withdraws_host_share(units, tmp_path):
    mounter = RecordingMounter()
    units.fail("add_device", RemoteError("failed to add device to unit", "a", "boom"))

    with pytest.raises(RemoteError):
        MountManager(units, "brave", mounter).mount(str(tmp_path), "a", "/data")
    assert mounter.withdrawn == ["/vm" + str(tmp_path)]


def test_unit_to_unit_share_uses_pool_volume(units):
    manager = MountManager(units, "brave")
    manager.mount("a:/srv/shared", "b", "/mnt")

    [(pool, volume)] = units.volumes
    assert pool == "brave"
    assert volume.startswith(VOLUME_PREFIX)
    assert units.instances["a"].devices[device_name("a", "/srv/shared")]["source"] == volume
    assert units.instances["b"].devices[device_name("b", "/mnt")]["path"] == "/mnt"

    manager.unmount("b", "/mnt")
    assert units.volumes == {("brave", volume)}
    manager.unmount("a", "/srv/shared")
    assert units.volumes == set()


def test_unit_to_unit_failure_unwinds(units):
    units.fail("add_device", RemoteError("failed to add device to unit", "b", "boom"),
               when=lambda name, *rest: name == "b")

    with pytest.raises(RemoteError):
        MountManager(units, "brave").mount("a:/srv", "b", "/mnt")
    assert units.instances["a"].devices == {}
    assert units.volumes == set()


def test_list_mounts_sorted_by_source_length(units):
    units.instances["a"].devices = {
        "brave_1": {"type": "disk", "source": "/long/source/path", "path": "one"},
        "brave_2": {"type": "disk", "source": "/b", "path": "/two"},
        "brave_3": {"type": "disk", "source": "/a", "path": "/three"},
        "root": {"type": "disk", "pool": "brave", "path": "/"},
    }
    mounts = MountManager(units, "brave").list_mounts("a")
    assert [(m.source, m.path) for m in mounts] == [
        ("/a", "/three"), ("/b", "/two"), ("/long/source/path", "/one")]
