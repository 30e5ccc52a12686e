import hashlib
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from brave.BACKENDS.backend import Backend, BackendInfo
from brave.CONFIG.settings import BravePaths, HostSettings
from brave.errors import RemoteError, UnitNotFoundError
from brave.MANAGERS.host import BraveHost
from brave.REGISTRY.image_store import ImageStore
from brave.RUNTIME.client import ExecResult, InstanceInfo, RuntimeClient
from brave.RUNTIME.remotes import Remote, RemoteStore
from brave.STORE.unit_store import UnitStore
from brave.UTILS.hashing import file_sha256


class FakeRuntimeClient(RuntimeClient):
    """
    In-memory LXD server. Every call is recorded in ``calls``; ``fail`` makes
    a method raise, ``after`` runs a hook once a method has succeeded.
    """

    def __init__(self, architecture="x86_64", version="5.21.1", memory=8 * 10**9,
                 pool_total=50 * 10**9, pool_used=0):
        self.architecture = architecture
        self.version = version
        self.memory = memory
        self.pool_total = pool_total
        self.pool_used = pool_used
        self.instances: Dict[str, InstanceInfo] = {}
        self.images: Dict[str, str] = {}
        self.volumes = set()
        self.exec_results: Dict[str, ExecResult] = {}
        self.calls: List[Tuple] = []
        self.failures: Dict[str, Tuple[Exception, Callable]] = {}
        self.hooks: Dict[str, Callable[[], None]] = {}
        self.trusted: Optional[str] = None

    def fail(self, method: str, error: Exception, when: Callable = lambda *args: True):
        self.failures[method] = (error, when)

    def after(self, method: str, hook: Callable[[], None]):
        self.hooks[method] = hook

    def _call(self, method, *args):
        self.calls.append((method,) + args)
        if method in self.failures:
            error, when = self.failures[method]
            if when(*args):
                raise error

    def _done(self, method):
        hook = self.hooks.get(method)
        if hook:
            hook()

    def called(self, method) -> List[Tuple]:
        return [c for c in self.calls if c[0] == method]

    def _instance(self, name) -> InstanceInfo:
        if name not in self.instances:
            raise UnitNotFoundError(name)
        return self.instances[name]

    def instance_exists(self, name):
        return name in self.instances

    def get_instance(self, name):
        return self._instance(name)

    def list_instances(self, profile=None):
        return [i for i in self.instances.values() if not profile or profile in i.profiles]

    def launch(self, name, image, profile="", storage="", server=None):
        self._call("launch", name, image, profile, storage, server)
        if server is None and image not in self.images:
            raise RemoteError("failed to launch unit", name, f"image {image} not found")
        self.instances[name] = InstanceInfo(name=name, status="Running",
                                            profiles=[profile] if profile else [])
        self._done("launch")

    def start(self, name):
        self._call("start", name)
        self._instance(name).status = "Running"
        self._done("start")

    def stop(self, name):
        self._call("stop", name)
        self._instance(name).status = "Stopped"
        self._done("stop")

    def delete_instance(self, name):
        self._call("delete_instance", name)
        self._instance(name)
        del self.instances[name]

    def execute(self, name, command):
        self._call("execute", name, list(command))
        self._instance(name)
        result = self.exec_results.get(" ".join(command), ExecResult(0))
        self._done("execute")
        return result

    def push_path(self, name, source, target):
        self._call("push_path", name, source, target)
        self._instance(name)
        self._done("push_path")

    def add_device(self, name, device_name, device):
        self._call("add_device", name, device_name, dict(device))
        instance = self._instance(name)
        if device_name in instance.devices:
            raise RemoteError("failed to add device to unit", name, f"device {device_name} exists")
        instance.devices[device_name] = dict(device)
        self._done("add_device")

    def remove_device(self, name, device_name):
        self._call("remove_device", name, device_name)
        instance = self._instance(name)
        if device_name not in instance.devices:
            raise RemoteError("failed to remove device from unit", name, f"no device {device_name}")
        return instance.devices.pop(device_name)

    def set_config(self, name, config):
        self._call("set_config", name, dict(config))
        self._instance(name).config.update(config)
        self._done("set_config")

    def attach_network(self, name, network, device_name, interface):
        self._call("attach_network", name, network, device_name, interface)
        self._instance(name).devices[device_name] = {
            "type": "nic", "nictype": "bridged", "parent": network, "name": interface}

    def set_device_ip(self, name, device_name, address):
        self._call("set_device_ip", name, device_name, address)
        self._instance(name).devices[device_name]["ipv4.address"] = address

    def image_exists(self, fingerprint):
        return fingerprint in self.images

    def import_image(self, archive_path, alias):
        self._call("import_image", archive_path, alias)
        fingerprint = file_sha256(archive_path)
        self.images[fingerprint] = alias
        self._done("import_image")
        return fingerprint

    def delete_image(self, fingerprint):
        self._call("delete_image", fingerprint)
        self.images.pop(fingerprint, None)

    def publish(self, name, alias):
        self._call("publish", name, alias)
        self._instance(name)
        fingerprint = hashlib.sha256(f"{name}:{alias}".encode()).hexdigest()
        self.images[fingerprint] = alias
        return fingerprint

    def export_image(self, fingerprint, destination):
        self._call("export_image", fingerprint, destination)
        if fingerprint not in self.images:
            raise RemoteError("failed to export image", fingerprint, "not found")
        with open(destination, 'wb') as f:
            f.write(b"image " + fingerprint.encode())

    def find_image(self, alias):
        for fingerprint, image_alias in self.images.items():
            if image_alias == alias:
                return fingerprint
        return None

    def server_version(self):
        return self.version

    def server_architecture(self):
        return self.architecture

    def total_memory(self):
        return self.memory

    def storage_pool_usage(self, pool):
        return {"used": self.pool_used, "total": self.pool_total}

    def create_volume(self, pool, volume):
        self._call("create_volume", pool, volume)
        self.volumes.add((pool, volume))

    def delete_volume(self, pool, volume):
        self._call("delete_volume", pool, volume)
        self.volumes.discard((pool, volume))

    def volume_used_by(self, pool, volume):
        return [i.name for i in self.instances.values()
                if any(d.get("pool") == pool and d.get("source") == volume for d in i.devices.values())]

    def network_address(self, network):
        return "10.0.0.1/24"

    def authenticate(self, secret):
        self._call("authenticate", secret)
        self.trusted = secret


class FakeBackend(Backend):
    def __init__(self, settings, paths=None):
        super().__init__(settings, paths)
        self.state = "Running"
        self.initialized = False
        self.starts = 0

    def initialize(self):
        self.initialized = True

    def info(self):
        return BackendInfo(name=self.settings.name, state=self.state, ipv4="10.0.0.1")

    def running(self):
        return self.state == "Running"

    def start(self):
        self.starts += 1
        self.state = "Running"


@pytest.fixture
def brave_paths(tmp_path):
    paths = BravePaths(str(tmp_path / "brave-home"))
    paths.ensure()
    return paths


@pytest.fixture
def settings():
    return HostSettings(trust="sesame")


@pytest.fixture
def client():
    return FakeRuntimeClient()


@pytest.fixture
def backend(settings, brave_paths):
    return FakeBackend(settings, brave_paths)


@pytest.fixture
def remotes(brave_paths):
    store = RemoteStore(brave_paths)
    store.save(Remote(name="local", url="unix.socket", protocol="unix",
                      profile="brave", network="bravebr0", storage="brave"))
    return store


@pytest.fixture
def image_store(brave_paths):
    return ImageStore(str(brave_paths.images_dir))


@pytest.fixture
def unit_store(brave_paths):
    return UnitStore(brave_paths.database)


@pytest.fixture
def make_archive(tmp_path):
    """Writes a fake image archive and returns its path."""
    def _make(filename, content=b"rootfs"):
        directory = tmp_path / "archives"
        directory.mkdir(exist_ok=True)
        path = directory / filename
        path.write_bytes(content)
        return str(path)
    return _make


@pytest.fixture
def host(settings, brave_paths, backend, client, remotes):
    return BraveHost(settings, brave_paths, backend=backend,
                     connector=lambda remote: client,
                     port_probe=lambda address, port: False,
                     user_ids=lambda: ("1000", "1000"))
