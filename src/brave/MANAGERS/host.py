# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
The brave host: every operator-facing operation, wired to the backend,
the stores and the remotes.
"""
import logging
import os
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from ..BACKENDS.backend import Backend, BackendInfo, new_host_backend
from ..BUILDERS.image_builder import ImageBuilder, ensure_backend_started
from ..CONFIG.settings import DEFAULT_IMAGE_VERSION, LOCAL_REMOTE, BravePaths, HostSettings, save_settings
from ..errors import BackendError, BraveError, FileOverwriteError, ValidationError
from ..MODELS.bravefile import Bravefile
from ..MODELS.compose_file import ComposeFile
from ..MODELS.service_definition import Service
from ..MODELS.unit import Mount, PortForward, Unit, UnitRecord
from ..REGISTRY.image_reference import BraveImage
from ..REGISTRY.image_store import ImageStore, StoredImage
from ..RUNNERS.cancellation import CancellationToken, SignalWatcher
from ..RUNTIME.certificates import ensure_client_certificate
from ..RUNTIME.client import InstanceInfo, RuntimeClient
from ..RUNTIME.lxd_client import connect
from ..RUNTIME.remotes import Remote, RemoteStore, parse_remote_name
from ..STORE.unit_store import UnitStore
from ..UTILS.host_user import current_user_ids
from ..UTILS.port_finder import is_port_bound
from .compose_orchestrator import ComposeOrchestrator
from .mount_manager import HostMounter, MountManager, host_mounter_for
from .preflight import PortProbe
from .unit_deployer import UnitDeployer

logger = logging.getLogger(__name__)

LXD_HTTPS_PORT = 8443


def _port_of(address: str) -> str:
    """Port of a proxy address such as ``tcp:0.0.0.0:80``."""
    return address.rsplit(":", 1)[-1]


def to_unit(info: InstanceInfo, name: Optional[str] = None) -> Unit:
    mounts = [Mount(source=d["source"], path="/" + d.get("path", "").lstrip("/"))
              for d in info.disk_devices().values()]
    ports = [PortForward(unit_port=_port_of(d.get("connect", "")), host_port=_port_of(d.get("listen", "")))
             for d in info.proxy_devices().values()]
    return Unit(name=name or info.name, status=info.status, address=info.address, mounts=mounts, ports=ports)


class BraveHost:
    """
    Entry point for all brave operations.

    :param settings: Host settings.
    :param paths: Brave home layout.
    :param backend: Backend of the local remote. Built from the settings when omitted.
    :param connector: Opens a runtime client for a remote.
    """

    def __init__(self, settings: HostSettings, paths: Optional[BravePaths] = None,
                 backend: Optional[Backend] = None,
                 connector: Callable[[Remote], RuntimeClient] = connect,
                 port_probe: PortProbe = is_port_bound,
                 user_ids: Callable[[], Tuple[str, str]] = current_user_ids):
        self.settings = settings
        self.paths = paths or BravePaths()
        self.backend = backend or new_host_backend(settings, self.paths)
        self.connector = connector

        self.remotes = RemoteStore(self.paths)
        self.image_store = ImageStore(str(self.paths.images_dir))
        self.unit_store = UnitStore(self.paths.database)
        self.builder = ImageBuilder(settings, self.backend, self.image_store, self.remotes, connector)
        self.deployer = UnitDeployer(settings, self.backend, self.image_store, self.remotes,
                                     self.unit_store, self.builder, connector,
                                     port_probe=port_probe, user_ids=user_ids)
        self.orchestrator = ComposeOrchestrator(self.builder, self.deployer, self.image_store,
                                                delete_unit=self.delete_unit)

    # Host and remotes

    def _connect(self, remote_name: str) -> Tuple[Remote, RuntimeClient]:
        if remote_name == LOCAL_REMOTE:
            ensure_backend_started(self.backend)
        remote = self.remotes.load(remote_name)
        return remote, self.connector(remote)

    def init(self) -> None:
        """
        Provisions the backend and registers it as the local remote.
        """
        self.paths.ensure()
        save_settings(self.paths, self.settings)
        self.backend.initialize()

        local = Remote(
            name=LOCAL_REMOTE,
            profile=self.settings.profile,
            network=self.settings.network.name,
            storage=self.settings.storage_pool.name,
        )
        if self.settings.backend.type == "lxd":
            local.protocol = "unix"
            local.url = "unix.socket"
            self.remotes.save(local)
            return

        info = self.backend.info()
        local.url = f"https://{info.ipv4}:{LXD_HTTPS_PORT}"
        local.cert, local.key = ensure_client_certificate(self.paths)
        self.connector(local).authenticate(self.settings.trust)
        self.remotes.save(local)

    def host_info(self, short: bool = False) -> BackendInfo:
        info = self.backend.info()
        if not short and info.state == "Stopped":
            raise BackendError("cannot connect to brave remote, ensure it is up and running")
        return info

    def add_remote(self, remote: Remote, password: Optional[str] = None) -> Remote:
        """
        Authenticates with an LXD server and saves it as a remote.
        """
        if not remote.is_unix_socket and not remote.has_auth:
            remote.cert, remote.key = ensure_client_certificate(self.paths)
        self.connector(remote).authenticate(password or self.settings.trust)
        self.remotes.save(remote)
        print(f"Remote {remote.name!r} added")
        return remote

    # Images

    def import_image(self, path: str) -> BraveImage:
        return self.image_store.import_archive(path)

    def list_images(self) -> List[StoredImage]:
        return self.image_store.list()

    def delete_image(self, reference: str, legacy: bool = False) -> None:
        image = BraveImage.parse_legacy(reference) if legacy else BraveImage.parse(reference)
        self.image_store.delete(image)

    def export_image(self, reference: str, output_dir: Optional[str] = None) -> str:
        return str(self.image_store.export(BraveImage.parse(reference), output_dir))

    def build_image(self, bravefile: Bravefile, context_dir: str = ".") -> BraveImage:
        with SignalWatcher(CancellationToken()) as token:
            return self.builder.build(bravefile, context_dir=context_dir, token=token)

    # Units

    def deploy_unit(self, service: Service) -> UnitRecord:
        with SignalWatcher(CancellationToken()) as token:
            return self.deployer.deploy(service, token=token)

    def compose(self, compose: ComposeFile) -> List[str]:
        with SignalWatcher(CancellationToken()) as token:
            return self.orchestrator.up(compose, token=token)

    def list_units(self, remote_name: Optional[str] = None) -> List[Unit]:
        """
        Units on one remote, or on every remote usable for deployment. Units
        on other remotes than ``local`` are prefixed with the remote name.
        Unreachable remotes are skipped when listing all of them.
        """
        if remote_name:
            remote = self.remotes.load(remote_name)
            return self._remote_units(remote, self.connector(remote))

        units = []
        for name in self.remotes.list():
            remote = self.remotes.load(name)
            if not remote.has_auth:
                continue
            try:
                units.extend(self._remote_units(remote, self.connector(remote)))
            except BraveError as e:
                logger.warning("failed to connect to %r remote, skipping: %s", name, e)
        return units

    def _remote_units(self, remote: Remote, client: RuntimeClient) -> List[Unit]:
        profile = remote.profile or self.settings.profile
        units = []
        for info in client.list_instances(profile=profile):
            name = info.name if remote.name == LOCAL_REMOTE else f"{remote.name}:{info.name}"
            units.append(to_unit(info, name))
        return units

    def unit_names(self) -> List[str]:
        return [unit.name for unit in self.list_units()]

    def start_unit(self, reference: str) -> None:
        remote_name, name = parse_remote_name(reference)
        _, client = self._connect(remote_name)
        print(f"Starting unit: {name}")
        client.start(name)

    def stop_unit(self, reference: str) -> None:
        remote_name, name = parse_remote_name(reference)
        _, client = self._connect(remote_name)
        print(f"Stopping unit: {name}")
        client.stop(name)

    def delete_unit(self, reference: str) -> None:
        """
        Unmounts every share of a unit, deletes it and its record.
        """
        remote_name, name = parse_remote_name(reference)
        _, client = self._connect(remote_name)
        info = client.get_instance(name)

        mounts = self._mount_manager(remote_name, client)
        for device in info.disk_devices().values():
            try:
                mounts.unmount(name, device.get("path", ""))
            except BraveError as e:
                logger.warning("failed to unmount %s from %s: %s", device.get("path"), name, e)

        client.delete_instance(name)
        self.unit_store.delete_unit(name)
        print(f"Unit {name} deleted")

    def publish_unit(self, reference: str, image: Optional[str] = None, output_dir: str = ".") -> str:
        """
        Publishes a unit as an image archive in ``output_dir``.

        :return: Path of the archive.
        """
        remote_name, name = parse_remote_name(reference)
        _, client = self._connect(remote_name)
        architecture = client.server_architecture()
        if not image:
            image = f"{name}/{datetime.now().strftime('%Y%m%d%H%M%S')}/{architecture}"
        identity = BraveImage.parse(image).with_defaults(DEFAULT_IMAGE_VERSION, architecture)

        destination = os.path.join(output_dir, identity.archive_name)
        if os.path.exists(destination):
            raise FileOverwriteError(
                f"existing file at {destination} would be overwritten by publish of unit {name!r}")

        print(f"Publishing unit {name!r} as image {identity.archive_name!r}")
        fingerprint = client.publish(name, alias=identity.basename)
        try:
            print("Exporting archive ...")
            client.export_image(fingerprint, destination)
        finally:
            try:
                client.delete_image(fingerprint)
            except BraveError as e:
                logger.warning("failed to delete published image %s: %s", fingerprint, e)
        return destination

    # Mounts

    def _mount_manager(self, remote_name: str, client: RuntimeClient) -> MountManager:
        mounter = host_mounter_for(self.settings) if remote_name == LOCAL_REMOTE else HostMounter()
        return MountManager(client, self.settings.storage_pool.name, mounter)

    def mount(self, source: str, destination: str) -> None:
        """
        Mounts ``source`` (host path or ``UNIT:PATH``) at ``destination`` (``UNIT:PATH``).
        """
        unit_ref, sep, target = destination.rpartition(":")
        if not sep or not unit_ref:
            raise ValidationError(f"invalid mount destination {destination!r}, expected UNIT:PATH")
        remote_name, unit = parse_remote_name(unit_ref)
        _, client = self._connect(remote_name)
        self._mount_manager(remote_name, client).mount(source, unit, target)

    def umount(self, reference: str, target: str) -> None:
        remote_name, unit = parse_remote_name(reference)
        _, client = self._connect(remote_name)
        self._mount_manager(remote_name, client).unmount(unit, target)

    def list_mounts(self, reference: str) -> List[Mount]:
        remote_name, unit = parse_remote_name(reference)
        _, client = self._connect(remote_name)
        return self._mount_manager(remote_name, client).list_mounts(unit)

    def list_all_mounts(self) -> Dict[str, List[Mount]]:
        _, client = self._connect(LOCAL_REMOTE)
        manager = self._mount_manager(LOCAL_REMOTE, client)
        return {info.name: manager.list_mounts(info.name)
                for info in client.list_instances(profile=self.settings.profile)}
