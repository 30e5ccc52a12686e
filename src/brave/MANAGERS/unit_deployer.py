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
Deployment of a single unit.

A deployment walks a fixed sequence of steps: resolve the remotes, make the
image available locally, check the target, import the image into LXD,
launch, attach the network, configure, forward ports, run post-deploy steps
and record the unit. Once the launch has been attempted any failure deletes
the unit again, and an image imported into LXD for the deployment is always
removed afterwards.
"""
import logging
import os
import sys
from typing import Callable, Dict, Optional, Tuple

from ..BACKENDS.backend import Backend
from ..BUILDERS.image_builder import ImageBuilder, delete_unit_if_exists, ensure_backend_started
from ..CONFIG.settings import LOCAL_REMOTE, HostSettings
from ..errors import (
    BraveError, ImageExistsError, InsufficientMemoryError, PersistenceError, RemoteError,
    UnitExistsError,
)
from ..MODELS.bravefile import Bravefile
from ..MODELS.service_definition import PostDeploy, Service
from ..MODELS.unit import UnitData, UnitRecord
from ..REGISTRY.image_reference import BraveImage
from ..REGISTRY.image_store import ImageStore
from ..RUNNERS.cancellation import CancellationToken
from ..RUNNERS.cleanup_stack import CleanupStack
from ..RUNTIME.client import RuntimeClient
from ..RUNTIME.lxd_client import connect
from ..RUNTIME.remotes import Remote, RemoteStore, parse_remote_name
from ..STORE.unit_store import UnitStore
from ..UTILS.hashing import file_sha256
from ..UTILS.host_user import current_user_ids
from ..UTILS.port_finder import is_port_bound
from .preflight import PortProbe, check_host_ports, check_memory, check_storage_pool_space

logger = logging.getLogger(__name__)

NETWORK_DEVICE = "eth0"
IDMAP_MIN_SERVER_VERSION = (3, 0, 3)


def version_tuple(version: str) -> Tuple[int, ...]:
    """
    >>> version_tuple("5.21.1")
    (5, 21, 1)
    """
    parts = []
    for token in version.strip().split("."):
        digits = "".join(c for c in token if c.isdigit())
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


def unit_config(service: Service, server_version: str, ids: Tuple[str, str]) -> Dict[str, str]:
    """
    LXD config applying the resource limits and flags of a service.

    Servers up to 3.0.3 reject ``raw.idmap``; mounts in their units are read-only.
    """
    config = {
        "limits.cpu": service.resources.cpu,
        "limits.memory": service.resources.ram,
        "security.nesting": "true" if service.docker else "false",
        "nvidia.runtime": "true" if service.resources.gpu else "false",
    }
    if version_tuple(server_version) > IDMAP_MIN_SERVER_VERSION:
        uid, gid = ids
        config["raw.idmap"] = f"both {uid} {gid}"
    return config


class UnitDeployer:
    """
    Deploys services as units.

    :param settings: Host settings, the last resort for profile, network and storage.
    :param backend: Backend hosting the local remote.
    :param image_store: Local image store.
    :param remotes: Remote settings.
    :param unit_store: Unit record store.
    :param builder: Image builder, used to pull images from other remotes.
    :param connector: Opens a runtime client for a remote.
    :param port_probe: Checks whether a host port is bound.
    :param user_ids: Returns the ``(uid, gid)`` mapped into units.
    """

    def __init__(self, settings: HostSettings, backend: Backend, image_store: ImageStore,
                 remotes: RemoteStore, unit_store: UnitStore, builder: ImageBuilder,
                 connector: Callable[[Remote], RuntimeClient] = connect,
                 port_probe: PortProbe = is_port_bound,
                 user_ids: Callable[[], Tuple[str, str]] = current_user_ids):
        self.settings = settings
        self.backend = backend
        self.image_store = image_store
        self.remotes = remotes
        self.unit_store = unit_store
        self.builder = builder
        self.connector = connector
        self.port_probe = port_probe
        self.user_ids = user_ids

    def deploy(self, service: Service, token: Optional[CancellationToken] = None) -> UnitRecord:
        """
        Deploys a service as a unit.

        :param service: The service to deploy. ``name`` may carry a ``remote:`` prefix
            naming the deploy target, ``image`` one naming where the image comes from.
        :param token: Cancellation token checked after every step.
        :return: The stored unit record.
        :raises SystemExit: If the deploy host has less memory than requested.
        """
        token = token or CancellationToken()
        service = service.model_copy(deep=True)
        service.validate_deploy()
        print(f"Deploying unit {service.name}")

        image_remote, _ = parse_remote_name(service.image)
        if service.is_legacy:
            image = BraveImage.parse_legacy(service.image_reference)
        else:
            image = BraveImage.parse(service.image)

        if image_remote == LOCAL_REMOTE:
            ensure_backend_started(self.backend)
        else:
            self._pull_from_remote(image_remote, image, token)

        deploy_remote_name, unit = parse_remote_name(service.name)
        service.name = unit
        if deploy_remote_name == LOCAL_REMOTE:
            ensure_backend_started(self.backend)
        remote = self.remotes.load(deploy_remote_name)
        self._apply_defaults(service, remote)

        client = self.connector(remote)
        if client.instance_exists(unit):
            raise UnitExistsError(unit, deploy_remote_name)

        image = image.with_defaults(architecture=client.server_architecture())
        archive = self.image_store.resolve(image)
        identity = self.image_store.identity_of(image)
        fingerprint = file_sha256(str(archive))

        self._preflight(client, remote, service, archive.stat().st_size)

        with CleanupStack() as cleanup:
            self._launch(client, service, str(archive), fingerprint, cleanup, token)
            self._configure(client, service, token)
            for rule in service.port_rules():
                client.add_device(unit, rule.device_name, rule.device())
                token.raise_if_cancelled()
            self._postdeploy(client, unit, service.postdeploy, token)

        data = UnitData(cpu=int(service.resources.cpu), ram=service.resources.ram,
                        ip=service.ip, image=str(identity))
        try:
            record = self.unit_store.insert_unit(unit, data)
        except PersistenceError:
            logger.warning("unit %s is running on %s but could not be recorded", unit, deploy_remote_name)
            raise
        print(f"Unit {unit} deployed")
        return record

    def _pull_from_remote(self, remote_name: str, image: BraveImage, token: CancellationToken) -> None:
        bravefile = Bravefile.for_remote_import(remote_name, str(image))
        try:
            self.builder.build(bravefile, token=token)
        except ImageExistsError as e:
            logger.info("image %s already exists locally, skipping remote import", e.name)
            print(f"image {e.name!r} already exists locally - skipping remote import")

    def _apply_defaults(self, service: Service, remote: Remote) -> None:
        service.profile = service.profile or remote.profile
        service.network = service.network or remote.network
        service.storage = service.storage or remote.storage
        if not (service.profile or service.network or service.storage):
            service.profile = self.settings.profile
            service.network = self.settings.network.name
            service.storage = self.settings.storage_pool.name

    def _preflight(self, client: RuntimeClient, remote: Remote, service: Service, image_size: int) -> None:
        if service.storage:
            check_storage_pool_space(client, service.storage, image_size)
        try:
            check_memory(client, service.resources.ram, remote.name)
        except InsufficientMemoryError as e:
            logger.critical("aborting deployment of %s: %s", service.name, e)
            sys.exit(f"Error: {e}")
        check_host_ports(remote, service.port_rules(), self.port_probe)

    def _launch(self, client: RuntimeClient, service: Service, archive: str, fingerprint: str,
                cleanup: CleanupStack, token: CancellationToken) -> None:
        unit = service.name
        if not client.image_exists(fingerprint):
            print(f"Importing image {os.path.basename(archive)}")
            try:
                fingerprint = client.import_image(archive, alias=unit)
            except RemoteError as e:
                raise RemoteError("failed to import image for unit", unit, e.cause) from e
            imported = fingerprint
            cleanup.defer(f"delete cached image {imported[:12]}",
                          lambda: client.delete_image(imported), on_failure_only=False)
            token.raise_if_cancelled()

        cleanup.defer(f"delete unit {unit}", lambda: delete_unit_if_exists(client, unit))
        client.launch(unit, fingerprint, profile=service.profile, storage=service.storage)
        token.raise_if_cancelled()

    def _configure(self, client: RuntimeClient, service: Service, token: CancellationToken) -> None:
        unit = service.name
        if service.network:
            client.attach_network(unit, service.network, NETWORK_DEVICE, NETWORK_DEVICE)
            token.raise_if_cancelled()

        if service.ip:
            try:
                client.set_device_ip(unit, NETWORK_DEVICE, service.ip)
            except RemoteError as e:
                raise RemoteError("failed to set IP of unit", unit, self._ip_hint(client, e)) from e
            token.raise_if_cancelled()

        self._bounce(client, unit, token)

        config = unit_config(service, client.server_version(), self.user_ids())
        if service.resources.gpu:
            client.add_device(unit, "gpu", {"type": "gpu"})
            token.raise_if_cancelled()
        client.set_config(unit, config)
        token.raise_if_cancelled()

        self._bounce(client, unit, token)

    def _ip_hint(self, client: RuntimeClient, error: RemoteError) -> str:
        try:
            bridge = client.network_address(self.settings.network.name)
        except BraveError:
            bridge = ""
        if bridge:
            return f"{error.cause}. Brave bridge is available at {bridge}"
        return str(error.cause)

    @staticmethod
    def _bounce(client: RuntimeClient, unit: str, token: CancellationToken) -> None:
        client.stop(unit)
        token.raise_if_cancelled()
        client.start(unit)
        token.raise_if_cancelled()

    @staticmethod
    def _postdeploy(client: RuntimeClient, unit: str, steps: PostDeploy, token: CancellationToken) -> None:
        for copy in steps.copy_files:
            client.push_path(unit, os.path.abspath(copy.source), copy.target)
            token.raise_if_cancelled()
        for command in steps.run:
            result = client.execute(unit, command.argv)
            token.raise_if_cancelled()
            if result.exit_code != 0:
                raise RemoteError(
                    "post-deploy command failed in unit", unit,
                    f"{' '.join(command.argv)} exited with {result.exit_code}: {result.stderr.strip()}")
