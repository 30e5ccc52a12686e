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
LXD implementation of the runtime client, built on pylxd.
"""
import logging
import os
import re
from contextlib import contextmanager
from typing import Dict, List, Optional

from pylxd import Client
from pylxd.exceptions import ClientConnectionFailed, LXDAPIException, NotFound

from ..errors import RemoteError, UnitNotFoundError
from .client import ExecResult, InstanceInfo, RuntimeClient
from .remotes import Remote

logger = logging.getLogger(__name__)

_FINGERPRINT = re.compile(r'^[0-9a-f]{64}$')


@contextmanager
def _calling(operation: str, target: str):
    """Translate pylxd failures into RemoteError naming the operation and target."""
    try:
        yield
    except (LXDAPIException, ClientConnectionFailed, KeyError, OSError) as e:
        raise RemoteError(operation, target, e) from e


class LxdRuntimeClient(RuntimeClient):
    """
    Runtime client for one LXD server.

    :param client: Connected pylxd client.
    :param remote_name: Name used in error messages.
    """

    def __init__(self, client: Client, remote_name: str = "local"):
        self.client = client
        self.remote_name = remote_name

    def _instance(self, name: str):
        try:
            return self.client.instances.get(name)
        except NotFound as e:
            raise UnitNotFoundError(name, self.remote_name) from e

    def instance_exists(self, name: str) -> bool:
        with _calling("failed to look up unit", name):
            return self.client.instances.exists(name)

    def get_instance(self, name: str) -> InstanceInfo:
        with _calling("failed to get unit", name):
            return self._to_info(self._instance(name))

    def list_instances(self, profile: Optional[str] = None) -> List[InstanceInfo]:
        with _calling("failed to list units on remote", self.remote_name):
            instances = self.client.instances.all()
            return [self._to_info(i) for i in instances
                    if profile is None or profile in (i.profiles or [])]

    def _to_info(self, instance) -> InstanceInfo:
        address = ""
        if instance.status == "Running":
            try:
                network = instance.state().network or {}
                for addr in network.get("eth0", {}).get("addresses", []):
                    if addr.get("family") == "inet":
                        address = addr.get("address", "")
                        break
            except LXDAPIException as e:
                logger.debug("no network state for %s: %s", instance.name, e)
        return InstanceInfo(
            name=instance.name,
            status=instance.status,
            address=address,
            profiles=list(instance.profiles or []),
            config=dict(instance.config or {}),
            devices={k: dict(v) for k, v in (instance.devices or {}).items()},
        )

    def launch(self, name: str, image: str, profile: str = "", storage: str = "",
               server: Optional[str] = None) -> None:
        if server:
            source = {"type": "image", "mode": "pull", "server": server,
                      "protocol": "simplestreams", "alias": image}
        elif _FINGERPRINT.match(image):
            source = {"type": "image", "fingerprint": image}
        else:
            source = {"type": "image", "alias": image}

        config = {"name": name, "source": source}
        if profile:
            config["profiles"] = [profile]
        if storage:
            config["devices"] = {"root": {"type": "disk", "path": "/", "pool": storage}}

        with _calling("failed to launch unit", name):
            instance = self.client.instances.create(config, wait=True)
            instance.start(wait=True)

    def start(self, name: str) -> None:
        with _calling("failed to start unit", name):
            instance = self._instance(name)
            if instance.status != "Running":
                instance.start(wait=True)

    def stop(self, name: str) -> None:
        with _calling("failed to stop unit", name):
            instance = self._instance(name)
            if instance.status == "Running":
                instance.stop(wait=True)

    def delete_instance(self, name: str) -> None:
        with _calling("failed to delete unit", name):
            instance = self._instance(name)
            if instance.status == "Running":
                instance.stop(wait=True)
            instance.delete(wait=True)

    def execute(self, name: str, command: List[str]) -> ExecResult:
        with _calling("failed to execute command in unit", name):
            result = self._instance(name).execute(command)
            return ExecResult(exit_code=result.exit_code, stdout=result.stdout or "",
                              stderr=result.stderr or "")

    def push_path(self, name: str, source: str, target: str) -> None:
        with _calling("failed to copy files into unit", name):
            instance = self._instance(name)
            if os.path.isdir(source):
                instance.files.recursive_put(source, target)
            else:
                with open(source, 'rb') as f:
                    instance.files.put(target, f.read())

    def add_device(self, name: str, device_name: str, device: Dict[str, str]) -> None:
        with _calling(f"failed to add device {device_name!r} to unit", name):
            instance = self._instance(name)
            instance.devices[device_name] = device
            instance.save(wait=True)

    def remove_device(self, name: str, device_name: str) -> Dict[str, str]:
        with _calling(f"failed to remove device {device_name!r} from unit", name):
            instance = self._instance(name)
            device = instance.devices.pop(device_name)
            instance.save(wait=True)
            return dict(device)

    def set_config(self, name: str, config: Dict[str, str]) -> None:
        with _calling("failed to configure unit", name):
            instance = self._instance(name)
            instance.config.update(config)
            instance.save(wait=True)

    def attach_network(self, name: str, network: str, device_name: str, interface: str) -> None:
        device = {"type": "nic", "nictype": "bridged", "parent": network, "name": interface}
        self.add_device(name, device_name, device)

    def set_device_ip(self, name: str, device_name: str, address: str) -> None:
        with _calling("failed to set IP address of unit", name):
            instance = self._instance(name)
            device = instance.devices.get(device_name) or dict(instance.expanded_devices[device_name])
            device["ipv4.address"] = address
            instance.devices[device_name] = device
            instance.save(wait=True)

    def image_exists(self, fingerprint: str) -> bool:
        with _calling("failed to look up image", fingerprint):
            return self.client.images.exists(fingerprint)

    def import_image(self, archive_path: str, alias: str) -> str:
        with _calling("failed to import image", archive_path):
            with open(archive_path, 'rb') as f:
                image = self.client.images.create(f.read(), public=False, wait=True)
            image.add_alias(alias, "brave staging image")
            return image.fingerprint

    def delete_image(self, fingerprint: str) -> None:
        with _calling("failed to delete image", fingerprint):
            self.client.images.get(fingerprint).delete(wait=True)

    def publish(self, name: str, alias: str) -> str:
        with _calling("failed to publish unit", name):
            image = self._instance(name).publish(public=False, wait=True)
            image.add_alias(alias, "brave published image")
            return image.fingerprint

    def export_image(self, fingerprint: str, destination: str) -> None:
        with _calling("failed to export image", fingerprint):
            data = self.client.images.get(fingerprint).export()
            with open(destination, 'wb') as f:
                f.write(data.read())

    def find_image(self, alias: str) -> Optional[str]:
        try:
            return self.client.images.get_by_alias(alias).fingerprint
        except NotFound:
            return None
        except LXDAPIException as e:
            raise RemoteError("failed to look up image", alias, e) from e

    def server_version(self) -> str:
        with _calling("failed to get server version of remote", self.remote_name):
            return str(self.client.host_info["environment"]["server_version"])

    def server_architecture(self) -> str:
        with _calling("failed to get architecture of remote", self.remote_name):
            return self.client.host_info["environment"]["architectures"][0]

    def total_memory(self) -> int:
        with _calling("failed to get memory of remote", self.remote_name):
            return int(self.client.resources["memory"]["total"])

    def storage_pool_usage(self, pool: str) -> Dict[str, int]:
        with _calling("failed to get usage of storage pool", pool):
            resources = self.client.storage_pools.get(pool).get_resources()
            return {"used": int(resources.space["used"]), "total": int(resources.space["total"])}

    def create_volume(self, pool: str, volume: str) -> None:
        with _calling("failed to create volume", volume):
            self.client.storage_pools.get(pool).volumes.create(
                {"name": volume, "type": "custom", "config": {}}, wait=True)

    def delete_volume(self, pool: str, volume: str) -> None:
        with _calling("failed to delete volume", volume):
            self.client.storage_pools.get(pool).volumes.get("custom", volume).delete()

    def volume_used_by(self, pool: str, volume: str) -> List[str]:
        with _calling("failed to inspect volume", volume):
            return list(self.client.storage_pools.get(pool).volumes.get("custom", volume).used_by or [])

    def network_address(self, network: str) -> str:
        with _calling("failed to inspect network", network):
            return self.client.networks.get(network).config.get("ipv4.address", "")

    def authenticate(self, secret: str) -> None:
        with _calling("failed to authenticate with remote", self.remote_name):
            if not self.client.trusted:
                self.client.authenticate(secret)


def connect(remote: Remote) -> LxdRuntimeClient:
    """
    Open a runtime client for a remote: the local unix socket or HTTPS with
    the remote's client certificate pair.

    :raises RemoteError: If the server cannot be reached.
    """
    try:
        if remote.is_unix_socket:
            client = Client()
        else:
            cert = (remote.cert, remote.key) if remote.cert and remote.key else None
            client = Client(endpoint=remote.url, cert=cert, verify=False)
    except ClientConnectionFailed as e:
        raise RemoteError("failed to connect to remote", remote.name, e) from e
    return LxdRuntimeClient(client, remote.name)
