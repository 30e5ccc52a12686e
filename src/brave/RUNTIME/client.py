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
Contract for the runtime-control protocol client.

Everything brave does to instances, devices, images, storage and networks on
an LXD server goes through this interface. Implementations raise
:class:`~brave.errors.RemoteError` (or a subclass) on failure.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

DISK_DEVICE_PREFIX = "brave_"


@dataclass
class InstanceInfo:
    """A unit as reported by the runtime."""
    name: str
    status: str = "Unknown"
    address: str = ""
    profiles: List[str] = field(default_factory=list)
    config: Dict[str, str] = field(default_factory=dict)
    devices: Dict[str, Dict[str, str]] = field(default_factory=dict)

    def disk_devices(self) -> Dict[str, Dict[str, str]]:
        """Disk devices created by brave, i.e. mounts."""
        return {name: device for name, device in self.devices.items()
                if name.startswith(DISK_DEVICE_PREFIX)
                and device.get("type") == "disk" and "source" in device}

    def proxy_devices(self) -> Dict[str, Dict[str, str]]:
        return {name: device for name, device in self.devices.items()
                if device.get("type") == "proxy"}


@dataclass
class ExecResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""


class RuntimeClient(ABC):
    """
    Typed client for one LXD server.
    """

    # Instances

    @abstractmethod
    def instance_exists(self, name: str) -> bool: ...

    @abstractmethod
    def get_instance(self, name: str) -> InstanceInfo:
        """:raises UnitNotFoundError: If there is no such instance."""

    @abstractmethod
    def list_instances(self, profile: Optional[str] = None) -> List[InstanceInfo]:
        """Instances, optionally limited to those using ``profile``."""

    @abstractmethod
    def launch(self, name: str, image: str, profile: str = "", storage: str = "",
               server: Optional[str] = None) -> None:
        """
        Create and start an instance.

        :param image: Fingerprint or alias of a cached image, or an alias on
            ``server`` when a simplestreams server URL is given.
        """

    @abstractmethod
    def start(self, name: str) -> None: ...

    @abstractmethod
    def stop(self, name: str) -> None: ...

    @abstractmethod
    def delete_instance(self, name: str) -> None:
        """Stop (if running) and delete an instance."""

    @abstractmethod
    def execute(self, name: str, command: List[str]) -> ExecResult: ...

    @abstractmethod
    def push_path(self, name: str, source: str, target: str) -> None:
        """Copy a host file or directory into an instance."""

    # Devices and configuration

    @abstractmethod
    def add_device(self, name: str, device_name: str, device: Dict[str, str]) -> None: ...

    @abstractmethod
    def remove_device(self, name: str, device_name: str) -> Dict[str, str]:
        """Remove a device and return its definition."""

    @abstractmethod
    def set_config(self, name: str, config: Dict[str, str]) -> None: ...

    @abstractmethod
    def attach_network(self, name: str, network: str, device_name: str, interface: str) -> None: ...

    @abstractmethod
    def set_device_ip(self, name: str, device_name: str, address: str) -> None: ...

    # Images

    @abstractmethod
    def image_exists(self, fingerprint: str) -> bool: ...

    @abstractmethod
    def import_image(self, archive_path: str, alias: str) -> str:
        """Import a unified image archive and return its fingerprint."""

    @abstractmethod
    def delete_image(self, fingerprint: str) -> None: ...

    @abstractmethod
    def publish(self, name: str, alias: str) -> str:
        """Publish a stopped instance as an image and return its fingerprint."""

    @abstractmethod
    def export_image(self, fingerprint: str, destination: str) -> None: ...

    @abstractmethod
    def find_image(self, alias: str) -> Optional[str]:
        """Fingerprint of the image with ``alias``, if any."""

    # Server, storage and networks

    @abstractmethod
    def server_version(self) -> str: ...

    @abstractmethod
    def server_architecture(self) -> str: ...

    @abstractmethod
    def total_memory(self) -> int:
        """Host memory in bytes."""

    @abstractmethod
    def storage_pool_usage(self, pool: str) -> Dict[str, int]:
        """``{"used": bytes, "total": bytes}`` for a storage pool."""

    def storage_pool_free(self, pool: str) -> int:
        usage = self.storage_pool_usage(pool)
        return usage["total"] - usage["used"]

    @abstractmethod
    def create_volume(self, pool: str, volume: str) -> None: ...

    @abstractmethod
    def delete_volume(self, pool: str, volume: str) -> None: ...

    @abstractmethod
    def volume_used_by(self, pool: str, volume: str) -> List[str]: ...

    @abstractmethod
    def network_address(self, network: str) -> str:
        """IPv4 address of a managed bridge network."""

    @abstractmethod
    def authenticate(self, secret: str) -> None:
        """Trust this client's certificate on the server using the trust secret."""
