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
Shares between the host and units, and between units.

Every mount is a disk device on the unit whose name is derived from the unit
and the normalised target path, so mounting and unmounting the same share is
addressable without any bookkeeping.
"""
import hashlib
import logging
import os
import posixpath
from typing import List, Optional, Tuple

from ..CONFIG.settings import HostSettings
from ..errors import BraveError, RemoteError, UnitNotFoundError, ValidationError
from ..MODELS.unit import Mount
from ..RUNTIME.client import DISK_DEVICE_PREFIX, RuntimeClient
from ..UTILS.shell import CommandError, exec_command, exec_command_with_return

logger = logging.getLogger(__name__)

VOLUME_PREFIX = "brave_vol_"
MULTIPASS_VOLUMES_DIR = "/home/ubuntu/volumes"


def clean_mount_target_path(target: str) -> str:
    """
    Normalises a path inside a unit to a single leading slash and no trailing slash.

    >>> clean_mount_target_path("data//logs/")
    '/data/logs'
    """
    target = target.replace("\\", "/").strip("/")
    if not target:
        return "/"
    return posixpath.normpath("/" + target)


def device_name(unit: str, target: str) -> str:
    """Name of the disk device mounting ``target`` into ``unit``."""
    key = f"{unit}:{clean_mount_target_path(target)}"
    return DISK_DEVICE_PREFIX + hashlib.md5(key.encode()).hexdigest()


def parse_mount_source(source: str) -> Tuple[str, str]:
    """
    Splits ``[UNIT:]PATH`` into unit and path. A bare path is a host path and
    is made absolute.

    :raises ValidationError: If the source has more than one ``:``.
    """
    parts = source.split(":")
    if len(parts) > 2:
        raise ValidationError(f"failed to parse source {source!r}. Accepted form [UNIT:]<path>")
    if len(parts) == 2:
        unit, path = parts
        if not unit or not path:
            raise ValidationError(f"failed to parse source {source!r}. Accepted form [UNIT:]<path>")
        return unit, path.replace("\\", "/")
    return "", os.path.abspath(source)


class HostMounter:
    """
    Makes a host directory reachable by the LXD daemon. The native daemon
    sees host paths directly.
    """

    def expose(self, host_path: str, unit: str, target: str) -> str:
        """:return: Path of ``host_path`` as seen by the LXD daemon."""
        return host_path

    def withdraw(self, daemon_path: str) -> None:
        pass


class MultipassHostMounter(HostMounter):
    """
    Host directories are first mounted into the Multipass VM under
    ``/home/ubuntu/volumes/<device>`` and attached to the unit from there.
    """

    def __init__(self, vm_name: str):
        self.vm_name = vm_name

    def expose(self, host_path: str, unit: str, target: str) -> str:
        vm_path = posixpath.join(MULTIPASS_VOLUMES_DIR, device_name(unit, target))
        try:
            exec_command("multipass", "mount", host_path, f"{self.vm_name}:{vm_path}")
        except CommandError as e:
            raise RemoteError("failed to initialize mount on host", host_path, e) from e
        return vm_path

    def withdraw(self, daemon_path: str) -> None:
        try:
            output = exec_command_with_return(
                "multipass", "exec", self.vm_name, "--", "bash", "-c",
                f'if [ -d "{daemon_path}" ]; then echo exists; else echo none; fi')
        except CommandError as e:
            raise RemoteError("could not check directory", daemon_path, e) from e
        if output.strip() != "exists":
            return
        try:
            exec_command("multipass", "umount", f"{self.vm_name}:{daemon_path}")
        except CommandError as e:
            raise RemoteError("failed to unmount from multipass host", daemon_path, e) from e
        try:
            exec_command("multipass", "exec", self.vm_name, "--", "rmdir", daemon_path)
        except CommandError as e:
            logger.warning("failed to clean up empty mountpoint %s: %s", daemon_path, e)


def host_mounter_for(settings: HostSettings) -> HostMounter:
    if settings.backend.type == "multipass":
        return MultipassHostMounter(settings.backend.resources.name or settings.name)
    return HostMounter()


class MountManager:
    """
    Mounts host paths and unit shares into units of one remote.

    :param client: Runtime client of the remote the units live on.
    :param storage_pool: Pool unit-to-unit share volumes are created in.
    :param host_mounter: Backend-specific exposure of host paths.
    """

    def __init__(self, client: RuntimeClient, storage_pool: str, host_mounter: Optional[HostMounter] = None):
        self.client = client
        self.storage_pool = storage_pool
        self.host_mounter = host_mounter or HostMounter()

    def _require_unit(self, unit: str) -> None:
        if not self.client.instance_exists(unit):
            raise UnitNotFoundError(unit)

    def mount(self, source: str, unit: str, target: str) -> None:
        """
        Mounts ``source`` (a host path or ``UNIT:PATH``) at ``target`` in ``unit``.
        """
        source_unit, source_path = parse_mount_source(source)
        target = clean_mount_target_path(target)
        self._require_unit(unit)

        if source_unit:
            self._require_unit(source_unit)
            self._share_between_units(source_unit, source_path, unit, target)
            return

        daemon_path = self.host_mounter.expose(source_path, unit, target)
        try:
            self.client.add_device(unit, device_name(unit, target),
                                   {"type": "disk", "source": daemon_path, "path": target})
        except BraveError:
            try:
                self.host_mounter.withdraw(daemon_path)
            except BraveError as cleanup_error:
                logger.warning("failed to clean up host mount %s: %s", daemon_path, cleanup_error)
            raise
        print(f"Mounted {source_path} to {unit}:{target}")

    def _share_between_units(self, source_unit: str, source_path: str, unit: str, target: str) -> None:
        source_path = clean_mount_target_path(source_path)
        source_device = device_name(source_unit, source_path)
        volume = VOLUME_PREFIX + source_device[len(DISK_DEVICE_PREFIX):]

        self.client.create_volume(self.storage_pool, volume)
        attached = []
        try:
            for owner, path in ((source_unit, source_path), (unit, target)):
                self.client.add_device(owner, device_name(owner, path), {
                    "type": "disk", "pool": self.storage_pool, "source": volume, "path": path,
                })
                attached.append((owner, path))
        except BraveError:
            for owner, path in attached:
                try:
                    self.unmount(owner, path)
                except BraveError as cleanup_error:
                    logger.warning("failed to unmount %s:%s: %s", owner, path, cleanup_error)
            if not attached:
                self._delete_volume_if_unused(volume)
            raise
        print(f"Mounted {source_unit}:{source_path} to {unit}:{target}")

    def unmount(self, unit: str, target: str) -> None:
        """
        Removes the mount at ``target`` from ``unit``. Share volumes are
        deleted once no unit uses them.
        """
        target = clean_mount_target_path(target)
        device = self.client.remove_device(unit, device_name(unit, target))
        source = device.get("source", "")

        if device.get("pool") and source.startswith(VOLUME_PREFIX):
            self._delete_volume_if_unused(source)
        elif source:
            self.host_mounter.withdraw(source)

    def _delete_volume_if_unused(self, volume: str) -> None:
        try:
            if not self.client.volume_used_by(self.storage_pool, volume):
                self.client.delete_volume(self.storage_pool, volume)
        except BraveError as e:
            logger.warning("failed to clean up volume %s: %s", volume, e)

    def list_mounts(self, unit: str) -> List[Mount]:
        """
        Mounts of a unit, shortest source first and then alphabetically.
        """
        devices = self.client.get_instance(unit).disk_devices()
        mounts = []
        for device in devices.values():
            path = device.get("path", "")
            if not path.startswith("/"):
                path = "/" + path
            mounts.append(Mount(source=device["source"], path=path))
        mounts.sort(key=lambda m: (len(m.source), m.source))
        return mounts
