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
Backend running LXD inside a Multipass VM.
"""
import logging
import sys
from datetime import datetime
from typing import Dict, Optional

import psutil
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..CONFIG.settings import BravePaths, HostSettings, save_settings
from ..errors import BackendError
from ..UTILS.formatting import format_byte_count_si
from ..UTILS.shell import CommandError, exec_command, exec_command_with_return
from .backend import UNKNOWN, Backend, BackendInfo, StorageUsage
from .preseed import render_preseed

logger = logging.getLogger(__name__)

LXC = "/snap/bin/lxc"
LXD_API_ADDRESS = "[::]:8443"
VM_HOME = "/home/ubuntu"


def multipass_running() -> bool:
    """Checks whether a multipass daemon or client process is running."""
    for process in psutil.process_iter(["name"]):
        name = process.info.get("name") or ""
        if "multipass" in name:
            return True
    return False


def parse_multipass_info(output: str) -> BackendInfo:
    """
    Parses the ``Key: value`` listing printed by ``multipass info <vm>``.
    """
    info = BackendInfo()
    keys = {
        "Name": "name",
        "State": "state",
        "IPv4": "ipv4",
        "Release": "release",
        "Image hash": "image_hash",
        "Load": "load",
    }
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        attribute = keys.get(key.strip())
        if attribute and value.strip():
            setattr(info, attribute, value.strip())
    return info


def parse_storage_info(output: str) -> StorageUsage:
    """
    Parses ``lxc storage info <pool> --bytes``. Values may be quoted.
    """
    values: Dict[str, int] = {}
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        if key in ("space used", "total space"):
            values[key] = int(value.strip().strip('"'))
    if "space used" not in values or "total space" not in values:
        raise BackendError("unexpected storage pool info output")
    return StorageUsage(used=format_byte_count_si(values["space used"]),
                        total=format_byte_count_si(values["total space"]))


def parse_meminfo(output: str) -> StorageUsage:
    """
    Parses ``/proc/meminfo`` into used and total memory. Values are in kB.
    """
    values: Dict[str, int] = {}
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if sep and key in ("MemTotal", "MemAvailable"):
            values[key] = int(value.split()[0])
    if "MemTotal" not in values or "MemAvailable" not in values:
        raise BackendError("unexpected /proc/meminfo output")
    total = values["MemTotal"]
    used = total - values["MemAvailable"]
    return StorageUsage(used=format_byte_count_si(used * 1000),
                        total=format_byte_count_si(total * 1000))


class MultipassBackend(Backend):
    """
    LXD in a Multipass VM named after the host settings.
    """

    ready_attempts = 10

    def __init__(self, settings: HostSettings, paths: Optional[BravePaths] = None):
        super().__init__(settings, paths)
        self.vm_name = settings.backend.resources.name or settings.name

    def _vm_exec(self, *command: str, input_text: Optional[str] = None) -> None:
        exec_command("multipass", "exec", self.vm_name, "--", *command, input_text=input_text)

    def _vm_output(self, *command: str) -> str:
        return exec_command_with_return("multipass", "exec", self.vm_name, "--", *command)

    def _mandatory(self, message: str, *command: str, input_text: Optional[str] = None) -> None:
        try:
            self._vm_exec(*command, input_text=input_text)
        except CommandError as e:
            raise BackendError(f"{message}: {e}") from e

    def _best_effort(self, *command: str) -> None:
        try:
            self._vm_exec(*command)
        except CommandError as e:
            logger.warning("ignoring failed step %r: %s", " ".join(command), e)

    def _require_multipass(self) -> None:
        if not multipass_running():
            raise BackendError("multipass process not found, install multipass")

    def _wait_until_ready(self) -> None:
        """Waits until commands can be executed in the VM."""
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.ready_attempts),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                retry=retry_if_exception_type(CommandError),
            ):
                with attempt:
                    self._vm_exec("true")
        except RetryError as e:
            raise BackendError(f"workspace {self.vm_name!r} did not become ready") from e

    def initialize(self) -> None:
        self._require_multipass()
        resources = self.settings.backend.resources

        if sys.platform.startswith("win"):
            try:
                exec_command("multipass", "set", "local.privileged-mounts=Yes")
            except CommandError as e:
                logger.warning("failed to enable privileged mounts, attempting to continue: %s", e)

        print(f"Launching workspace {self.vm_name} ...")
        try:
            exec_command("multipass", "launch",
                         "--cpus", resources.cpu,
                         "--disk", resources.hd,
                         "--memory", resources.ram,
                         "--name", self.vm_name,
                         resources.os)
        except CommandError as e:
            raise BackendError(f"failed to create workspace: {e}") from e

        self._wait_until_ready()

        self._mandatory("failed to update workspace", "sudo", "snap", "install", "multipass-sshfs")
        try:
            exec_command("multipass", "mount", str(self.paths.home),
                         f"{self.vm_name}:{VM_HOME}/{self.paths.home.name}")
        except CommandError as e:
            raise BackendError(f"unable to mount local volumes to multipass: {e}") from e
        self._mandatory("failed to update workspace", "sudo", "apt", "update")

        self._best_effort("sudo", "apt", "remove", "-y", "lxd")
        self._best_effort("sudo", "apt", "autoremove", "-y")
        self._best_effort("sudo", "apt", "purge")

        self._mandatory("unable to install LXD", "sudo", "snap", "install", "--stable", "lxd")
        self._mandatory("failed to install packages in workspace", "sudo", "usermod", "-aG", "lxd", "ubuntu")

        print("Installing required software ...")
        pool = self.settings.storage_pool
        pool.name = f"{pool.name}-{datetime.now().strftime('%Y%m%d%H%M%S')}"
        save_settings(self.paths, self.settings)

        preseed = render_preseed(self.settings, https_address=LXD_API_ADDRESS)
        self._mandatory("failed to initiate workspace", "sudo", "lxd", "init", "--preseed",
                        input_text=preseed)

        self.settings.status = "active"
        save_settings(self.paths, self.settings)

    def running(self) -> bool:
        try:
            output = exec_command_with_return("multipass", "info", self.vm_name)
        except CommandError:
            return False
        return parse_multipass_info(output).running

    def start(self) -> None:
        if self.running():
            return
        self._require_multipass()
        print(f"Starting workspace {self.vm_name} ...")
        try:
            exec_command("multipass", "start", self.vm_name)
        except CommandError as e:
            raise BackendError(f"failed to start workspace {self.vm_name!r}: {e}") from e
        self._wait_until_ready()

    def info(self) -> BackendInfo:
        if not multipass_running():
            raise BackendError("multipass process not found")
        try:
            info = parse_multipass_info(exec_command_with_return("multipass", "info", self.vm_name))
        except CommandError as e:
            raise BackendError(f"error contacting multipass vm {self.vm_name!r}: {e}") from e

        if not info.running:
            return info

        try:
            info.disk = parse_storage_info(
                self._vm_output(LXC, "storage", "info", self.settings.storage_pool.name, "--bytes"))
            info.memory = parse_meminfo(self._vm_output("cat", "/proc/meminfo"))
            info.cpu = self._vm_output("nproc").strip() or UNKNOWN
        except CommandError as e:
            raise BackendError(f"unable to read usage of workspace {self.vm_name!r}: {e}") from e
        return info
