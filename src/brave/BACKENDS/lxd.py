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
Backend for a native LXD daemon on the local host.
"""
import logging
import os
import platform
import shutil

import psutil

from ..CONFIG.settings import save_settings
from ..errors import BackendError
from ..UTILS.formatting import format_byte_count_si
from ..UTILS.shell import CommandError, exec_command, exec_command_with_return
from .backend import Backend, BackendInfo, StorageUsage
from .multipass import parse_storage_info
from .preseed import render_preseed

logger = logging.getLogger(__name__)


def lxd_daemon_running() -> bool:
    for process in psutil.process_iter(["name"]):
        if (process.info.get("name") or "") == "lxd":
            return True
    return False


class LxdBackend(Backend):
    """
    The host itself runs LXD. Provisioning applies the preseed locally and
    starting only makes sure the daemon is up.
    """

    def _require_lxd(self) -> None:
        if shutil.which("lxd") is None:
            raise BackendError("lxd not found, install it with 'snap install lxd'")

    def initialize(self) -> None:
        self._require_lxd()
        preseed = render_preseed(self.settings)
        print("Initialising LXD ...")
        try:
            exec_command("lxd", "init", "--preseed", input_text=preseed)
        except CommandError as e:
            raise BackendError(f"failed to initialise LXD: {e}") from e
        self.settings.status = "active"
        save_settings(self.paths, self.settings)

    def running(self) -> bool:
        return lxd_daemon_running()

    def start(self) -> None:
        if self.running():
            return
        try:
            exec_command("snap", "start", "lxd")
        except CommandError as e:
            raise BackendError(f"failed to start LXD: {e}") from e

    def info(self) -> BackendInfo:
        info = BackendInfo(
            name=self.settings.name,
            state="Running" if self.running() else "Stopped",
            ipv4=self.settings.network.bridge,
            release=platform.platform(terse=True),
        )
        if not info.running:
            return info

        info.load = " ".join(f"{value:.2f}" for value in os.getloadavg())
        memory = psutil.virtual_memory()
        info.memory = StorageUsage(used=format_byte_count_si(memory.total - memory.available),
                                   total=format_byte_count_si(memory.total))
        info.cpu = str(psutil.cpu_count())
        try:
            info.disk = parse_storage_info(exec_command_with_return(
                "lxc", "storage", "info", self.settings.storage_pool.name, "--bytes"))
        except (CommandError, BackendError) as e:
            logger.debug("storage pool usage unavailable: %s", e)
        return info
