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
The backend contract: how the host running LXD is provisioned and queried.

Two variants exist. ``multipass`` runs LXD inside a Multipass VM (macOS,
Windows) and ``lxd`` talks to a native LXD daemon (Linux). Callers get one
from :func:`new_host_backend` and only ever use the four operations below.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..CONFIG.settings import BravePaths, HostSettings
from ..errors import BackendError

UNKNOWN = "Unknown"


@dataclass
class StorageUsage:
    used: str = UNKNOWN
    total: str = UNKNOWN


@dataclass
class BackendInfo:
    """
    State of the backend host. Fields that cannot be read while the host is
    stopped stay ``Unknown``.
    """
    name: str = UNKNOWN
    state: str = UNKNOWN
    ipv4: str = UNKNOWN
    release: str = UNKNOWN
    image_hash: str = UNKNOWN
    load: str = UNKNOWN
    disk: StorageUsage = field(default_factory=StorageUsage)
    memory: StorageUsage = field(default_factory=StorageUsage)
    cpu: str = UNKNOWN

    @property
    def running(self) -> bool:
        return self.state == "Running"


class Backend(ABC):
    """
    Lifecycle of the host running LXD.

    :param settings: Host settings; ``initialize`` updates and persists them.
    :param paths: Brave home layout, used to persist settings.
    """

    def __init__(self, settings: HostSettings, paths: Optional[BravePaths] = None):
        self.settings = settings
        self.paths = paths or BravePaths()

    @abstractmethod
    def initialize(self) -> None:
        """Provision the host and the LXD daemon on it."""

    @abstractmethod
    def info(self) -> BackendInfo: ...

    @abstractmethod
    def running(self) -> bool:
        """Liveness of the host, without side effects."""

    @abstractmethod
    def start(self) -> None:
        """Start the host. A running host is left alone."""


BackendFactory = Callable[[HostSettings, BravePaths], Backend]


def _multipass(settings: HostSettings, paths: BravePaths) -> Backend:
    from .multipass import MultipassBackend
    return MultipassBackend(settings, paths)


def _lxd(settings: HostSettings, paths: BravePaths) -> Backend:
    from .lxd import LxdBackend
    return LxdBackend(settings, paths)


BACKENDS = {
    "multipass": _multipass,
    "lxd": _lxd,
}


def new_host_backend(settings: HostSettings, paths: Optional[BravePaths] = None) -> Backend:
    """
    Builds the backend named by ``settings.backend.type``.

    :raises BackendError: If the type is not supported.
    """
    backend_type = settings.backend.type
    factory = BACKENDS.get(backend_type)
    if factory is None:
        raise BackendError(f"backend type {backend_type!r} not supported")
    return factory(settings, paths or BravePaths())
