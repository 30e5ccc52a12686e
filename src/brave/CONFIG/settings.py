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
Persisted host settings and the brave home directory layout.

Settings are the source of defaults (profile, network, storage pool, VM sizing)
when a unit or service omits them. They are loaded once by the CLI and passed
explicitly to every component that needs them.
"""
import os
import secrets
import sys
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from ..errors import ConfigError

BRAVE_HOME_ENV = "BRAVE_HOME"
LOCAL_REMOTE = "local"
DEFAULT_IMAGE_VERSION = "1.0"


class BackendResources(BaseModel):
    """
    Sizing of the Multipass VM hosting LXD.
    """
    name: str = "brave"
    os: str = "jammy"
    cpu: str = "2"
    ram: str = "4GB"
    hd: str = "50GB"


class BackendSettings(BaseModel):
    type: str = "lxd"
    resources: BackendResources = Field(default_factory=BackendResources)


class StoragePoolSettings(BaseModel):
    name: str = "brave"
    type: str = "zfs"
    size: str = "50GB"


class NetworkSettings(BaseModel):
    name: str = "bravebr0"
    bridge: str = "10.0.0.1"


class HostSettings(BaseModel):
    """
    Complete host configuration, equivalent to ``config.yml`` in the brave home.
    """
    name: str = "brave"
    trust: str = ""
    profile: str = "brave"
    status: str = "inactive"
    storage_pool: StoragePoolSettings = Field(default_factory=StoragePoolSettings)
    network: NetworkSettings = Field(default_factory=NetworkSettings)
    backend: BackendSettings = Field(default_factory=BackendSettings)


class BravePaths:
    """
    Locations of everything brave keeps on disk.

    :param home: Root directory. Defaults to ``$BRAVE_HOME`` or ``~/.bravetools``.
    """

    def __init__(self, home: Optional[str] = None):
        home = home or os.environ.get(BRAVE_HOME_ENV)
        self.home = Path(home) if home else Path.home() / ".bravetools"

    @property
    def config_file(self) -> Path:
        return self.home / "config.yml"

    @property
    def remotes_dir(self) -> Path:
        return self.home / "remotes"

    @property
    def images_dir(self) -> Path:
        return self.home / "images"

    @property
    def database(self) -> Path:
        return self.home / "db" / "brave.db"

    @property
    def certs_dir(self) -> Path:
        return self.home / "certs"

    def ensure(self) -> None:
        """Create the directory tree."""
        for directory in (self.home, self.remotes_dir, self.images_dir,
                          self.database.parent, self.certs_dir):
            directory.mkdir(parents=True, exist_ok=True)


def default_settings(name: str = "brave") -> HostSettings:
    """
    Builds default settings for a fresh host. Linux hosts run LXD natively,
    other platforms go through a Multipass VM.
    """
    backend_type = "lxd" if sys.platform.startswith("linux") else "multipass"
    return HostSettings(
        name=name,
        trust=secrets.token_urlsafe(16),
        profile=name,
        storage_pool=StoragePoolSettings(name=f"{name}-pool"),
        network=NetworkSettings(name=f"{name}br0"),
        backend=BackendSettings(type=backend_type, resources=BackendResources(name=name)),
    )


def load_settings(paths: BravePaths) -> HostSettings:
    """
    Loads host settings from ``config.yml``.

    :raises ConfigError: If the file is missing or malformed.
    """
    path = paths.config_file
    if not path.exists():
        raise ConfigError(f"settings file {path} not found, run 'brave init' first")
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        return HostSettings(**data)
    except (yaml.YAMLError, PydanticValidationError, TypeError) as e:
        raise ConfigError(f"invalid settings file {path}: {e}") from e


def save_settings(paths: BravePaths, settings: HostSettings) -> None:
    """
    Writes host settings to ``config.yml`` readable by the owner only.
    """
    paths.ensure()
    path = paths.config_file
    with open(path, 'w') as f:
        yaml.safe_dump(settings.model_dump(), f, default_flow_style=False, sort_keys=False)
    os.chmod(path, 0o600)
