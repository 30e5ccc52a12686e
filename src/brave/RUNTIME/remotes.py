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
Remote connection targets and their on-disk settings.
"""
import json
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import BaseModel, ValidationError as PydanticValidationError

from ..CONFIG.settings import LOCAL_REMOTE, BravePaths
from ..errors import ConfigError, RemoteNotFoundError

logger = logging.getLogger(__name__)


class Remote(BaseModel):
    """
    A named LXD endpoint plus the defaults used when deploying to it.
    """
    name: str
    url: str = ""
    protocol: str = "lxd"
    public: bool = False
    profile: str = ""
    network: str = ""
    storage: str = ""
    cert: str = ""
    key: str = ""

    @property
    def is_unix_socket(self) -> bool:
        return self.protocol == "unix" or "unix.socket" in self.url

    @property
    def has_auth(self) -> bool:
        """Remotes without a client certificate are only usable over a unix socket."""
        return bool(self.cert and self.key) or self.is_unix_socket


def parse_remote_name(reference: str) -> Tuple[str, str]:
    """
    Splits ``remote:name`` into its parts. A reference without a remote
    prefix belongs to the local remote.

    >>> parse_remote_name("prod:web")
    ('prod', 'web')
    >>> parse_remote_name("web")
    ('local', 'web')
    """
    if ":" not in reference:
        return LOCAL_REMOTE, reference
    remote, name = reference.split(":", 1)
    return (remote or LOCAL_REMOTE), name


class RemoteStore:
    """
    Loads and saves remote settings as JSON files under ``remotes/``.
    """

    def __init__(self, paths: BravePaths):
        self.paths = paths

    def _path(self, name: str) -> Path:
        return self.paths.remotes_dir / f"{name}.json"

    def load(self, name: str) -> Remote:
        """
        :raises RemoteNotFoundError: If no settings exist for the remote.
        :raises ConfigError: If the settings file is corrupt.
        """
        path = self._path(name)
        if not path.exists():
            raise RemoteNotFoundError(name)
        try:
            with open(path, 'r') as f:
                return Remote(**json.load(f))
        except (json.JSONDecodeError, PydanticValidationError, TypeError) as e:
            raise ConfigError(f"invalid settings for remote {name!r}: {e}") from e

    def save(self, remote: Remote) -> None:
        self.paths.remotes_dir.mkdir(parents=True, exist_ok=True)
        with open(self._path(remote.name), 'w') as f:
            json.dump(remote.model_dump(), f, indent=2)

    def delete(self, name: str) -> None:
        path = self._path(name)
        if not path.exists():
            raise RemoteNotFoundError(name)
        path.unlink()

    def list(self) -> List[str]:
        if not self.paths.remotes_dir.exists():
            return []
        return sorted(p.stem for p in self.paths.remotes_dir.glob("*.json"))

    def find(self, name: str) -> Optional[Remote]:
        try:
            return self.load(name)
        except RemoteNotFoundError:
            return None
