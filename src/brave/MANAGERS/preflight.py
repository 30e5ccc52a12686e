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
Resource checks run against the deploy target before a unit is launched.
"""
import logging
from typing import Callable, List

from ..errors import InsufficientMemoryError, InsufficientStorageError, PortInUseError
from ..MODELS.service_definition import PortRule
from ..RUNTIME.client import RuntimeClient
from ..RUNTIME.remotes import Remote
from ..UTILS.formatting import format_byte_count_si, parse_size
from ..UTILS.port_finder import is_port_bound, remote_host

logger = logging.getLogger(__name__)

PortProbe = Callable[[str, int], bool]


def check_storage_pool_space(client: RuntimeClient, pool: str, required: int) -> None:
    """
    Checks that a storage pool can hold an image of ``required`` bytes.

    :raises InsufficientStorageError: If the pool has less free space.
    """
    free = client.storage_pool_free(pool)
    logger.debug("storage pool %s: %d bytes free, %d required", pool, free, required)
    if required > free:
        raise InsufficientStorageError(
            "not enough space in storage pool", pool,
            f"requested {format_byte_count_si(required)}, available {format_byte_count_si(free)}")


def check_memory(client: RuntimeClient, ram: str, target: str = "") -> None:
    """
    Checks a RAM quantity such as ``512MB`` against the memory of the deploy host.

    :raises InsufficientMemoryError: If more memory is requested than the host has.
    """
    requested = parse_size(ram)
    total = client.total_memory()
    if requested > total:
        raise InsufficientMemoryError(
            "not enough memory on remote", target,
            f"requested {ram}, host has {format_byte_count_si(total)}")


def check_host_ports(remote: Remote, rules: List[PortRule], probe: PortProbe = is_port_bound) -> None:
    """
    Checks that no requested host port is already bound on the remote.
    Remotes reached over the local unix socket are not checked.

    :raises PortInUseError: On the first bound port.
    """
    if remote.is_unix_socket:
        return
    host = remote_host(remote.url)
    if not host:
        logger.debug("remote %s has no address, skipping port check", remote.name)
        return
    for rule in rules:
        if probe(host, rule.host_port):
            raise PortInUseError(
                "host port already in use on remote", remote.name,
                f"port {rule.host_port} is bound on {host}")
