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
Utilities for checking whether host ports are already taken on a remote.
"""
import socket
from urllib.parse import urlparse


def remote_host(url: str) -> str:
    """
    Extracts the host part of a remote URL such as ``https://10.0.0.5:8443``.
    """
    parsed = urlparse(url if "://" in url else f"https://{url}")
    return parsed.hostname or ""


def is_port_bound(host: str, port: int, timeout: float = 1.0) -> bool:
    """
    Checks if something is already listening on a port of the given host.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.settimeout(timeout)
        try:
            return s.connect_ex((host, port)) == 0
        except (socket.gaierror, socket.timeout, OSError):
            return False
