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
Client certificate used to authenticate with LXD remotes over HTTPS.
"""
import os
from typing import Tuple

from ..CONFIG.settings import BravePaths
from ..errors import ConfigError
from ..UTILS.shell import CommandError, exec_command_with_return


def ensure_client_certificate(paths: BravePaths) -> Tuple[str, str]:
    """
    Creates a self-signed client certificate pair under ``certs/`` unless one exists.

    :return: ``(cert_path, key_path)``.
    """
    paths.certs_dir.mkdir(parents=True, exist_ok=True)
    cert = paths.certs_dir / "client.crt"
    key = paths.certs_dir / "client.key"
    if cert.exists() and key.exists():
        return str(cert), str(key)
    try:
        exec_command_with_return(
            "openssl", "req", "-x509", "-nodes",
            "-days", "3650",
            "-newkey", "rsa:4096",
            "-keyout", str(key),
            "-out", str(cert),
            "-subj", "/CN=brave/O=brave",
        )
    except CommandError as e:
        raise ConfigError(f"failed to generate client certificate in {paths.certs_dir}: {e}") from e
    os.chmod(key, 0o600)
    return str(cert), str(key)
