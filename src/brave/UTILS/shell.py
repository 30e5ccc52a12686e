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
Execution of host commands such as ``multipass`` and ``lxd``.
"""
import logging
import subprocess
from typing import List, Optional

logger = logging.getLogger(__name__)


class CommandError(Exception):
    """
    A host command exited with a non-zero status or could not be started.
    """

    def __init__(self, command: List[str], returncode: Optional[int], output: str = ""):
        self.command = command
        self.returncode = returncode
        self.output = output
        detail = output.strip() or f"exit status {returncode}"
        super().__init__(f"{' '.join(command)}: {detail}")


def exec_command(*command: str, input_text: Optional[str] = None) -> None:
    """
    Runs a command, streaming its output to the terminal.

    :param command: Program and arguments.
    :param input_text: Optional text fed to stdin.
    :raises CommandError: If the command fails.
    """
    exec_command_with_return(*command, input_text=input_text, capture=False)


def exec_command_with_return(*command: str,
                             input_text: Optional[str] = None,
                             capture: bool = True) -> str:
    """
    Runs a command and returns its standard output.

    :param command: Program and arguments.
    :param input_text: Optional text fed to stdin.
    :param capture: Capture stdout/stderr instead of inheriting the terminal.
    :return: Captured standard output (empty when not capturing).
    :raises CommandError: If the command fails.
    """
    args = list(command)
    logger.debug("exec: %s", " ".join(args))
    try:
        result = subprocess.run(
            args,
            input=input_text,
            capture_output=capture,
            text=True,
            # Avoid shell=True for security reasons (CWE-78)
            shell=False,
        )
    except OSError as e:
        raise CommandError(args, None, str(e)) from e

    if result.returncode != 0:
        raise CommandError(args, result.returncode, (result.stderr or result.stdout or "") if capture else "")
    return result.stdout if capture else ""
