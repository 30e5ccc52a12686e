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
Numeric identity of the current host user, used for unit uid/gid mapping.
"""
import os
import sys
from typing import Tuple

from .shell import exec_command_with_return


def last_segment(identifier: str) -> str:
    """
    The final ``-`` separated part of an identifier.

    >>> last_segment("S-1-5-21-3623811015-3361044348-30300820-1013")
    '1013'
    """
    return identifier.rsplit("-", 1)[-1]


def _windows_sid() -> str:
    # "HOST\user","S-1-5-21-...-1001"
    output = exec_command_with_return("whoami", "/user", "/fo", "csv", "/nh")
    return output.strip().split(",")[-1].strip('"')


def current_user_ids() -> Tuple[str, str]:
    """
    :return: ``(uid, gid)`` of the current user as strings. On Windows both
        come from the final segment of the user's SID.
    """
    if sys.platform.startswith("win"):
        rid = last_segment(_windows_sid())
        return rid, rid
    return str(os.getuid()), str(os.getgid())
