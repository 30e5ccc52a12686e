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
Human-readable sizes and ages.
"""
import re
from datetime import datetime, timedelta
from typing import Optional

from ..errors import ValidationError

_SIZE_PATTERN = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*([kKmMgGtTpPeE]?)(i?)([bB]?)\s*$')

_EXPONENTS = {"": 0, "k": 1, "m": 2, "g": 3, "t": 4, "p": 5, "e": 6}


def format_byte_count_si(size_bytes: int) -> str:
    """
    Format a byte count with SI (power of 1000) units, e.g. ``1.5GB``.
    """
    if size_bytes < 1000:
        return f"{size_bytes}B"
    value = float(size_bytes)
    for unit in "kMGTPE":
        value /= 1000
        if value < 1000:
            return f"{value:.1f}{unit}B"
    return f"{value:.1f}EB"


def parse_size(quantity: str) -> int:
    """
    Parses a human-readable quantity such as ``512MB``, ``4G`` or ``2GiB`` into bytes.

    Decimal suffixes (``MB``) use powers of 1000 and binary suffixes (``MiB``)
    use powers of 1024. A bare number is a byte count.

    :param quantity: The quantity string.
    :return: Number of bytes.
    :raises ValidationError: If the string is not a recognised quantity.
    """
    match = _SIZE_PATTERN.match(str(quantity))
    if not match:
        raise ValidationError(f"invalid size quantity {quantity!r}")
    number, prefix, binary, _ = match.groups()
    base = 1024 if binary else 1000
    if binary and not prefix:
        raise ValidationError(f"invalid size quantity {quantity!r}")
    return int(float(number) * base ** _EXPONENTS[prefix.lower()])


def format_age(modified: datetime, now: Optional[datetime] = None) -> str:
    """
    Bucket the age of a file into whole days: ``just now``, ``1 day ago`` or ``N days ago``.
    """
    now = now or datetime.now()
    days = int((now - modified) / timedelta(days=1))
    if days > 1:
        return f"{days} days ago"
    if days == 1:
        return "1 day ago"
    return "just now"
