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
Image identity parsing and handling.
Parses image references like 'alpine-python/1.0/x86_64' or legacy 'alpine-python-1.0'.
"""

import re
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from ..errors import ValidationError
from ..RUNTIME.remotes import parse_remote_name

ARCHIVE_SUFFIX = ".tar.gz"
HASH_SUFFIX = ".md5"

_NAME = re.compile(r'^[A-Za-z0-9][A-Za-z0-9.\-]*$')
_VERSION = re.compile(r'^[A-Za-z0-9][A-Za-z0-9.\-+~]*$')
_ARCH = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_\-]*$')


@dataclass(frozen=True)
class BraveImage:
    """
    Identity of an image in the local image store.

    Examples:
        - alpine-python -> name only, version and architecture resolved later
        - alpine-python/1.0 -> alpine-python/1.0
        - alpine-python/1.0/x86_64 -> archive alpine-python_1.0_x86_64.tar.gz
        - legacy alpine-python-1.0 -> alpine-python/1.0, archive alpine-python-1.0.tar.gz
    """

    name: str
    version: str = ""
    architecture: str = ""

    @classmethod
    def parse(cls, reference: str) -> "BraveImage":
        """
        Parse an image string in the current ``name[/version[/arch]]`` form.
        A ``remote:`` prefix is accepted and discarded.

        Args:
            reference: Image string (e.g., 'alpine-python/1.0', 'prod:alpine-python/1.0/x86_64')

        Returns:
            Parsed BraveImage object.
        """
        if not reference:
            raise ValidationError("empty image reference")
        _, reference = parse_remote_name(reference)

        parts = reference.split("/")
        if len(parts) > 3:
            raise ValidationError(
                f"invalid image string {reference!r}, expected NAME[/VERSION[/ARCH]]")
        parts += [""] * (3 - len(parts))
        return cls._validated(*parts)

    @classmethod
    def parse_legacy(cls, reference: str) -> "BraveImage":
        """
        Parse a legacy ``name-version`` image string.

        Args:
            reference: Image string (e.g., 'brave-base-alpine-edge-1.0')

        Returns:
            Parsed BraveImage object without an architecture.
        """
        if not reference:
            raise ValidationError("empty image reference")
        _, reference = parse_remote_name(reference)

        name, sep, version = reference.rpartition("-")
        if not sep or not name or not version:
            raise ValidationError(
                f"invalid legacy image string {reference!r}, expected NAME-VERSION")
        return cls._validated(name, version, "")

    @classmethod
    def parse_with_remote(cls, reference: str, legacy: bool = False) -> Tuple[str, "BraveImage"]:
        """
        Parse ``remote:identity``. The remote defaults to the local one.
        """
        remote, _ = parse_remote_name(reference)
        image = cls.parse_legacy(reference) if legacy else cls.parse(reference)
        return remote, image

    @classmethod
    def from_filename(cls, filename: str) -> "BraveImage":
        """
        Derive an identity from a ``name_version_arch.tar.gz`` archive name.
        """
        if not filename.endswith(ARCHIVE_SUFFIX):
            raise ValidationError(f"image archive {filename!r} must end with {ARCHIVE_SUFFIX}")
        stem = filename[:-len(ARCHIVE_SUFFIX)]
        parts = stem.split("_", 2)
        if len(parts) != 3:
            raise ValidationError(
                f"image archive {filename!r} does not match NAME_VERSION_ARCH{ARCHIVE_SUFFIX}")
        return cls._validated(*parts)

    @classmethod
    def from_legacy_filename(cls, filename: str) -> "BraveImage":
        """
        Derive an identity from a legacy ``name-version.tar.gz`` archive name.
        """
        if not filename.endswith(ARCHIVE_SUFFIX):
            raise ValidationError(f"image archive {filename!r} must end with {ARCHIVE_SUFFIX}")
        return cls.parse_legacy(filename[:-len(ARCHIVE_SUFFIX)])

    @classmethod
    def from_any_filename(cls, filename: str) -> "BraveImage":
        """Try the current archive naming scheme, then the legacy one."""
        try:
            return cls.from_filename(filename)
        except ValidationError:
            return cls.from_legacy_filename(filename)

    @classmethod
    def _validated(cls, name: str, version: str, architecture: str) -> "BraveImage":
        if not _NAME.fullmatch(name):
            raise ValidationError(f"invalid image name {name!r}")
        if version and not _VERSION.fullmatch(version):
            raise ValidationError(f"invalid image version {version!r}")
        if architecture and not _ARCH.fullmatch(architecture):
            raise ValidationError(f"invalid image architecture {architecture!r}")
        return cls(name=name, version=version, architecture=architecture)

    def with_defaults(self, version: Optional[str] = None,
                      architecture: Optional[str] = None) -> "BraveImage":
        """Fill in missing components without touching the ones that are set."""
        return replace(
            self,
            version=self.version or (version or ""),
            architecture=self.architecture or (architecture or ""),
        )

    @property
    def is_complete(self) -> bool:
        return bool(self.version and self.architecture)

    @property
    def basename(self) -> str:
        """Archive basename without suffix, e.g. ``alpine-python_1.0_x86_64``."""
        return f"{self.name}_{self.version}_{self.architecture}"

    @property
    def archive_name(self) -> str:
        return self.basename + ARCHIVE_SUFFIX

    @property
    def legacy_string(self) -> str:
        return f"{self.name}-{self.version}"

    @property
    def legacy_archive_name(self) -> str:
        return self.legacy_string + ARCHIVE_SUFFIX

    def __str__(self) -> str:
        parts = [self.name, self.version, self.architecture]
        while parts and not parts[-1]:
            parts.pop()
        return "/".join(parts)

    def __repr__(self) -> str:
        return f"BraveImage({self})"
