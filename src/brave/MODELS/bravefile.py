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
Models representing Bravefiles: how an image is built and how its unit is deployed.
"""
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from ..errors import ValidationError
from .service_definition import CopyCommand, RunCommand, Service

BASE_LOCATIONS = ("public", "private", "local")
PACKAGE_MANAGERS = ("", "apk", "apt")
PUBLIC_IMAGE_SERVER = "https://images.linuxcontainers.org"


class BaseImage(BaseModel):
    """
    The image a build starts from.

    ``public`` images are simplestreams aliases, ``local`` images come from
    the local image store and ``private`` images from a named remote
    (``remote:identity``).
    """
    image: str = ""
    location: str = "public"


class Packages(BaseModel):
    manager: str = ""
    system: List[str] = []


class Bravefile(BaseModel):
    """
    A parsed Bravefile.
    """
    model_config = ConfigDict(populate_by_name=True)

    image: str = ""
    base: BaseImage = Field(default_factory=BaseImage)
    packages: Packages = Field(default_factory=Packages)
    run: List[RunCommand] = []
    copy_files: List[CopyCommand] = Field(default_factory=list, alias="copy")
    service: Service = Field(default_factory=Service)

    @property
    def is_legacy(self) -> bool:
        return self.service.is_legacy

    @property
    def has_build_steps(self) -> bool:
        return bool(self.packages.system or self.run or self.copy_files)

    def validate_build(self) -> None:
        """
        :raises ValidationError: If the build section is incomplete.
        """
        if not self.image:
            raise ValidationError("Bravefile image is required")
        if not self.base.image:
            raise ValidationError(f"base image is required to build {self.image!r}")
        if self.base.location not in BASE_LOCATIONS:
            raise ValidationError(
                f"invalid base location {self.base.location!r}, expected one of {', '.join(BASE_LOCATIONS)}")
        if self.packages.manager not in PACKAGE_MANAGERS:
            raise ValidationError(f"unsupported package manager {self.packages.manager!r}")
        if self.packages.system and not self.packages.manager:
            raise ValidationError("packages.manager is required when system packages are listed")

    @classmethod
    def for_remote_import(cls, remote: str, image: str) -> "Bravefile":
        """
        A build-free Bravefile that pulls ``image`` from ``remote`` into the
        local image store.
        """
        return cls(
            image=image,
            base=BaseImage(image=f"{remote}:{image}", location="private"),
            service=Service(image=image),
        )
