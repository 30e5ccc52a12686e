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
Models for multi-service compose files.
"""
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, Field

from ..REGISTRY.image_reference import BraveImage
from ..RUNTIME.remotes import parse_remote_name
from .bravefile import Bravefile
from .service_definition import Service


class ComposeService(Service):
    """
    A service entry of a compose file.

    ``base`` services are built only to serve as the base image of other
    services and are never deployed.
    """
    bravefile: str = ""
    build: bool = False
    base: bool = False
    context: str = ""
    depends_on: List[str] = []

    bravefile_build: Optional[Bravefile] = Field(default=None, exclude=True)

    def to_service(self) -> Service:
        """The deployable part of the entry."""
        return Service(**self.model_dump(include=set(Service.model_fields), by_alias=True))


class ComposeFile(BaseModel):
    """
    Complete configuration for a multi-unit stack, equivalent to a parsed
    brave-compose.yml file.
    """
    path: str = ""
    services: Dict[str, ComposeService]

    def dependencies(self, name: str) -> Set[str]:
        """
        Services that must be built or deployed before ``name``: explicit
        ``depends_on`` entries plus the service that builds this one's base image.
        """
        service = self.services[name]
        deps = {d for d in service.depends_on if d in self.services}
        base_image = _base_image_of(service)
        if base_image is not None:
            for other_name, other in self.services.items():
                if other_name != name and _image_of(other) == base_image:
                    deps.add(other_name)
        return deps

    def base_only_services(self) -> List[str]:
        return [name for name, svc in self.services.items() if svc.base]

    def base_dependents(self, base_name: str) -> List[str]:
        """Services whose Bravefile builds on the image of ``base_name``."""
        base_image = _image_of(self.services[base_name])
        if base_image is None:
            return []
        return [name for name, svc in self.services.items()
                if name != base_name and _base_image_of(svc) == base_image]


def _image_of(service: ComposeService) -> Optional[BraveImage]:
    if service.image:
        return _identity(service.image_reference, service.is_legacy)
    if service.bravefile_build is not None:
        return _identity(service.bravefile_build.image, False)
    return None


def _base_image_of(service: ComposeService) -> Optional[BraveImage]:
    if service.bravefile_build is None:
        return None
    return _identity(service.bravefile_build.base.image, False)


def _identity(image: str, legacy: bool) -> Optional[BraveImage]:
    """Name and version of an image string; architecture is ignored for matching."""
    if not image:
        return None
    _, image = parse_remote_name(image)
    try:
        parsed = BraveImage.parse_legacy(image) if legacy else BraveImage.parse(image)
    except ValueError:
        return None
    return BraveImage(name=parsed.name, version=parsed.version)
