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
Parsers for brave compose YAML files.
"""
import os
from collections.abc import Hashable
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..MODELS.bravefile import Bravefile
from ..MODELS.compose_file import ComposeFile, ComposeService
from ..MODELS.service_definition import Service
from .bravefile_parser import BravefileParser


class _UniqueKeyLoader(yaml.SafeLoader):
    """
    SafeLoader that rejects duplicate mapping keys instead of keeping the last one.
    """
    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if isinstance(key, Hashable) and key in seen:
                raise ValidationError(f"duplicate key {key!r} at line {key_node.start_mark.line + 1}")
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


class ComposeParser:
    """
    Parser for brave-compose.yml files.
    """
    def __init__(self, bravefile_parser: Optional[BravefileParser] = None):
        """
        Initializes the parser.

        :param bravefile_parser: Parser used for Bravefiles referenced by services.
        """
        self.bravefile_parser = bravefile_parser or BravefileParser()

    def parse(self, compose_path: str) -> ComposeFile:
        """
        Parses a compose file from a path. Bravefiles referenced by services
        are resolved relative to the compose file's directory.

        :param compose_path: Path to the compose file.
        :return: Parsed configuration.
        """
        try:
            with open(compose_path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ValidationError(f"unable to read compose file {compose_path}: {e}") from e
        compose = self.parse_from_string(content, base_dir=os.path.dirname(os.path.abspath(compose_path)))
        compose.path = os.path.abspath(compose_path)
        return compose

    def parse_from_string(self, content: str, base_dir: str = ".") -> ComposeFile:
        """
        Parses a compose file from a string.

        :param content: YAML content of the compose file.
        :param base_dir: Directory relative Bravefile paths are resolved against.
        :return: Parsed configuration.
        """
        try:
            data = yaml.load(content, Loader=_UniqueKeyLoader)
        except (yaml.YAMLError, ValueError) as e:
            raise ValidationError(f"invalid compose file: {e}") from e
        if not data:
            data = {}
        if not isinstance(data, dict):
            raise ValidationError("invalid compose file: expected a mapping")

        raw_services = data.get('services') or {}
        if not isinstance(raw_services, dict):
            raise ValidationError("invalid compose file: 'services' must be a mapping")

        services = {}
        for name, definition in raw_services.items():
            services[str(name)] = self._parse_service(str(name), definition or {}, base_dir)

        return ComposeFile(services=services)

    def _parse_service(self, name: str, definition: Dict[str, Any], base_dir: str) -> ComposeService:
        """
        Parses a single service entry. Settings from the service's Bravefile
        are defaults that the compose entry overrides.

        :param name: The name of the service.
        :param definition: The service specification dictionary.
        :param base_dir: Directory of the compose file.
        :return: A ComposeService instance.
        """
        if not isinstance(definition, dict):
            raise ValidationError(f"service {name!r} must be a mapping")

        bravefile: Optional[Bravefile] = None
        merged: Dict[str, Any] = {}
        if definition.get('bravefile'):
            path = str(definition['bravefile'])
            if not os.path.isabs(path):
                path = os.path.join(base_dir, path)
            bravefile = self.bravefile_parser.parse(path)
            merged = bravefile.service.model_dump(by_alias=True)
            if not merged.get('image'):
                merged['image'] = bravefile.image

        for key, value in definition.items():
            if key == 'resources' and isinstance(value, dict):
                merged['resources'] = {**merged.get('resources', {}), **value}
            else:
                merged[key] = value

        merged['name'] = definition.get('name') or name
        unknown = set(merged) - set(ComposeService.model_fields) - {'copy'}
        if unknown:
            raise ValidationError(f"unknown fields for service {name!r}: {', '.join(sorted(str(k) for k in unknown))}")

        try:
            service = ComposeService(**merged)
        except PydanticValidationError as e:
            raise ValidationError(f"invalid service {name!r}: {e}") from e
        service.bravefile_build = bravefile
        return service


def service_from_bravefile(bravefile: Bravefile, name: Optional[str] = None) -> Service:
    """
    The deployable service of a Bravefile, falling back to the Bravefile's
    image when the service section omits it.
    """
    service = bravefile.service.model_copy(deep=True)
    if not service.image:
        service.image = bravefile.image
    if name:
        service.name = name
    return service
