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
Parsers for Bravefiles.
"""
import yaml
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..MODELS.bravefile import Bravefile


class BravefileParser:
    """
    Parser for Bravefile YAML documents.
    """
    def parse(self, bravefile_path: str) -> Bravefile:
        """
        Parses a Bravefile from a file path.

        Args:
            bravefile_path (str): Path to the Bravefile.

        Returns:
            Bravefile: The parsed Bravefile.
        """
        try:
            with open(bravefile_path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ValidationError(f"unable to read Bravefile {bravefile_path}: {e}") from e
        return self.parse_from_string(content, source=bravefile_path)

    def parse_from_string(self, content: str, source: str = "<string>") -> Bravefile:
        """
        Parses a Bravefile from a string content.

        Args:
            content (str): YAML content of the Bravefile.
            source (str): Name used in error messages.

        Returns:
            Bravefile: The parsed Bravefile.
        """
        try:
            data = yaml.safe_load(content)
        except (yaml.YAMLError, ValueError) as e:
            raise ValidationError(f"invalid Bravefile {source}: {e}") from e
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValidationError(f"invalid Bravefile {source}: expected a mapping")
        try:
            return Bravefile.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"invalid Bravefile {source}: {e}") from e
