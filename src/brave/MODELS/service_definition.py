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
Models for defining units: resources, port forwarding and post-deploy steps.
"""
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..errors import ValidationError
from ..UTILS.formatting import parse_size


class Resources(BaseModel):
    """
    Resource limits applied to a unit.
    """
    cpu: str = "1"
    ram: str = "1GB"
    gpu: bool = False

    @field_validator("cpu", "ram", mode="before")
    @classmethod
    def _to_str(cls, value):
        return str(value) if value is not None else value


class RunCommand(BaseModel):
    """
    A command executed inside a unit.
    """
    command: str
    args: List[str] = []

    @property
    def argv(self) -> List[str]:
        return [self.command] + [str(a) for a in self.args]


class CopyCommand(BaseModel):
    """
    A host file or directory copied into a unit.
    """
    source: str
    target: str


class PostDeploy(BaseModel):
    """
    Steps run in a unit after it has been configured.
    """
    model_config = ConfigDict(populate_by_name=True)

    run: List[RunCommand] = []
    copy_files: List[CopyCommand] = Field(default_factory=list, alias="copy")


class PortRule(BaseModel):
    """
    Forward ``host_port`` on the host to ``unit_port`` inside the unit.
    """
    unit_port: int
    host_port: int

    @classmethod
    def parse(cls, rule: str) -> "PortRule":
        """
        Parses a ``UNIT_PORT:HOST_PORT`` rule.

        :raises ValidationError: If the rule is not two colon-separated port numbers.
        """
        parts = str(rule).split(":")
        if len(parts) != 2:
            raise ValidationError(
                f"invalid port forwarding definition {rule!r}. Appropriate format is UNIT_PORT:HOST_PORT")
        try:
            unit_port, host_port = int(parts[0]), int(parts[1])
        except ValueError as e:
            raise ValidationError(f"invalid port forwarding definition {rule!r}: ports must be numbers") from e
        for port in (unit_port, host_port):
            if not 0 < port < 65536:
                raise ValidationError(f"invalid port forwarding definition {rule!r}: port {port} out of range")
        return cls(unit_port=unit_port, host_port=host_port)

    @property
    def device_name(self) -> str:
        return f"brave_proxy_{self.host_port}"

    def device(self) -> dict:
        return {
            "type": "proxy",
            "listen": f"tcp:0.0.0.0:{self.host_port}",
            "connect": f"tcp:127.0.0.1:{self.unit_port}",
        }


class Service(BaseModel):
    """
    Everything needed to deploy one unit.

    ``name`` and ``image`` accept a ``remote:`` prefix. A non-empty
    ``version`` marks a legacy definition whose image is ``name-version``.
    """
    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    image: str = ""
    version: str = ""

    profile: str = ""
    network: str = ""
    storage: str = ""
    ip: str = ""

    ports: List[str] = []
    resources: Resources = Field(default_factory=Resources)
    docker: bool = False
    postdeploy: PostDeploy = Field(default_factory=PostDeploy)

    @field_validator("ports", mode="before")
    @classmethod
    def _ports_to_str(cls, value):
        if value is None:
            return []
        return [str(p) for p in value]

    @property
    def is_legacy(self) -> bool:
        return bool(self.version)

    @property
    def image_reference(self) -> str:
        """Image string with the legacy version appended where needed."""
        suffix = f"-{self.version}"
        if self.is_legacy and not self.image.endswith(suffix):
            return self.image + suffix
        return self.image

    def port_rules(self) -> List[PortRule]:
        return [PortRule.parse(p) for p in self.ports]

    def validate_deploy(self) -> None:
        """
        Checks mandatory fields and formats before anything is touched.

        :raises ValidationError: On the first problem found.
        """
        if not self.name:
            raise ValidationError("service name is required")
        if not self.image:
            raise ValidationError(f"image is required for service {self.name!r}")
        try:
            cpu = int(self.resources.cpu)
        except ValueError as e:
            raise ValidationError(
                f"invalid CPU count {self.resources.cpu!r} for service {self.name!r}") from e
        if cpu < 1:
            raise ValidationError(f"CPU count for service {self.name!r} must be at least 1")
        parse_size(self.resources.ram)
        self.port_rules()
