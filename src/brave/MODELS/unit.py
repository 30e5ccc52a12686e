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
Models for deployed units and their persisted records.
"""
from typing import List

from pydantic import BaseModel


class UnitData(BaseModel):
    """
    Resource snapshot stored with every unit record.
    """
    cpu: int
    ram: str
    ip: str = ""
    image: str = ""


class UnitRecord(BaseModel):
    """
    A row of the unit record store.
    """
    uid: str
    name: str
    date: str
    data: UnitData


class Mount(BaseModel):
    source: str
    path: str

    def __str__(self) -> str:
        return f"{self.source} on: {self.path}"


class PortForward(BaseModel):
    unit_port: str
    host_port: str


class Unit(BaseModel):
    """
    A unit as listed to the operator.
    """
    name: str
    status: str
    address: str = ""
    mounts: List[Mount] = []
    ports: List[PortForward] = []
