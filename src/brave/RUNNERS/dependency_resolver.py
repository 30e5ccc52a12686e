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
Dependency resolution for compose services to determine build and deploy order.
"""
from typing import Dict, List, Set

from ..errors import DependencyCycleError
from ..MODELS.compose_file import ComposeFile


class DependencyResolver:
    """
    Resolves the order services are built and deployed in, based on explicit
    dependencies and base-image references.
    """
    def resolve_order(self, compose: ComposeFile) -> List[str]:
        """
        Determines the build/deploy order using a depth-first topological sort.
        Services without a mutual ordering keep the order of the compose file.

        :param compose: The compose configuration.
        :return: Service names, dependencies first.
        :raises DependencyCycleError: If a circular dependency is detected.
        """
        dependencies: Dict[str, Set[str]] = {
            name: compose.dependencies(name) for name in compose.services
        }

        ordered: List[str] = []
        visited: Set[str] = set()
        processing: List[str] = []

        def visit(name: str):
            if name in processing:
                raise DependencyCycleError(name)
            if name in visited:
                return
            processing.append(name)
            for dep in sorted(dependencies[name], key=list(compose.services).index):
                visit(dep)
            processing.pop()
            visited.add(name)
            ordered.append(name)

        for name in compose.services:
            visit(name)

        return ordered
