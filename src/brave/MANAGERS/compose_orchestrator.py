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
Orchestration of multiple services: builds and deploys a compose file in
dependency order.
"""
import logging
import os
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional, Set

from ..BUILDERS.image_builder import ImageBuilder
from ..errors import ImageExistsError, ValidationError
from ..MODELS.compose_file import ComposeFile, ComposeService
from ..REGISTRY.image_reference import BraveImage
from ..REGISTRY.image_store import ImageStore
from ..RUNNERS.cancellation import CancellationToken
from ..RUNNERS.cleanup_stack import CleanupStack
from ..RUNNERS.dependency_resolver import DependencyResolver
from .unit_deployer import UnitDeployer

logger = logging.getLogger(__name__)


@contextmanager
def working_directory(path: str):
    """Changes the working directory, restoring the previous one on exit."""
    previous = os.getcwd()
    os.chdir(path)
    try:
        yield
    finally:
        os.chdir(previous)


def service_image(service: ComposeService) -> BraveImage:
    if service.is_legacy:
        return BraveImage.parse_legacy(service.image_reference)
    if service.image:
        return BraveImage.parse(service.image)
    return BraveImage.parse(service.bravefile_build.image if service.bravefile_build else "")


class ComposeOrchestrator:
    """
    Builds and deploys the services of a compose file.

    :param builder: Builds service Bravefiles into the local image store.
    :param deployer: Deploys services as units.
    :param image_store: Local image store, to prune and clean up images.
    :param delete_unit: Removes a deployed unit when a later service fails.
    """

    def __init__(self, builder: ImageBuilder, deployer: UnitDeployer, image_store: ImageStore,
                 delete_unit: Callable[[str], None]):
        self.builder = builder
        self.deployer = deployer
        self.image_store = image_store
        self.delete_unit = delete_unit
        self.resolver = DependencyResolver()

    def plan(self, compose: ComposeFile) -> List[str]:
        """
        Build and deploy order, without base-only services none of whose
        dependents still need building.
        """
        order = self.resolver.resolve_order(compose)
        for base in compose.base_only_services():
            if not self._dependents_needing_build(compose, base):
                logger.info("skipping base service %s, nothing left to build on it", base)
                order.remove(base)
        return order

    def _dependents_needing_build(self, compose: ComposeFile, base: str) -> List[str]:
        needed = []
        for name in compose.base_dependents(base):
            service = compose.services[name]
            if not (service.build or service.base):
                continue
            if not self.image_store.exists(service_image(service)):
                needed.append(name)
        return needed

    def validate(self, compose: ComposeFile, order: List[str]) -> None:
        for name in order:
            service = compose.services[name]
            try:
                if self._builds(service):
                    service.bravefile_build.validate_build()
                if not service.base:
                    service.validate_deploy()
            except ValidationError as e:
                raise ValidationError(f"failed to deploy service {name!r}: {e}") from e

    @staticmethod
    def _builds(service: ComposeService) -> bool:
        return service.bravefile_build is not None and (service.build or service.base)

    def up(self, compose: ComposeFile, token: Optional[CancellationToken] = None) -> List[str]:
        """
        Builds and deploys every service.

        :param compose: Parsed compose file. Relative paths are resolved against its directory.
        :param token: Cancellation token shared by every build and deployment.
        :return: Names of the deployed units.
        """
        token = token or CancellationToken()
        compose_dir = os.path.dirname(compose.path) if compose.path else os.getcwd()

        with working_directory(compose_dir):
            order = self.plan(compose)
            self.validate(compose, order)
            print(f"Deploying services in order: {', '.join(order)}")

            # Base-only images are removed once every dependent in this run is built.
            pending: Dict[str, Set[str]] = {
                base: set(compose.base_dependents(base)) & set(order)
                for base in compose.base_only_services() if base in order
            }
            processed: Set[str] = set()
            deleted: Set[str] = set()
            deployed: List[str] = []

            with CleanupStack() as cleanup:
                for name in order:
                    token.raise_if_cancelled()
                    service = compose.services[name]

                    if self._builds(service):
                        self._build(name, service, cleanup, deleted, token)
                    processed.add(name)

                    for base, dependents in pending.items():
                        dependents.discard(name)
                        base_service = compose.services[base]
                        if not dependents and base in processed and not base_service.build:
                            self._delete_base(base_service, deleted)

                    if not service.base:
                        self._deploy(compose_dir, service, cleanup, token)
                        deployed.append(service.name)
        return deployed

    def _build(self, name: str, service: ComposeService, cleanup: CleanupStack,
               deleted: Set[str], token: CancellationToken) -> None:
        build_dir = service.context or (
            os.path.dirname(os.path.abspath(service.bravefile)) if service.bravefile else os.getcwd())
        base_only = service.base and not service.build
        image = service_image(service)
        try:
            with working_directory(build_dir):
                self.builder.build(service.bravefile_build, context_dir=os.getcwd(), token=token)
        except ImageExistsError as e:
            logger.info("image %s already exists, skipping build of %s", e.name, name)
            print(f"image {e.name!r} already exists - skipping build")
        else:
            if not base_only:
                cleanup.defer(f"delete image {image}", lambda: self.image_store.delete(image))

        if base_only:
            cleanup.defer(f"delete base image {image}",
                          lambda: self._delete_base(service, deleted), on_failure_only=False)

    def _delete_base(self, service: ComposeService, deleted: Set[str]) -> None:
        image = service_image(service)
        if str(image) in deleted or not self.image_store.exists(image):
            return
        deleted.add(str(image))
        print(f"Removing base image {str(image)!r}")
        self.image_store.delete(image)

    def _deploy(self, compose_dir: str, service: ComposeService, cleanup: CleanupStack,
                token: CancellationToken) -> None:
        deploy_dir = service.context or (
            os.path.dirname(os.path.abspath(service.bravefile)) if service.bravefile else compose_dir)
        with working_directory(deploy_dir):
            self.deployer.deploy(service.to_service(), token=token)
        cleanup.defer(f"delete unit {service.name}", lambda: self.delete_unit(service.name))
