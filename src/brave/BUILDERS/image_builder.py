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
Builds Bravefiles into archives in the local image store.
"""
import logging
import os
import tempfile
from datetime import datetime
from typing import Callable, List, Optional

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..BACKENDS.backend import Backend
from ..CONFIG.settings import DEFAULT_IMAGE_VERSION, LOCAL_REMOTE, HostSettings
from ..errors import BackendError, BuildError, ImageExistsError, ImageNotFoundError, RemoteError
from ..MODELS.bravefile import PUBLIC_IMAGE_SERVER, Bravefile
from ..REGISTRY.image_reference import BraveImage
from ..REGISTRY.image_store import ImageStore
from ..RUNNERS.cancellation import CancellationToken
from ..RUNNERS.cleanup_stack import CleanupStack
from ..RUNTIME.client import RuntimeClient
from ..RUNTIME.lxd_client import connect
from ..RUNTIME.remotes import Remote, RemoteStore, parse_remote_name
from ..UTILS.hashing import file_sha256

logger = logging.getLogger(__name__)

Connector = Callable[[Remote], RuntimeClient]

PACKAGE_COMMANDS = {
    "apk": (["apk", "update"], ["apk", "add", "--no-cache"]),
    "apt": (["apt-get", "update"], ["apt-get", "install", "-y"]),
}


def ensure_backend_started(backend: Backend) -> None:
    try:
        backend.start()
    except BackendError as e:
        raise BackendError(f"failed to start backend: {e}") from e


def delete_unit_if_exists(client: RuntimeClient, unit: str) -> None:
    if client.instance_exists(unit):
        client.delete_instance(unit)


class ImageBuilder:
    """
    Turns a Bravefile into an image archive.

    A transient build unit is launched from the base image on the local
    remote, provisioned with the Bravefile's packages, files and commands,
    then published and exported into the local image store. The build unit
    and every image staged in LXD are removed whatever the outcome.
    """

    update_attempts = 5

    def __init__(self, settings: HostSettings, backend: Backend, image_store: ImageStore,
                 remotes: RemoteStore, connector: Connector = connect):
        """
        Initializes the ImageBuilder.

        :param settings: Host settings providing the build profile and storage pool.
        :param backend: Backend hosting the local remote.
        :param image_store: Destination of built archives.
        :param remotes: Remote settings, for the local remote and private bases.
        :param connector: Opens a runtime client for a remote.
        """
        self.settings = settings
        self.backend = backend
        self.image_store = image_store
        self.remotes = remotes
        self.connector = connector

    def target_image(self, bravefile: Bravefile, architecture: str) -> BraveImage:
        """Complete identity a Bravefile builds."""
        if bravefile.is_legacy:
            legacy = bravefile.service.model_copy(update={"image": bravefile.image})
            image = BraveImage.parse_legacy(legacy.image_reference)
        else:
            image = BraveImage.parse(bravefile.image)
        return image.with_defaults(version=DEFAULT_IMAGE_VERSION, architecture=architecture)

    def build(self, bravefile: Bravefile, context_dir: str = ".",
              token: Optional[CancellationToken] = None) -> BraveImage:
        """
        Builds a Bravefile.

        :param bravefile: The Bravefile to build.
        :param context_dir: Directory ``copy`` sources are relative to.
        :param token: Cancellation token checked after every step.
        :return: Identity the archive was stored under.
        :raises ImageExistsError: If the image is already in the local store
            and the service does not deploy to another remote.
        """
        token = token or CancellationToken()
        bravefile.validate_build()

        ensure_backend_started(self.backend)
        client = self.connector(self.remotes.load(LOCAL_REMOTE))
        image = self.target_image(bravefile, client.server_architecture())
        deploy_remote, _ = parse_remote_name(bravefile.service.name)

        if self.image_store.exists(image):
            if deploy_remote == LOCAL_REMOTE:
                raise ImageExistsError(str(image))
            logger.info("image %s already built, transferring to %s", image, deploy_remote)
        else:
            print(f"Building image {str(image)!r}")
            base = bravefile.base
            if base.location == "private" and not bravefile.has_build_steps:
                self._pull_private(base.image, image, token)
            else:
                self._build_in_unit(client, bravefile, image, context_dir, token)
            print(f"Image {str(image)!r} stored in local image store")

        if deploy_remote != LOCAL_REMOTE:
            self.transfer(image, deploy_remote, token)
        return image

    def _pull_private(self, reference: str, image: BraveImage, token: CancellationToken) -> None:
        remote_name, base_ref = parse_remote_name(reference)
        source = self.connector(self.remotes.load(remote_name))
        fingerprint = self._find_remote_image(source, remote_name, base_ref)
        print(f"Importing {base_ref!r} from remote {remote_name!r}")

        with tempfile.TemporaryDirectory() as tmp:
            archive = os.path.join(tmp, image.archive_name)
            source.export_image(fingerprint, archive)
            token.raise_if_cancelled()
            self.image_store.add_archive(image, archive, move=True)

    @staticmethod
    def _find_remote_image(client: RuntimeClient, remote_name: str, reference: str) -> str:
        """
        Fingerprint of ``reference`` on a remote. Images are looked up by the
        reference itself, then by the ``name_version_arch`` alias brave
        publishes under, with the remote's architecture filled in.

        :raises ImageNotFoundError: If the remote has neither alias.
        """
        candidates = [reference]
        try:
            image = BraveImage.parse(reference).with_defaults(
                version=DEFAULT_IMAGE_VERSION, architecture=client.server_architecture())
            candidates.append(image.basename)
        except ValueError:
            pass
        for alias in candidates:
            fingerprint = client.find_image(alias)
            if fingerprint:
                return fingerprint
        raise ImageNotFoundError(reference, remote=remote_name)

    def transfer(self, image: BraveImage, remote_name: str,
                 token: Optional[CancellationToken] = None) -> None:
        """
        Copies an image from the local store into a remote's image cache,
        aliased ``name_version_arch``. Nothing happens if the alias already exists.
        """
        token = token or CancellationToken()
        client = self.connector(self.remotes.load(remote_name))
        if client.find_image(image.basename):
            print(f"Image {str(image)!r} already present on remote {remote_name!r}")
            return
        archive = self.image_store.resolve(image)
        print(f"Transferring image {str(image)!r} to remote {remote_name!r}")
        try:
            client.import_image(str(archive), alias=image.basename)
        except RemoteError as e:
            raise RemoteError("failed to transfer image to remote", remote_name, e.cause) from e
        token.raise_if_cancelled()

    def _build_in_unit(self, client: RuntimeClient, bravefile: Bravefile, image: BraveImage,
                       context_dir: str, token: CancellationToken) -> None:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        unit = f"brave-build-{image.name.replace('.', '-')}-{timestamp}"

        with CleanupStack() as cleanup, tempfile.TemporaryDirectory() as tmp:
            source, server = self._base_source(client, bravefile, unit, tmp, cleanup, token)

            cleanup.defer(f"delete build unit {unit}",
                          lambda: delete_unit_if_exists(client, unit), on_failure_only=False)
            print(f"Launching build unit {unit}")
            client.launch(unit, source, profile=self.settings.profile,
                          storage=self.settings.storage_pool.name, server=server)
            token.raise_if_cancelled()

            self._install_packages(client, unit, bravefile, token)

            for copy in bravefile.copy_files:
                path = copy.source if os.path.isabs(copy.source) else os.path.join(context_dir, copy.source)
                client.push_path(unit, path, copy.target)
                token.raise_if_cancelled()

            for command in bravefile.run:
                self._run(client, unit, command.argv)
                token.raise_if_cancelled()

            client.stop(unit)
            token.raise_if_cancelled()

            print(f"Publishing build unit {unit}")
            fingerprint = client.publish(unit, alias=image.basename)
            cleanup.defer(f"delete published image {fingerprint[:12]}",
                          lambda: client.delete_image(fingerprint), on_failure_only=False)
            token.raise_if_cancelled()

            print("Exporting archive ...")
            archive = os.path.join(tmp, image.archive_name)
            client.export_image(fingerprint, archive)
            token.raise_if_cancelled()
            self.image_store.add_archive(image, archive, move=True)

    def _base_source(self, client: RuntimeClient, bravefile: Bravefile, unit: str, tmp: str,
                     cleanup: CleanupStack, token: CancellationToken):
        """
        Makes the base image available to the local LXD.

        :return: ``(image, server)`` to launch the build unit from.
        """
        base = bravefile.base
        if base.location == "public":
            return base.image, PUBLIC_IMAGE_SERVER

        if base.location == "local":
            base_image = BraveImage.parse(base.image).with_defaults(
                architecture=client.server_architecture())
            archive = str(self.image_store.resolve(base_image))
        else:
            remote_name, base_ref = parse_remote_name(base.image)
            source = self.connector(self.remotes.load(remote_name))
            archive = os.path.join(tmp, "base.tar.gz")
            source.export_image(self._find_remote_image(source, remote_name, base_ref), archive)
            token.raise_if_cancelled()

        fingerprint = file_sha256(archive)
        if client.image_exists(fingerprint):
            return fingerprint, None
        fingerprint = client.import_image(archive, alias=unit)
        cleanup.defer(f"delete staged base image {fingerprint[:12]}",
                      lambda: client.delete_image(fingerprint), on_failure_only=False)
        token.raise_if_cancelled()
        return fingerprint, None

    def _install_packages(self, client: RuntimeClient, unit: str, bravefile: Bravefile,
                          token: CancellationToken) -> None:
        packages = bravefile.packages
        if not packages.system:
            return
        update, install = PACKAGE_COMMANDS[packages.manager]
        # The unit's network may take a moment to come up after launch.
        for attempt in Retrying(stop=stop_after_attempt(self.update_attempts),
                                wait=wait_fixed(2),
                                retry=retry_if_exception_type(BuildError),
                                reraise=True):
            with attempt:
                self._run(client, unit, update)
        token.raise_if_cancelled()
        self._run(client, unit, install + list(packages.system))
        token.raise_if_cancelled()

    @staticmethod
    def _run(client: RuntimeClient, unit: str, argv: List[str]) -> None:
        logger.debug("build %s: %s", unit, " ".join(argv))
        result = client.execute(unit, argv)
        if result.exit_code != 0:
            raise BuildError(
                f"command {' '.join(argv)!r} failed in build unit {unit!r} "
                f"with exit code {result.exit_code}: {result.stderr.strip()}")
