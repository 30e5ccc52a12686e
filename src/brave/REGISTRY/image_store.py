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
Local image store management.
Keeps image archives and their detached MD5 files, addressed by image identity.
"""

import logging
import os
import re
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..errors import FileOverwriteError, ImageExistsError, ImageNotFoundError, ValidationError
from ..UTILS.formatting import format_age, format_byte_count_si
from ..UTILS.hashing import file_md5
from .image_reference import ARCHIVE_SUFFIX, HASH_SUFFIX, BraveImage

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"


def _version_key(version: str):
    """Natural sort key so that 1.10 sorts after 1.9."""
    return [(0, int(token), "") if token.isdigit() else (1, 0, token)
            for token in re.split(r'(\d+)', version) if token]


@dataclass
class StoredImage:
    """Information about an archive in the image store."""
    image: BraveImage
    path: str
    size: int
    modified: datetime
    hash: str
    legacy: bool = False

    @property
    def created(self) -> str:
        return format_age(self.modified)

    @property
    def human_size(self) -> str:
        return format_byte_count_si(self.size)


class ImageStore:
    """
    Manages the local store of image archives.

    An image is present once its archive exists under its final name. The
    hash file is always written before the archive is moved into place and
    removed only after the archive is gone, so a reader never sees an
    archive without its hash.
    """

    def __init__(self, store_dir: Optional[str] = None):
        """
        Initialize the image store.

        Args:
            store_dir: Directory holding the archives. Defaults to ~/.bravetools/images
        """
        if store_dir:
            self.store_dir = Path(store_dir)
        else:
            self.store_dir = Path.home() / ".bravetools" / "images"
        self.store_dir.mkdir(parents=True, exist_ok=True)

    def _archives(self) -> List[Path]:
        return sorted(p for p in self.store_dir.iterdir()
                      if p.is_file() and p.name.endswith(ARCHIVE_SUFFIX))

    def resolve(self, image: BraveImage) -> Path:
        """
        Find the archive that best matches an identity.

        An exact match wins. Without a version, the newest version present
        for the name (and architecture, if given) is used. Legacy archives
        named ``name-version.tar.gz`` are the last resort.

        Args:
            image: Identity to look up.

        Returns:
            Path to the archive.

        Raises:
            ImageNotFoundError: If nothing matches.
        """
        if image.is_complete:
            exact = self.store_dir / image.archive_name
            if exact.exists():
                return exact

        candidates = []
        for path in self._archives():
            try:
                stored = BraveImage.from_filename(path.name)
            except ValidationError:
                continue
            if stored.name != image.name:
                continue
            if image.version and stored.version != image.version:
                continue
            if image.architecture and stored.architecture != image.architecture:
                continue
            candidates.append((stored, path))

        if candidates:
            candidates.sort(key=lambda c: (_version_key(c[0].version), c[0].architecture))
            return candidates[-1][1]

        if image.version:
            legacy = self.store_dir / image.legacy_archive_name
            if legacy.exists():
                return legacy

        raise ImageNotFoundError(str(image))

    def exists(self, image: BraveImage) -> bool:
        try:
            self.resolve(image)
            return True
        except ImageNotFoundError:
            return False

    def identity_of(self, image: BraveImage) -> BraveImage:
        """
        The full identity of the archive an image string resolves to.
        """
        path = self.resolve(image)
        try:
            return BraveImage.from_any_filename(path.name)
        except ValidationError:
            return image

    def import_archive(self, source_path: str) -> BraveImage:
        """
        Import an archive file into the store. The identity is derived from
        the file name, which must follow ``NAME_VERSION_ARCH.tar.gz``.

        Args:
            source_path: Path to the archive.

        Returns:
            Identity the archive was stored under.

        Raises:
            ImageExistsError: If the identity is already in the store.
        """
        image = BraveImage.from_filename(os.path.basename(source_path))
        self.add_archive(image, source_path)
        print(f"Imported file {os.path.basename(source_path)!r} as image {str(image)!r}")
        return image

    def add_archive(self, image: BraveImage, source_path: str, move: bool = False) -> Path:
        """
        Store an archive under an explicit identity.

        Args:
            image: Complete identity to store under.
            source_path: Archive to copy (or move) into the store.
            move: Move the source instead of copying it.

        Returns:
            Path of the stored archive.
        """
        if not image.is_complete:
            raise ValidationError(f"image {str(image)!r} needs a version and architecture to be stored")
        if self.exists(image):
            raise ImageExistsError(str(image))

        target = self.store_dir / image.archive_name
        partial = target.with_name(target.name + PARTIAL_SUFFIX)
        hash_file = target.with_name(target.name + HASH_SUFFIX)

        try:
            if move:
                shutil.move(source_path, partial)
            else:
                shutil.copyfile(source_path, partial)
            with open(hash_file, 'w') as f:
                f.write(file_md5(str(partial)))
            os.replace(partial, target)
        except BaseException:
            for leftover in (partial, hash_file):
                if leftover.exists():
                    leftover.unlink()
            raise
        return target

    def delete(self, image: BraveImage) -> None:
        """
        Remove an archive and its hash file.

        Raises:
            ImageNotFoundError: If either file is missing; nothing is removed then.
        """
        archive = self.resolve(image)
        hash_file = archive.with_name(archive.name + HASH_SUFFIX)
        if not hash_file.exists():
            raise ImageNotFoundError(f"{image} (hash file {hash_file.name} missing)")

        archive.unlink()
        hash_file.unlink()

    def list(self) -> List[StoredImage]:
        """
        List all images in the store, oldest first.
        """
        images = []
        for path in self._archives():
            try:
                image = BraveImage.from_filename(path.name)
                legacy = False
            except ValidationError:
                try:
                    image = BraveImage.from_legacy_filename(path.name)
                    legacy = True
                except ValidationError:
                    logger.warning("skipping unrecognised archive %s in image store", path.name)
                    continue

            stat = path.stat()
            images.append(StoredImage(
                image=image,
                path=str(path),
                size=stat.st_size,
                modified=datetime.fromtimestamp(stat.st_mtime),
                hash=self._read_hash(path) or "",
                legacy=legacy,
            ))
        images.sort(key=lambda i: i.modified)
        return images

    def size(self, image: BraveImage) -> int:
        return self.resolve(image).stat().st_size

    def hash(self, image: BraveImage) -> str:
        archive = self.resolve(image)
        value = self._read_hash(archive)
        if value is None:
            raise ImageNotFoundError(f"{image} (hash file missing)")
        return value

    def export(self, image: BraveImage, output_dir: Optional[str] = None) -> Path:
        """
        Copy an archive out of the store.

        Raises:
            FileOverwriteError: If the destination file already exists.
        """
        archive = self.resolve(image)
        destination = Path(output_dir or ".") / archive.name
        if destination.exists():
            raise FileOverwriteError(
                f"existing file at {destination} would be overwritten by export of {str(image)!r}")
        shutil.copyfile(archive, destination)
        print(f"Exported image {str(image)!r} to: {destination}")
        return destination

    @staticmethod
    def _read_hash(archive: Path) -> Optional[str]:
        hash_file = archive.with_name(archive.name + HASH_SUFFIX)
        if not hash_file.exists():
            return None
        with open(hash_file, 'r') as f:
            return f.read().strip()
