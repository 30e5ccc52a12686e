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
Content hashes for image archives.
"""
import hashlib

CHUNK_SIZE = 1024 * 1024


def _hash_file(path: str, algorithm: str) -> str:
    digest = hashlib.new(algorithm)
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b''):
            digest.update(chunk)
    return digest.hexdigest()


def file_md5(path: str) -> str:
    """
    MD5 of a file, stored beside each archive in the image store.
    """
    return _hash_file(path, "md5")


def file_sha256(path: str) -> str:
    """
    SHA-256 of a file. LXD uses this as the fingerprint of an imported unified image.
    """
    return _hash_file(path, "sha256")
