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
Exception hierarchy shared by every brave component.

Validation errors are raised before any side effect. Conflict errors are
recoverable and callers such as the compose orchestrator may choose to skip
and continue on them. Remote errors carry the operation and the target they
were raised for.
"""
from typing import Optional


class BraveError(Exception):
    """Base class for all brave errors."""

    pass


class ConfigError(BraveError):
    """Raised when settings cannot be loaded or saved."""

    pass


class ValidationError(BraveError, ValueError):
    """Malformed input: identity strings, port rules, missing fields."""

    pass


class DependencyCycleError(ValidationError):
    """Raised when compose services depend on each other in a cycle."""

    def __init__(self, service: str):
        self.service = service
        super().__init__(f"circular dependency detected involving service {service!r}")


class ConflictError(BraveError):
    """Something with the requested identity already exists."""

    pass


class ImageExistsError(ConflictError):
    """An image with the same identity is already in the target store."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"image {name!r} already exists")


class UnitExistsError(ConflictError):
    """A unit with the same name already exists on the deploy remote."""

    def __init__(self, name: str, remote: str):
        self.name = name
        self.remote = remote
        super().__init__(f"unit {name!r} already exists on remote {remote!r}")


class FileOverwriteError(ConflictError):
    """A destination file would be overwritten."""

    pass


class NotFoundError(BraveError, LookupError):
    """A named object does not exist."""

    pass


class ImageNotFoundError(NotFoundError):
    def __init__(self, name: str, remote: Optional[str] = None):
        self.name = name
        self.remote = remote
        where = f"on remote {remote!r}" if remote else "in local image store"
        super().__init__(f"image {name!r} not found {where}")


class UnitNotFoundError(NotFoundError):
    def __init__(self, name: str, remote: Optional[str] = None):
        self.name = name
        self.remote = remote
        where = f" on remote {remote!r}" if remote else ""
        super().__init__(f"unit {name!r} does not exist{where}")


class RemoteNotFoundError(NotFoundError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"remote {name!r} is not configured")


class RemoteError(BraveError):
    """
    A runtime-control protocol call failed.

    :param operation: What was being attempted, e.g. ``"failed to launch unit"``.
    :param target: The unit, image, pool or remote the operation was aimed at.
    :param cause: The underlying error message.
    """

    def __init__(self, operation: str, target: str, cause: object = None):
        self.operation = operation
        self.target = target
        self.cause = cause
        message = f"{operation} {target!r}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class ResourceError(RemoteError):
    """The target host lacks a resource the deployment needs."""

    pass


class InsufficientStorageError(ResourceError):
    pass


class InsufficientMemoryError(ResourceError):
    pass


class PortInUseError(ResourceError):
    pass


class DeploymentCancelledError(BraveError):
    """Raised by a cancelled token at the next step boundary."""

    def __init__(self, message: str = "operation cancelled by interrupt"):
        super().__init__(message)


class BackendError(BraveError):
    """The Multipass VM or native LXD host could not be provisioned or queried."""

    pass


class BuildError(BraveError):
    """A Bravefile build step failed."""

    pass


class PersistenceError(BraveError):
    """The unit record store could not be updated."""

    pass
