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
LIFO list of deferred cleanup actions for multi-step pipelines.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List

logger = logging.getLogger(__name__)


@dataclass
class _Cleanup:
    description: str
    action: Callable[[], None]
    on_failure_only: bool


class CleanupStack:
    """
    Accumulates cleanup actions while a pipeline runs and runs them in
    reverse order of registration when it finishes.

    Actions registered with ``on_failure_only`` run only if the pipeline
    failed. Cleanup failures are logged and never raised, so they cannot
    mask the error that triggered the unwind.
    """

    def __init__(self):
        self._actions: List[_Cleanup] = []

    def defer(self, description: str, action: Callable[[], None], on_failure_only: bool = True) -> None:
        self._actions.append(_Cleanup(description, action, on_failure_only))

    def __len__(self) -> int:
        return len(self._actions)

    def unwind(self, failed: bool) -> None:
        while self._actions:
            cleanup = self._actions.pop()
            if cleanup.on_failure_only and not failed:
                continue
            logger.info("cleanup: %s", cleanup.description)
            try:
                cleanup.action()
            except Exception as e:
                logger.warning("cleanup %r failed: %s", cleanup.description, e)

    def __enter__(self) -> "CleanupStack":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.unwind(failed=exc_type is not None)
        return False
