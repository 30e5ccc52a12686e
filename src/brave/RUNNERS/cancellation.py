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
Cooperative cancellation of deployments on SIGINT/SIGTERM.

A :class:`CancellationToken` is passed explicitly to every pipeline step. A
:class:`SignalWatcher` owns the process signal handlers while a pipeline runs
and cancels its token exactly once, however many signals arrive.
"""
import logging
import signal
import threading
from typing import Dict, Optional

from ..errors import DeploymentCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    A shared, one-way cancellation flag.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "operation cancelled by interrupt") -> bool:
        """
        Cancels the token.

        :return: True if this call cancelled it, False if it already was.
        """
        with self._lock:
            if self._event.is_set():
                return False
            self.reason = reason
            self._event.set()
            return True

    def raise_if_cancelled(self) -> None:
        """
        :raises DeploymentCancelledError: If the token has been cancelled.
        """
        if self._event.is_set():
            raise DeploymentCancelledError(self.reason or "operation cancelled by interrupt")


class SignalWatcher:
    """
    Installs SIGINT/SIGTERM handlers that cancel a token, restoring the
    previous handlers on exit. Use as a context manager around a pipeline.

    Handlers can only be installed from the main thread; elsewhere the
    watcher is inert and the token is cancelled only programmatically.
    """

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self, token: CancellationToken):
        self.token = token
        self._previous: Dict[int, object] = {}

    def _handle(self, signum, frame):
        if self.token.cancel(f"interrupted by {signal.Signals(signum).name}"):
            print("Interrupting deployment and cleaning artefacts")
        else:
            logger.debug("ignoring repeated signal %s", signum)

    def __enter__(self) -> CancellationToken:
        if threading.current_thread() is threading.main_thread():
            for sig in self.SIGNALS:
                self._previous[sig] = signal.signal(sig, self._handle)
        return self.token

    def __exit__(self, exc_type, exc, tb):
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous.clear()
        return False
