import os
import signal
import threading

import pytest

from brave.errors import DeploymentCancelledError
from brave.RUNNERS.cancellation import CancellationToken, SignalWatcher
from brave.RUNNERS.cleanup_stack import CleanupStack


def test_token_cancels_once():
    token = CancellationToken()
    token.raise_if_cancelled()

    assert token.cancel("first") is True
    assert token.cancel("second") is False
    assert token.cancelled
    with pytest.raises(DeploymentCancelledError, match="first"):
        token.raise_if_cancelled()


def test_signal_watcher_cancels_on_sigint(capsys):
    previous = signal.getsignal(signal.SIGINT)
    token = CancellationToken()

    with SignalWatcher(token) as watched:
        assert watched is token
        os.kill(os.getpid(), signal.SIGINT)
        os.kill(os.getpid(), signal.SIGINT)

    assert token.cancelled
    assert "SIGINT" in token.reason
    assert capsys.readouterr().out.count("Interrupting deployment") == 1
    assert signal.getsignal(signal.SIGINT) is previous


def test_signal_watcher_is_inert_off_main_thread():
    previous = signal.getsignal(signal.SIGTERM)
    seen = []

    def run():
        with SignalWatcher(CancellationToken()):
            seen.append(signal.getsignal(signal.SIGTERM))

    thread = threading.Thread(target=run)
    thread.start()
    thread.join()
    assert seen == [previous]


def test_cleanup_stack_unwinds_in_reverse_on_failure():
    ran = []
    with pytest.raises(RuntimeError):
        with CleanupStack() as cleanup:
            cleanup.defer("first", lambda: ran.append("first"))
            cleanup.defer("always", lambda: ran.append("always"), on_failure_only=False)
            cleanup.defer("last", lambda: ran.append("last"))
            raise RuntimeError("step failed")
    assert ran == ["last", "always", "first"]


def test_cleanup_stack_runs_only_guaranteed_actions_on_success():
    ran = []
    with CleanupStack() as cleanup:
        cleanup.defer("rollback", lambda: ran.append("rollback"))
        cleanup.defer("release", lambda: ran.append("release"), on_failure_only=False)
    assert ran == ["release"]
    assert len(cleanup) == 0


def test_cleanup_failure_does_not_mask_original_error():
    def broken():
        raise OSError("cleanup exploded")

    ran = []
    with pytest.raises(ValueError, match="original"):
        with CleanupStack() as cleanup:
            cleanup.defer("after", lambda: ran.append("after"))
            cleanup.defer("broken", broken)
            raise ValueError("original")
    assert ran == ["after"]
