"""Tests for the notification channel and collaborator call timeouts."""

import threading

import pytest

from oodasre.collaborators import call_with_timeout
from oodasre.exceptions import CollaboratorTimeoutError
from oodasre.notifications import NotificationChannel, NotificationKind


def test_subscribe_and_unsubscribe():
    channel = NotificationChannel()
    received = []
    unsubscribe = channel.subscribe(received.append)
    channel.emit(NotificationKind.PHASE_ENTERED, "inc-1", phase="OBSERVING")
    unsubscribe()
    channel.emit(NotificationKind.PHASE_ENTERED, "inc-1", phase="ORIENTING")
    assert len(received) == 1
    assert received[0].incident_id == "inc-1"
    assert received[0].data == {"phase": "OBSERVING"}


def test_failing_subscriber_does_not_block_others():
    channel = NotificationChannel()

    def broken(_):
        raise RuntimeError("boom")

    received = []
    channel.subscribe(broken)
    channel.subscribe(received.append)
    channel.emit(NotificationKind.ACTION_EXECUTED, "inc-1")
    assert [n.kind for n in received] == [NotificationKind.ACTION_EXECUTED]


def test_queue_subscriber_receives_in_order():
    channel = NotificationChannel()
    q = channel.subscribe_queue()
    channel.emit(NotificationKind.PHASE_EXITED, "inc-1")
    channel.emit(NotificationKind.PHASE_ENTERED, "inc-1")
    assert q.get_nowait().kind == NotificationKind.PHASE_EXITED
    assert q.get_nowait().kind == NotificationKind.PHASE_ENTERED
    assert q.empty()


def test_call_with_timeout_returns_result():
    assert call_with_timeout("add", lambda a, b: a + b, 1, 2, timeout=5) == 3
    # No timeout: called inline
    assert call_with_timeout("inline", lambda: threading.current_thread(), timeout=None) is threading.current_thread()


def test_call_with_timeout_raises_on_hang():
    release = threading.Event()
    with pytest.raises(CollaboratorTimeoutError) as exc_info:
        call_with_timeout("slow", release.wait, 5, timeout=0.05)
    release.set()
    assert exc_info.value.name == "slow"
    assert exc_info.value.timeout == 0.05


def test_call_with_timeout_propagates_errors():
    def fail():
        raise ValueError("bad input")

    with pytest.raises(ValueError, match="bad input"):
        call_with_timeout("fail", fail, timeout=5)
