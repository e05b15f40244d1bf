"""Tests for the per-target cooldown manager."""

from unittest.mock import patch

import pytest

from oodasre.models import ActionTarget, ActionType
from oodasre.remediation.cooldown import (
    CooldownManager,
    get_cooldown_manager,
    reset_cooldown_manager,
)

CHECKOUT = ActionTarget(namespace="checkout", deployment="checkout")
PAYMENTS = ActionTarget(namespace="payments", deployment="payments")


@pytest.fixture
def clock():
    with patch("oodasre.remediation.cooldown.time.monotonic", return_value=1000.0) as mock_monotonic:
        yield mock_monotonic


def test_restart_blocked_within_cooldown_on_same_target(clock):
    manager = CooldownManager()
    assert manager.try_acquire(ActionType.RESTART, CHECKOUT).allowed is True

    clock.return_value = 1030.0
    check = manager.try_acquire(ActionType.RESTART, CHECKOUT)
    assert check.allowed is False
    assert "restart on checkout/checkout is cooling down (30s remaining)" == check.reason
    assert check.retry_after_seconds == pytest.approx(30.0)

    # Other target is independent
    assert manager.try_acquire(ActionType.RESTART, PAYMENTS).allowed is True

    clock.return_value = 1061.0
    assert manager.can_execute(ActionType.RESTART, CHECKOUT).allowed is True


def test_cooldowns_are_per_action_type(clock):
    manager = CooldownManager()
    manager.record_action(ActionType.RESTART, CHECKOUT)
    assert manager.can_execute(ActionType.SCALE, CHECKOUT).allowed is True
    assert manager.cooldown_for(ActionType.ROLLBACK) == 120.0
    assert manager.cooldown_for(ActionType.CODE_FIX) == 60.0


def test_rate_limit_per_window(clock):
    manager = CooldownManager(cooldowns={}, default_cooldown_seconds=0.0)
    for i in range(5):
        clock.return_value = 1000.0 + i
        assert manager.try_acquire(ActionType.SCALE, CHECKOUT).allowed is True
    clock.return_value = 1010.0
    check = manager.try_acquire(ActionType.SCALE, CHECKOUT)
    assert check.allowed is False
    assert check.reason == "Rate limit reached for checkout/checkout (5 actions in 300s)"

    clock.return_value = 1301.0
    assert manager.try_acquire(ActionType.SCALE, CHECKOUT).allowed is True


def test_blocked_try_acquire_records_nothing(clock):
    manager = CooldownManager(max_actions_per_window=2)
    manager.try_acquire(ActionType.RESTART, CHECKOUT)
    manager.try_acquire(ActionType.RESTART, CHECKOUT)  # blocked by cooldown
    assert manager.try_acquire(ActionType.SCALE, CHECKOUT).allowed is True


def test_clear_cooldown_and_cleanup(clock):
    manager = CooldownManager()
    manager.record_action(ActionType.RESTART, CHECKOUT)
    manager.record_action(ActionType.ROLLBACK, CHECKOUT)
    manager.clear_cooldown(CHECKOUT, ActionType.RESTART)
    assert manager.can_execute(ActionType.RESTART, CHECKOUT).allowed is True
    assert manager.can_execute(ActionType.ROLLBACK, CHECKOUT).allowed is False

    manager.clear_cooldown(CHECKOUT)
    assert manager.can_execute(ActionType.ROLLBACK, CHECKOUT).allowed is True

    manager.record_action(ActionType.RESTART, PAYMENTS)
    assert manager.cleanup() == 0
    clock.return_value = 2000.0
    assert manager.cleanup() == 1


def test_shared_manager_is_process_wide():
    reset_cooldown_manager()
    try:
        assert get_cooldown_manager() is get_cooldown_manager()
    finally:
        reset_cooldown_manager()
