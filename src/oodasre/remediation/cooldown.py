"""Process-wide cooldown and rate-limit bookkeeping per deployment target."""

from __future__ import annotations

import logging
import threading
import time

from pydantic import BaseModel

from oodasre.models import ActionTarget, ActionType

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWNS: dict[ActionType, float] = {
    ActionType.RESTART: 60.0,
    ActionType.ROLLBACK: 120.0,
    ActionType.SCALE: 30.0,
}
DEFAULT_COOLDOWN_SECONDS = 60.0
DEFAULT_MAX_ACTIONS_PER_WINDOW = 5
DEFAULT_WINDOW_SECONDS = 300.0


class CooldownCheck(BaseModel):
    allowed: bool
    reason: str = ""
    retry_after_seconds: float = 0.0


class _TargetHistory:
    def __init__(self) -> None:
        self.last_action_at: dict[ActionType, float] = {}
        self.timestamps: list[float] = []


class CooldownManager:
    """
    Tracks remediation actions per namespace/deployment.

    An action type is blocked on a target until its cooldown has elapsed, and
    no target sees more than max_actions_per_window actions in window_seconds.
    All state is guarded by one lock so concurrent investigations cannot
    double-remediate the same target.
    """

    def __init__(
        self,
        cooldowns: dict[ActionType, float] | None = None,
        default_cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        max_actions_per_window: int = DEFAULT_MAX_ACTIONS_PER_WINDOW,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
    ) -> None:
        self._cooldowns = dict(DEFAULT_COOLDOWNS if cooldowns is None else cooldowns)
        self._default_cooldown = default_cooldown_seconds
        self._max_actions = max_actions_per_window
        self._window = window_seconds
        self._lock = threading.Lock()
        self._history: dict[str, _TargetHistory] = {}

    @classmethod
    def from_settings(cls, settings) -> CooldownManager:
        return cls(
            cooldowns={
                ActionType.RESTART: settings.cooldown_restart_seconds,
                ActionType.ROLLBACK: settings.cooldown_rollback_seconds,
                ActionType.SCALE: settings.cooldown_scale_seconds,
            },
            default_cooldown_seconds=settings.cooldown_default_seconds,
            max_actions_per_window=settings.cooldown_max_actions_per_window,
            window_seconds=settings.cooldown_window_seconds,
        )

    def cooldown_for(self, action_type: ActionType) -> float:
        return self._cooldowns.get(action_type, self._default_cooldown)

    def can_execute(self, action_type: ActionType, target: ActionTarget) -> CooldownCheck:
        with self._lock:
            return self._check(action_type, target.key, time.monotonic())

    def record_action(self, action_type: ActionType, target: ActionTarget) -> None:
        with self._lock:
            self._record(action_type, target.key, time.monotonic())

    def try_acquire(self, action_type: ActionType, target: ActionTarget) -> CooldownCheck:
        """Check and record in one step; the action is recorded only when allowed."""
        with self._lock:
            now = time.monotonic()
            check = self._check(action_type, target.key, now)
            if check.allowed:
                self._record(action_type, target.key, now)
            return check

    def clear_cooldown(self, target: ActionTarget, action_type: ActionType | None = None) -> None:
        with self._lock:
            history = self._history.get(target.key)
            if history is None:
                return
            if action_type is None:
                del self._history[target.key]
            else:
                history.last_action_at.pop(action_type, None)
        logger.info(
            "Cooldown cleared",
            extra={"target": target.key, "action_type": action_type.value if action_type else "all"},
        )

    def cleanup(self) -> int:
        """Drop targets with no activity inside the rate window or any cooldown. Returns count removed."""
        horizon = max([self._window, self._default_cooldown, *self._cooldowns.values()])
        with self._lock:
            now = time.monotonic()
            stale = [
                key
                for key, history in self._history.items()
                if all(now - ts >= horizon for ts in history.last_action_at.values())
                and all(now - ts >= self._window for ts in history.timestamps)
            ]
            for key in stale:
                del self._history[key]
        return len(stale)

    def _check(self, action_type: ActionType, key: str, now: float) -> CooldownCheck:
        history = self._history.get(key)
        if history is None:
            return CooldownCheck(allowed=True)

        last = history.last_action_at.get(action_type)
        cooldown = self.cooldown_for(action_type)
        if last is not None and now - last < cooldown:
            remaining = cooldown - (now - last)
            return CooldownCheck(
                allowed=False,
                reason=f"{action_type.value} on {key} is cooling down ({remaining:.0f}s remaining)",
                retry_after_seconds=remaining,
            )

        recent = [ts for ts in history.timestamps if now - ts < self._window]
        if len(recent) >= self._max_actions:
            retry_after = self._window - (now - min(recent))
            return CooldownCheck(
                allowed=False,
                reason=(
                    f"Rate limit reached for {key} "
                    f"({len(recent)} actions in {self._window:.0f}s)"
                ),
                retry_after_seconds=retry_after,
            )
        return CooldownCheck(allowed=True)

    def _record(self, action_type: ActionType, key: str, now: float) -> None:
        history = self._history.setdefault(key, _TargetHistory())
        history.last_action_at[action_type] = now
        history.timestamps = [ts for ts in history.timestamps if now - ts < self._window]
        history.timestamps.append(now)


_shared_lock = threading.Lock()
_shared_manager: CooldownManager | None = None


def get_cooldown_manager() -> CooldownManager:
    """Return the process-wide cooldown manager (created from settings on first use)."""
    global _shared_manager
    with _shared_lock:
        if _shared_manager is None:
            from oodasre.config import get_settings

            _shared_manager = CooldownManager.from_settings(get_settings())
        return _shared_manager


def reset_cooldown_manager() -> None:
    """Drop the shared manager (for tests and repeated demo runs)."""
    global _shared_manager
    with _shared_lock:
        _shared_manager = None
