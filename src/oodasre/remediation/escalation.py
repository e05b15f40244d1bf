"""Escalating remediation: rollback -> restart -> scale -> code_fix."""

from __future__ import annotations

import logging
import time
from typing import Callable

from oodasre.collaborators import call_with_timeout
from oodasre.config import Settings, get_settings
from oodasre.models import (
    Action,
    ActionStatus,
    ActionTarget,
    ActionType,
    EscalationResult,
    FixTriggerResult,
    Hypothesis,
    Incident,
    RemediationAttempt,
    TierSkip,
    build_action_request,
    utcnow,
)
from oodasre.notifications import NotificationChannel, NotificationKind
from oodasre.remediation.cooldown import CooldownManager, get_cooldown_manager
from oodasre.verification.traffic import TrafficProbe, quick_check

logger = logging.getLogger(__name__)

ESCALATION_ORDER = (ActionType.ROLLBACK, ActionType.RESTART, ActionType.SCALE, ActionType.CODE_FIX)
# Operational fixes that can mask a code-level bug
TEMPORARY_FIX_TIERS = frozenset({ActionType.RESTART, ActionType.SCALE})

FixTrigger = Callable[[Hypothesis, ActionTarget], FixTriggerResult]
ActionCallback = Callable[[Action], None]


def build_tier_order(allowed_actions: list[ActionType]) -> list[ActionType]:
    """Fixed escalation order filtered to the allow-list; code_fix is always eligible."""
    allowed = set(allowed_actions) | {ActionType.CODE_FIX}
    return [tier for tier in ESCALATION_ORDER if tier in allowed]


class EscalatingRemediationEngine:
    """
    Tries remediation tiers from least to most invasive until one verifies.

    The pre-escalation error rate is measured before any tier runs, since a
    restart can reset in-process fault state. A verified restart or scale on a
    managed app that had errors beforehand is treated as temporary and the
    engine carries on to code_fix. Tier failures and exceptions are recorded
    and never abort the run.
    """

    def __init__(
        self,
        executor,
        traffic_probe: TrafficProbe,
        status_probe=None,
        cooldowns: CooldownManager | None = None,
        channel: NotificationChannel | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._executor = executor
        self._traffic = traffic_probe
        self._status_probe = status_probe
        self._cooldowns = cooldowns or get_cooldown_manager()
        self._channel = channel or NotificationChannel()
        self._settings = settings or get_settings()

    def escalate(
        self,
        incident: Incident,
        hypothesis: Hypothesis,
        target: ActionTarget,
        allowed_actions: list[ActionType],
        managed_app: bool = False,
        fix_trigger: FixTrigger | None = None,
        on_action: ActionCallback | None = None,
        action_budget: int | None = None,
    ) -> EscalationResult:
        """
        Run the tiers for target until one verifies or all are exhausted.

        action_budget caps how many actions this run may dispatch; the run
        stops with a failure before exceeding it.
        """
        run_start = time.monotonic()
        order = build_tier_order(allowed_actions)
        self._step(incident, "started", tiers=[t.value for t in order], target=target.key)
        logger.info(
            "Escalation started",
            extra={"incident_id": incident.id, "tiers": [t.value for t in order], "target": target.key},
        )

        baseline = self._traffic.measure()
        pre_rate = baseline.error_rate if baseline is not None else 0.0
        result = EscalationResult(success=False, pre_escalation_error_rate=pre_rate)
        self._step(incident, "baseline", error_rate=pre_rate, measured=baseline is not None)

        for index, tier in enumerate(order):
            if tier == ActionType.ROLLBACK:
                reason = self._rollback_skip_reason(target)
                if reason:
                    result.skipped.append(TierSkip(action_type=tier, reason=reason))
                    self._step(incident, "skipped", action_type=tier.value, reason=reason)
                    logger.info(
                        "Skipping rollback tier",
                        extra={"incident_id": incident.id, "target": target.key, "reason": reason},
                    )
                    continue

            if action_budget is not None and len(result.actions) >= action_budget:
                result.message = f"Action limit reached ({action_budget} actions) before {tier.value}"
                logger.warning(
                    "Escalation stopped at action limit",
                    extra={"incident_id": incident.id, "action_budget": action_budget},
                )
                return self._finish(incident, result, run_start)

            if tier != ActionType.CODE_FIX:
                check = self._cooldowns.try_acquire(tier, target)
                if not check.allowed:
                    message = f"Cooldown active: {check.reason}"
                    result.attempts.append(RemediationAttempt(action_type=tier, success=False, message=message))
                    self._step(incident, "blocked", action_type=tier.value, reason=check.reason)
                    continue

            self._step(incident, "attempting", action_type=tier.value)
            tier_start = time.monotonic()
            action = Action(
                incident_id=incident.id,
                hypothesis_id=hypothesis.id,
                request=build_action_request(tier, target, hypothesis.id),
            )
            try:
                if tier == ActionType.CODE_FIX:
                    fix = self._request_code_fix(hypothesis, target, fix_trigger)
                    ok, message = fix.success, fix.message
                    if ok and fix.fix_id:
                        # Pending external change: final verification happens in the Verify phase
                        attempt = RemediationAttempt(
                            action_type=tier,
                            success=True,
                            duration_seconds=time.monotonic() - tier_start,
                            message=message,
                            verification_passed=False,
                        )
                        action.result = message
                        self._record(result, attempt, action, on_action, incident)
                        result.success = True
                        result.final_action = tier
                        result.message = f"Code fix {fix.fix_id} requested: {message}"
                        return self._finish(incident, result, run_start)
                else:
                    outcome = call_with_timeout(
                        "executor.execute",
                        self._executor.execute,
                        action.request,
                        timeout=self._settings.collaborator_timeout_seconds,
                    )
                    ok, message = outcome.success, outcome.message

                if not ok:
                    attempt = RemediationAttempt(
                        action_type=tier,
                        success=False,
                        duration_seconds=time.monotonic() - tier_start,
                        message=message,
                    )
                    self._complete(action, ActionStatus.FAILED, message)
                    self._record(result, attempt, action, on_action, incident)
                    continue

                wait = (
                    self._settings.code_fix_wait_seconds
                    if tier == ActionType.CODE_FIX
                    else self._settings.escalation_wait_seconds
                )
                time.sleep(wait)
                verified = quick_check(
                    self._traffic,
                    self._status_probe,
                    self._settings.traffic_error_rate_threshold,
                    timeout=self._settings.collaborator_timeout_seconds,
                )
                attempt = RemediationAttempt(
                    action_type=tier,
                    success=True,
                    duration_seconds=time.monotonic() - tier_start,
                    message=message,
                    verification_passed=verified,
                )
                self._complete(
                    action,
                    ActionStatus.COMPLETED if verified else ActionStatus.FAILED,
                    message if verified else f"{message} (verification failed)",
                )
                self._record(result, attempt, action, on_action, incident)
                if not verified:
                    continue

                remaining = order[index + 1:]
                if (
                    tier in TEMPORARY_FIX_TIERS
                    and managed_app
                    and pre_rate > 0
                    and ActionType.CODE_FIX in remaining
                ):
                    logger.info(
                        "Operational fix looks temporary; continuing to code_fix",
                        extra={"incident_id": incident.id, "action_type": tier.value, "pre_error_rate": pre_rate},
                    )
                    self._step(
                        incident,
                        "continuing",
                        action_type=tier.value,
                        reason="temporary fix on managed app with pre-existing errors",
                    )
                    continue

                result.success = True
                result.final_action = tier
                result.message = f"{tier.value} resolved the issue: {message}"
                return self._finish(incident, result, run_start)
            except Exception as e:
                logger.warning("Escalation tier %s raised: %s", tier.value, e, exc_info=True)
                message = f"Error: {e}"
                attempt = RemediationAttempt(
                    action_type=tier,
                    success=False,
                    duration_seconds=time.monotonic() - tier_start,
                    message=message,
                )
                self._complete(action, ActionStatus.FAILED, message)
                self._record(result, attempt, action, on_action, incident)

        result.success = False
        result.message = f"All {len(result.attempts)} remediation attempts failed to resolve issue"
        return self._finish(incident, result, run_start)

    def _request_code_fix(
        self, hypothesis: Hypothesis, target: ActionTarget, fix_trigger: FixTrigger | None
    ) -> FixTriggerResult:
        if fix_trigger is None:
            return FixTriggerResult(success=False, message="No fix cycle configured for code_fix")
        return fix_trigger(hypothesis, target)

    def _rollback_skip_reason(self, target: ActionTarget) -> str | None:
        get_info = getattr(self._executor, "get_revision_info", None)
        if get_info is None:
            return None
        try:
            info = call_with_timeout(
                "executor.get_revision_info",
                get_info,
                target,
                timeout=self._settings.collaborator_timeout_seconds,
            )
        except Exception as e:
            logger.warning("Revision lookup failed; attempting rollback anyway: %s", e, exc_info=True)
            return None
        if info is None:
            return None
        if info.revision_count <= 1:
            return "First deployment - no previous revision to rollback to"
        age = info.current_revision_age_seconds
        threshold = self._settings.rollback_min_age_seconds
        if age is not None and age < threshold:
            return (
                f"Recent deployment ({age:.0f}s old, < {threshold:.0f}s threshold) "
                "- rollback unlikely to help"
            )
        return None

    @staticmethod
    def _complete(action: Action, status: ActionStatus, message: str) -> None:
        action.status = status
        action.result = message
        action.completed_at = utcnow()

    def _record(
        self,
        result: EscalationResult,
        attempt: RemediationAttempt,
        action: Action,
        on_action: ActionCallback | None,
        incident: Incident,
    ) -> None:
        result.attempts.append(attempt)
        result.actions.append(action)
        self._step(
            incident,
            "result",
            action_type=attempt.action_type.value,
            success=attempt.success,
            verification_passed=attempt.verification_passed,
            message=attempt.message,
        )
        if on_action is not None:
            on_action(action)

    def _finish(self, incident: Incident, result: EscalationResult, run_start: float) -> EscalationResult:
        result.total_duration_seconds = time.monotonic() - run_start
        self._step(
            incident,
            "finished",
            success=result.success,
            final_action=result.final_action.value if result.final_action else None,
            message=result.message,
        )
        log = logger.info if result.success else logger.warning
        log(
            "Escalation finished",
            extra={
                "incident_id": incident.id,
                "success": result.success,
                "attempts": [a.action_type.value for a in result.attempts],
                "skipped": [s.action_type.value for s in result.skipped],
            },
        )
        return result

    def _step(self, incident: Incident, stage: str, **data) -> None:
        self._channel.emit(NotificationKind.ESCALATION_STEP, incident.id, stage=stage, **data)
