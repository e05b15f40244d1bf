"""Advisory rollback-need evaluation after a failed verification."""

from __future__ import annotations

import logging
import re
import threading
import time

from oodasre.models import (
    Action,
    ActionStatus,
    ActionType,
    RollbackDecision,
    RollbackUrgency,
    VerificationVerdict,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_AUTO_ROLLBACKS = 3
DEFAULT_COOLDOWN_SECONDS = 120.0
ROLLBACK_CONFIDENCE_THRESHOLD = 0.6
HIGH_ERROR_RATE = 0.25

_ERROR_RATE_RE = re.compile(r"error rate:?\s*([0-9]+(?:\.[0-9]+)?)%")


def _parse_error_rate(details: str) -> float | None:
    match = _ERROR_RATE_RE.search(details or "")
    if not match:
        return None
    return float(match.group(1)) / 100


class RollbackAdvisor:
    """
    Decides whether a failed remediation warrants an immediate rollback.

    Advisory only: the orchestrator records the decision in the audit
    timeline and never executes it. Limits how many rollbacks it recommends
    per incident and spaces them by a cooldown.
    """

    def __init__(
        self,
        max_auto_rollbacks_per_incident: int = DEFAULT_MAX_AUTO_ROLLBACKS,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
    ) -> None:
        self._max_rollbacks = max_auto_rollbacks_per_incident
        self._cooldown = cooldown_seconds
        self._lock = threading.Lock()
        self._counts: dict[str, int] = {}
        self._last_at: dict[str, float] = {}

    def evaluate_rollback_need(
        self, action: Action, verdict: VerificationVerdict, incident_id: str
    ) -> RollbackDecision:
        if verdict.passed:
            return RollbackDecision(
                incident_id=incident_id,
                should_rollback=False,
                confidence=verdict.confidence,
                reasoning="Action verification succeeded",
                urgency=RollbackUrgency.LOW,
            )

        with self._lock:
            count = self._counts.get(incident_id, 0)
            last = self._last_at.get(incident_id)
        if count >= self._max_rollbacks:
            return RollbackDecision(
                incident_id=incident_id,
                should_rollback=False,
                reasoning=f"Maximum rollback limit reached ({count}/{self._max_rollbacks})",
                urgency=RollbackUrgency.CRITICAL,
                alternative_actions=self._alternatives(action),
            )
        if last is not None:
            remaining = self._cooldown - (time.monotonic() - last)
            if remaining > 0:
                return RollbackDecision(
                    incident_id=incident_id,
                    should_rollback=False,
                    reasoning=f"Rollback cooldown active ({remaining:.0f}s remaining)",
                    alternative_actions=self._alternatives(action),
                )

        if action.type == ActionType.ROLLBACK:
            return RollbackDecision(
                incident_id=incident_id,
                should_rollback=False,
                confidence=0.5,
                reasoning="Failing action was itself a rollback",
                urgency=RollbackUrgency.HIGH,
                alternative_actions=self._alternatives(action),
            )

        confidence = 0.5
        urgency = RollbackUrgency.MEDIUM
        reasons: list[str] = []
        if action.status == ActionStatus.FAILED:
            confidence += 0.1
            reasons.append(f"{action.type.value} did not complete cleanly")
        if verdict.details.startswith("Direct API unhealthy"):
            confidence += 0.2
            urgency = RollbackUrgency.CRITICAL
            reasons.append("Active faults reported by the service")
        rate = _parse_error_rate(verdict.details)
        if rate is not None and rate >= HIGH_ERROR_RATE:
            confidence += 0.15
            if urgency != RollbackUrgency.CRITICAL:
                urgency = RollbackUrgency.HIGH
            reasons.append(f"Error rate {rate * 100:.1f}% after remediation")
        confidence = min(0.95, confidence)
        should_rollback = confidence >= ROLLBACK_CONFIDENCE_THRESHOLD or urgency == RollbackUrgency.CRITICAL

        decision = RollbackDecision(
            incident_id=incident_id,
            should_rollback=should_rollback,
            confidence=confidence,
            reasoning="; ".join(reasons) or "Verification failed with no specific indicators",
            urgency=urgency,
            alternative_actions=[] if should_rollback else self._alternatives(action),
        )
        logger.info(
            "Rollback decision made",
            extra={
                "incident_id": incident_id,
                "should_rollback": decision.should_rollback,
                "confidence": decision.confidence,
                "urgency": decision.urgency.value,
            },
        )
        return decision

    def record_rollback(self, incident_id: str) -> None:
        """Count a rollback performed for incident (limits and cooldown apply from now)."""
        with self._lock:
            self._counts[incident_id] = self._counts.get(incident_id, 0) + 1
            self._last_at[incident_id] = time.monotonic()

    @staticmethod
    def _alternatives(action: Action) -> list[str]:
        out: list[str] = []
        if action.type == ActionType.RESTART:
            out.append("Check for memory leaks before restarting again")
            out.append("Scale up replicas to maintain availability")
        elif action.type == ActionType.SCALE:
            out.append("Check for resource constraints in the cluster")
        elif action.type == ActionType.ROLLBACK:
            out.append("Restart the deployment to clear in-process state")
        out.append("Collect more evidence before taking action")
        out.append("Escalate to on-call engineer for manual review")
        return out[:3]
