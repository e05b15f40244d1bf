"""OODA phase state machine; owns the investigation context."""

from __future__ import annotations

import logging

from oodasre.exceptions import (
    InvalidTransitionError,
    InvestigationActiveError,
    NoActiveInvestigationError,
)
from oodasre.models import (
    ACTIVE_PHASES,
    Action,
    ActionStatus,
    Evidence,
    FailureDetails,
    Hypothesis,
    Incident,
    InvestigationContext,
    Phase,
    VerificationRecord,
    utcnow,
)
from oodasre.notifications import NotificationChannel, NotificationKind
from oodasre.state_machine.transitions import RESUMABLE_PHASES, can_transition, valid_targets

logger = logging.getLogger(__name__)

DEFAULT_MAX_VERIFICATION_RETRIES = 3


class OODAStateMachine:
    """
    Holds the current phase and the context of one investigation.

    The context is mutated only through the methods below. Evidence, hypotheses
    and actions are append-only; DONE and FAILED are absorbing. reset() is the
    cancellation path and is safe from any phase.
    """

    def __init__(
        self,
        channel: NotificationChannel | None = None,
        max_verification_retries: int = DEFAULT_MAX_VERIFICATION_RETRIES,
    ) -> None:
        self._channel = channel or NotificationChannel()
        self._max_verification_retries = max_verification_retries
        self._phase = Phase.IDLE
        self._context: InvestigationContext | None = None

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def context(self) -> InvestigationContext | None:
        return self._context

    @property
    def channel(self) -> NotificationChannel:
        return self._channel

    def is_active(self) -> bool:
        """
        True while an investigation is in a non-terminal phase.

        IDLE holds no investigation, so it is not active and start() is allowed.
        """
        return self._context is not None and self._phase in ACTIVE_PHASES

    def start(self, incident: Incident) -> InvestigationContext:
        """Create a fresh context for incident and enter OBSERVING."""
        if self.is_active():
            raise InvestigationActiveError("State machine is already active")
        now = utcnow()
        incident.started_at = incident.started_at or now
        incident.resolved_at = None
        incident.retry_count = 0
        self._context = InvestigationContext(
            incident=incident,
            max_verification_retries=self._max_verification_retries,
            started_at=now,
            phase_started_at=now,
        )
        self._phase = Phase.IDLE
        incident.phase = Phase.IDLE
        logger.info("Investigation started", extra={"incident_id": incident.id})
        self.transition(Phase.OBSERVING)
        return self._context

    def resume(self, incident: Incident, phase: Phase, retry_count: int = 0) -> InvestigationContext:
        """
        Re-enter at phase with a reconstructed context (after a process restart).

        Evidence, hypotheses and actions are not replayed; the next Observe
        phase rebuilds evidence. Resuming at IDLE is the same as start().
        """
        if self.is_active():
            raise InvestigationActiveError("State machine is already active")
        if phase not in RESUMABLE_PHASES:
            raise InvalidTransitionError(self._phase, phase, sorted(ACTIVE_PHASES, key=list(Phase).index))
        if phase == Phase.IDLE:
            return self.start(incident)
        now = utcnow()
        incident.started_at = incident.started_at or now
        incident.resolved_at = None
        incident.retry_count = retry_count
        incident.phase = phase
        self._context = InvestigationContext(
            incident=incident,
            max_verification_retries=self._max_verification_retries,
            verification_retry_count=retry_count,
            started_at=incident.started_at,
            phase_started_at=now,
        )
        self._phase = phase
        logger.info(
            "Investigation resumed",
            extra={"incident_id": incident.id, "phase": phase.value, "retry_count": retry_count},
        )
        self._channel.emit(
            NotificationKind.PHASE_ENTERED, incident.id, phase=phase.value, resumed=True
        )
        return self._context

    def transition(self, next_phase: Phase) -> None:
        """Move to next_phase; raises InvalidTransitionError for edges outside the graph."""
        context = self._require_context()
        current = self._phase
        if not can_transition(current, next_phase):
            raise InvalidTransitionError(current, next_phase, valid_targets(current))

        incident = context.incident
        now = utcnow()
        self._channel.emit(NotificationKind.PHASE_EXITED, incident.id, phase=current.value)
        self._phase = next_phase
        incident.phase = next_phase
        context.phase_started_at = now
        logger.info(
            "Phase transition",
            extra={"incident_id": incident.id, "from_phase": current.value, "to_phase": next_phase.value},
        )
        self._channel.emit(NotificationKind.PHASE_ENTERED, incident.id, phase=next_phase.value)
        self._channel.emit(
            NotificationKind.PHASE_CHANGED, incident.id, from_phase=current.value, to_phase=next_phase.value
        )

        if next_phase == Phase.DONE:
            incident.resolved_at = now
            self._channel.emit(
                NotificationKind.INCIDENT_RESOLVED,
                incident.id,
                duration_seconds=(now - context.started_at).total_seconds(),
            )
        elif next_phase == Phase.FAILED:
            incident.resolved_at = now
            details = self.failure_details(current)
            self._channel.emit(NotificationKind.INCIDENT_FAILED, incident.id, details=details.model_dump(mode="json"))

    def reset(self) -> InvestigationContext | None:
        """Abandon the current investigation; returns the discarded context."""
        context = self._context
        if context is not None:
            logger.info(
                "Investigation reset",
                extra={"incident_id": context.incident.id, "phase": self._phase.value},
            )
        self._context = None
        self._phase = Phase.IDLE
        return context

    # --- Context mutators -------------------------------------------------------

    def add_evidence(self, evidence: Evidence) -> None:
        context = self._require_context()
        context.evidence.append(evidence)
        self._channel.emit(
            NotificationKind.EVIDENCE_COLLECTED,
            context.incident.id,
            evidence_id=evidence.id,
            type=evidence.type.value,
            source=evidence.source,
        )

    def add_hypothesis(self, hypothesis: Hypothesis) -> None:
        context = self._require_context()
        context.hypotheses.append(hypothesis)
        self._channel.emit(
            NotificationKind.HYPOTHESIS_ADDED,
            context.incident.id,
            hypothesis_id=hypothesis.id,
            confidence=hypothesis.confidence,
        )

    def add_action(self, action: Action) -> None:
        context = self._require_context()
        context.actions.append(action)
        self._channel.emit(
            NotificationKind.ACTION_EXECUTED,
            context.incident.id,
            action_id=action.id,
            action_type=action.type.value,
            status=action.status.value,
        )

    def update_action(self, action_id: str, status: ActionStatus, result: str | None = None) -> Action:
        """Set the terminal status of a recorded action."""
        context = self._require_context()
        for action in context.actions:
            if action.id == action_id:
                action.status = status
                if result is not None:
                    action.result = result
                if status != ActionStatus.EXECUTING:
                    action.completed_at = utcnow()
                return action
        raise KeyError(action_id)

    def set_reasoning_token(self, token: str | None) -> None:
        self._require_context().reasoning_token = token

    def set_correlation_summary(self, summary: list[str]) -> None:
        self._require_context().correlation_summary = list(summary)

    def link_fix(self, fix_id: str) -> None:
        self._require_context().incident.fix_id = fix_id

    def increment_verification_retry(self) -> int:
        context = self._require_context()
        context.verification_retry_count += 1
        context.incident.retry_count = context.verification_retry_count
        return context.verification_retry_count

    def set_verification_result(self, record: VerificationRecord) -> None:
        self._require_context().last_verification = record

    def set_failure_reason(self, reason: str) -> None:
        self._require_context().failure_reason = reason

    def failure_details(self, phase: Phase | None = None) -> FailureDetails:
        context = self._require_context()
        return FailureDetails(
            phase=phase or self._phase,
            retry_attempts=context.verification_retry_count,
            reason=context.failure_reason,
            last_action=context.last_action,
            last_verification=context.last_verification,
        )

    def _require_context(self) -> InvestigationContext:
        if self._context is None:
            raise NoActiveInvestigationError("No investigation in progress")
        return self._context

