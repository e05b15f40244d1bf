"""Pure verdict rules over the signals gathered by the verification engine."""

from __future__ import annotations

from pydantic import BaseModel

from oodasre.models import (
    FAILED_FIX_STATUSES,
    FixStatus,
    FrameCheck,
    StatusReport,
    VerificationVerdict,
)
from oodasre.verification.traffic import ERROR_RATE_THRESHOLD


class EvolutionOutcome(BaseModel):
    """Result of waiting on a linked fix cycle."""

    fix_id: str
    status: FixStatus | None = None
    timed_out: bool = False
    timeout_seconds: float = 0.0
    error_rate: float | None = None


def has_active_faults(status: StatusReport | None) -> bool:
    return status is not None and (not status.healthy or bool(status.active_faults))


def decide_verdict(
    status: StatusReport | None,
    error_rate: float | None,
    frame_check: FrameCheck | None,
    threshold: float = ERROR_RATE_THRESHOLD,
) -> VerificationVerdict:
    """First decisive signal wins: status veto, then traffic, then frames."""
    if has_active_faults(status):
        bugs = ",".join(status.active_faults) or "none"
        return VerificationVerdict(passed=False, details=f"Direct API unhealthy: bugs={bugs}", confidence=0.9)

    if error_rate is not None:
        pct = error_rate * 100
        if error_rate < threshold:
            return VerificationVerdict(
                passed=True,
                details=f"Traffic verification passed (error rate: {pct:.1f}%)",
                confidence=0.95,
            )
        return VerificationVerdict(
            passed=False,
            details=f"Traffic verification failed (error rate: {pct:.1f}%, threshold: {threshold * 100:.1f}%)",
            confidence=0.95,
        )

    if frame_check is not None:
        return VerificationVerdict(
            passed=frame_check.passed,
            details=frame_check.details,
            confidence=0.3 if frame_check.skipped else 0.7,
        )

    return VerificationVerdict(passed=False, details="No verification signal available", confidence=0.2)


def evolution_verdict(outcome: EvolutionOutcome, threshold: float = ERROR_RATE_THRESHOLD) -> VerificationVerdict:
    """Verdict once a linked fix has been waited on; replaces the signal-based verdict."""
    if outcome.timed_out:
        minutes = outcome.timeout_seconds / 60
        return VerificationVerdict(
            passed=False,
            details=(
                f"Evolution {outcome.fix_id} pending - awaiting manual approval "
                f"(timed out after {minutes:.0f} min)"
            ),
            confidence=0.5,
        )
    if outcome.status is None:
        return VerificationVerdict(
            passed=False,
            details=f"Evolution not_found: {outcome.fix_id} no longer exists",
            confidence=0.8,
        )
    if outcome.status in FAILED_FIX_STATUSES:
        return VerificationVerdict(
            passed=False,
            details=f"Evolution {outcome.status.value}: {outcome.fix_id} was not applied",
            confidence=0.9,
        )
    if outcome.status != FixStatus.APPLIED:
        return VerificationVerdict(
            passed=False,
            details=f"Evolution {outcome.fix_id} still {outcome.status.value}",
            confidence=0.5,
        )
    if outcome.error_rate is None:
        return VerificationVerdict(
            passed=False,
            details="Code evolution applied but traffic verification unavailable",
            confidence=0.4,
        )
    pct = outcome.error_rate * 100
    if outcome.error_rate < threshold:
        return VerificationVerdict(
            passed=True,
            details=f"Code evolution applied and verified: error rate {pct:.1f}%",
            confidence=0.95,
        )
    return VerificationVerdict(
        passed=False,
        details=f"Code evolution applied but system still unhealthy (error rate: {pct:.1f}%)",
        confidence=0.9,
    )
