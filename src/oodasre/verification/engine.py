"""Multi-signal verification of a remediation, including evolution-aware waiting."""

from __future__ import annotations

import logging
import time

from oodasre.collaborators import call_with_timeout
from oodasre.config import Settings, get_settings
from oodasre.models import (
    IN_FLIGHT_FIX_STATUSES,
    FixStatus,
    FixStatusReport,
    FrameCheck,
    Incident,
    Severity,
    VerificationVerdict,
    utcnow,
)
from oodasre.verification.decision import (
    EvolutionOutcome,
    decide_verdict,
    evolution_verdict,
    has_active_faults,
)
from oodasre.verification.traffic import TrafficProbe, quick_check

logger = logging.getLogger(__name__)

FRAMES_PER_CHECK = 5
_SERIOUS = (Severity.CRITICAL, Severity.HIGH)


class VerificationEngine:
    """
    Produces the verdict for the Verify phase.

    Order: direct status probe (veto), synthetic traffic (definitive), frame
    analysis (only when traffic cannot be measured). A code fix that is in
    flight or was applied within fix_recently_applied_seconds overrides all of
    these: the engine waits for it, lets the rollout settle and re-measures.
    """

    def __init__(
        self,
        traffic_probe: TrafficProbe,
        status_probe=None,
        frame_source=None,
        reasoning=None,
        fix_cycle=None,
        settings: Settings | None = None,
    ) -> None:
        self._traffic = traffic_probe
        self._status_probe = status_probe
        self._frame_source = frame_source
        self._reasoning = reasoning
        self._fix_cycle = fix_cycle
        self._settings = settings or get_settings()

    @property
    def threshold(self) -> float:
        return self._settings.traffic_error_rate_threshold

    def verify(self, incident: Incident, deployment: str) -> VerificationVerdict:
        """Return the verdict for incident; details name the deciding signal."""
        status = self._probe_status()
        error_rate: float | None = None
        frame_check: FrameCheck | None = None
        if not has_active_faults(status):
            measurement = self._traffic.measure(reuse_within=self._settings.traffic_reuse_seconds)
            if measurement is not None:
                error_rate = measurement.error_rate
            else:
                frame_check = self.check_frames(incident, deployment)
        verdict = decide_verdict(status, error_rate, frame_check, self.threshold)

        pending = self._pending_fix(incident)
        if pending is not None:
            report, recently_applied = pending
            logger.info(
                "Linked code evolution overrides verification",
                extra={
                    "incident_id": incident.id,
                    "fix_id": report.fix_id,
                    "fix_status": report.status.value,
                    "signal_verdict": verdict.details,
                },
            )
            outcome = self._await_fix(report, recently_applied)
            verdict = evolution_verdict(outcome, self.threshold)

        logger.info(
            "Verification verdict",
            extra={"incident_id": incident.id, "passed": verdict.passed, "details": verdict.details},
        )
        return verdict

    def quick_check(self) -> bool:
        return quick_check(
            self._traffic,
            self._status_probe,
            self.threshold,
            timeout=self._settings.collaborator_timeout_seconds,
        )

    def check_frames(self, incident: Incident, deployment: str) -> FrameCheck:
        """Fallback visual check, retried with backoff. Passes (skipped) when no video is available."""
        if self._frame_source is None or self._reasoning is None:
            return FrameCheck(passed=True, details="Verification skipped (no frame source)", skipped=True)
        timeout = self._settings.collaborator_timeout_seconds
        try:
            available = call_with_timeout("frame_source", self._frame_source.is_available, timeout=timeout)
        except Exception as e:
            logger.warning("Frame source availability check failed: %s", e, exc_info=True)
            available = False
        if not available:
            return FrameCheck(passed=True, details="Verification skipped (video unavailable)", skipped=True)

        attempts = max(1, self._settings.frame_verification_attempts)
        last_details = ""
        for attempt in range(1, attempts + 1):
            try:
                frames = call_with_timeout(
                    "frame_source",
                    self._frame_source.get_recent_frames,
                    deployment,
                    FRAMES_PER_CHECK,
                    timeout=timeout,
                )
                if not frames:
                    last_details = "no frames captured"
                else:
                    analysis = call_with_timeout(
                        "reasoning.analyze_frames",
                        self._reasoning.analyze_frames,
                        incident.id,
                        frames,
                        "verification",
                        timeout=self._settings.reasoning_timeout_seconds,
                    )
                    serious = [a for a in analysis.anomalies if a.severity in _SERIOUS]
                    dashboard = analysis.dashboard_state
                    if (dashboard is None or dashboard.healthy) and not serious:
                        return FrameCheck(passed=True, details=f"Frame verification passed (attempt {attempt})")
                    if serious:
                        last_details = "; ".join(a.description for a in serious[:3])
                    else:
                        last_details = dashboard.description or "dashboard unhealthy"
            except Exception as e:
                logger.warning(
                    "Frame verification attempt %s failed: %s", attempt, e, exc_info=True
                )
                last_details = f"frame analysis error: {e}"
            if attempt < attempts:
                time.sleep(self._settings.frame_verification_backoff_seconds)
        return FrameCheck(
            passed=False,
            details=f"Frame verification failed after {attempts} attempts: {last_details}",
        )

    def _probe_status(self):
        if self._status_probe is None:
            return None
        try:
            return call_with_timeout(
                "status_probe",
                self._status_probe.get_status,
                timeout=self._settings.collaborator_timeout_seconds,
            )
        except Exception as e:
            logger.warning("Status probe failed: %s", e, exc_info=True)
            return None

    def _fix_status(self, fix_id: str, timeout: float | None = None) -> FixStatusReport | None:
        return call_with_timeout(
            "fix_cycle.get_status",
            self._fix_cycle.get_status,
            fix_id,
            timeout=timeout if timeout is not None else self._settings.collaborator_timeout_seconds,
        )

    def _pending_fix(self, incident: Incident) -> tuple[FixStatusReport, bool] | None:
        """Return (report, recently_applied) when a linked fix must override the verdict."""
        if self._fix_cycle is None or not incident.fix_id:
            return None
        try:
            report = self._fix_status(incident.fix_id)
        except Exception as e:
            logger.warning("Fix status lookup failed: %s", e, exc_info=True)
            return None
        if report is None:
            return None
        if report.status in IN_FLIGHT_FIX_STATUSES:
            return report, False
        if report.status == FixStatus.APPLIED and report.applied_at is not None:
            age = (utcnow() - report.applied_at).total_seconds()
            if age <= self._settings.fix_recently_applied_seconds:
                return report, True
        return None

    def _await_fix(self, report: FixStatusReport, recently_applied: bool) -> EvolutionOutcome:
        fix_id = report.fix_id
        status: FixStatus | None = report.status
        timeout = self._settings.fix_wait_timeout_seconds
        if not recently_applied:
            deadline = time.monotonic() + timeout
            while status != FixStatus.APPLIED:
                if status is None or status not in IN_FLIGHT_FIX_STATUSES:
                    return EvolutionOutcome(fix_id=fix_id, status=status)
                if time.monotonic() >= deadline:
                    logger.warning(
                        "Timed out waiting for code evolution",
                        extra={"fix_id": fix_id, "fix_status": status.value, "timeout": timeout},
                    )
                    return EvolutionOutcome(
                        fix_id=fix_id, status=status, timed_out=True, timeout_seconds=timeout
                    )
                # The wait ceiling bounds both the poll sleep and the status call
                time.sleep(min(self._settings.fix_poll_interval_seconds, max(0.0, deadline - time.monotonic())))
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    continue
                collab_timeout = self._settings.collaborator_timeout_seconds
                try:
                    latest = self._fix_status(
                        fix_id, timeout=min(collab_timeout, remaining) if collab_timeout > 0 else remaining
                    )
                except Exception as e:
                    logger.warning("Fix status poll failed: %s", e, exc_info=True)
                    continue
                status = latest.status if latest is not None else None

        logger.info("Code evolution applied; waiting for rollout", extra={"fix_id": fix_id})
        time.sleep(self._settings.rollout_wait_seconds)
        measurement = self._traffic.measure()
        return EvolutionOutcome(
            fix_id=fix_id,
            status=FixStatus.APPLIED,
            error_rate=measurement.error_rate if measurement else None,
        )
