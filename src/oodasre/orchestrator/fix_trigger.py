"""Hands a confirmed hypothesis to the external fix cycle as a code-fix request."""

from __future__ import annotations

import logging
import time

from oodasre.collaborators import call_with_timeout
from oodasre.config import Settings
from oodasre.exceptions import CollaboratorTimeoutError
from oodasre.models import (
    ActionTarget,
    ActionType,
    Evidence,
    EvidenceType,
    FixTriggerResult,
    Hypothesis,
    Incident,
)
from oodasre.remediation.cooldown import CooldownManager

logger = logging.getLogger(__name__)

MAX_PROMPT_EVIDENCE = 10


def build_fix_prompt(incident: Incident, hypothesis: Hypothesis, evidence: list[Evidence]) -> str:
    """Prompt for the fix cycle: the diagnosis plus supporting log and metric evidence."""
    logs = [e.description for e in evidence if e.type == EvidenceType.LOG][:MAX_PROMPT_EVIDENCE]
    metrics = [e.description for e in evidence if e.type == EvidenceType.METRIC][:MAX_PROMPT_EVIDENCE]
    lines = [
        f"Incident: {incident.title} (severity: {incident.severity.value}, namespace: {incident.namespace})",
        "",
        f"Root cause: {hypothesis.root_cause}",
        f"Confidence: {hypothesis.confidence * 100:.0f}%",
    ]
    if hypothesis.reasoning:
        lines.append(f"Reasoning: {hypothesis.reasoning}")
    if hypothesis.suggested_action:
        lines.append(f"Suggested action: {hypothesis.suggested_action}")
    if logs:
        lines.extend(["", "Log evidence:"])
        lines.extend(f"  - {line}" for line in logs)
    if metrics:
        lines.extend(["", "Metric evidence:"])
        lines.extend(f"  - {line}" for line in metrics)
    lines.extend(
        [
            "",
            "Fix the code defect behind this root cause. Keep the change minimal and do not "
            "alter unrelated behavior.",
        ]
    )
    return "\n".join(lines)


class CodeFixTrigger:
    """
    Requests a fix from the fix cycle and, unless manual approval is required,
    runs the cycle to completion and redeploys.

    With manual approval the fix stays pending; the Verify phase waits on it.
    """

    def __init__(self, fix_cycle, cooldowns: CooldownManager, settings: Settings) -> None:
        self._fix_cycle = fix_cycle
        self._cooldowns = cooldowns
        self._settings = settings

    def trigger(
        self,
        incident: Incident,
        hypothesis: Hypothesis,
        evidence: list[Evidence],
        target: ActionTarget,
    ) -> FixTriggerResult:
        if self._fix_cycle is None:
            return FixTriggerResult(
                success=False,
                message=f"No fix cycle configured for {target.deployment}. Manual code fix required.",
            )
        timeout = self._settings.collaborator_timeout_seconds
        fix_id: str | None = None
        try:
            cycle_id = call_with_timeout("fix_cycle.find_cycle", self._fix_cycle.find_cycle, target.deployment, timeout=timeout)
            if not cycle_id:
                return FixTriggerResult(
                    success=False,
                    message=f"No development cycle found for {target.deployment}. Manual code fix required.",
                )
            prompt = build_fix_prompt(incident, hypothesis, evidence)
            fix = call_with_timeout("fix_cycle.request_fix", self._fix_cycle.request_fix, cycle_id, prompt, timeout=timeout)
            fix_id = fix.fix_id
            try:
                call_with_timeout(
                    "fix_cycle.link_incident", self._fix_cycle.link_incident, fix_id, incident.id, timeout=timeout
                )
            except Exception as e:
                logger.warning("Linking fix %s to incident failed: %s", fix_id, e, exc_info=True)
            self._cooldowns.record_action(ActionType.CODE_FIX, target)
            logger.info(
                "Code fix requested",
                extra={"incident_id": incident.id, "fix_id": fix_id, "cycle_id": cycle_id},
            )

            if self._settings.require_manual_fix_approval:
                return FixTriggerResult(
                    success=True,
                    message=f"Code fix {fix_id} created; awaiting manual approval",
                    fix_id=fix_id,
                )

            # One wait ceiling covers the fix cycle and the redeploy together
            deadline = time.monotonic() + self._settings.fix_wait_timeout_seconds
            cycle = call_with_timeout(
                "fix_cycle.run_full_cycle",
                self._fix_cycle.run_full_cycle,
                fix_id,
                timeout=self._remaining(deadline),
            )
            if not cycle.success:
                return FixTriggerResult(
                    success=False,
                    message=f"Fix cycle {fix_id} failed: {cycle.message or 'no details'}",
                    fix_id=fix_id,
                )
            files = len(cycle.files_updated)
            redeploy = call_with_timeout(
                "fix_cycle.trigger_redeploy",
                self._fix_cycle.trigger_redeploy,
                fix_id,
                timeout=self._remaining(deadline),
            )
            if not redeploy.success:
                # The code change is in; verification decides whether it took effect
                return FixTriggerResult(
                    success=True,
                    message=f"Fix {fix_id} applied ({files} files) but redeploy failed: {redeploy.message}",
                    fix_id=fix_id,
                )
            return FixTriggerResult(
                success=True,
                message=f"Fix {fix_id} applied ({files} files updated) and redeployed",
                fix_id=fix_id,
                service_url=redeploy.service_url,
            )
        except Exception as e:
            logger.warning("Code fix trigger failed: %s", e, exc_info=True)
            return FixTriggerResult(success=False, message=f"Code fix failed: {e}", fix_id=fix_id)

    def _remaining(self, deadline: float) -> float | None:
        """Time left before deadline; None when no wait ceiling is configured."""
        if self._settings.fix_wait_timeout_seconds <= 0:
            return None
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise CollaboratorTimeoutError("fix_cycle", self._settings.fix_wait_timeout_seconds)
        return remaining
