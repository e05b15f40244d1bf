"""
Signal collaborators backed by the target service's own HTTP endpoints.

The demo service exposes /logs (plain text) and /events (JSON). These classes
turn them into the log, event and execution inputs the orchestrator expects,
so a full investigation can run without a cluster.
"""

from __future__ import annotations

import json
import logging
import re
from collections import Counter
from datetime import datetime, timedelta

import httpx

from oodasre.models import (
    ActionResult,
    ActionTarget,
    ClusterEvent,
    DeploymentChange,
    EventTrigger,
    LogAnalysis,
    LogError,
    LogSpike,
    LogSummary,
    RestartRequest,
    RevisionInfo,
    RollbackRequest,
    ScaleRequest,
)

logger = logging.getLogger(__name__)

ERROR_SPIKE_THRESHOLD = 10
TRIGGER_LOOKBACK = timedelta(minutes=15)
# Event type -> how likely it is to have caused the incident
TRIGGER_SCORES = {
    "FaultInjected": 0.9,
    "Deployment": 0.8,
    "Warning": 0.6,
    "Restarted": 0.2,
}
_LEVEL_RE = re.compile(r"\b(ERROR|WARN|WARNING|INFO|DEBUG)\b\s*(.*)$")


class HttpSignalSource:
    """Fetches raw logs and events from {service_url}/logs and /events."""

    def __init__(self, service_url: str | None = None, timeout: float = 5.0) -> None:
        self.service_url = (service_url or "").strip()
        self._timeout = timeout

    def _get(self, path: str) -> str:
        if not self.service_url:
            return ""
        with httpx.Client(timeout=self._timeout) as client:
            r = client.get(self.service_url.rstrip("/") + path)
            r.raise_for_status()
            return r.text

    def fetch_logs(self, namespace: str, deployment: str) -> str:
        return self._get("/logs")

    def fetch_events(self, namespace: str) -> str:
        return self._get("/events")


class TextLogParser:
    """Counts levels and groups ERROR lines by message."""

    def analyze(self, raw_logs: str) -> LogAnalysis:
        lines = [line for line in (raw_logs or "").splitlines() if line.strip()]
        errors: Counter[str] = Counter()
        warn_count = 0
        for line in lines:
            match = _LEVEL_RE.search(line)
            if not match:
                continue
            level, message = match.group(1), match.group(2).strip()
            if level == "ERROR":
                errors[message] += 1
            elif level in ("WARN", "WARNING"):
                warn_count += 1
        error_count = sum(errors.values())
        spikes = []
        if error_count >= ERROR_SPIKE_THRESHOLD:
            spikes.append(LogSpike(description=f"Error spike: {error_count} errors in {len(lines)} lines", count=error_count))
        return LogAnalysis(
            errors=[LogError(message=m, occurrences=c) for m, c in errors.most_common()],
            spikes=spikes,
            summary=LogSummary(total_lines=len(lines), error_count=error_count, warn_count=warn_count),
        )


class JsonEventStream:
    """Parses {"events": [...]} payloads and scores them as incident triggers."""

    def parse_events(self, raw: str) -> list[ClusterEvent]:
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Event payload is not JSON", extra={"length": len(raw)})
            return []
        items = data.get("events") if isinstance(data, dict) else data
        return [ClusterEvent.model_validate(item) for item in (items or []) if isinstance(item, dict)]

    def find_triggers(self, events: list[ClusterEvent], since: datetime) -> list[EventTrigger]:
        window_start = since - TRIGGER_LOOKBACK
        return [
            EventTrigger(
                event=e,
                score=TRIGGER_SCORES.get(e.type, 0.3),
                reasoning=f"{e.type} event {int((since - e.timestamp).total_seconds())}s before the incident",
            )
            for e in events
            if window_start <= e.timestamp <= since
        ]

    def find_preceding_deployment(self, events: list[ClusterEvent], since: datetime) -> DeploymentChange | None:
        deployments = [e for e in events if e.type == "Deployment" and e.timestamp <= since]
        if not deployments:
            return None
        latest = max(deployments, key=lambda e: e.timestamp)
        return DeploymentChange(deployment=latest.target or "unknown", timestamp=latest.timestamp)


class DemoExecutor:
    """
    Execution collaborator for the demo service.

    Restart and rollback clear the injected faults (POST /bugs/clear); scale
    is acknowledged without effect. The service reports a single revision, so
    escalation skips the rollback tier.
    """

    def __init__(self, service_url: str | None = None, timeout: float = 5.0) -> None:
        self.service_url = (service_url or "").strip()
        self._timeout = timeout

    def execute(self, request) -> ActionResult:
        if isinstance(request, ScaleRequest):
            return ActionResult(
                success=True,
                message=f"Scaled {request.target.key} to {request.replicas} replicas (simulated)",
            )
        if not isinstance(request, (RestartRequest, RollbackRequest)):
            return ActionResult(success=False, message=f"Unsupported action type: {request.type}")
        if not self.service_url:
            return ActionResult(success=False, message="No service URL configured")
        try:
            with httpx.Client(timeout=self._timeout) as client:
                r = client.post(self.service_url.rstrip("/") + "/bugs/clear")
                r.raise_for_status()
                cleared = r.json().get("cleared") or []
        except Exception as e:
            logger.warning("Demo %s failed: %s", request.type, e, exc_info=True)
            return ActionResult(success=False, message=f"{request.type} failed: {e}")
        logger.info("Demo %s executed", request.type, extra={"target": request.target.key, "cleared": cleared})
        return ActionResult(
            success=True,
            message=f"{request.type} of {request.target.key} completed (cleared: {', '.join(cleared) or 'none'})",
        )

    def get_revision_info(self, target: ActionTarget) -> RevisionInfo | None:
        return RevisionInfo(revision_count=1)
