"""
Contracts for the external collaborators the investigation core depends on.

Implementations are injected into the orchestrator. Every call into a
collaborator goes through call_with_timeout so a hung dependency surfaces as
CollaboratorTimeoutError instead of blocking the investigation.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime
from typing import Any, Callable, Protocol, TypeVar

from oodasre.exceptions import CollaboratorTimeoutError
from oodasre.models import (
    Action,
    ActionResult,
    ActionTarget,
    ClusterEvent,
    DeploymentChange,
    Evidence,
    EventTrigger,
    FixCycleResult,
    FixRequestResult,
    FixStatusReport,
    Frame,
    FrameAnalysis,
    Hypothesis,
    HypothesisGeneration,
    LogAnalysis,
    LogPatternAnalysis,
    MetricReading,
    PatternMatch,
    RedeployResult,
    RevisionInfo,
    RollbackDecision,
    StatusReport,
    TimelineEntry,
    VerificationVerdict,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_timeout(
    name: str,
    fn: Callable[..., T],
    *args: Any,
    timeout: float | None = None,
    **kwargs: Any,
) -> T:
    """
    Run fn(*args, **kwargs) and wait at most timeout seconds for the result.

    A timeout of None or <= 0 calls fn inline. The worker thread of a timed-out
    call is abandoned, not killed; its eventual result is discarded.
    """
    if not timeout or timeout <= 0:
        return fn(*args, **kwargs)
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"collab-{name}")
    try:
        future = pool.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as e:
            logger.warning("Collaborator call timed out", extra={"collaborator": name, "timeout": timeout})
            raise CollaboratorTimeoutError(name, timeout) from e
    finally:
        pool.shutdown(wait=False)


class ReasoningCollaborator(Protocol):
    def analyze_frames(
        self, incident_id: str, frames: list[Frame], context: str | None = None
    ) -> FrameAnalysis: ...

    def generate_hypotheses(
        self,
        incident_id: str,
        evidence: list[Evidence],
        prior_hypotheses: list[Hypothesis],
        reasoning_token: str | None,
        budget: int,
        allowed_actions: list[str],
        correlation_summary: list[str] | None = None,
    ) -> HypothesisGeneration: ...

    def analyze_logs(
        self,
        incident_id: str,
        logs: list[str],
        reasoning_token: str | None = None,
        correlation_summary: list[str] | None = None,
    ) -> LogPatternAnalysis: ...


class FrameSource(Protocol):
    def is_available(self) -> bool: ...

    def get_recent_frames(self, deployment: str, limit: int = 5) -> list[Frame]: ...


class SignalSource(Protocol):
    """Raw log and event text from the target cluster."""

    def fetch_logs(self, namespace: str, deployment: str) -> str: ...

    def fetch_events(self, namespace: str) -> str: ...


class LogParser(Protocol):
    def analyze(self, raw_logs: str) -> LogAnalysis: ...


class MetricProcessor(Protocol):
    def get_metrics(
        self, namespace: str, deployment: str, window_seconds: float
    ) -> dict[str, MetricReading] | None: ...


class EventStream(Protocol):
    def parse_events(self, raw: str) -> list[ClusterEvent]: ...

    def find_triggers(self, events: list[ClusterEvent], since: datetime) -> list[EventTrigger]: ...

    def find_preceding_deployment(
        self, events: list[ClusterEvent], since: datetime
    ) -> DeploymentChange | None: ...


class ExecutionCollaborator(Protocol):
    def execute(self, request: Any) -> ActionResult: ...

    def get_revision_info(self, target: ActionTarget) -> RevisionInfo | None: ...


class FixCycleCollaborator(Protocol):
    def find_cycle(self, deployment: str) -> str | None: ...

    def request_fix(self, cycle_id: str, prompt: str) -> FixRequestResult: ...

    def link_incident(self, fix_id: str, incident_id: str) -> None: ...

    def get_status(self, fix_id: str) -> FixStatusReport | None: ...

    def run_full_cycle(self, fix_id: str) -> FixCycleResult: ...

    def trigger_redeploy(self, fix_id: str) -> RedeployResult: ...


class KnowledgeBase(Protocol):
    def find_matching_patterns(
        self,
        signals: list[str],
        min_score: float = 0.3,
        max_results: int = 5,
        types: list[str] | None = None,
    ) -> list[PatternMatch]: ...


class AuditSink(Protocol):
    def record_evidence(self, evidence: Evidence) -> None: ...

    def record_hypothesis(self, hypothesis: Hypothesis) -> None: ...

    def record_action(self, action: Action) -> None: ...

    def record_timeline(self, entry: TimelineEntry) -> None: ...


class StatusProbe(Protocol):
    def get_status(self) -> StatusReport | None: ...


class RollbackAdvisorCollaborator(Protocol):
    def evaluate_rollback_need(
        self, action: Action, verdict: VerificationVerdict, incident_id: str
    ) -> RollbackDecision: ...

    def record_rollback(self, incident_id: str) -> None: ...
