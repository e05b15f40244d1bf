"""Shared data models for the OODA investigation loop."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12]}"


class Phase(str, Enum):
    """Investigation phases (OODA plus Verify)."""

    IDLE = "IDLE"
    OBSERVING = "OBSERVING"
    ORIENTING = "ORIENTING"
    DECIDING = "DECIDING"
    ACTING = "ACTING"
    VERIFYING = "VERIFYING"
    DONE = "DONE"
    FAILED = "FAILED"


TERMINAL_PHASES = frozenset({Phase.DONE, Phase.FAILED})
ACTIVE_PHASES = frozenset(
    {Phase.OBSERVING, Phase.ORIENTING, Phase.DECIDING, Phase.ACTING, Phase.VERIFYING}
)


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Incident(BaseModel):
    """One tracked production problem under investigation."""

    id: str = Field(default_factory=lambda: new_id("inc"))
    title: str
    severity: Severity = Severity.HIGH
    namespace: str = "default"
    target_deployment: str | None = None
    # Base URL of the affected service, used for traffic and status probes
    service_url: str | None = None
    # True when the deployment is produced by a managed fix cycle (generated app)
    managed_app: bool = False
    phase: Phase = Phase.IDLE
    retry_count: int = 0
    fix_id: str | None = None
    started_at: datetime | None = None
    resolved_at: datetime | None = None


# --- Evidence -----------------------------------------------------------------


class EvidenceType(str, Enum):
    VIDEO_FRAME = "video_frame"
    LOG = "log"
    METRIC = "metric"
    K8S_EVENT = "k8s_event"


class AnomalyContent(BaseModel):
    kind: Literal["anomaly"] = "anomaly"
    description: str
    severity: Severity = Severity.MEDIUM
    location: str = ""


class DashboardStateContent(BaseModel):
    kind: Literal["dashboard_state"] = "dashboard_state"
    healthy: bool
    description: str = ""


class MetricContent(BaseModel):
    kind: Literal["metric"] = "metric"
    name: str
    current: float
    average: float | None = None
    trend: str = ""
    anomaly_score: float | None = None
    unit: str = ""

    @property
    def description(self) -> str:
        trend = f" ({self.trend})" if self.trend else ""
        return f"Metric anomaly: {self.name} = {self.current:.2f}{self.unit}{trend}"


class LogErrorContent(BaseModel):
    kind: Literal["log_error"] = "log_error"
    message: str
    occurrences: int = 1

    @property
    def description(self) -> str:
        return f"Error ({self.occurrences}x): {self.message}"


class LogSpikeContent(BaseModel):
    kind: Literal["log_spike"] = "log_spike"
    description: str
    count: int = 0


class LogSummaryContent(BaseModel):
    kind: Literal["log_summary"] = "log_summary"
    total_lines: int
    error_count: int
    warn_count: int
    recent_lines: str = ""

    @property
    def description(self) -> str:
        return (
            f"Log analysis: {self.total_lines} lines, {self.error_count} errors, "
            f"{self.warn_count} warnings"
        )


class LogPatternContent(BaseModel):
    kind: Literal["log_pattern"] = "log_pattern"
    pattern: str
    count: int = 0
    significance: str = ""

    @property
    def description(self) -> str:
        return f"Log pattern: {self.pattern} ({self.count}x)"


class ClusterEventContent(BaseModel):
    kind: Literal["cluster_event"] = "cluster_event"
    description: str
    event_type: str = ""
    target: str = ""
    trigger_score: float = 0.0
    reasoning: str = ""


class DeploymentContent(BaseModel):
    kind: Literal["deployment"] = "deployment"
    deployment: str
    revision: int | None = None
    image: str = ""

    @property
    def description(self) -> str:
        return f"Recent deployment: {self.deployment} (rev {self.revision})"


EvidenceContent = Annotated[
    Union[
        AnomalyContent,
        DashboardStateContent,
        MetricContent,
        LogErrorContent,
        LogSpikeContent,
        LogSummaryContent,
        LogPatternContent,
        ClusterEventContent,
        DeploymentContent,
    ],
    Field(discriminator="kind"),
]


class Evidence(BaseModel):
    """Immutable observation collected during an investigation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("ev"))
    incident_id: str
    type: EvidenceType
    source: str
    content: EvidenceContent
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def description(self) -> str:
        return self.content.description


# --- Hypotheses and actions ---------------------------------------------------


class HypothesisStatus(str, Enum):
    PROPOSED = "proposed"
    CONFIRMED = "confirmed"


class ActionType(str, Enum):
    ROLLBACK = "rollback"
    RESTART = "restart"
    SCALE = "scale"
    CODE_FIX = "code_fix"


class Hypothesis(BaseModel):
    """Candidate root cause produced during Decide."""

    id: str = Field(default_factory=lambda: new_id("hyp"))
    incident_id: str
    root_cause: str
    confidence: float = Field(ge=0.0, le=1.0)
    status: HypothesisStatus = HypothesisStatus.PROPOSED
    suggested_action: str = ""
    action_type: ActionType | None = None
    evidence_ids: list[str] = Field(default_factory=list)
    reasoning: str = ""
    created_at: datetime = Field(default_factory=utcnow)


class ActionStatus(str, Enum):
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class ActionTarget(BaseModel):
    namespace: str = "default"
    deployment: str

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.deployment}"


class RollbackRequest(BaseModel):
    type: Literal["rollback"] = "rollback"
    target: ActionTarget
    to_revision: int | None = None


class RestartRequest(BaseModel):
    type: Literal["restart"] = "restart"
    target: ActionTarget


class ScaleRequest(BaseModel):
    type: Literal["scale"] = "scale"
    target: ActionTarget
    replicas: int = Field(default=3, ge=0)


class CodeFixRequest(BaseModel):
    type: Literal["code_fix"] = "code_fix"
    target: ActionTarget
    hypothesis_id: str | None = None


ActionRequest = Annotated[
    Union[RollbackRequest, RestartRequest, ScaleRequest, CodeFixRequest],
    Field(discriminator="type"),
]


def build_action_request(
    action_type: ActionType,
    target: ActionTarget,
    hypothesis_id: str | None = None,
) -> RollbackRequest | RestartRequest | ScaleRequest | CodeFixRequest:
    """Build the request variant for an action type with default parameters."""
    if action_type == ActionType.ROLLBACK:
        return RollbackRequest(target=target)
    if action_type == ActionType.RESTART:
        return RestartRequest(target=target)
    if action_type == ActionType.SCALE:
        return ScaleRequest(target=target, replicas=3)
    return CodeFixRequest(target=target, hypothesis_id=hypothesis_id)


class Action(BaseModel):
    """One dispatched remediation attempt. Append-only in the context."""

    id: str = Field(default_factory=lambda: new_id("act"))
    incident_id: str
    hypothesis_id: str | None = None
    request: ActionRequest
    status: ActionStatus = ActionStatus.EXECUTING
    result: str = ""
    executed_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    @property
    def type(self) -> ActionType:
        return ActionType(self.request.type)

    @property
    def target(self) -> ActionTarget:
        return self.request.target


class ActionResult(BaseModel):
    """Execution collaborator result."""

    success: bool
    message: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class RemediationAttempt(BaseModel):
    """One entry in an escalation run's trace."""

    action_type: ActionType
    timestamp: datetime = Field(default_factory=utcnow)
    success: bool
    duration_seconds: float = 0.0
    message: str = ""
    verification_passed: bool = False


class TierSkip(BaseModel):
    action_type: ActionType
    reason: str


class EscalationResult(BaseModel):
    success: bool
    final_action: ActionType | None = None
    attempts: list[RemediationAttempt] = Field(default_factory=list)
    skipped: list[TierSkip] = Field(default_factory=list)
    actions: list[Action] = Field(default_factory=list)
    pre_escalation_error_rate: float | None = None
    total_duration_seconds: float = 0.0
    message: str = ""


class FixTriggerResult(BaseModel):
    """Outcome of handing a code fix to the fix cycle."""

    success: bool
    message: str
    fix_id: str | None = None
    # Set when a redeploy moved the service
    service_url: str | None = None


# --- Verification -------------------------------------------------------------


class VerificationVerdict(BaseModel):
    passed: bool
    details: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class VerificationRecord(BaseModel):
    success: bool
    details: str
    attempt_number: int
    timestamp: datetime = Field(default_factory=utcnow)


class FrameCheck(BaseModel):
    """Outcome of the visual fallback check."""

    passed: bool
    details: str
    skipped: bool = False


class StatusReport(BaseModel):
    """Lightweight health/fault status of the target system."""

    healthy: bool
    active_faults: list[str] = Field(default_factory=list)


class TrafficMeasurement(BaseModel):
    total: int
    errors: int
    error_rate: float
    measured_at: datetime = Field(default_factory=utcnow)


# --- Collaborator payloads ----------------------------------------------------


class Frame(BaseModel):
    """Captured dashboard/video frame."""

    data: bytes
    mime_type: str = "image/png"
    captured_at: datetime = Field(default_factory=utcnow)


class FrameAnomaly(BaseModel):
    description: str
    severity: Severity = Severity.MEDIUM
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    location: str = ""


class FrameMetric(BaseModel):
    name: str
    value: float
    unit: str = ""


class DashboardState(BaseModel):
    healthy: bool
    description: str = ""


class FrameAnalysis(BaseModel):
    anomalies: list[FrameAnomaly] = Field(default_factory=list)
    metrics: list[FrameMetric] = Field(default_factory=list)
    dashboard_state: DashboardState | None = None
    reasoning_token: str | None = None


class HypothesisDraft(BaseModel):
    root_cause: str
    confidence: float = Field(ge=0.0, le=1.0)
    suggested_action: str = ""
    reasoning: str = ""
    evidence_ids: list[str] = Field(default_factory=list)


class HypothesisGeneration(BaseModel):
    success: bool
    hypotheses: list[HypothesisDraft] = Field(default_factory=list)
    reasoning_token: str | None = None
    error: str | None = None


class LogPattern(BaseModel):
    pattern: str
    count: int = 0
    significance: str = ""


class LogPatternAnalysis(BaseModel):
    patterns: list[LogPattern] = Field(default_factory=list)


class LogError(BaseModel):
    message: str
    occurrences: int = 1


class LogSpike(BaseModel):
    description: str
    count: int = 0


class LogSummary(BaseModel):
    total_lines: int = 0
    error_count: int = 0
    warn_count: int = 0


class LogAnalysis(BaseModel):
    errors: list[LogError] = Field(default_factory=list)
    spikes: list[LogSpike] = Field(default_factory=list)
    summary: LogSummary = Field(default_factory=LogSummary)


class MetricReading(BaseModel):
    current: float
    average: float = 0.0
    trend: str = "stable"
    anomaly_score: float = Field(default=0.0, ge=0.0, le=1.0)


class ClusterEvent(BaseModel):
    type: str
    description: str
    target: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class EventTrigger(BaseModel):
    event: ClusterEvent
    score: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""


class DeploymentChange(BaseModel):
    deployment: str
    revision: int | None = None
    image: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class PatternMatch(BaseModel):
    """Knowledge-base match for the current signals."""

    name: str
    score: float = Field(ge=0.0, le=1.0)
    recommended_actions: list[str] = Field(default_factory=list)
    trigger_conditions: list[str] = Field(default_factory=list)


class RevisionInfo(BaseModel):
    revision_count: int
    current_revision_age_seconds: float | None = None


class FixStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    REVIEW = "review"
    APPROVED = "approved"
    APPLIED = "applied"
    REJECTED = "rejected"
    FAILED = "failed"
    REVERTED = "reverted"


IN_FLIGHT_FIX_STATUSES = frozenset(
    {FixStatus.PENDING, FixStatus.ANALYZING, FixStatus.GENERATING, FixStatus.REVIEW, FixStatus.APPROVED}
)
FAILED_FIX_STATUSES = frozenset({FixStatus.REJECTED, FixStatus.FAILED, FixStatus.REVERTED})


class FixStatusReport(BaseModel):
    fix_id: str
    status: FixStatus
    applied_at: datetime | None = None


class FixRequestResult(BaseModel):
    fix_id: str


class FixCycleResult(BaseModel):
    success: bool
    files_updated: list[str] = Field(default_factory=list)
    message: str = ""


class RedeployResult(BaseModel):
    success: bool
    service_url: str | None = None
    message: str = ""


class RollbackUrgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RollbackDecision(BaseModel):
    """Advisory output of the rollback-need evaluation."""

    incident_id: str
    should_rollback: bool
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""
    urgency: RollbackUrgency = RollbackUrgency.MEDIUM
    alternative_actions: list[str] = Field(default_factory=list)
    decided_at: datetime = Field(default_factory=utcnow)


# --- Investigation context ----------------------------------------------------


class FailureDetails(BaseModel):
    phase: Phase
    retry_attempts: int
    reason: str | None = None
    last_action: Action | None = None
    last_verification: VerificationRecord | None = None


class InvestigationContext(BaseModel):
    """Mutable working set of one investigation run; owned by the state machine."""

    incident: Incident
    evidence: list[Evidence] = Field(default_factory=list)
    hypotheses: list[Hypothesis] = Field(default_factory=list)
    actions: list[Action] = Field(default_factory=list)
    reasoning_token: str | None = None
    correlation_summary: list[str] = Field(default_factory=list)
    verification_retry_count: int = 0
    max_verification_retries: int = 3
    last_verification: VerificationRecord | None = None
    failure_reason: str | None = None
    started_at: datetime = Field(default_factory=utcnow)
    phase_started_at: datetime = Field(default_factory=utcnow)

    @property
    def last_action(self) -> Action | None:
        return self.actions[-1] if self.actions else None

    @property
    def confirmed_hypothesis(self) -> Hypothesis | None:
        for h in reversed(self.hypotheses):
            if h.status == HypothesisStatus.CONFIRMED:
                return h
        return None


class TimelineEntry(BaseModel):
    incident_id: str
    kind: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class PostMortemReport(BaseModel):
    """Content for Slack post-mortem."""

    incident_id: str
    title: str = ""
    outcome: Phase
    root_cause: str
    action_taken: str
    duration_seconds: float
    failure_reason: str | None = None
    timeline: list[str] = Field(default_factory=list)
