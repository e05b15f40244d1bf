"""Conversion of collaborator output into Evidence, and the Orient correlation summary."""

from __future__ import annotations

from oodasre.models import (
    AnomalyContent,
    ClusterEventContent,
    DashboardStateContent,
    DeploymentChange,
    DeploymentContent,
    EventTrigger,
    Evidence,
    EvidenceType,
    FrameAnalysis,
    LogAnalysis,
    LogErrorContent,
    LogPatternAnalysis,
    LogPatternContent,
    LogSpikeContent,
    LogSummaryContent,
    MetricContent,
    MetricReading,
)

MAX_LOG_ERRORS = 5
MAX_TRIGGERS = 3
MAX_SUMMARY_ANOMALIES = 5
RECENT_LOG_LINES = 20
ANOMALY_SCORE_THRESHOLD = 0.5
TRIGGER_SCORE_THRESHOLD = 0.5
LOG_SPIKE_CONFIDENCE = 0.8
LOG_SUMMARY_CONFIDENCE = 0.5
PRECEDING_DEPLOYMENT_CONFIDENCE = 0.75
# Metric names checked from the metric processor, in order
WATCHED_METRICS = ("cpu", "memory", "error_rate", "latency_p99")


def log_error_confidence(occurrences: int) -> float:
    return min(0.9, 0.5 + occurrences * 0.1)


def from_frame_analysis(incident_id: str, analysis: FrameAnalysis) -> list[Evidence]:
    out = [
        Evidence(
            incident_id=incident_id,
            type=EvidenceType.VIDEO_FRAME,
            source="frame_analysis",
            content=AnomalyContent(description=a.description, severity=a.severity, location=a.location),
            confidence=a.confidence,
        )
        for a in analysis.anomalies
    ]
    if analysis.dashboard_state is not None:
        out.append(
            Evidence(
                incident_id=incident_id,
                type=EvidenceType.VIDEO_FRAME,
                source="dashboard_state",
                content=DashboardStateContent(
                    healthy=analysis.dashboard_state.healthy,
                    description=analysis.dashboard_state.description,
                ),
            )
        )
    for m in analysis.metrics:
        out.append(
            Evidence(
                incident_id=incident_id,
                type=EvidenceType.METRIC,
                source="frame_analysis",
                content=MetricContent(name=m.name, current=m.value, unit=m.unit),
            )
        )
    return out


def from_log_analysis(incident_id: str, analysis: LogAnalysis, raw_logs: str = "") -> list[Evidence]:
    out = [
        Evidence(
            incident_id=incident_id,
            type=EvidenceType.LOG,
            source="log_parser",
            content=LogErrorContent(message=e.message, occurrences=e.occurrences),
            confidence=log_error_confidence(e.occurrences),
        )
        for e in analysis.errors[:MAX_LOG_ERRORS]
    ]
    for spike in analysis.spikes:
        out.append(
            Evidence(
                incident_id=incident_id,
                type=EvidenceType.LOG,
                source="log_spike",
                content=LogSpikeContent(description=spike.description, count=spike.count),
                confidence=LOG_SPIKE_CONFIDENCE,
            )
        )
    summary = analysis.summary
    if summary.total_lines > 0:
        out.append(
            Evidence(
                incident_id=incident_id,
                type=EvidenceType.LOG,
                source="log_summary",
                content=LogSummaryContent(
                    total_lines=summary.total_lines,
                    error_count=summary.error_count,
                    warn_count=summary.warn_count,
                    recent_lines="\n".join(raw_logs.splitlines()[-RECENT_LOG_LINES:]),
                ),
                confidence=LOG_SUMMARY_CONFIDENCE,
            )
        )
    return out


def from_metrics(incident_id: str, metrics: dict[str, MetricReading]) -> list[Evidence]:
    out: list[Evidence] = []
    for name in WATCHED_METRICS:
        reading = metrics.get(name)
        if reading is None or reading.anomaly_score <= ANOMALY_SCORE_THRESHOLD:
            continue
        out.append(
            Evidence(
                incident_id=incident_id,
                type=EvidenceType.METRIC,
                source="metric_processor",
                content=MetricContent(
                    name=name,
                    current=reading.current,
                    average=reading.average,
                    trend=reading.trend,
                    anomaly_score=reading.anomaly_score,
                ),
                confidence=reading.anomaly_score,
            )
        )
    return out


def from_triggers(incident_id: str, triggers: list[EventTrigger]) -> list[Evidence]:
    strong = [t for t in triggers if t.score > TRIGGER_SCORE_THRESHOLD]
    strong.sort(key=lambda t: t.score, reverse=True)
    return [
        Evidence(
            incident_id=incident_id,
            type=EvidenceType.K8S_EVENT,
            source="cluster_events",
            content=ClusterEventContent(
                description=f"Potential trigger: {t.event.description[:200]}",
                event_type=t.event.type,
                target=t.event.target,
                trigger_score=t.score,
                reasoning=t.reasoning,
            ),
            confidence=t.score,
            timestamp=t.event.timestamp,
        )
        for t in strong[:MAX_TRIGGERS]
    ]


def from_deployment(incident_id: str, change: DeploymentChange) -> Evidence:
    return Evidence(
        incident_id=incident_id,
        type=EvidenceType.K8S_EVENT,
        source="deployment_correlation",
        content=DeploymentContent(deployment=change.deployment, revision=change.revision, image=change.image),
        confidence=PRECEDING_DEPLOYMENT_CONFIDENCE,
        timestamp=change.timestamp,
    )


def from_log_patterns(incident_id: str, analysis: LogPatternAnalysis) -> list[Evidence]:
    return [
        Evidence(
            incident_id=incident_id,
            type=EvidenceType.LOG,
            source="log_correlation",
            content=LogPatternContent(pattern=p.pattern, count=p.count, significance=p.significance),
        )
        for p in analysis.patterns
    ]


def correlation_summary(evidence: list[Evidence]) -> list[str]:
    """Causal summary lines handed to the reasoning collaborator."""
    anomalies = [e for e in evidence if isinstance(e.content, AnomalyContent)]
    metrics = [e for e in evidence if e.type == EvidenceType.METRIC]
    dashboards = [e for e in evidence if isinstance(e.content, DashboardStateContent)]

    lines = [f"Evidence collected: {len(evidence)} items"]
    if anomalies:
        lines.append(f"Anomalies detected: {len(anomalies)}")
    if metrics:
        lines.append(f"Metrics observed: {len(metrics)}")
    if dashboards and dashboards[-1].content.description:
        lines.append(f"Dashboard: {dashboards[-1].content.description}")
    for e in anomalies[:MAX_SUMMARY_ANOMALIES]:
        lines.append(f"- {e.content.description}")
    return lines
