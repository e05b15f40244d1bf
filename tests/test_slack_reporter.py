"""Tests for Slack reporter (post-mortem build and publish)."""

from datetime import timedelta
from unittest.mock import MagicMock, patch

from oodasre.audit import AuditStore
from oodasre.models import (
    Action,
    ActionStatus,
    ActionTarget,
    Hypothesis,
    HypothesisStatus,
    Incident,
    InvestigationContext,
    Phase,
    PostMortemReport,
    RollbackRequest,
    TimelineEntry,
    VerificationRecord,
    utcnow,
)
from oodasre.slack_reporter.reporter import (
    SlackReporter,
    _build_post_mortem_blocks,
    _build_post_mortem_text,
    build_post_mortem,
)


def _resolved_context():
    started = utcnow() - timedelta(seconds=92)
    incident = Incident(
        id="inc-1",
        title="checkout error rate above 5% threshold",
        phase=Phase.DONE,
        started_at=started,
        resolved_at=started + timedelta(seconds=92),
    )
    context = InvestigationContext(incident=incident, started_at=started)
    context.hypotheses.append(
        Hypothesis(
            incident_id="inc-1",
            root_cause="Memory leak in v1.4.2",
            confidence=0.85,
            status=HypothesisStatus.CONFIRMED,
            suggested_action="rollback",
        )
    )
    context.actions.append(
        Action(
            incident_id="inc-1",
            request=RollbackRequest(target=ActionTarget(namespace="checkout", deployment="checkout")),
            status=ActionStatus.COMPLETED,
            result="Rolled back to revision 6",
        )
    )
    context.last_verification = VerificationRecord(success=True, details="Traffic healthy", attempt_number=1)
    return context


def test_build_post_mortem_from_context():
    report = build_post_mortem(_resolved_context())
    assert report.incident_id == "inc-1"
    assert report.outcome == Phase.DONE
    assert report.root_cause == "Memory leak in v1.4.2"
    assert report.action_taken == "rollback (completed)"
    assert round(report.duration_seconds) == 92
    assert report.timeline[0].startswith("Investigation started")
    assert any("Rolled back to revision 6" in e for e in report.timeline)
    assert report.timeline[-1] == "Verification: Traffic healthy"


def test_build_post_mortem_prefers_audit_timeline():
    audit = AuditStore()
    audit.record_timeline(TimelineEntry(incident_id="inc-1", kind="phase_started", message="Observing started"))
    audit.record_timeline(TimelineEntry(incident_id="inc-2", kind="phase_started", message="Other incident"))
    report = build_post_mortem(_resolved_context(), audit=audit)
    assert len(report.timeline) == 1
    assert report.timeline[0].endswith("Observing started")


def test_build_post_mortem_without_hypothesis_or_action():
    incident = Incident(id="inc-9", title="t", phase=Phase.FAILED)
    context = InvestigationContext(incident=incident, failure_reason="No hypothesis available to act on")
    report = build_post_mortem(context)
    assert report.root_cause == "Undetermined"
    assert report.action_taken == "none"
    assert report.failure_reason == "No hypothesis available to act on"


def test_build_post_mortem_text():
    report = PostMortemReport(
        incident_id="inc-1",
        title="checkout 500s",
        outcome=Phase.DONE,
        root_cause="Memory leak in v1.4.2",
        action_taken="rollback (completed)",
        duration_seconds=92.0,
        timeline=["Alert received", "Rollback executed"],
    )
    text = _build_post_mortem_text(report)
    assert "inc-1" in text
    assert "Memory leak" in text
    assert "Resolved in 92s" in text
    assert "Alert received" in text
    assert "Failure reason" not in text


def test_build_post_mortem_blocks_include_failure_reason():
    report = PostMortemReport(
        incident_id="inc-demo",
        outcome=Phase.FAILED,
        root_cause="Bad deployment",
        action_taken="rollback (failed)",
        duration_seconds=45.0,
        failure_reason="Verification failed after 3 attempts. Last status: 40% errors",
    )
    blocks = _build_post_mortem_blocks(report)
    assert blocks[0]["type"] == "header"
    assert "Failed" in blocks[1]["fields"][1]["text"]
    assert any("Verification failed after 3 attempts" in b.get("text", {}).get("text", "") for b in blocks)


def _report():
    return PostMortemReport(
        incident_id="inc-1",
        outcome=Phase.DONE,
        root_cause="Memory leak",
        action_taken="restart (completed)",
        duration_seconds=12.0,
        timeline=["Step 1", "Step 2"],
    )


def test_publish_no_token_returns_false():
    assert SlackReporter(bot_token="", channel_id="C123").publish(_report()) is False


def test_publish_no_channel_returns_false():
    assert SlackReporter(bot_token="xoxb-xxx", channel_id="").publish(_report()) is False


@patch("slack_sdk.WebClient")
def test_publish_with_token_calls_chat_post_message(mock_web_client_class):
    mock_client = MagicMock()
    mock_web_client_class.return_value = mock_client

    result = SlackReporter(bot_token="xoxb-xxx", channel_id="C123").publish(_report())

    assert result is True
    mock_web_client_class.assert_called_once_with(token="xoxb-xxx")
    call_kw = mock_client.chat_postMessage.call_args[1]
    assert call_kw["channel"] == "C123"
    assert "inc-1" in call_kw["text"]
    assert "Memory leak" in call_kw["text"]
    assert call_kw["blocks"][0]["type"] == "header"


@patch("slack_sdk.WebClient")
def test_publish_api_failure_returns_false(mock_web_client_class):
    mock_client = MagicMock()
    mock_client.chat_postMessage.side_effect = Exception("Slack API error")
    mock_web_client_class.return_value = mock_client

    assert SlackReporter(bot_token="xoxb-xxx", channel_id="C123").publish(_report()) is False
