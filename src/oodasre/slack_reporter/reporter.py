"""Slack reporter for the investigation post-mortem."""

import logging

from oodasre.models import InvestigationContext, Phase, PostMortemReport, utcnow

logger = logging.getLogger(__name__)

MAX_TIMELINE_ENTRIES = 20
_OUTCOME_LABELS = {
    Phase.DONE: "Resolved",
    Phase.FAILED: "Failed",
}


def build_post_mortem(context: InvestigationContext, audit=None) -> PostMortemReport:
    """Summarize a finished (or stopped) investigation; the timeline comes from audit when available."""
    incident = context.incident
    hypothesis = context.confirmed_hypothesis
    action = context.last_action
    end = incident.resolved_at or utcnow()

    timeline: list[str] = []
    if audit is not None:
        try:
            timeline = [
                f"{e.timestamp.strftime('%H:%M:%S')} {e.message}" for e in audit.get_timeline(incident.id)
            ]
        except Exception as e:
            logger.warning("Audit timeline unavailable: %s", e, exc_info=True)
    if not timeline:
        timeline = [f"Investigation started: {context.started_at.isoformat()}"]
        timeline.extend(f"Action: {a.type.value} ({a.status.value}) {a.result}".rstrip() for a in context.actions)
        if context.last_verification is not None:
            timeline.append(f"Verification: {context.last_verification.details}")

    return PostMortemReport(
        incident_id=incident.id,
        title=incident.title,
        outcome=incident.phase,
        root_cause=hypothesis.root_cause if hypothesis else "Undetermined",
        action_taken=f"{action.type.value} ({action.status.value})" if action else "none",
        duration_seconds=max(0.0, (end - context.started_at).total_seconds()),
        failure_reason=context.failure_reason,
        timeline=timeline[-MAX_TIMELINE_ENTRIES:],
    )


def _outcome_label(report: PostMortemReport) -> str:
    return _OUTCOME_LABELS.get(report.outcome, report.outcome.value.title())


def _build_post_mortem_text(report: PostMortemReport) -> str:
    """Plain-text fallback for notifications and accessibility."""
    lines = [
        f"*OODA SRE Post-Mortem*: Incident `{report.incident_id}` {report.title}".rstrip(),
        f"*Outcome:* {_outcome_label(report)} in {report.duration_seconds:.0f}s",
        f"*Root cause:* {report.root_cause}",
        f"*Action taken:* {report.action_taken}",
    ]
    if report.failure_reason:
        lines.append(f"*Failure reason:* {report.failure_reason}")
    if report.timeline:
        lines.append("*Timeline:*")
        for entry in report.timeline:
            lines.append(f"  • {entry}")
    return "\n".join(lines)


def _build_post_mortem_blocks(report: PostMortemReport) -> list[dict]:
    """Block Kit layout for post-mortem in Slack."""
    blocks: list[dict] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": "OODA SRE Post-Mortem", "emoji": True},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Incident:*\n`{report.incident_id}`"},
                {"type": "mrkdwn", "text": f"*Outcome:*\n{_outcome_label(report)} ({report.duration_seconds:.0f}s)"},
            ],
        },
        {"type": "section", "text": {"type": "mrkdwn", "text": f"*Root cause:*\n{report.root_cause}"}},
        {"type": "section", "text": {"type": "mrkdwn", "text": f"*Action taken:*\n{report.action_taken}"}},
    ]
    if report.failure_reason:
        blocks.append(
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*Failure reason:*\n{report.failure_reason}"}}
        )
    if report.timeline:
        timeline_text = "\n".join(f"• {e}" for e in report.timeline)
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f"*Timeline:*\n{timeline_text}"}})
    return blocks


class SlackReporter:
    """Publishes post-mortem to Slack via slack_sdk WebClient and Block Kit; fallback text when token not configured."""

    def __init__(self, bot_token: str = "", channel_id: str = "") -> None:
        self.bot_token = bot_token
        self.channel_id = channel_id

    def publish(self, report: PostMortemReport) -> bool:
        """Send post-mortem to configured Slack channel. Returns False if token/channel missing or API fails."""
        if not self.bot_token or not self.channel_id:
            logger.info(
                "Slack publish skipped: no token or channel",
                extra={"root_cause": report.root_cause[:80], "outcome": report.outcome.value},
            )
            return False
        try:
            from slack_sdk import WebClient

            client = WebClient(token=self.bot_token)
            client.chat_postMessage(
                channel=self.channel_id,
                text=_build_post_mortem_text(report),
                blocks=_build_post_mortem_blocks(report),
            )
            logger.info("Slack post-mortem published", extra={"incident_id": report.incident_id})
            return True
        except Exception as e:
            logger.warning("Slack publish failed: %s", e, exc_info=True)
            return False
