"""
Closed-loop investigation workflow.

  Incident -> Observe -> Orient -> Decide -> Act (escalating) -> Verify
    -> Slack post-mortem
"""

import logging

import httpx

from oodasre.audit import AuditStore
from oodasre.config import Settings, get_settings
from oodasre.incident_detection import (
    DEMO_INCIDENT_ID,
    DemoExecutor,
    HttpSignalSource,
    JsonEventStream,
    TextLogParser,
    get_incident_stream,
)
from oodasre.models import Phase, PostMortemReport
from oodasre.notifications import NotificationChannel
from oodasre.orchestrator import InvestigationOrchestrator
from oodasre.reasoning_agent import ReasoningAgent
from oodasre.remediation import LambdaExecutor, RollbackAdvisor, get_cooldown_manager
from oodasre.slack_reporter import SlackReporter, build_post_mortem
from oodasre.verification import HttpStatusProbe, TrafficProbe

logger = logging.getLogger(__name__)

DEMO_BUG = "users_500"


def _publish_report(slack: SlackReporter, report: PostMortemReport) -> None:
    """Publish post-mortem to Slack; log and swallow errors so workflow does not crash."""
    try:
        slack.publish(report)
    except Exception as e:
        logger.warning("Slack publish failed: %s", e, exc_info=True)


def build_orchestrator(
    settings: Settings | None = None,
    service_url: str | None = None,
    audit: AuditStore | None = None,
    channel: NotificationChannel | None = None,
) -> InvestigationOrchestrator:
    """
    Wire the default collaborators.

    Reasoning uses Bedrock when reasoning_use_bedrock is set, otherwise the
    deterministic stub. Actions go to Lambda when use_aws_integration is set,
    otherwise to the demo service's executor.
    """
    settings = settings or get_settings()
    url = service_url or settings.service_url
    executor = LambdaExecutor() if settings.use_aws_integration else DemoExecutor(url)
    return InvestigationOrchestrator(
        ReasoningAgent(use_bedrock=settings.reasoning_use_bedrock),
        executor,
        traffic_probe=TrafficProbe(
            url,
            request_count=settings.traffic_request_count,
            timeout_seconds=settings.traffic_request_timeout_seconds,
        ),
        status_probe=HttpStatusProbe(url),
        signal_source=HttpSignalSource(url),
        log_parser=TextLogParser(),
        event_stream=JsonEventStream(),
        audit=audit if audit is not None else AuditStore(data_dir=settings.audit_data_dir or None),
        rollback_advisor=RollbackAdvisor(
            max_auto_rollbacks_per_incident=settings.max_auto_rollbacks_per_incident,
            cooldown_seconds=settings.rollback_advisor_cooldown_seconds,
        ),
        cooldowns=get_cooldown_manager(),
        channel=channel,
        settings=settings,
    )


def run_once(
    namespace: str = "checkout",
    service_url: str | None = None,
    deployment: str | None = None,
    demo: bool = False,
) -> bool:
    """
    Investigate one simulated incident to DONE or FAILED and publish the post-mortem.

    With demo=True the incident id is deterministic (inc-demo0001).
    Returns True if the investigation resolved the incident.
    """
    settings = get_settings()
    url = service_url or settings.service_url
    audit = AuditStore(data_dir=settings.audit_data_dir or None)
    orchestrator = build_orchestrator(settings, service_url=url, audit=audit)
    slack = SlackReporter(bot_token=settings.slack_bot_token, channel_id=settings.slack_channel_id)

    stream = get_incident_stream(
        namespace=namespace,
        service_url=url,
        deployment=deployment,
        incident_id=DEMO_INCIDENT_ID if demo else None,
    )
    incident = next(stream, None)
    if not incident:
        logger.warning("No incident received")
        return False

    try:
        context = orchestrator.investigate(incident)
    except Exception as e:
        logger.error("Investigation aborted: %s", e, extra={"incident_id": incident.id}, exc_info=True)
        context = orchestrator.context
    if context is None:
        return False

    _publish_report(slack, build_post_mortem(context, audit))
    logger.info(
        "Investigation finished",
        extra={"incident_id": incident.id, "phase": context.incident.phase.value, "actions": len(context.actions)},
    )
    return context.incident.phase == Phase.DONE


def run_demo(service_url: str | None = None) -> bool:
    """
    Deterministic demo scenario: inject a fault into the dashboard service
    and let the loop find and clear it. Returns True if the incident resolved.
    """
    url = (service_url or get_settings().service_url).rstrip("/")
    print("oodasre demo: checkout /users is failing")
    try:
        with httpx.Client(timeout=2.0) as client:
            client.post(url + "/bugs/inject", json={"bug": DEMO_BUG}).raise_for_status()
    except Exception as e:
        print(f"Demo service not reachable at {url} ({e}). Start it with: python dashboard/app.py")
        return False

    print("Running investigation...")
    ok = run_once(namespace="checkout", service_url=url, demo=True)
    print()
    print("Result: resolved." if ok else "Result: failed.")
    return ok
