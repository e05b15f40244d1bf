"""Simulated incident source for demo and development."""

from oodasre.models import Incident, Severity, utcnow

DEMO_INCIDENT_ID = "inc-demo0001"


def get_incident_stream(
    namespace: str = "checkout",
    service_url: str | None = None,
    deployment: str | None = None,
    incident_id: str | None = None,
):
    """
    Yield simulated incidents (generator).

    For demo: namespace="checkout" and incident_id=DEMO_INCIDENT_ID for a
    deterministic flow against the dashboard service.
    """
    kwargs = {"id": incident_id} if incident_id else {}
    yield Incident(
        title=f"{namespace} error rate above 5% threshold",
        severity=Severity.HIGH,
        namespace=namespace,
        target_deployment=deployment or namespace,
        service_url=service_url,
        started_at=utcnow(),
        **kwargs,
    )
