"""
Incident detection and demo signal sources.

Produces Incidents (simulated) and reads logs and events from the target
service for runs without a cluster.
"""

from oodasre.incident_detection.signals import DemoExecutor, HttpSignalSource, JsonEventStream, TextLogParser
from oodasre.incident_detection.simulator import DEMO_INCIDENT_ID, get_incident_stream

__all__ = [
    "DEMO_INCIDENT_ID",
    "DemoExecutor",
    "HttpSignalSource",
    "JsonEventStream",
    "TextLogParser",
    "get_incident_stream",
]
