"""
Verification decision engine.

Combines the direct status probe, synthetic traffic, frame analysis and
pending code-evolution state into a pass/fail verdict with a reason.
"""

from oodasre.verification.decision import decide_verdict, evolution_verdict
from oodasre.verification.engine import VerificationEngine
from oodasre.verification.status import HttpStatusProbe
from oodasre.verification.traffic import TrafficProbe, quick_check

__all__ = [
    "HttpStatusProbe",
    "TrafficProbe",
    "VerificationEngine",
    "decide_verdict",
    "evolution_verdict",
    "quick_check",
]
