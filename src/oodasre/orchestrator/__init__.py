"""
Investigation orchestration.

Drives one incident through Observe, Orient, Decide, Act and Verify,
converting collaborator output to evidence and handing confirmed
hypotheses to remediation.
"""

from oodasre.orchestrator.fix_trigger import CodeFixTrigger, build_fix_prompt
from oodasre.orchestrator.orchestrator import InvestigationOrchestrator
from oodasre.orchestrator.policy import ReasoningBudget, reasoning_budget

__all__ = [
    "CodeFixTrigger",
    "InvestigationOrchestrator",
    "ReasoningBudget",
    "build_fix_prompt",
    "reasoning_budget",
]
