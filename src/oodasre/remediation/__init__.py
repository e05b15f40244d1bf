"""
Remediation.

Escalating remediation engine, per-target cooldowns, the advisory rollback
evaluation and the Lambda execution collaborator.
"""

from oodasre.remediation.aws_executor import LambdaExecutor
from oodasre.remediation.cooldown import CooldownManager, get_cooldown_manager
from oodasre.remediation.escalation import EscalatingRemediationEngine, build_tier_order
from oodasre.remediation.rollback_advisor import RollbackAdvisor

__all__ = [
    "CooldownManager",
    "EscalatingRemediationEngine",
    "LambdaExecutor",
    "RollbackAdvisor",
    "build_tier_order",
    "get_cooldown_manager",
]
