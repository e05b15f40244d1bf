"""
Phase state machine.

Single source of truth for an investigation's phase and its accumulated
evidence, hypotheses and actions.
"""

from oodasre.state_machine.machine import OODAStateMachine
from oodasre.state_machine.transitions import VALID_TRANSITIONS, can_transition, valid_targets

__all__ = ["OODAStateMachine", "VALID_TRANSITIONS", "can_transition", "valid_targets"]
