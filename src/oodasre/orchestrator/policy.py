"""Decide/Act policy helpers: reasoning budget, pattern boost, confirmation, action type."""

from __future__ import annotations

from enum import IntEnum

from oodasre.models import (
    ActionTarget,
    ActionType,
    Evidence,
    Hypothesis,
    HypothesisStatus,
    Incident,
    PatternMatch,
)

LOW_CONFIDENCE = 0.5
MEDIUM_CONFIDENCE = 0.7
MAX_PATTERN_BOOST = 0.15
PATTERN_BOOST_FACTOR = 0.2


class ReasoningBudget(IntEnum):
    """Reasoning token budget handed to hypothesis generation."""

    LOW = 1024
    MEDIUM = 8192
    HIGH = 24576


def reasoning_budget(evidence: list[Evidence]) -> ReasoningBudget:
    """Weak or missing evidence gets the deepest analysis; strong evidence the shallowest."""
    scores = [e.confidence for e in evidence if e.confidence is not None and e.confidence > 0]
    if not scores:
        return ReasoningBudget.HIGH
    average = sum(scores) / len(scores)
    if average < LOW_CONFIDENCE:
        return ReasoningBudget.HIGH
    if average < MEDIUM_CONFIDENCE:
        return ReasoningBudget.MEDIUM
    return ReasoningBudget.LOW


def pattern_signals(evidence: list[Evidence], incident: Incident) -> list[str]:
    signals = [incident.title]
    signals.extend(e.description for e in evidence)
    return [s for s in signals if s]


def _pattern_aligned(hypothesis: Hypothesis, pattern: PatternMatch) -> bool:
    action = hypothesis.suggested_action.lower()
    if action:
        for recommended in pattern.recommended_actions:
            rec = recommended.lower()
            if rec and (rec in action or action in rec):
                return True
    cause = hypothesis.root_cause.lower()
    return any(cond and cond.lower() in cause for cond in pattern.trigger_conditions)


def apply_pattern_boost(hypothesis: Hypothesis, patterns: list[PatternMatch]) -> float:
    """Raise confidence for the first aligned pattern; returns the boost applied."""
    for pattern in patterns:
        if _pattern_aligned(hypothesis, pattern):
            boost = min(MAX_PATTERN_BOOST, pattern.score * PATTERN_BOOST_FACTOR)
            before = hypothesis.confidence
            hypothesis.confidence = min(1.0, before + boost)
            return hypothesis.confidence - before
    return 0.0


def confirm_hypotheses(hypotheses: list[Hypothesis], threshold: float) -> Hypothesis | None:
    """
    Mark exactly one hypothesis confirmed: the first at or above threshold,
    otherwise the highest-confidence one. Every other is left proposed.
    """
    if not hypotheses:
        return None
    chosen = next((h for h in hypotheses if h.confidence >= threshold), None)
    if chosen is None:
        chosen = max(hypotheses, key=lambda h: h.confidence)
    for h in hypotheses:
        h.status = HypothesisStatus.CONFIRMED if h is chosen else HypothesisStatus.PROPOSED
    return chosen


def determine_action_type(suggested_action: str) -> ActionType:
    text = (suggested_action or "").lower()
    if "code_fix" in text or "code fix" in text or "fix code" in text:
        return ActionType.CODE_FIX
    if "rollback" in text or "roll back" in text or "undo" in text:
        return ActionType.ROLLBACK
    if "restart" in text or "reboot" in text:
        return ActionType.RESTART
    if "scale" in text:
        return ActionType.SCALE
    return ActionType.ROLLBACK


def resolve_target(incident: Incident) -> ActionTarget:
    if incident.target_deployment:
        deployment = incident.target_deployment
    elif incident.namespace and incident.namespace != "default":
        deployment = f"{incident.namespace}-app"
    else:
        deployment = "app"
    return ActionTarget(namespace=incident.namespace or "default", deployment=deployment)
