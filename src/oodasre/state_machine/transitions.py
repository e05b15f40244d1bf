"""Phase graph for the investigation loop."""

from oodasre.models import ACTIVE_PHASES, Phase

_TERMINAL = frozenset({Phase.DONE, Phase.FAILED})

VALID_TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.IDLE: frozenset({Phase.OBSERVING}),
    Phase.OBSERVING: frozenset({Phase.ORIENTING}) | _TERMINAL,
    Phase.ORIENTING: frozenset({Phase.DECIDING}) | _TERMINAL,
    Phase.DECIDING: frozenset({Phase.ACTING}) | _TERMINAL,
    Phase.ACTING: frozenset({Phase.VERIFYING}) | _TERMINAL,
    # Retry loop: fresh evidence after a failed verification
    Phase.VERIFYING: frozenset({Phase.OBSERVING}) | _TERMINAL,
    Phase.DONE: frozenset(),
    Phase.FAILED: frozenset(),
}

RESUMABLE_PHASES = frozenset(ACTIVE_PHASES | {Phase.IDLE})


def valid_targets(phase: Phase) -> list[Phase]:
    """Phases reachable from phase, in declaration order."""
    targets = VALID_TRANSITIONS.get(phase, frozenset())
    return [p for p in Phase if p in targets]


def can_transition(from_phase: Phase, to_phase: Phase) -> bool:
    return to_phase in VALID_TRANSITIONS.get(from_phase, frozenset())
