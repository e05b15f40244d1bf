"""Exceptions raised by the investigation core."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from oodasre.models import Phase


class OODAError(Exception):
    """Base exception for oodasre."""


class InvalidTransitionError(OODAError):
    """A phase transition outside the phase graph was requested."""

    def __init__(self, from_phase: Phase, to_phase: Phase, valid_targets: list[Phase]) -> None:
        self.from_phase = from_phase
        self.to_phase = to_phase
        self.valid_targets = valid_targets
        allowed = ", ".join(p.value for p in valid_targets) or "none"
        super().__init__(
            f"Invalid transition from {from_phase.value} to {to_phase.value} (valid: {allowed})"
        )


class InvestigationActiveError(OODAError):
    """start/resume was called while an investigation is still running."""


class NoActiveInvestigationError(OODAError):
    """A context mutator was called before start/resume."""


class CollaboratorTimeoutError(OODAError):
    """An external collaborator call exceeded its timeout."""

    def __init__(self, name: str, timeout: float) -> None:
        self.name = name
        self.timeout = timeout
        super().__init__(f"{name} timed out after {timeout:.0f}s")
