"""
Reasoning collaborator using Amazon Nova.

Analyzes dashboard frames, correlates log lines and produces ranked
root-cause hypotheses with a suggested action.
"""

from oodasre.reasoning_agent.agent import ReasoningAgent

__all__ = ["ReasoningAgent"]
