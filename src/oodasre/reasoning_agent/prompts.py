"""Prompt templates for the reasoning agent (Nova) across Observe, Orient and Decide."""

FRAME_SYSTEM_PROMPT = """You are an expert Site Reliability Engineer reviewing screenshots of a service dashboard during an incident.
Describe what is visibly wrong.

You must respond with exactly one JSON object (no markdown, no code fence) with these keys:
- "anomalies": list of objects with "description" (string), "severity" ("critical", "high", "medium" or "low"), "confidence" (0 to 1), "location" (string, where on screen)
- "metrics": list of objects with "name" (string), "value" (number), "unit" (string) for any readable numbers
- "dashboard_state": object with "healthy" (boolean) and "description" (string), or null if unreadable
"""

HYPOTHESIS_SYSTEM_PROMPT = """You are an expert Site Reliability Engineer performing root cause analysis on a production incident.
Analyze the evidence and propose ranked root-cause hypotheses.

You must respond with exactly one JSON object (no markdown, no code fence) with this key:
- "hypotheses": list of objects, most likely first, each with:
  - "root_cause": string, one or two sentences
  - "confidence": number between 0 and 1
  - "suggested_action": one of the allowed actions listed in the request
  - "reasoning": string, brief explanation citing the evidence
  - "evidence_ids": list of evidence ids that support it

Action guidance:
- Bad or risky deployment, regression -> rollback
- Stuck process, leaked state, unresponsive service -> restart
- Overload, capacity issue -> scale
- Defect in application code that redeploying old code cannot fix -> code_fix
"""

LOG_SYSTEM_PROMPT = """You are an expert Site Reliability Engineer correlating log lines during an incident.
Group the lines into recurring patterns.

You must respond with exactly one JSON object (no markdown, no code fence) with this key:
- "patterns": list of objects with "pattern" (string, the recurring message with variable parts removed), "count" (integer), "significance" (string, why it matters for the incident)
"""


def build_frame_prompt(incident_id: str, frame_count: int, context: str | None) -> str:
    return f"""Analyze these {frame_count} dashboard frames and respond with only the JSON object.

Incident: {incident_id}
Context: {context or "(none)"}

Respond with a single JSON object with keys: anomalies, metrics, dashboard_state."""


def build_hypothesis_prompt(
    incident_id: str,
    evidence: list,
    prior_hypotheses: list,
    allowed_actions: list[str],
    correlation_summary: list[str] | None,
) -> str:
    """Build the user message for hypothesis generation."""
    evidence_lines = "\n".join(
        f"  - [{e.id}] ({e.type.value}, {e.source}) {e.description}"
        + (f" confidence={e.confidence:.2f}" if e.confidence is not None else "")
        for e in evidence
    )
    prior_lines = "\n".join(
        f"  - {h.root_cause} ({h.confidence:.2f}, action: {h.suggested_action or '?'})"
        for h in prior_hypotheses
    )
    summary_lines = "\n".join(f"  {line}" for line in (correlation_summary or []))
    return f"""Analyze this incident and respond with only the JSON object.

Incident: {incident_id}
Allowed actions: {", ".join(allowed_actions)}

Correlation summary:
{summary_lines or "  (none)"}

Evidence:
{evidence_lines or "  (none)"}

Earlier hypotheses that did not resolve the incident:
{prior_lines or "  (none)"}

Respond with a single JSON object with key: hypotheses."""


def build_log_prompt(incident_id: str, logs: list[str], correlation_summary: list[str] | None) -> str:
    lines = "\n".join(f"  {line}" for line in logs)
    summary_lines = "\n".join(f"  {line}" for line in (correlation_summary or []))
    return f"""Find recurring patterns in these log lines and respond with only the JSON object.

Incident: {incident_id}

Correlation summary:
{summary_lines or "  (none)"}

Log lines:
{lines or "  (none)"}

Respond with a single JSON object with key: patterns."""
