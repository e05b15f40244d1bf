"""Reasoning agent (Nova) for frame analysis, log correlation and hypotheses via Bedrock Converse API."""

import json
import logging
import re
from collections import Counter
from typing import Any

from oodasre.config import get_settings
from oodasre.models import (
    ClusterEventContent,
    DeploymentContent,
    Evidence,
    Frame,
    FrameAnalysis,
    Hypothesis,
    HypothesisDraft,
    HypothesisGeneration,
    LogErrorContent,
    LogPattern,
    LogPatternAnalysis,
    MetricContent,
    new_id,
)
from oodasre.reasoning_agent.prompts import (
    FRAME_SYSTEM_PROMPT,
    HYPOTHESIS_SYSTEM_PROMPT,
    LOG_SYSTEM_PROMPT,
    build_frame_prompt,
    build_hypothesis_prompt,
    build_log_prompt,
)

logger = logging.getLogger(__name__)

MAX_OUTPUT_TOKENS = 2048
MAX_LOG_PATTERNS = 10
_VARIABLE_PARTS = re.compile(r"\b(?:0x[0-9a-f]+|[0-9a-f]{8,}|\d+(?:\.\d+)?)\b", re.IGNORECASE)


def _parse_json_object(text: str) -> dict | None:
    """Extract one JSON object from model output. Returns None on failure."""
    if not text or not text.strip():
        return None
    # Strip optional markdown code block
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```(?:json)?\s*", "", cleaned)
        cleaned = re.sub(r"\s*```\s*$", "", cleaned)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _clamp(value: Any) -> float:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return 0.0


def _parse_hypotheses(text: str) -> list[HypothesisDraft] | None:
    data = _parse_json_object(text)
    if data is None or not isinstance(data.get("hypotheses"), list):
        return None
    drafts: list[HypothesisDraft] = []
    for item in data["hypotheses"]:
        if not isinstance(item, dict):
            continue
        root_cause = item.get("root_cause")
        if not root_cause or not isinstance(root_cause, str):
            continue
        drafts.append(
            HypothesisDraft(
                root_cause=root_cause,
                confidence=_clamp(item.get("confidence", 0.0)),
                suggested_action=str(item.get("suggested_action") or "").strip().lower(),
                reasoning=str(item.get("reasoning") or ""),
                evidence_ids=[str(i) for i in (item.get("evidence_ids") or [])],
            )
        )
    return drafts


def _get_bedrock_client():
    """Create Bedrock Runtime client with configured timeout and region."""
    import boto3
    from botocore.config import Config

    settings = get_settings()
    config = Config(read_timeout=settings.bedrock_read_timeout_seconds)
    kwargs = {"region_name": settings.aws_region, "config": config}
    if settings.aws_access_key_id and settings.aws_secret_access_key:
        kwargs["aws_access_key_id"] = settings.aws_access_key_id
        kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
    return boto3.client("bedrock-runtime", **kwargs)


def _extract_text_from_converse_response(response: dict[str, Any]) -> str:
    """Extract concatenated text from Bedrock Converse response (output.message.content)."""
    parts = []
    try:
        output = response.get("output") or {}
        message = output.get("message") or {}
        content = message.get("content") or []
        for block in content:
            if block.get("text"):
                parts.append(block["text"])
    except (AttributeError, TypeError):
        pass
    return "".join(parts)


def _reasoning_token(response: dict[str, Any]) -> str:
    """Continuation handle for the next reasoning call: the Bedrock request id when present."""
    request_id = (response.get("ResponseMetadata") or {}).get("RequestId")
    return f"rt-{request_id}" if request_id else new_id("rt")


def normalize_log_line(line: str) -> str:
    """Replace numbers, hex ids and hashes so repeated messages collapse to one pattern."""
    return _VARIABLE_PARTS.sub("<n>", line.strip())


class ReasoningAgent:
    """
    Reasoning collaborator backed by Amazon Nova via Bedrock Converse API.

    Produces frame analyses, log patterns and ranked hypotheses. Bedrock and
    parse failures become an unsuccessful HypothesisGeneration (or an empty
    analysis) so the orchestrator decides how to proceed. With
    use_bedrock=False every call is deterministic and evidence-driven.
    """

    def __init__(
        self,
        model_id: str | None = None,
        use_bedrock: bool = True,
    ) -> None:
        """
        Args:
            model_id: Bedrock model ID (default from config).
            use_bedrock: If False, use stub behavior for tests/demo without AWS.
        """
        self._model_id = model_id or get_settings().nova_model_id
        self._use_bedrock = use_bedrock

    def _converse(self, system: str, content: list[dict], max_tokens: int = MAX_OUTPUT_TOKENS) -> dict[str, Any]:
        client = _get_bedrock_client()
        return client.converse(
            modelId=self._model_id,
            messages=[{"role": "user", "content": content}],
            system=[{"text": system}],
            inferenceConfig={
                "maxTokens": max_tokens,
                "temperature": 0.2,
            },
        )

    # --- Observe ----------------------------------------------------------------

    def analyze_frames(self, incident_id: str, frames: list[Frame], context: str | None = None) -> FrameAnalysis:
        if not self._use_bedrock:
            return FrameAnalysis()
        content: list[dict] = [{"text": build_frame_prompt(incident_id, len(frames), context)}]
        for frame in frames:
            fmt = frame.mime_type.split("/")[-1] or "png"
            content.append({"image": {"format": fmt, "source": {"bytes": frame.data}}})
        try:
            response = self._converse(FRAME_SYSTEM_PROMPT, content)
            data = _parse_json_object(_extract_text_from_converse_response(response))
            if data is not None:
                analysis = FrameAnalysis.model_validate(
                    {
                        "anomalies": data.get("anomalies") or [],
                        "metrics": data.get("metrics") or [],
                        "dashboard_state": data.get("dashboard_state"),
                        "reasoning_token": _reasoning_token(response),
                    }
                )
                logger.info(
                    "Frame analysis complete",
                    extra={"incident_id": incident_id, "anomalies": len(analysis.anomalies)},
                )
                return analysis
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Bedrock frame analysis failed",
                extra={"incident_id": incident_id, "error": str(e)},
                exc_info=True,
            )
        return FrameAnalysis()

    # --- Orient -----------------------------------------------------------------

    def analyze_logs(
        self,
        incident_id: str,
        logs: list[str],
        reasoning_token: str | None = None,
        correlation_summary: list[str] | None = None,
    ) -> LogPatternAnalysis:
        if not self._use_bedrock:
            return self._stub_log_patterns(logs)
        try:
            response = self._converse(
                LOG_SYSTEM_PROMPT,
                [{"text": build_log_prompt(incident_id, logs, correlation_summary)}],
            )
            data = _parse_json_object(_extract_text_from_converse_response(response))
            if data is not None:
                return LogPatternAnalysis.model_validate({"patterns": data.get("patterns") or []})
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Bedrock log analysis failed",
                extra={"incident_id": incident_id, "error": str(e)},
                exc_info=True,
            )
        return LogPatternAnalysis()

    def _stub_log_patterns(self, logs: list[str]) -> LogPatternAnalysis:
        counts = Counter(normalize_log_line(line) for line in logs if line.strip())
        return LogPatternAnalysis(
            patterns=[
                LogPattern(pattern=p, count=c, significance="recurring" if c > 1 else "single occurrence")
                for p, c in counts.most_common(MAX_LOG_PATTERNS)
            ]
        )

    # --- Decide -----------------------------------------------------------------

    def generate_hypotheses(
        self,
        incident_id: str,
        evidence: list[Evidence],
        prior_hypotheses: list[Hypothesis],
        reasoning_token: str | None,
        budget: int,
        allowed_actions: list[str],
        correlation_summary: list[str] | None = None,
    ) -> HypothesisGeneration:
        """Ranked hypotheses for the evidence; budget bounds the model's output tokens."""
        if not self._use_bedrock:
            return self._stub_hypotheses(evidence, prior_hypotheses, reasoning_token, allowed_actions)
        try:
            response = self._converse(
                HYPOTHESIS_SYSTEM_PROMPT,
                [
                    {
                        "text": build_hypothesis_prompt(
                            incident_id, evidence, prior_hypotheses, allowed_actions, correlation_summary
                        )
                    }
                ],
                max_tokens=max(MAX_OUTPUT_TOKENS, budget),
            )
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Bedrock hypothesis generation failed",
                extra={"incident_id": incident_id, "error": str(e)},
                exc_info=True,
            )
            return HypothesisGeneration(success=False, error=str(e))

        drafts = _parse_hypotheses(_extract_text_from_converse_response(response))
        if not drafts:
            return HypothesisGeneration(success=False, error="Model returned no parseable hypotheses")
        logger.info(
            "Reasoning agent produced hypotheses",
            extra={
                "incident_id": incident_id,
                "count": len(drafts),
                "top_confidence": drafts[0].confidence,
                "budget": budget,
            },
        )
        return HypothesisGeneration(success=True, hypotheses=drafts, reasoning_token=_reasoning_token(response))

    def _stub_hypotheses(
        self,
        evidence: list[Evidence],
        prior_hypotheses: list[Hypothesis],
        reasoning_token: str | None,
        allowed_actions: list[str],
    ) -> HypothesisGeneration:
        """Deterministic stub for demo or when use_bedrock=False."""
        deployments = [e for e in evidence if isinstance(e.content, DeploymentContent)]
        errors = [e for e in evidence if isinstance(e.content, LogErrorContent)]
        metrics = [e for e in evidence if isinstance(e.content, MetricContent)]
        events = [e for e in evidence if isinstance(e.content, ClusterEventContent)]
        tried = {h.suggested_action for h in prior_hypotheses}

        drafts: list[HypothesisDraft] = []
        if deployments:
            d = deployments[-1]
            drafts.append(
                HypothesisDraft(
                    root_cause=f"Regression introduced by recent deployment of {d.content.deployment}",
                    confidence=0.8,
                    suggested_action="rollback",
                    reasoning="Errors started after the preceding deployment.",
                    evidence_ids=[d.id],
                )
            )
        if errors:
            top = max(errors, key=lambda e: e.content.occurrences)
            drafts.append(
                HypothesisDraft(
                    root_cause=f"Application fault: {top.content.message}",
                    confidence=0.75,
                    suggested_action="restart",
                    reasoning=f"Error repeated {top.content.occurrences} times in recent logs.",
                    evidence_ids=[e.id for e in errors],
                )
            )
        if metrics:
            drafts.append(
                HypothesisDraft(
                    root_cause=f"Resource saturation ({', '.join(m.content.name for m in metrics)})",
                    confidence=0.6,
                    suggested_action="scale",
                    reasoning="Metrics deviate from their baseline.",
                    evidence_ids=[m.id for m in metrics],
                )
            )
        if events and not drafts:
            drafts.append(
                HypothesisDraft(
                    root_cause=events[0].content.description,
                    confidence=0.55,
                    suggested_action="restart",
                    evidence_ids=[events[0].id],
                )
            )
        if not drafts:
            drafts.append(
                HypothesisDraft(
                    root_cause="Service degradation of unknown origin",
                    confidence=0.4,
                    suggested_action="restart",
                    reasoning="No specific evidence; restart is the least invasive action.",
                )
            )

        allowed = set(allowed_actions)
        drafts = [d for d in drafts if d.suggested_action in allowed] or drafts
        # Prefer actions not already tried in earlier cycles
        drafts.sort(key=lambda d: (d.suggested_action in tried, -d.confidence))
        return HypothesisGeneration(success=True, hypotheses=drafts, reasoning_token=reasoning_token or new_id("rt"))
