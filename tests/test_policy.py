"""Tests for Decide/Act policy helpers, evidence conversion and the code fix trigger."""

from unittest.mock import MagicMock, patch

from oodasre.config import Settings
from oodasre.models import (
    ActionTarget,
    ActionType,
    ClusterEvent,
    DeploymentChange,
    Evidence,
    EventTrigger,
    EvidenceType,
    FixCycleResult,
    FixRequestResult,
    Hypothesis,
    HypothesisStatus,
    Incident,
    LogErrorContent,
    MetricReading,
    RedeployResult,
)
from oodasre.orchestrator import CodeFixTrigger, ReasoningBudget, build_fix_prompt, reasoning_budget
from oodasre.orchestrator import evidence as evidence_builder
from oodasre.orchestrator.policy import confirm_hypotheses, determine_action_type, resolve_target
from oodasre.remediation.cooldown import CooldownManager

TARGET = ActionTarget(namespace="checkout", deployment="checkout")


def _evidence(confidence, message="boom"):
    return Evidence(
        incident_id="inc-1",
        type=EvidenceType.LOG,
        source="log_parser",
        content=LogErrorContent(message=message),
        confidence=confidence,
    )


def _hypothesis(confidence, action="restart"):
    return Hypothesis(incident_id="inc-1", root_cause=f"cause {confidence}", confidence=confidence, suggested_action=action)


def test_reasoning_budget_scales_inversely_with_evidence_strength():
    assert reasoning_budget([]) == ReasoningBudget.HIGH
    assert reasoning_budget([_evidence(0.3), _evidence(0.5)]) == ReasoningBudget.HIGH
    assert reasoning_budget([_evidence(0.6)]) == ReasoningBudget.MEDIUM
    assert reasoning_budget([_evidence(0.9), _evidence(0.8)]) == ReasoningBudget.LOW
    assert int(ReasoningBudget.HIGH) == 24576


def test_confirm_first_above_threshold():
    hypotheses = [_hypothesis(0.6), _hypothesis(0.72), _hypothesis(0.95)]
    chosen = confirm_hypotheses(hypotheses, 0.7)
    assert chosen is hypotheses[1]
    assert [h.status for h in hypotheses] == [
        HypothesisStatus.PROPOSED,
        HypothesisStatus.CONFIRMED,
        HypothesisStatus.PROPOSED,
    ]


def test_confirm_falls_back_to_highest_confidence():
    hypotheses = [_hypothesis(0.4), _hypothesis(0.55)]
    assert confirm_hypotheses(hypotheses, 0.7) is hypotheses[1]
    assert confirm_hypotheses([], 0.7) is None


def test_determine_action_type():
    assert determine_action_type("Roll back to v1.4.1") == ActionType.ROLLBACK
    assert determine_action_type("restart pods") == ActionType.RESTART
    assert determine_action_type("scale out to 5 replicas") == ActionType.SCALE
    assert determine_action_type("code_fix") == ActionType.CODE_FIX
    assert determine_action_type("investigate further") == ActionType.ROLLBACK


def test_resolve_target():
    assert resolve_target(Incident(title="t", namespace="checkout", target_deployment="api")).key == "checkout/api"
    assert resolve_target(Incident(title="t", namespace="payments")).deployment == "payments-app"
    assert resolve_target(Incident(title="t")).key == "default/app"


def test_metric_and_trigger_evidence_thresholds():
    metrics = {
        "cpu": MetricReading(current=95.0, average=40.0, trend="rising", anomaly_score=0.9),
        "memory": MetricReading(current=50.0, average=48.0, anomaly_score=0.1),
    }
    items = evidence_builder.from_metrics("inc-1", metrics)
    assert [e.content.name for e in items] == ["cpu"]

    triggers = [
        EventTrigger(event=ClusterEvent(type="FaultInjected", description="fault"), score=0.9),
        EventTrigger(event=ClusterEvent(type="Restarted", description="restart"), score=0.2),
    ]
    assert len(evidence_builder.from_triggers("inc-1", triggers)) == 1

    deployment = evidence_builder.from_deployment("inc-1", DeploymentChange(deployment="checkout", revision=7))
    assert deployment.confidence == 0.75


def test_build_fix_prompt_includes_diagnosis_and_logs():
    incident = Incident(title="checkout 500s", namespace="checkout")
    prompt = build_fix_prompt(incident, _hypothesis(0.8, "code_fix"), [_evidence(0.9, "NullPointer in /users")])
    assert "Root cause: cause 0.8" in prompt
    assert "Confidence: 80%" in prompt
    assert "NullPointer in /users" in prompt


def test_fix_trigger_without_cycle_requires_manual_fix():
    trigger = CodeFixTrigger(None, CooldownManager(), Settings())
    result = trigger.trigger(Incident(title="t"), _hypothesis(0.8), [], TARGET)
    assert result.success is False
    assert "Manual code fix required" in result.message


def test_fix_trigger_runs_full_cycle_and_redeploys():
    fix_cycle = MagicMock()
    fix_cycle.find_cycle.return_value = "cycle-1"
    fix_cycle.request_fix.return_value = FixRequestResult(fix_id="fix-9")
    fix_cycle.run_full_cycle.return_value = FixCycleResult(success=True, files_updated=["app/users.py"])
    fix_cycle.trigger_redeploy.return_value = RedeployResult(success=True, service_url="http://checkout-v2:3000")
    cooldowns = CooldownManager()
    trigger = CodeFixTrigger(fix_cycle, cooldowns, Settings(collaborator_timeout_seconds=0, fix_wait_timeout_seconds=0))

    result = trigger.trigger(Incident(id="inc-1", title="t"), _hypothesis(0.8), [], TARGET)

    assert result.success is True
    assert result.fix_id == "fix-9"
    assert result.service_url == "http://checkout-v2:3000"
    fix_cycle.link_incident.assert_called_once_with("fix-9", "inc-1")
    assert cooldowns.try_acquire(ActionType.CODE_FIX, TARGET).allowed is False


def test_fix_trigger_failed_cycle():
    fix_cycle = MagicMock()
    fix_cycle.find_cycle.return_value = "cycle-1"
    fix_cycle.request_fix.return_value = FixRequestResult(fix_id="fix-9")
    fix_cycle.run_full_cycle.return_value = FixCycleResult(success=False, message="tests failed")
    trigger = CodeFixTrigger(fix_cycle, CooldownManager(), Settings(collaborator_timeout_seconds=0, fix_wait_timeout_seconds=0))

    result = trigger.trigger(Incident(title="t"), _hypothesis(0.8), [], TARGET)

    assert result.success is False
    assert result.message == "Fix cycle fix-9 failed: tests failed"
    fix_cycle.trigger_redeploy.assert_not_called()


@patch("oodasre.orchestrator.fix_trigger.time.monotonic")
def test_fix_trigger_shares_one_wait_ceiling_across_cycle_and_redeploy(mock_monotonic):
    clock = [100.0]
    mock_monotonic.side_effect = lambda: clock[0]

    def slow_cycle(fix_id):
        # Finishes 31s into a 30s ceiling, leaving nothing for the redeploy
        clock[0] += 31
        return FixCycleResult(success=True, files_updated=["app/users.py"])

    fix_cycle = MagicMock()
    fix_cycle.find_cycle.return_value = "cycle-1"
    fix_cycle.request_fix.return_value = FixRequestResult(fix_id="fix-9")
    fix_cycle.run_full_cycle.side_effect = slow_cycle
    trigger = CodeFixTrigger(fix_cycle, CooldownManager(), Settings(collaborator_timeout_seconds=0, fix_wait_timeout_seconds=30))

    result = trigger.trigger(Incident(title="t"), _hypothesis(0.8), [], TARGET)

    assert result.success is False
    assert result.fix_id == "fix-9"
    assert "fix_cycle timed out after 30s" in result.message
    fix_cycle.run_full_cycle.assert_called_once_with("fix-9")
    fix_cycle.trigger_redeploy.assert_not_called()
