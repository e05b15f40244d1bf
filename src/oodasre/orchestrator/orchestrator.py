"""
Investigation orchestrator: drives one incident through the OODA phases.

  OBSERVING -> ORIENTING -> DECIDING -> ACTING -> VERIFYING -> DONE
                                                      |
                                                      +-> OBSERVING (retry) / FAILED
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from oodasre.collaborators import call_with_timeout
from oodasre.config import Settings, get_settings
from oodasre.exceptions import InvalidTransitionError
from oodasre.models import (
    Action,
    ActionStatus,
    ActionTarget,
    ActionType,
    Evidence,
    EvidenceType,
    FixTriggerResult,
    Hypothesis,
    HypothesisStatus,
    Incident,
    InvestigationContext,
    Phase,
    TimelineEntry,
    VerificationRecord,
    VerificationVerdict,
    build_action_request,
)
from oodasre.notifications import NotificationChannel, NotificationKind
from oodasre.orchestrator import evidence as evidence_builder
from oodasre.orchestrator.fix_trigger import CodeFixTrigger
from oodasre.orchestrator.policy import (
    apply_pattern_boost,
    confirm_hypotheses,
    determine_action_type,
    pattern_signals,
    reasoning_budget,
    resolve_target,
)
from oodasre.remediation.cooldown import CooldownManager, get_cooldown_manager
from oodasre.remediation.escalation import EscalatingRemediationEngine
from oodasre.state_machine import OODAStateMachine
from oodasre.verification.engine import VerificationEngine
from oodasre.verification.status import HttpStatusProbe
from oodasre.verification.traffic import TrafficProbe

logger = logging.getLogger(__name__)

FRAMES_PER_OBSERVATION = 5
METRIC_WINDOW_SECONDS = 300.0
PATTERN_MIN_SCORE = 0.3
PATTERN_MAX_RESULTS = 5
PATTERN_TYPES = ["diagnostic", "resolution"]


class InvestigationOrchestrator:
    """
    Coordinates the state machine, collaborators, escalation and verification
    for one incident at a time.

    Collaborator failures inside a phase are logged and treated as missing
    data. Only phase-level failures (hypothesis generation, action cap,
    exhausted escalation, retry bound, unexpected phase errors) move the
    investigation to FAILED, always with a failure reason.
    """

    def __init__(
        self,
        reasoning,
        executor,
        *,
        traffic_probe: TrafficProbe | None = None,
        status_probe=None,
        frame_source=None,
        signal_source=None,
        log_parser=None,
        metric_processor=None,
        event_stream=None,
        fix_cycle=None,
        knowledge_base=None,
        audit=None,
        rollback_advisor=None,
        cooldowns: CooldownManager | None = None,
        channel: NotificationChannel | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._reasoning = reasoning
        self._executor = executor
        self._status_probe = status_probe
        self._frame_source = frame_source
        self._signal_source = signal_source
        self._log_parser = log_parser
        self._metric_processor = metric_processor
        self._event_stream = event_stream
        self._fix_cycle = fix_cycle
        self._knowledge_base = knowledge_base
        self._audit = audit
        self._rollback_advisor = rollback_advisor
        self._channel = channel or NotificationChannel()
        self._cooldowns = cooldowns or get_cooldown_manager()
        self._traffic = traffic_probe or TrafficProbe(
            request_count=self._settings.traffic_request_count,
            timeout_seconds=self._settings.traffic_request_timeout_seconds,
        )
        self._machine = OODAStateMachine(self._channel, self._settings.max_verification_retries)
        self._escalation = EscalatingRemediationEngine(
            executor,
            self._traffic,
            status_probe=status_probe,
            cooldowns=self._cooldowns,
            channel=self._channel,
            settings=self._settings,
        )
        self._verification = VerificationEngine(
            self._traffic,
            status_probe=status_probe,
            frame_source=frame_source,
            reasoning=reasoning,
            fix_cycle=fix_cycle,
            settings=self._settings,
        )
        self._fix_trigger = CodeFixTrigger(fix_cycle, self._cooldowns, self._settings)
        self._stop_requested = threading.Event()
        self._handlers: dict[Phase, Callable[[InvestigationContext], None]] = {
            Phase.OBSERVING: self._observe,
            Phase.ORIENTING: self._orient,
            Phase.DECIDING: self._decide,
            Phase.ACTING: self._act,
            Phase.VERIFYING: self._verify,
        }

    @property
    def machine(self) -> OODAStateMachine:
        return self._machine

    @property
    def channel(self) -> NotificationChannel:
        return self._channel

    @property
    def context(self) -> InvestigationContext | None:
        return self._machine.context

    # --- Entry points -----------------------------------------------------------

    def investigate(self, incident: Incident) -> InvestigationContext | None:
        """Run a new investigation to DONE or FAILED (or until stop()); returns its context."""
        self._stop_requested.clear()
        self._bind_service_url(incident.service_url)
        self._machine.start(incident)
        self._timeline(incident.id, "investigation_started", f"Investigation started: {incident.title}")
        return self._run()

    def resume(self, incident: Incident, phase: Phase, retry_count: int = 0) -> InvestigationContext | None:
        """Continue an investigation interrupted by a restart at phase."""
        self._stop_requested.clear()
        self._bind_service_url(incident.service_url)
        self._machine.resume(incident, phase, retry_count)
        self._timeline(
            incident.id,
            "investigation_resumed",
            f"Investigation resumed at {phase.value} (retry {retry_count})",
        )
        return self._run()

    def stop(self) -> None:
        """Request cancellation; the loop stops after the current phase and resets the machine."""
        self._stop_requested.set()

    def _run(self) -> InvestigationContext | None:
        context = self._machine.context
        while self._machine.is_active():
            if self._stop_requested.is_set():
                discarded = self._machine.reset()
                if discarded is not None:
                    self._timeline(
                        discarded.incident.id,
                        "investigation_stopped",
                        f"Investigation stopped during {discarded.incident.phase.value}",
                    )
                return discarded
            phase = self._machine.phase
            incident_id = context.incident.id
            self._timeline(incident_id, "phase_started", f"{phase.value} started")
            phase_start = time.monotonic()
            try:
                self._handlers[phase](context)
            except InvalidTransitionError:
                raise
            except Exception as e:
                logger.error(
                    "Phase %s raised: %s", phase.value, e, extra={"incident_id": incident_id}, exc_info=True
                )
                if self._machine.is_active():
                    self._fail(f"{phase.value.title()} phase error: {e}")
            self._timeline(
                incident_id,
                "phase_completed",
                f"{phase.value} completed -> {self._machine.phase.value}",
                duration_seconds=round(time.monotonic() - phase_start, 3),
            )
        return context

    # --- Observe ----------------------------------------------------------------

    def _observe(self, context: InvestigationContext) -> None:
        incident = context.incident
        target = resolve_target(incident)
        self._collect_frame_evidence(context, target)

        tasks: list[tuple[str, Callable[[], list[Evidence]]]] = [
            ("logs", lambda: self._collect_logs(incident, target)),
            ("metrics", lambda: self._collect_metrics(incident, target)),
            ("events", lambda: self._collect_events(context, target)),
        ]
        # All-settled: every source runs to completion; a failure only loses that source
        with ThreadPoolExecutor(max_workers=len(tasks), thread_name_prefix="observe") as pool:
            futures = [(name, pool.submit(fn)) for name, fn in tasks]
            for name, future in futures:
                try:
                    items = future.result()
                except Exception as e:
                    logger.warning(
                        "Evidence source %s failed: %s", name, e, extra={"incident_id": incident.id}, exc_info=True
                    )
                    continue
                for item in items:
                    self._add_evidence(item)

        logger.info(
            "Observation complete",
            extra={"incident_id": incident.id, "evidence_count": len(context.evidence)},
        )
        self._machine.transition(Phase.ORIENTING)

    def _collect_frame_evidence(self, context: InvestigationContext, target: ActionTarget) -> None:
        if self._frame_source is None:
            return
        incident = context.incident
        try:
            frames = self._call(
                "frame_source.get_recent_frames",
                self._frame_source.get_recent_frames,
                target.deployment,
                FRAMES_PER_OBSERVATION,
            )
            if not frames:
                logger.info("No frames available", extra={"incident_id": incident.id})
                return
            analysis = self._call(
                "reasoning.analyze_frames",
                self._reasoning.analyze_frames,
                incident.id,
                frames,
                incident.title,
                timeout=self._settings.reasoning_timeout_seconds,
            )
        except Exception as e:
            logger.warning("Frame analysis failed: %s", e, extra={"incident_id": incident.id}, exc_info=True)
            return
        if analysis.reasoning_token:
            self._machine.set_reasoning_token(analysis.reasoning_token)
        for item in evidence_builder.from_frame_analysis(incident.id, analysis):
            self._add_evidence(item)

    def _collect_logs(self, incident: Incident, target: ActionTarget) -> list[Evidence]:
        if self._signal_source is None or self._log_parser is None:
            return []
        raw = self._call("signal_source.fetch_logs", self._signal_source.fetch_logs, target.namespace, target.deployment)
        if not raw:
            return []
        analysis = self._call("log_parser.analyze", self._log_parser.analyze, raw)
        return evidence_builder.from_log_analysis(incident.id, analysis, raw)

    def _collect_metrics(self, incident: Incident, target: ActionTarget) -> list[Evidence]:
        if self._metric_processor is None:
            return []
        metrics = self._call(
            "metric_processor.get_metrics",
            self._metric_processor.get_metrics,
            target.namespace,
            target.deployment,
            METRIC_WINDOW_SECONDS,
        )
        if not metrics:
            return []
        return evidence_builder.from_metrics(incident.id, metrics)

    def _collect_events(self, context: InvestigationContext, target: ActionTarget) -> list[Evidence]:
        if self._signal_source is None or self._event_stream is None:
            return []
        incident_id = context.incident.id
        raw = self._call("signal_source.fetch_events", self._signal_source.fetch_events, target.namespace)
        if not raw:
            return []
        events = self._call("event_stream.parse_events", self._event_stream.parse_events, raw)
        triggers = self._call(
            "event_stream.find_triggers", self._event_stream.find_triggers, events, context.started_at
        )
        out = evidence_builder.from_triggers(incident_id, triggers)
        deployment = self._call(
            "event_stream.find_preceding_deployment",
            self._event_stream.find_preceding_deployment,
            events,
            context.started_at,
        )
        if deployment is not None:
            out.append(evidence_builder.from_deployment(incident_id, deployment))
        return out

    # --- Orient -----------------------------------------------------------------

    def _orient(self, context: InvestigationContext) -> None:
        incident = context.incident
        summary = evidence_builder.correlation_summary(context.evidence)
        self._machine.set_correlation_summary(summary)

        log_lines = [e.description for e in context.evidence if e.type == EvidenceType.LOG]
        if log_lines:
            try:
                analysis = self._call(
                    "reasoning.analyze_logs",
                    self._reasoning.analyze_logs,
                    incident.id,
                    log_lines,
                    context.reasoning_token,
                    summary,
                    timeout=self._settings.reasoning_timeout_seconds,
                )
                for item in evidence_builder.from_log_patterns(incident.id, analysis):
                    self._add_evidence(item)
            except Exception as e:
                logger.warning("Log pattern analysis failed: %s", e, extra={"incident_id": incident.id}, exc_info=True)

        self._timeline(incident.id, "correlation", "; ".join(summary))
        self._machine.transition(Phase.DECIDING)

    # --- Decide -----------------------------------------------------------------

    def _decide(self, context: InvestigationContext) -> None:
        incident = context.incident
        patterns = self._match_patterns(context)
        budget = reasoning_budget(context.evidence)
        allowed = [t.value for t in self._settings.allowed_action_types]
        if self._fix_cycle is not None and ActionType.CODE_FIX.value not in allowed:
            allowed.append(ActionType.CODE_FIX.value)
        logger.info(
            "Generating hypotheses",
            extra={"incident_id": incident.id, "budget": int(budget), "patterns": [p.name for p in patterns]},
        )
        try:
            generation = self._call(
                "reasoning.generate_hypotheses",
                self._reasoning.generate_hypotheses,
                incident.id,
                list(context.evidence),
                list(context.hypotheses),
                context.reasoning_token,
                int(budget),
                allowed,
                list(context.correlation_summary),
                timeout=self._settings.reasoning_timeout_seconds,
            )
        except Exception as e:
            logger.warning("Hypothesis generation raised: %s", e, extra={"incident_id": incident.id}, exc_info=True)
            self._fail(f"Hypothesis generation failed: {e}")
            return
        if not generation.success or not generation.hypotheses:
            self._fail(f"Hypothesis generation failed: {generation.error or 'no hypotheses returned'}")
            return

        drafted: list[Hypothesis] = []
        for draft in generation.hypotheses:
            hypothesis = Hypothesis(
                incident_id=incident.id,
                root_cause=draft.root_cause,
                confidence=draft.confidence,
                suggested_action=draft.suggested_action,
                action_type=determine_action_type(draft.suggested_action),
                evidence_ids=list(draft.evidence_ids),
                reasoning=draft.reasoning,
            )
            boost = apply_pattern_boost(hypothesis, patterns)
            if boost:
                logger.info(
                    "Hypothesis boosted by known pattern",
                    extra={"incident_id": incident.id, "hypothesis_id": hypothesis.id, "boost": round(boost, 3)},
                )
            drafted.append(hypothesis)

        chosen = confirm_hypotheses(drafted, self._settings.confidence_threshold)
        # Earlier cycles' choices are superseded, not removed
        for previous in context.hypotheses:
            if previous.status == HypothesisStatus.CONFIRMED:
                previous.status = HypothesisStatus.PROPOSED
        for hypothesis in drafted:
            self._machine.add_hypothesis(hypothesis)
            self._audit_call("record_hypothesis", hypothesis)
        self._machine.set_reasoning_token(generation.reasoning_token or context.reasoning_token)

        self._timeline(
            incident.id,
            "hypothesis_confirmed",
            f"Confirmed: {chosen.root_cause} ({chosen.confidence * 100:.0f}%, action: {chosen.suggested_action or chosen.action_type.value})",
            hypothesis_id=chosen.id,
        )
        self._machine.transition(Phase.ACTING)

    def _match_patterns(self, context: InvestigationContext) -> list:
        if self._knowledge_base is None:
            return []
        try:
            return self._call(
                "knowledge_base.find_matching_patterns",
                self._knowledge_base.find_matching_patterns,
                pattern_signals(context.evidence, context.incident),
                min_score=PATTERN_MIN_SCORE,
                max_results=PATTERN_MAX_RESULTS,
                types=PATTERN_TYPES,
            ) or []
        except Exception as e:
            logger.warning("Knowledge base lookup failed: %s", e, extra={"incident_id": context.incident.id}, exc_info=True)
            return []

    # --- Act --------------------------------------------------------------------

    def _act(self, context: InvestigationContext) -> None:
        incident = context.incident
        max_actions = self._settings.max_actions_per_incident
        if len(context.actions) >= max_actions:
            self._fail(f"Maximum actions per incident reached ({len(context.actions)}/{max_actions})")
            return

        hypothesis = context.confirmed_hypothesis
        if hypothesis is None and context.hypotheses:
            hypothesis = max(context.hypotheses, key=lambda h: h.confidence)
            hypothesis.status = HypothesisStatus.CONFIRMED
        if hypothesis is None:
            self._fail("No hypothesis available to act on")
            return

        action_type = hypothesis.action_type or determine_action_type(hypothesis.suggested_action)
        target = resolve_target(incident)
        escalate = (
            self._settings.use_escalating_remediation
            or hypothesis.confidence < self._settings.escalation_confidence_threshold
        ) and action_type != ActionType.CODE_FIX

        if escalate:
            result = self._escalation.escalate(
                incident,
                hypothesis,
                target,
                self._settings.allowed_action_types,
                managed_app=self._is_managed(incident, target),
                fix_trigger=lambda h, t: self._trigger_code_fix(context, h, t),
                on_action=self._record_action,
                action_budget=max_actions - len(context.actions),
            )
            self._timeline(
                incident.id,
                "escalation",
                result.message,
                attempts=[a.model_dump(mode="json") for a in result.attempts],
                skipped=[s.model_dump(mode="json") for s in result.skipped],
            )
            if not result.success:
                self._fail(result.message)
                return
        else:
            self._execute_single(context, hypothesis, action_type, target)
        self._machine.transition(Phase.VERIFYING)

    def _execute_single(
        self,
        context: InvestigationContext,
        hypothesis: Hypothesis,
        action_type: ActionType,
        target: ActionTarget,
    ) -> None:
        action = Action(
            incident_id=context.incident.id,
            hypothesis_id=hypothesis.id,
            request=build_action_request(action_type, target, hypothesis.id),
        )
        if action_type == ActionType.CODE_FIX:
            self._record_action(action)
            fix = self._trigger_code_fix(context, hypothesis, target)
            # A requested fix stays executing until verification settles it
            self._update_action(action, ActionStatus.EXECUTING if fix.success else ActionStatus.FAILED, fix.message)
            return

        check = self._cooldowns.try_acquire(action_type, target)
        if not check.allowed:
            action.status = ActionStatus.FAILED
            action.result = f"Cooldown active: {check.reason}"
            self._record_action(action, dispatched=False)
            return

        self._record_action(action)
        try:
            outcome = self._call("executor.execute", self._executor.execute, action.request)
            status = ActionStatus.COMPLETED if outcome.success else ActionStatus.FAILED
            message = outcome.message
        except Exception as e:
            logger.warning("Action execution failed: %s", e, extra={"incident_id": context.incident.id}, exc_info=True)
            status, message = ActionStatus.FAILED, f"Error: {e}"
        self._update_action(action, status, message)

    def _trigger_code_fix(
        self, context: InvestigationContext, hypothesis: Hypothesis, target: ActionTarget
    ) -> FixTriggerResult:
        incident = context.incident
        result = self._fix_trigger.trigger(incident, hypothesis, list(context.evidence), target)
        if result.fix_id:
            self._machine.link_fix(result.fix_id)
        if result.service_url:
            incident.service_url = result.service_url
            self._bind_service_url(result.service_url)
        self._timeline(incident.id, "code_fix", result.message, fix_id=result.fix_id)
        return result

    def _is_managed(self, incident: Incident, target: ActionTarget) -> bool:
        if incident.managed_app:
            return True
        if self._fix_cycle is None:
            return False
        try:
            return bool(self._call("fix_cycle.find_cycle", self._fix_cycle.find_cycle, target.deployment))
        except Exception as e:
            logger.warning("Fix cycle lookup failed: %s", e, extra={"incident_id": incident.id}, exc_info=True)
            return False

    # --- Verify -----------------------------------------------------------------

    def _verify(self, context: InvestigationContext) -> None:
        incident = context.incident
        time.sleep(self._settings.verification_wait_seconds)
        target = resolve_target(incident)
        try:
            verdict = self._verification.verify(incident, target.deployment)
        except Exception as e:
            logger.warning("Verification raised: %s", e, extra={"incident_id": incident.id}, exc_info=True)
            verdict = VerificationVerdict(passed=False, details=f"Verification error: {e}", confidence=0.0)

        attempt = context.verification_retry_count + 1
        self._machine.set_verification_result(
            VerificationRecord(success=verdict.passed, details=verdict.details, attempt_number=attempt)
        )
        self._channel.emit(
            NotificationKind.VERIFICATION_COMPLETED,
            incident.id,
            passed=verdict.passed,
            details=verdict.details,
            attempt=attempt,
        )
        self._timeline(incident.id, "verification", verdict.details, passed=verdict.passed, attempt=attempt)

        last_action = context.last_action
        if last_action is not None and last_action.status == ActionStatus.EXECUTING:
            self._update_action(
                last_action,
                ActionStatus.COMPLETED if verdict.passed else ActionStatus.FAILED,
                f"{last_action.result} | verification: {verdict.details}".strip(" |"),
            )

        if verdict.passed:
            self._machine.transition(Phase.DONE)
            return

        if last_action is not None:
            self._advise_rollback(incident, last_action, verdict)

        retries = self._machine.increment_verification_retry()
        if retries >= context.max_verification_retries:
            self._fail(f"Verification failed after {retries} attempts. Last status: {verdict.details}")
            return
        logger.info(
            "Verification failed; observing again",
            extra={"incident_id": incident.id, "attempt": retries, "max_attempts": context.max_verification_retries},
        )
        self._machine.transition(Phase.OBSERVING)

    def _advise_rollback(self, incident: Incident, action: Action, verdict: VerificationVerdict) -> None:
        if self._rollback_advisor is None:
            return
        try:
            decision = self._call(
                "rollback_advisor.evaluate_rollback_need",
                self._rollback_advisor.evaluate_rollback_need,
                action,
                verdict,
                incident.id,
            )
        except Exception as e:
            logger.warning("Rollback evaluation failed: %s", e, extra={"incident_id": incident.id}, exc_info=True)
            return
        verb = "recommended" if decision.should_rollback else "not recommended"
        self._timeline(
            incident.id,
            "rollback_advice",
            f"Rollback {verb} ({decision.urgency.value}): {decision.reasoning}",
            decision=decision.model_dump(mode="json"),
        )

    # --- Helpers ----------------------------------------------------------------

    def _fail(self, reason: str) -> None:
        context = self._machine.context
        logger.warning("Investigation failed: %s", reason, extra={"incident_id": context.incident.id})
        self._machine.set_failure_reason(reason)
        self._machine.transition(Phase.FAILED)
        self._timeline(context.incident.id, "investigation_failed", reason)

    def _call(self, name: str, fn: Callable[..., Any], *args: Any, timeout: float | None = None, **kwargs: Any) -> Any:
        return call_with_timeout(
            name,
            fn,
            *args,
            timeout=self._settings.collaborator_timeout_seconds if timeout is None else timeout,
            **kwargs,
        )

    def _bind_service_url(self, url: str | None) -> None:
        if not url:
            return
        self._traffic.service_url = url
        if isinstance(self._status_probe, HttpStatusProbe):
            self._status_probe.service_url = url

    def _add_evidence(self, item: Evidence) -> None:
        self._machine.add_evidence(item)
        self._audit_call("record_evidence", item)

    def _record_action(self, action: Action, dispatched: bool = True) -> None:
        self._machine.add_action(action)
        self._audit_call("record_action", action)
        if dispatched and action.type == ActionType.ROLLBACK and self._rollback_advisor is not None:
            # Rollback limits and cooldown count from the moment a rollback is sent
            try:
                self._rollback_advisor.record_rollback(action.incident_id)
            except Exception as e:
                logger.warning("Recording rollback failed: %s", e, extra={"incident_id": action.incident_id}, exc_info=True)

    def _update_action(self, action: Action, status: ActionStatus, message: str) -> None:
        self._machine.update_action(action.id, status, message)
        self._audit_call("record_action", action)

    def _timeline(self, incident_id: str, kind: str, message: str, **data: Any) -> None:
        self._audit_call("record_timeline", TimelineEntry(incident_id=incident_id, kind=kind, message=message, data=data))

    def _audit_call(self, method: str, item: Any) -> None:
        if self._audit is None:
            return
        try:
            getattr(self._audit, method)(item)
        except Exception as e:
            logger.warning("Audit %s failed: %s", method, e, exc_info=True)
