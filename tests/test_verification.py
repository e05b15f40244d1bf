"""Tests for verification: verdict rules, traffic probe, status probe and the engine."""

import time
from datetime import timedelta
from unittest.mock import MagicMock, patch

import httpx
import pytest

from oodasre.config import Settings
from oodasre.models import (
    DashboardState,
    FixStatus,
    FixStatusReport,
    FrameAnalysis,
    FrameCheck,
    Incident,
    StatusReport,
    TrafficMeasurement,
    utcnow,
)
from oodasre.verification import (
    HttpStatusProbe,
    TrafficProbe,
    VerificationEngine,
    decide_verdict,
    evolution_verdict,
    quick_check,
)
from oodasre.verification.decision import EvolutionOutcome


def _m(rate):
    return TrafficMeasurement(total=40, errors=int(rate * 40), error_rate=rate)


@pytest.fixture
def settings():
    return Settings(
        collaborator_timeout_seconds=0,
        reasoning_timeout_seconds=0,
        frame_verification_backoff_seconds=0,
        fix_poll_interval_seconds=0,
        rollout_wait_seconds=0,
    )


@pytest.fixture
def incident():
    return Incident(id="inc-1", title="checkout 500s", namespace="checkout")


# --- Verdict rules --------------------------------------------------------------


def test_traffic_above_threshold_fails():
    verdict = decide_verdict(None, 0.10, None)
    assert verdict.passed is False
    assert verdict.details == "Traffic verification failed (error rate: 10.0%, threshold: 5.0%)"


def test_traffic_below_threshold_passes():
    verdict = decide_verdict(None, 0.0, None)
    assert verdict.passed is True
    assert verdict.details == "Traffic verification passed (error rate: 0.0%)"
    assert verdict.confidence == 0.95


def test_active_faults_veto_traffic():
    status = StatusReport(healthy=False, active_faults=["users_500"])
    verdict = decide_verdict(status, 0.0, None)
    assert verdict.passed is False
    assert verdict.details == "Direct API unhealthy: bugs=users_500"


def test_frame_check_used_without_traffic():
    skipped = FrameCheck(passed=True, details="Verification skipped (no frame source)", skipped=True)
    verdict = decide_verdict(StatusReport(healthy=True), None, skipped)
    assert verdict.passed is True
    assert verdict.confidence == 0.3
    assert decide_verdict(None, None, None).details == "No verification signal available"


def test_evolution_verdicts():
    timed_out = evolution_verdict(
        EvolutionOutcome(fix_id="fix-1", status=FixStatus.REVIEW, timed_out=True, timeout_seconds=600)
    )
    assert timed_out.passed is False
    assert timed_out.details == "Evolution fix-1 pending - awaiting manual approval (timed out after 10 min)"

    rejected = evolution_verdict(EvolutionOutcome(fix_id="fix-1", status=FixStatus.REJECTED))
    assert rejected.details.startswith("Evolution rejected:")

    missing = evolution_verdict(EvolutionOutcome(fix_id="fix-1", status=None))
    assert missing.details.startswith("Evolution not_found:")

    ok = evolution_verdict(EvolutionOutcome(fix_id="fix-1", status=FixStatus.APPLIED, error_rate=0.0))
    assert ok.passed is True
    assert ok.details.startswith("Code evolution applied and verified")

    bad = evolution_verdict(EvolutionOutcome(fix_id="fix-1", status=FixStatus.APPLIED, error_rate=0.2))
    assert bad.passed is False
    assert bad.details.startswith("Code evolution applied but system still unhealthy")


# --- Traffic probe --------------------------------------------------------------


def _client_returning(status_for_path):
    mock_client = MagicMock()

    def get(url):
        r = MagicMock()
        r.status_code = status_for_path(url)
        return r

    mock_client.get.side_effect = get
    return mock_client


@patch("oodasre.verification.traffic.httpx.Client")
def test_traffic_probe_counts_non_2xx_as_errors(mock_client_class):
    mock_client_class.return_value.__enter__.return_value = _client_returning(
        lambda url: 500 if url.endswith("/users") else 200
    )
    probe = TrafficProbe(service_url="http://svc:3000", request_count=40)
    m = probe.measure()
    assert m.total == 40
    # /users is 3 of every 5 endpoints
    assert m.errors == 24
    assert m.error_rate == pytest.approx(0.6)
    assert probe.last_error_rate == pytest.approx(0.6)


@patch("oodasre.verification.traffic.httpx.Client")
def test_traffic_probe_counts_timeouts_as_errors(mock_client_class):
    mock_client = MagicMock()
    mock_client.get.side_effect = httpx.ReadTimeout("slow")
    mock_client_class.return_value.__enter__.return_value = mock_client
    m = TrafficProbe(service_url="http://svc:3000", request_count=10).measure()
    assert m.error_rate == 1.0


@patch("oodasre.verification.traffic.httpx.Client")
def test_traffic_probe_reuses_recent_measurement(mock_client_class):
    mock_client_class.return_value.__enter__.return_value = _client_returning(lambda url: 200)
    probe = TrafficProbe(service_url="http://svc:3000", request_count=5)
    first = probe.measure()
    assert probe.measure(reuse_within=60) is first
    mock_client_class.assert_called_once()


def test_traffic_probe_without_url_returns_none():
    assert TrafficProbe(service_url="").measure() is None


def test_quick_check():
    traffic = MagicMock()
    traffic.measure.return_value = _m(0.0)
    assert quick_check(traffic) is True

    status = MagicMock()
    status.get_status.return_value = StatusReport(healthy=False, active_faults=["users_500"])
    assert quick_check(traffic, status) is False

    traffic.measure.return_value = None
    assert quick_check(traffic) is False


# --- Status probe ---------------------------------------------------------------


@patch("oodasre.verification.status.httpx.Client")
def test_status_probe_parses_active_bugs(mock_client_class):
    mock_response = MagicMock()
    mock_response.raise_for_status = MagicMock()
    mock_response.json.return_value = {"healthy": False, "active_bugs": ["users_500"]}
    mock_client = MagicMock()
    mock_client.get.return_value = mock_response
    mock_client_class.return_value.__enter__.return_value = mock_client

    status = HttpStatusProbe("http://svc:3000").get_status()
    assert status == StatusReport(healthy=False, active_faults=["users_500"])
    mock_client.get.assert_called_once_with("http://svc:3000/bugs/status")


@patch("oodasre.verification.status.httpx.Client")
def test_status_probe_unreachable_returns_none(mock_client_class):
    mock_client_class.return_value.__enter__.return_value.get.side_effect = httpx.ConnectError("refused")
    assert HttpStatusProbe("http://svc:3000").get_status() is None
    assert HttpStatusProbe("").get_status() is None


# --- Engine ---------------------------------------------------------------------


def test_engine_status_veto_skips_traffic(settings, incident):
    traffic = MagicMock()
    status = MagicMock()
    status.get_status.return_value = StatusReport(healthy=False, active_faults=["users_500"])
    verdict = VerificationEngine(traffic, status_probe=status, settings=settings).verify(incident, "checkout")
    assert verdict.passed is False
    traffic.measure.assert_not_called()


def test_engine_uses_traffic_with_reuse_window(settings, incident):
    traffic = MagicMock()
    traffic.measure.return_value = _m(0.0)
    verdict = VerificationEngine(traffic, settings=settings).verify(incident, "checkout")
    assert verdict.passed is True
    traffic.measure.assert_called_once_with(reuse_within=settings.traffic_reuse_seconds)


def test_engine_frame_fallback_skipped_without_source(settings, incident):
    traffic = MagicMock()
    traffic.measure.return_value = None
    verdict = VerificationEngine(traffic, settings=settings).verify(incident, "checkout")
    assert verdict.passed is True
    assert verdict.details == "Verification skipped (no frame source)"


@patch("oodasre.verification.engine.time.sleep")
def test_engine_frame_fallback_retries_then_fails(mock_sleep, settings, incident):
    traffic = MagicMock()
    traffic.measure.return_value = None
    frames = MagicMock()
    frames.is_available.return_value = True
    frames.get_recent_frames.return_value = [MagicMock()]
    reasoning = MagicMock()
    reasoning.analyze_frames.return_value = FrameAnalysis(
        dashboard_state=DashboardState(healthy=False, description="red error banner")
    )
    verdict = VerificationEngine(
        traffic, frame_source=frames, reasoning=reasoning, settings=settings
    ).verify(incident, "checkout")
    assert verdict.passed is False
    assert verdict.details == "Frame verification failed after 3 attempts: red error banner"
    assert reasoning.analyze_frames.call_count == 3
    assert mock_sleep.call_count == 2


@patch("oodasre.verification.engine.time.sleep")
def test_engine_frame_fallback_video_unavailable(mock_sleep, settings, incident):
    traffic = MagicMock()
    traffic.measure.return_value = None
    frames = MagicMock()
    frames.is_available.return_value = False
    verdict = VerificationEngine(
        traffic, frame_source=frames, reasoning=MagicMock(), settings=settings
    ).verify(incident, "checkout")
    assert verdict.passed is True
    assert verdict.details == "Verification skipped (video unavailable)"


@patch("oodasre.verification.engine.time.sleep")
def test_engine_pending_fix_overrides_passing_traffic(mock_sleep, settings, incident):
    incident.fix_id = "fix-1"
    traffic = MagicMock()
    traffic.measure.side_effect = [_m(0.0), _m(0.0)]
    fix_cycle = MagicMock()
    fix_cycle.get_status.side_effect = [
        FixStatusReport(fix_id="fix-1", status=FixStatus.GENERATING),
        FixStatusReport(fix_id="fix-1", status=FixStatus.REVIEW),
        FixStatusReport(fix_id="fix-1", status=FixStatus.APPLIED, applied_at=utcnow()),
    ]
    verdict = VerificationEngine(traffic, fix_cycle=fix_cycle, settings=settings).verify(incident, "checkout")
    assert verdict.passed is True
    assert verdict.details == "Code evolution applied and verified: error rate 0.0%"
    assert traffic.measure.call_count == 2


@patch("oodasre.verification.engine.time.sleep")
def test_engine_pending_fix_times_out(mock_sleep, incident):
    settings = Settings(collaborator_timeout_seconds=0, fix_wait_timeout_seconds=0, fix_poll_interval_seconds=0)
    incident.fix_id = "fix-1"
    traffic = MagicMock()
    traffic.measure.return_value = _m(0.0)
    fix_cycle = MagicMock()
    fix_cycle.get_status.return_value = FixStatusReport(fix_id="fix-1", status=FixStatus.REVIEW)
    verdict = VerificationEngine(traffic, fix_cycle=fix_cycle, settings=settings).verify(incident, "checkout")
    assert verdict.passed is False
    assert verdict.details == "Evolution fix-1 pending - awaiting manual approval (timed out after 0 min)"


def test_engine_fix_wait_never_exceeds_ceiling(incident):
    settings = Settings(
        collaborator_timeout_seconds=0,
        fix_wait_timeout_seconds=0.1,
        fix_poll_interval_seconds=1.5,
        rollout_wait_seconds=0,
    )
    incident.fix_id = "fix-1"
    traffic = MagicMock()
    traffic.measure.return_value = _m(0.0)
    fix_cycle = MagicMock()
    fix_cycle.get_status.return_value = FixStatusReport(fix_id="fix-1", status=FixStatus.REVIEW)

    start = time.monotonic()
    verdict = VerificationEngine(traffic, fix_cycle=fix_cycle, settings=settings).verify(incident, "checkout")
    elapsed = time.monotonic() - start

    assert elapsed < 1.0
    assert verdict.passed is False
    assert "timed out" in verdict.details


@patch("oodasre.verification.engine.time.sleep")
def test_engine_old_applied_fix_does_not_override(mock_sleep, settings, incident):
    incident.fix_id = "fix-1"
    traffic = MagicMock()
    traffic.measure.return_value = _m(0.2)
    fix_cycle = MagicMock()
    fix_cycle.get_status.return_value = FixStatusReport(
        fix_id="fix-1", status=FixStatus.APPLIED, applied_at=utcnow() - timedelta(hours=1)
    )
    verdict = VerificationEngine(traffic, fix_cycle=fix_cycle, settings=settings).verify(incident, "checkout")
    assert verdict.details.startswith("Traffic verification failed")
