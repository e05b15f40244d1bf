"""Synthetic traffic measurement against the target service."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor

import httpx

from oodasre.collaborators import call_with_timeout
from oodasre.models import TrafficMeasurement

logger = logging.getLogger(__name__)

# Business endpoints are weighted up; health checks under-report real bugs
DEFAULT_ENDPOINTS = ("/users", "/users", "/users", "/", "/health")
DEFAULT_REQUEST_COUNT = 40
DEFAULT_REQUEST_TIMEOUT = 5.0
ERROR_RATE_THRESHOLD = 0.05


class TrafficProbe:
    """
    Issues a fixed batch of concurrent GETs and computes the error ratio.

    A request counts as an error when it times out, fails, or returns a status
    outside 2xx/3xx. The last measurement is cached so the Verify phase and the
    escalation quick checks can share it.
    """

    def __init__(
        self,
        service_url: str | None = None,
        request_count: int = DEFAULT_REQUEST_COUNT,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT,
        endpoints: tuple[str, ...] = DEFAULT_ENDPOINTS,
    ) -> None:
        self.service_url = (service_url or "").strip()
        self._request_count = request_count
        self._timeout = timeout_seconds
        self._endpoints = endpoints
        self._last: TrafficMeasurement | None = None
        self._last_at: float | None = None

    @property
    def last_error_rate(self) -> float | None:
        return self._last.error_rate if self._last else None

    @property
    def last_measurement(self) -> TrafficMeasurement | None:
        return self._last

    def measure(self, reuse_within: float = 0.0) -> TrafficMeasurement | None:
        """
        Generate one batch and return the measurement, or None if traffic could not be generated.

        With reuse_within > 0 a cached measurement younger than that many seconds is returned instead.
        """
        if (
            reuse_within > 0
            and self._last is not None
            and self._last_at is not None
            and time.monotonic() - self._last_at < reuse_within
        ):
            return self._last
        if not self.service_url:
            logger.info("Traffic probe skipped: no service URL")
            return None

        base = self.service_url.rstrip("/")
        urls = [base + self._endpoints[i % len(self._endpoints)] for i in range(self._request_count)]
        try:
            with httpx.Client(timeout=self._timeout) as client:
                with ThreadPoolExecutor(max_workers=max(1, len(urls))) as pool:
                    outcomes = list(pool.map(lambda url: _request_ok(client, url), urls))
        except Exception as e:
            logger.warning("Traffic generation failed: %s", e, exc_info=True)
            return None

        total = len(outcomes)
        errors = sum(1 for ok in outcomes if not ok)
        measurement = TrafficMeasurement(
            total=total,
            errors=errors,
            error_rate=(errors / total) if total else 0.0,
        )
        self._last = measurement
        self._last_at = time.monotonic()
        logger.info(
            "Traffic measured",
            extra={"service_url": self.service_url, "total": total, "errors": errors, "error_rate": measurement.error_rate},
        )
        return measurement


def _request_ok(client: httpx.Client, url: str) -> bool:
    try:
        r = client.get(url)
        return 200 <= r.status_code < 400
    except Exception as e:
        logger.debug("Traffic request failed: %s", e)
        return False


def quick_check(
    traffic_probe: TrafficProbe,
    status_probe=None,
    threshold: float = ERROR_RATE_THRESHOLD,
    timeout: float | None = None,
) -> bool:
    """
    Fast post-remediation check used between escalation tiers.

    False on active faults, when no traffic could be generated, or when the
    error rate is at or above threshold. A status probe that does not answer
    within timeout is treated as unavailable.
    """
    if status_probe is not None:
        try:
            status = call_with_timeout("status_probe", status_probe.get_status, timeout=timeout)
        except Exception as e:
            logger.warning("Status probe failed during quick check: %s", e, exc_info=True)
            status = None
        if status is not None and (status.active_faults or not status.healthy):
            logger.info("Quick check failed: active faults", extra={"faults": status.active_faults})
            return False
    measurement = traffic_probe.measure()
    if measurement is None:
        return False
    return measurement.error_rate < threshold
