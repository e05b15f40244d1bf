"""Direct status probe against the target service."""

import logging

import httpx

from oodasre.models import StatusReport

logger = logging.getLogger(__name__)

DEFAULT_STATUS_PATH = "/bugs/status"


class HttpStatusProbe:
    """GET {service_url}/bugs/status -> healthy flag plus named active faults."""

    def __init__(self, service_url: str | None = None, path: str = DEFAULT_STATUS_PATH, timeout: float = 5.0) -> None:
        self.service_url = (service_url or "").strip()
        self._path = path
        self._timeout = timeout

    def get_status(self) -> StatusReport | None:
        """Return None when the service is unreachable; the probe is informational only."""
        if not self.service_url:
            return None
        url = self.service_url.rstrip("/") + self._path
        try:
            with httpx.Client(timeout=self._timeout) as client:
                r = client.get(url)
                r.raise_for_status()
                data = r.json()
        except Exception as e:
            logger.debug("Status probe failed: %s", e)
            return None
        faults = [str(f) for f in (data.get("active_bugs") or data.get("active_faults") or [])]
        healthy = bool(data.get("healthy", not faults))
        return StatusReport(healthy=healthy, active_faults=faults)
