"""
Demo target service for oodasre.

A small "checkout" API with injectable faults. Provides the endpoints the
investigation loop probes (/, /users, /health, /bugs/status) plus /logs and
/events as the demo signal source. Faults stay active until /bugs/clear,
which the demo executor calls for restart and rollback.
"""

from collections import deque
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

# Fault name -> endpoint it breaks
KNOWN_BUGS = {
    "users_500": "/users",
    "root_500": "/",
    "health_503": "/health",
}
MAX_LOG_LINES = 200
MAX_EVENTS = 50

USERS = [
    {"id": 1, "name": "Ada"},
    {"id": 2, "name": "Grace"},
    {"id": 3, "name": "Linus"},
]

# In-memory state; reset_demo_state() restores it for repeated demo runs
_active_bugs: set[str] = set()
_logs: deque[str] = deque(maxlen=MAX_LOG_LINES)
_events: deque[dict] = deque(maxlen=MAX_EVENTS)

app = FastAPI(title="oodasre Demo Checkout Service", version="0.1.0")


class InjectBody(BaseModel):
    """Fault to activate."""

    bug: str


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _log(level: str, message: str) -> None:
    _logs.append(f"{_now()} {level} {message}")


def _event(event_type: str, description: str, target: str = "checkout") -> None:
    _events.append({"type": event_type, "description": description, "target": target, "timestamp": _now()})


def _fail_if_active(bug: str, path: str, status_code: int = 500) -> None:
    if bug in _active_bugs:
        _log("ERROR", f"GET {path} failed: injected fault {bug}")
        raise HTTPException(status_code=status_code, detail=f"Injected fault: {bug}")


@app.get("/")
def index():
    """Service banner."""
    _fail_if_active("root_500", "/")
    return {"service": "checkout", "status": "ok"}


@app.get("/users")
def users():
    """User list; the main synthetic-traffic endpoint."""
    _fail_if_active("users_500", "/users")
    _log("INFO", "GET /users 200")
    return {"users": USERS}


@app.get("/health")
def health():
    """Liveness: 503 while health_503 is active, otherwise healthy/degraded by fault count."""
    _fail_if_active("health_503", "/health", status_code=503)
    return {"status": "degraded" if _active_bugs else "healthy"}


@app.get("/bugs/status")
def bugs_status():
    """Direct fault status used by verification."""
    return {"healthy": not _active_bugs, "active_bugs": sorted(_active_bugs)}


@app.post("/bugs/inject")
def bugs_inject(body: InjectBody):
    """Activate a known fault."""
    if body.bug not in KNOWN_BUGS:
        raise HTTPException(status_code=400, detail=f"Unknown bug: {body.bug}")
    _active_bugs.add(body.bug)
    _log("WARN", f"Fault injected: {body.bug} on {KNOWN_BUGS[body.bug]}")
    _event("FaultInjected", f"Fault {body.bug} injected on {KNOWN_BUGS[body.bug]}")
    return {"ok": True, "active_bugs": sorted(_active_bugs)}


@app.post("/bugs/clear")
def bugs_clear():
    """Clear every active fault (what a restart or rollback does to the demo service)."""
    cleared = sorted(_active_bugs)
    _active_bugs.clear()
    _log("INFO", f"Faults cleared: {', '.join(cleared) or 'none'}")
    _event("Restarted", "Service restarted; faults cleared")
    return {"ok": True, "cleared": cleared}


@app.get("/logs", response_class=PlainTextResponse)
def logs():
    """Recent log lines, oldest first."""
    return "\n".join(_logs)


@app.get("/events")
def events():
    """Recent service events, oldest first."""
    return {"events": list(_events)}


def reset_demo_state():
    """Clear faults, logs and events (for repeated demo runs and tests)."""
    _active_bugs.clear()
    _logs.clear()
    _events.clear()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=3000)
