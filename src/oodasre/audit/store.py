"""Append-only audit store: in-memory with optional JSON file persistence."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from oodasre.models import Action, Evidence, Hypothesis, TimelineEntry

logger = logging.getLogger(__name__)

_EVIDENCE_FILE = "evidence.json"
_HYPOTHESES_FILE = "hypotheses.json"
_ACTIONS_FILE = "actions.json"
_TIMELINE_FILE = "timeline.json"


class AuditStore:
    """
    Records evidence, hypotheses, actions and timeline entries per incident.

    Rows are never updated in place: every action status change is a new row,
    so an action dispatched before a cancellation stays on record. If data_dir
    is set, data is loaded on init and saved after each append.
    """

    def __init__(self, data_dir: str | None = None) -> None:
        self._data_dir = Path(data_dir) if data_dir else None
        self._lock = threading.Lock()
        self._evidence: list[dict] = []
        self._hypotheses: list[dict] = []
        self._actions: list[dict] = []
        self._timeline: list[dict] = []
        if self._data_dir and self._data_dir.is_dir():
            self._load()

    def _load(self) -> None:
        for name, attr in [
            (_EVIDENCE_FILE, "_evidence"),
            (_HYPOTHESES_FILE, "_hypotheses"),
            (_ACTIONS_FILE, "_actions"),
            (_TIMELINE_FILE, "_timeline"),
        ]:
            path = self._data_dir / name
            if path.is_file():
                try:
                    data = json.loads(path.read_text(encoding="utf-8"))
                    if isinstance(data, list):
                        setattr(self, attr, data)
                except (json.JSONDecodeError, OSError) as e:
                    logger.warning("Audit file %s unreadable: %s", path, e)

    def _append(self, rows: list[dict], filename: str, row: dict) -> None:
        with self._lock:
            rows.append(row)
            if not self._data_dir:
                return
            self._data_dir.mkdir(parents=True, exist_ok=True)
            path = self._data_dir / filename
            try:
                path.write_text(json.dumps(rows, indent=0), encoding="utf-8")
            except OSError as e:
                logger.warning("Audit write to %s failed: %s", path, e)

    def record_evidence(self, evidence: Evidence) -> None:
        self._append(self._evidence, _EVIDENCE_FILE, evidence.model_dump(mode="json"))

    def record_hypothesis(self, hypothesis: Hypothesis) -> None:
        self._append(self._hypotheses, _HYPOTHESES_FILE, hypothesis.model_dump(mode="json"))

    def record_action(self, action: Action) -> None:
        self._append(self._actions, _ACTIONS_FILE, action.model_dump(mode="json"))

    def record_timeline(self, entry: TimelineEntry) -> None:
        self._append(self._timeline, _TIMELINE_FILE, entry.model_dump(mode="json"))

    def get_evidence(self, incident_id: str) -> list[Evidence]:
        return [Evidence.model_validate(r) for r in self._evidence if r.get("incident_id") == incident_id]

    def get_hypotheses(self, incident_id: str) -> list[Hypothesis]:
        return [Hypothesis.model_validate(r) for r in self._hypotheses if r.get("incident_id") == incident_id]

    def get_actions(self, incident_id: str) -> list[Action]:
        """Latest row per action id, in dispatch order."""
        latest: dict[str, dict] = {}
        for r in self._actions:
            if r.get("incident_id") == incident_id:
                latest[r["id"]] = r
        return [Action.model_validate(r) for r in latest.values()]

    def get_action_history(self, incident_id: str) -> list[Action]:
        """Every recorded row, including superseded statuses."""
        return [Action.model_validate(r) for r in self._actions if r.get("incident_id") == incident_id]

    def get_timeline(self, incident_id: str) -> list[TimelineEntry]:
        return [TimelineEntry.model_validate(r) for r in self._timeline if r.get("incident_id") == incident_id]
