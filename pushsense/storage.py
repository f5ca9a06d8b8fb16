"""
Persistence collaborators for calibration profiles and telemetry sessions.
In-memory stores for tests and the web app default; JSON-file stores for the CLI.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from typing import Any, Optional

from .calibration import CalibrationProfile
from .config import DEFAULT_MAX_SESSIONS
from .telemetry import AccuracyRating, SessionTelemetry

logger = logging.getLogger(__name__)

PROFILES_FILENAME = "calibration_profiles.json"
TELEMETRY_FILENAME = "telemetry_sessions.json"


class StorageError(Exception):
    pass


class _Records:
    """List-of-dicts persistence behind a lock; subclasses decide where the list lives."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def _load_all(self) -> list[dict[str, Any]]:
        raise NotImplementedError

    def _save_all(self, records: list[dict[str, Any]]) -> None:
        raise NotImplementedError


class _MemoryRecords(_Records):
    def __init__(self) -> None:
        super().__init__()
        self._records: list[dict[str, Any]] = []

    def _load_all(self) -> list[dict[str, Any]]:
        return json.loads(json.dumps(self._records))

    def _save_all(self, records: list[dict[str, Any]]) -> None:
        self._records = json.loads(json.dumps(records))


class _JsonRecords(_Records):
    def __init__(self, path: str) -> None:
        super().__init__()
        self.path = path

    def _load_all(self) -> list[dict[str, Any]]:
        if not os.path.isfile(self.path):
            return []
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"cannot read {self.path}: {e}") from e
        if not isinstance(data, list):
            raise StorageError(f"{self.path}: expected a JSON list")
        return data

    def _save_all(self, records: list[dict[str, Any]]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        except OSError as e:
            raise StorageError(f"cannot write {self.path}: {e}") from e
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(records, f, indent=2)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise StorageError(f"cannot write {self.path}: {e}") from e


class _ProfileStoreMixin(_Records):
    def save_profile(self, profile: CalibrationProfile) -> None:
        """Insert or overwrite the profile for profile.user_id."""
        record = profile.to_dict()
        with self._lock:
            records = [r for r in self._load_all() if r.get("user_id") != profile.user_id]
            records.append(record)
            self._save_all(records)
        logger.info("storage: saved calibration profile for user=%s", profile.user_id)

    def load_profile_data(self, user_id: str) -> Optional[dict[str, Any]]:
        with self._lock:
            for record in self._load_all():
                if record.get("user_id") == user_id:
                    return record
        return None

    def get_profile(self, user_id: str) -> Optional[CalibrationProfile]:
        """Raises InvalidProfileError when the stored thresholds are unusable."""
        data = self.load_profile_data(user_id)
        return CalibrationProfile.from_dict(data) if data else None

    def delete_profile(self, user_id: str) -> None:
        with self._lock:
            records = self._load_all()
            kept = [r for r in records if r.get("user_id") != user_id]
            if len(kept) != len(records):
                self._save_all(kept)


class _TelemetryStoreMixin(_Records):
    max_sessions: int = DEFAULT_MAX_SESSIONS

    def save_session(self, session: SessionTelemetry) -> None:
        """Append (or replace by id); oldest sessions beyond max_sessions are dropped."""
        with self._lock:
            records = [r for r in self._load_all() if r.get("session_id") != session.session_id]
            records.append(session.to_dict())
            if len(records) > self.max_sessions:
                records = records[-self.max_sessions:]
            self._save_all(records)

    def get_session(self, session_id: str) -> Optional[SessionTelemetry]:
        with self._lock:
            for record in self._load_all():
                if record.get("session_id") == session_id:
                    return SessionTelemetry.from_dict(record)
        return None

    def list_sessions(self, user_id: Optional[str] = None) -> list[SessionTelemetry]:
        with self._lock:
            records = self._load_all()
        sessions = [SessionTelemetry.from_dict(r) for r in records]
        if user_id is not None:
            sessions = [s for s in sessions if s.user_id == user_id]
        return sessions

    def update_feedback(
        self,
        session_id: str,
        rating: AccuracyRating | str,
        note: str = "",
        reported_count: Optional[int] = None,
    ) -> SessionTelemetry:
        """Attach the one-time accuracy label. Raises KeyError / FeedbackAlreadyAttachedError."""
        with self._lock:
            records = self._load_all()
            for i, record in enumerate(records):
                if record.get("session_id") == session_id:
                    session = SessionTelemetry.from_dict(record)
                    session.attach_feedback(rating, note=note, reported_count=reported_count)
                    records[i] = session.to_dict()
                    self._save_all(records)
                    return session
        raise KeyError(session_id)


class MemoryProfileStore(_ProfileStoreMixin, _MemoryRecords):
    pass


class JsonProfileStore(_ProfileStoreMixin, _JsonRecords):
    pass


class MemoryTelemetryStore(_TelemetryStoreMixin, _MemoryRecords):
    def __init__(self, max_sessions: int = DEFAULT_MAX_SESSIONS) -> None:
        super().__init__()
        self.max_sessions = max_sessions


class JsonTelemetryStore(_TelemetryStoreMixin, _JsonRecords):
    def __init__(self, path: str, max_sessions: int = DEFAULT_MAX_SESSIONS) -> None:
        super().__init__(path)
        self.max_sessions = max_sessions


def open_json_stores(data_dir: str, max_sessions: int = DEFAULT_MAX_SESSIONS) -> tuple[JsonProfileStore, JsonTelemetryStore]:
    return (
        JsonProfileStore(os.path.join(data_dir, PROFILES_FILENAME)),
        JsonTelemetryStore(os.path.join(data_dir, TELEMETRY_FILENAME), max_sessions=max_sessions),
    )
