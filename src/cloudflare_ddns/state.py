"""Last-applied address per monitored record."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .locks import ReadWriteLock
from .models import RecordState

logger = logging.getLogger(__name__)


class StateStore:
    """In-memory record state, optionally mirrored to a JSON file.

    Keys are ``"<zone_id>-<record_id>"``. An entry's address and timestamp
    are always replaced together under the writer lock, so readers never
    see half of an update.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None
        self._lock = ReadWriteLock()
        self._save_lock = threading.Lock()
        self._entries: Dict[str, RecordState] = {}
        if self.path is not None:
            self._entries = self.load()

    def get(self, key: str) -> RecordState:
        with self._lock.read():
            return self._entries.get(key, RecordState())

    def record_success(
        self, key: str, address: str, when: Optional[datetime] = None
    ) -> RecordState:
        state = RecordState(
            last_known_address=address,
            last_update_time=when or datetime.now(timezone.utc),
        )
        with self._lock.write():
            self._entries[key] = state
        if self.path is not None:
            with self._save_lock:
                self.save(self.snapshot())
        return state

    def snapshot(self) -> Dict[str, RecordState]:
        with self._lock.read():
            return dict(self._entries)

    # =========================================================================
    # Persistence
    # =========================================================================

    def load(self) -> Dict[str, RecordState]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text("utf-8"))
        except Exception as e:
            logger.warning(f"Failed to load state file {self.path}: {e}")
            return {}

        entries: Dict[str, RecordState] = {}
        for key, raw in (data.get("records") or {}).items():
            try:
                entries[key] = _decode_state(raw)
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed state entry '{key}': {e}")
        return entries

    def save(self, entries: Dict[str, RecordState]) -> None:
        if self.path is None:
            return
        state = {
            "version": 1,
            "records": {key: _encode_state(value) for key, value in entries.items()},
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(state, indent=2, sort_keys=True), "utf-8")
            tmp_path.replace(self.path)
        except OSError as e:
            logger.warning(f"Failed to write state file {self.path}: {e}")


def _encode_state(state: RecordState) -> Dict[str, Any]:
    return {
        "last_known_address": state.last_known_address,
        "last_update_time": (
            state.last_update_time.isoformat() if state.last_update_time else None
        ),
    }


def _decode_state(raw: Dict[str, Any]) -> RecordState:
    when = raw.get("last_update_time")
    return RecordState(
        last_known_address=raw.get("last_known_address"),
        last_update_time=datetime.fromisoformat(when) if when else None,
    )
