"""JSONL-backed collections for agents, integrations, conversations and meetings.

Each collection is one ``<name>.jsonl`` file under the data directory, one
JSON object per line, keyed by its ``id`` field.  Collections are re-read on
every access so a config edited by the surrounding app takes effect on the
next request without a restart.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Optional

log = logging.getLogger("meetings.store")


class JsonlCollection:
    """A list of dict records persisted as a JSONL file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> list[dict]:
        if not self._path.exists():
            return []
        records: list[dict] = []
        for line in self._path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line:
                continue
            records.append(json.loads(line))
        return records

    def _save(self, records: list[dict]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        text = "".join(json.dumps(r, default=str) + "\n" for r in records)
        tmp = self._path.with_suffix(".jsonl.tmp")
        tmp.write_text(text, encoding="utf-8")
        tmp.replace(self._path)

    # ------------------------------------------------------------------

    def all(self) -> list[dict]:
        with self._lock:
            return self._load()

    def get(self, record_id: str) -> Optional[dict]:
        for record in self.all():
            if record.get("id") == record_id:
                return record
        return None

    def find(self, predicate: Callable[[dict], bool]) -> list[dict]:
        return [r for r in self.all() if predicate(r)]

    def find_one(self, predicate: Callable[[dict], bool]) -> Optional[dict]:
        for record in self.all():
            if predicate(record):
                return record
        return None

    def insert(self, record: dict) -> dict:
        if "id" not in record:
            raise ValueError("record needs an 'id'")
        with self._lock:
            records = self._load()
            if any(r.get("id") == record["id"] for r in records):
                raise ValueError(f"duplicate id {record['id']!r} in {self._path.name}")
            records.append(record)
            self._save(records)
        return record

    def update(self, record_id: str, changes: dict[str, Any]) -> Optional[dict]:
        """Merge ``changes`` into the record and return it (None if missing)."""
        with self._lock:
            records = self._load()
            for record in records:
                if record.get("id") == record_id:
                    record.update(changes)
                    self._save(records)
                    return record
        return None


class DataStore:
    """The collections the booking engine reads and writes."""

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)
        self.agents = JsonlCollection(self.data_dir / "agents.jsonl")
        self.integrations = JsonlCollection(self.data_dir / "integrations.jsonl")
        self.conversations = JsonlCollection(self.data_dir / "conversations.jsonl")
        self.meetings = JsonlCollection(self.data_dir / "meetings.jsonl")
        self.debug_logs = JsonlCollection(self.data_dir / "debug_logs.jsonl")

    # ── Lookups used by the orchestrator ────────────────────────────

    def agent_for(self, agent_id: str | None = None, user_id: str | None = None) -> Optional[dict]:
        """Agent by id, or the first messaging agent owned by ``user_id``."""
        if agent_id:
            return self.agents.get(agent_id)
        if user_id:
            return self.agents.find_one(
                lambda a: a.get("user_id") == user_id
                and a.get("platform") in ("instagram", "whatsapp", "messenger")
            )
        return None

    def calendar_integration(self, user_id: str) -> Optional[dict]:
        """The user's connected Google Calendar integration, if any."""
        return self.integrations.find_one(
            lambda i: i.get("user_id") == user_id
            and i.get("type") == "google_calendar"
            and i.get("status") == "connected"
        )

    def messaging_integration(self, user_id: str, platform: str) -> Optional[dict]:
        return self.integrations.find_one(
            lambda i: i.get("user_id") == user_id
            and i.get("type") == platform
            and i.get("status") == "connected"
        )
