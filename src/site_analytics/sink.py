"""
Where telemetry goes.

A TelemetrySink is fire-and-forget from the tracker's point of view:
at-most-once, no retry, no ordering between visit writes and event writes.
Implementations raise on failure; callers log and drop.
"""
from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy.engine import Engine

from . import db_utils


class TelemetrySink(Protocol):
    def record_events(self, rows: List[Dict[str, Any]]) -> None: ...
    def open_visit(self, row: Dict[str, Any]) -> str: ...
    def close_visit(self, visit_id: str, patch: Dict[str, Any]) -> None: ...


class DatabaseSink:
    """Writes straight to interaction_events / visitor_analytics."""

    def __init__(self, engine: Engine | None = None):
        self.engine = engine or db_utils.get_engine()

    def record_events(self, rows: List[Dict[str, Any]]) -> None:
        db_utils.write_interaction_events(rows, engine=self.engine)

    def open_visit(self, row: Dict[str, Any]) -> str:
        return db_utils.insert_page_visit(row, engine=self.engine)

    def close_visit(self, visit_id: str, patch: Dict[str, Any]) -> None:
        db_utils.update_page_visit(visit_id, patch, engine=self.engine)


class MemorySink:
    """Keeps every write in lists; used for dry runs and tests."""

    def __init__(self, fail_with: Optional[BaseException] = None):
        self.fail_with = fail_with
        self.event_batches: List[List[Dict[str, Any]]] = []
        self.visits: Dict[str, Dict[str, Any]] = {}
        self.visit_updates: List[tuple] = []

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    @property
    def events(self) -> List[Dict[str, Any]]:
        return [e for batch in self.event_batches for e in batch]

    @property
    def write_count(self) -> int:
        return len(self.event_batches) + len(self.visits) + len(self.visit_updates)

    def record_events(self, rows: List[Dict[str, Any]]) -> None:
        self._maybe_fail()
        self.event_batches.append([dict(r) for r in rows])

    def open_visit(self, row: Dict[str, Any]) -> str:
        self._maybe_fail()
        visit_id = str(uuid.uuid4())
        self.visits[visit_id] = dict(row)
        return visit_id

    def close_visit(self, visit_id: str, patch: Dict[str, Any]) -> None:
        self._maybe_fail()
        self.visit_updates.append((visit_id, dict(patch)))
        if visit_id in self.visits:
            self.visits[visit_id].update(patch)
