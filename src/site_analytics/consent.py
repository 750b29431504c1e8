
from __future__ import annotations

import json
from dataclasses import dataclass, asdict, replace
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .storage import Storage, StorageUnavailableError, CONSENT_KEY
from .logging_utils import get_logger

log = get_logger("consent")

CATEGORIES = ("necessary", "analytics", "marketing")


@dataclass(frozen=True)
class ConsentState:
    necessary: bool = True
    analytics: bool = False
    marketing: bool = False
    banner_dismissed: bool = False
    dismissed_at: Optional[str] = None      # ISO-8601 UTC

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> "ConsentState":
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("consent record must be a JSON object")
        return cls(
            necessary=True,
            analytics=bool(data.get("analytics", False)),
            marketing=bool(data.get("marketing", False)),
            banner_dismissed=bool(data.get("banner_dismissed", False)),
            dismissed_at=data.get("dismissed_at"),
        )


ConsentListener = Callable[[ConsentState, ConsentState], None]


class ConsentGate:
    """
    Visitor's opt-in state for optional tracking categories.

    Re-hydrated from durable storage on construction and written back on every
    mutation. `has_consent` is the guard every tracking call site checks.
    """

    def __init__(self, storage: Storage, *, now: Optional[Callable[[], datetime]] = None):
        self._storage = storage
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._listeners: List[ConsentListener] = []
        self.state = self._load()

    def _load(self) -> ConsentState:
        try:
            raw = self._storage.get_item(CONSENT_KEY)
        except StorageUnavailableError:
            log.warning("consent_storage_unavailable")
            return ConsentState()
        if not raw:
            return ConsentState()
        try:
            return ConsentState.from_json(raw)
        except ValueError:
            log.warning("consent_record_corrupt", extra={"raw": raw[:100]})
            return ConsentState()

    def _save(self, new: ConsentState) -> None:
        old, self.state = self.state, new
        try:
            self._storage.set_item(CONSENT_KEY, new.to_json())
        except StorageUnavailableError:
            # decision still holds for this page lifetime
            log.warning("consent_not_persisted")
        log.info("consent_updated", extra={"analytics": new.analytics, "marketing": new.marketing})
        if old != new:
            for listener in list(self._listeners):
                listener(old, new)

    def _dismissed(self, **flags) -> ConsentState:
        return ConsentState(
            necessary=True,
            banner_dismissed=True,
            dismissed_at=self._now().astimezone(timezone.utc).isoformat(),
            **flags,
        )

    # ----- user actions -----
    def accept_all(self) -> None:
        self._save(self._dismissed(analytics=True, marketing=True))

    def accept_necessary_only(self) -> None:
        self._save(self._dismissed(analytics=False, marketing=False))

    def update_consent(self, category: str, value: bool) -> None:
        if category not in CATEGORIES:
            raise ValueError(f"unknown consent category: {category!r}")
        if category == "necessary":
            return
        self._save(replace(self.state, **{category: bool(value)}))

    # ----- reads -----
    def has_consent(self, category: str) -> bool:
        if category == "necessary":
            return True
        if category not in CATEGORIES:
            return False
        return bool(getattr(self.state, category))

    @property
    def show_banner(self) -> bool:
        return not self.state.banner_dismissed

    def subscribe(self, listener: ConsentListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)
