"""
Browser-style key/value storage.

Two scopes exist in a browser: session storage (per tab lifetime) and local
storage (durable across sessions). Both are modelled by the same interface;
which scope an instance plays is decided by the caller that wires it.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Optional, Protocol

from .logging_utils import get_logger

log = get_logger("storage")

SESSION_ID_KEY = "analytics_session_id"
FINGERPRINT_KEY = "analytics_fingerprint"
CONSENT_KEY = "gdpr_consent"
CONSULTATION_DISMISSED_KEY = "consultation_popup_dismissed"


class StorageUnavailableError(RuntimeError):
    """Storage is disabled (private browsing, quota, sandboxed frame)."""


class Storage(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...
    def set_item(self, key: str, value: str) -> None: ...
    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    """Dict-backed storage; stands in for sessionStorage."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"MemoryStorage(keys={sorted(self._data)})"


class JsonFileStorage:
    """Durable storage persisted as a single JSON object on disk."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as exc:
            raise StorageUnavailableError(f"unreadable storage file {self.path}") from exc
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, sort_keys=True), encoding="utf-8")
        except OSError as exc:
            raise StorageUnavailableError(f"unwritable storage file {self.path}") from exc

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = str(value)
        self._save(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)


class DisabledStorage:
    """Every access fails, like storage in a locked-down private window."""

    def get_item(self, key: str) -> Optional[str]:
        raise StorageUnavailableError("storage disabled")

    def set_item(self, key: str, value: str) -> None:
        raise StorageUnavailableError("storage disabled")

    def remove_item(self, key: str) -> None:
        raise StorageUnavailableError("storage disabled")
