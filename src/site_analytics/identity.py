
from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .storage import Storage, StorageUnavailableError, SESSION_ID_KEY, FINGERPRINT_KEY
from .logging_utils import get_logger

log = get_logger("identity")

_BASE36 = string.digits + string.ascii_lowercase
_DJB2_SEED = 5381


@dataclass(frozen=True)
class EnvironmentSignals:
    """Ambient browser signals a fingerprint is derived from."""
    user_agent: str = ""
    language: str = ""
    platform: str = ""
    screen_width: int = 0
    screen_height: int = 0
    color_depth: int = 24
    timezone: Optional[str] = None          # IANA name, e.g. "Asia/Dhaka"
    utc_offset_minutes: int = 0             # used when timezone is unknown
    canvas_sample: Optional[str] = None     # rendered-canvas bytes, if captured

    @property
    def screen(self) -> str:
        return f"{self.screen_width}x{self.screen_height}@{self.color_depth}"

    @property
    def timezone_label(self) -> str:
        return self.timezone or str(self.utc_offset_minutes)


def _random_base36(rng: random.Random, n: int = 9) -> str:
    return "".join(rng.choice(_BASE36) for _ in range(n))


def _utf16_units(s: str):
    data = s.encode("utf-16-le")
    for i in range(0, len(data), 2):
        yield data[i] | (data[i + 1] << 8)


def djb2_hex(raw: str) -> str:
    """djb2 variant (hash*33 XOR unit) over UTF-16 code units, 32-bit, lowercase hex."""
    h = _DJB2_SEED
    for unit in _utf16_units(raw):
        h = ((h * 33) ^ unit) & 0xFFFFFFFF
    return format(h, "x")


def generate_fingerprint(signals: EnvironmentSignals) -> str:
    parts = [
        signals.user_agent,
        signals.language,
        signals.platform,
        signals.screen,
        signals.timezone_label,
    ]
    if signals.canvas_sample:
        parts.append(signals.canvas_sample)
    return djb2_hex("::".join(parts))


def get_session_id(
    storage: Storage,
    *,
    now_ms: Optional[Callable[[], int]] = None,
    rng: Optional[random.Random] = None,
) -> str:
    """Return the tab's session id, minting `<epoch-millis>-<base36>` when absent."""
    rng = rng or random.Random()
    now_ms = now_ms or (lambda: int(time.time() * 1000))
    try:
        existing = storage.get_item(SESSION_ID_KEY)
    except StorageUnavailableError:
        existing = None
        writable = False
    else:
        writable = True
    if existing:
        return existing

    session_id = f"{now_ms()}-{_random_base36(rng)}"
    if writable:
        try:
            storage.set_item(SESSION_ID_KEY, session_id)
        except StorageUnavailableError:
            log.warning("session_id_not_persisted", extra={"session_id": session_id})
    return session_id


def get_fingerprint(
    storage: Storage,
    read_signals: Callable[[], EnvironmentSignals],
    *,
    rng: Optional[random.Random] = None,
) -> str:
    """
    Return the durable device fingerprint, computing and storing it on first use.
    Any failure (storage disabled, signal read raising) yields a random token
    instead; fingerprinting never blocks the caller.
    """
    rng = rng or random.Random()
    try:
        fp = storage.get_item(FINGERPRINT_KEY)
        if not fp:
            fp = generate_fingerprint(read_signals())
            storage.set_item(FINGERPRINT_KEY, fp)
        return fp
    except Exception:
        log.warning("fingerprint_fallback_random", exc_info=True)
        return _random_base36(rng, 8)
