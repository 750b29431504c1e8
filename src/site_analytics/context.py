
from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import simpy

from .consent import ConsentGate
from .identity import EnvironmentSignals, get_fingerprint, get_session_id
from .sink import TelemetrySink
from .storage import Storage


@dataclass
class TrackingContext:
    """
    Everything a tracking call needs, passed explicitly.
    env.now is seconds since start_dt.
    """
    env: simpy.Environment
    sink: TelemetrySink
    consent: ConsentGate
    session_id: str
    fingerprint: str
    start_dt: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    page_path: str = "/"
    referrer: Optional[str] = None
    viewport_width: int = 1280

    def __post_init__(self):
        if self.start_dt.tzinfo is None:
            self.start_dt = self.start_dt.replace(tzinfo=timezone.utc)
        else:
            self.start_dt = self.start_dt.astimezone(timezone.utc)

    # ----- Authoritative timestamps (UTC) -----
    def now(self) -> datetime:
        return self.start_dt + timedelta(seconds=float(self.env.now))

    def now_ms(self) -> int:
        return int(self.now().timestamp() * 1000)

    def can_track(self) -> bool:
        return self.consent.has_consent("analytics")

    @classmethod
    def from_browser(
        cls,
        env: simpy.Environment,
        sink: TelemetrySink,
        *,
        session_storage: Storage,
        local_storage: Storage,
        read_signals: Callable[[], EnvironmentSignals],
        start_dt: Optional[datetime] = None,
        rng: Optional[random.Random] = None,
        **kwargs,
    ) -> "TrackingContext":
        """Resolve identity and consent from browser storage."""
        start_dt = start_dt or datetime.now(timezone.utc)
        offset = lambda: start_dt + timedelta(seconds=float(env.now))
        consent = ConsentGate(local_storage, now=offset)
        session_id = get_session_id(
            session_storage, now_ms=lambda: int(offset().timestamp() * 1000), rng=rng
        )
        fingerprint = get_fingerprint(local_storage, read_signals, rng=rng)
        return cls(
            env=env,
            sink=sink,
            consent=consent,
            session_id=session_id,
            fingerprint=fingerprint,
            start_dt=start_dt,
            **kwargs,
        )
