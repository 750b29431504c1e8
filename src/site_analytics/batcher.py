
from __future__ import annotations

from dataclasses import replace
from typing import List

from .context import TrackingContext
from .events import InteractionEvent
from .timers import CancellableTimer
from .logging_utils import get_logger

log = get_logger("batcher")

DEFAULT_DEBOUNCE_S = 2.0


class EventBatcher:
    """
    Buffers interaction events and flushes them as one bulk write once the
    debounce window passes with no new events.

    Delivery is at-most-once: a failed flush is logged and the batch dropped.
    """

    def __init__(self, ctx: TrackingContext, *, debounce_s: float = DEFAULT_DEBOUNCE_S):
        self.ctx = ctx
        self._queue: List[InteractionEvent] = []
        self.timer = CancellableTimer(ctx.env, debounce_s, self._on_timer)
        self.total_seen = 0
        self.total_flushed = 0
        self.total_dropped = 0

    @property
    def pending(self) -> int:
        return len(self._queue)

    def track_event(self, event: InteractionEvent) -> None:
        if not self.ctx.can_track():
            return
        self._queue.append(replace(event, page_path=self.ctx.page_path))
        self.total_seen += 1
        self.timer.arm()

    def _on_timer(self) -> None:
        self.flush_events(reason="debounce")

    def flush_events(self, *, reason: str = "manual") -> int:
        if not self.ctx.can_track() or not self._queue:
            return 0

        batch, self._queue = self._queue, []
        ts = self.ctx.now()
        rows = [
            e.to_row(session_id=self.ctx.session_id, fingerprint=self.ctx.fingerprint, created_at=ts)
            for e in batch
        ]
        try:
            self.ctx.sink.record_events(rows)
        except Exception:
            self.total_dropped += len(rows)
            log.exception(
                "events_flush_failed",
                extra={"reason": reason, "batch_size": len(rows), "session_id": self.ctx.session_id},
            )
            return 0

        self.total_flushed += len(rows)
        log.info(
            "events_flush",
            extra={"reason": reason, "batch_size": len(rows), "total_seen": self.total_seen},
        )
        return len(rows)

    def cancel_pending_flush(self) -> None:
        self.timer.cancel()

    def discard_pending(self) -> int:
        """Drop queued events without writing them (consent withdrawn)."""
        self.timer.cancel()
        dropped, self._queue = len(self._queue), []
        self.total_dropped += dropped
        if dropped:
            log.info("events_discarded", extra={"batch_size": dropped, "session_id": self.ctx.session_id})
        return dropped
