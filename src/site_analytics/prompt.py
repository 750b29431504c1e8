
from __future__ import annotations

from typing import Callable, Optional

from .context import TrackingContext
from .pageviews import scroll_depth
from .storage import Storage, StorageUnavailableError, CONSULTATION_DISMISSED_KEY
from .timers import CancellableTimer
from .logging_utils import get_logger

log = get_logger("prompt")

DISMISS_DURATION_MS = 24 * 60 * 60 * 1000


class ConsultationTrigger:
    """
    Opens the consultation prompt once per page lifetime on the first of:
    time on page, scroll depth, or exit intent. Suppressed for 24h after the
    visitor dismisses it.
    """

    def __init__(
        self,
        ctx: TrackingContext,
        storage: Storage,
        *,
        time_on_page_s: float = 45,
        scroll_depth_pct: int = 60,
        exit_intent: bool = True,
        on_open: Optional[Callable[[str], None]] = None,
    ):
        self.ctx = ctx
        self.storage = storage
        self.scroll_depth_pct = scroll_depth_pct
        self.exit_intent = exit_intent
        self.on_open = on_open
        self.is_open = False
        self.has_triggered = False
        self.trigger_reason: Optional[str] = None
        self._timer = CancellableTimer(ctx.env, time_on_page_s, lambda: self._trigger("time_on_page"))
        self._timer.arm()

    def should_show(self) -> bool:
        if self.has_triggered:
            return False
        try:
            dismissed = self.storage.get_item(CONSULTATION_DISMISSED_KEY)
        except StorageUnavailableError:
            dismissed = None
        if dismissed:
            try:
                if self.ctx.now_ms() - int(dismissed) < DISMISS_DURATION_MS:
                    return False
            except ValueError:
                log.warning("prompt_dismissal_corrupt", extra={"raw": dismissed})
        return True

    def _trigger(self, reason: str) -> bool:
        if not self.should_show():
            return False
        self.is_open = True
        self.has_triggered = True
        self.trigger_reason = reason
        self._timer.cancel()
        log.info("consultation_prompt_open", extra={"reason": reason, "page_path": self.ctx.page_path})
        if self.on_open:
            self.on_open(reason)
        return True

    def on_scroll(self, scroll_top: float, scroll_height: float, viewport_height: float) -> bool:
        if scroll_depth(scroll_top, scroll_height, viewport_height) >= self.scroll_depth_pct:
            return self._trigger("scroll_depth")
        return False

    def on_pointer_leave(self, client_y: float) -> bool:
        if self.exit_intent and client_y <= 0:
            return self._trigger("exit_intent")
        return False

    def close(self) -> None:
        self.is_open = False
        try:
            self.storage.set_item(CONSULTATION_DISMISSED_KEY, str(self.ctx.now_ms()))
        except StorageUnavailableError:
            log.warning("prompt_dismissal_not_persisted")

    def detach(self) -> None:
        self._timer.cancel()
