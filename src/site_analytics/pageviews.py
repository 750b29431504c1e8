
from __future__ import annotations

import math
from typing import Optional

from .context import TrackingContext
from .logging_utils import get_logger

log = get_logger("pageviews")

MOBILE_MAX_WIDTH = 768
TABLET_MAX_WIDTH = 1024


def js_round(x: float) -> int:
    """Half-up rounding (Math.round), not banker's rounding."""
    return int(math.floor(x + 0.5))


def device_class(width: int, *, mobile_below: int = MOBILE_MAX_WIDTH, tablet_below: int = TABLET_MAX_WIDTH) -> str:
    if width < mobile_below:
        return "mobile"
    if width < tablet_below:
        return "tablet"
    return "desktop"


def scroll_depth(scroll_top: float, scroll_height: float, viewport_height: float) -> int:
    """Percent of the scrollable height reached; 0 when the page does not scroll."""
    scrollable = scroll_height - viewport_height
    if scrollable <= 0:
        return 0
    return max(0, min(100, js_round(scroll_top / scrollable * 100)))


class PageViewRecorder:
    """
    Writes one visitor_analytics row when a page becomes active and patches
    that same row (by the id the insert returned) when the page is left.
    """

    def __init__(
        self,
        ctx: TrackingContext,
        *,
        mobile_below: int = MOBILE_MAX_WIDTH,
        tablet_below: int = TABLET_MAX_WIDTH,
    ):
        self.ctx = ctx
        self.mobile_below = mobile_below
        self.tablet_below = tablet_below
        self.visit_id: Optional[str] = None
        self.page_start: float = ctx.env.now
        self.max_scroll_depth = 0
        self.click_count = 0

    def reset(self) -> None:
        self.page_start = self.ctx.env.now
        self.max_scroll_depth = 0
        self.click_count = 0
        self.visit_id = None

    def enter(self) -> Optional[str]:
        """Route became active: reset counters and open a visit row if allowed."""
        self.reset()
        if not self.ctx.can_track():
            return None
        return self.open_visit()

    def open_visit(self) -> Optional[str]:
        row = {
            "session_id": self.ctx.session_id,
            "fingerprint": self.ctx.fingerprint,
            "page_path": self.ctx.page_path,
            "device_type": device_class(
                self.ctx.viewport_width, mobile_below=self.mobile_below, tablet_below=self.tablet_below
            ),
            "referrer": self.ctx.referrer or None,
            "created_at": self.ctx.now(),
        }
        try:
            self.visit_id = self.ctx.sink.open_visit(row)
        except Exception:
            log.exception("visit_insert_failed", extra={"page_path": self.ctx.page_path})
            self.visit_id = None
        return self.visit_id

    def on_scroll(self, scroll_top: float, scroll_height: float, viewport_height: float) -> None:
        if not self.ctx.can_track():
            return
        depth = scroll_depth(scroll_top, scroll_height, viewport_height)
        self.max_scroll_depth = max(self.max_scroll_depth, depth)

    def record_click(self) -> None:
        self.click_count += 1

    def dwell_seconds(self) -> int:
        return int(math.floor(self.ctx.env.now - self.page_start))

    def leave(self) -> bool:
        """Patch the open visit with scroll depth, dwell time and clicks."""
        if not self.ctx.can_track() or self.visit_id is None:
            return False
        visit_id, self.visit_id = self.visit_id, None
        patch = {
            "scroll_depth": self.max_scroll_depth,
            "time_on_page": self.dwell_seconds(),
            "click_count": self.click_count,
        }
        try:
            self.ctx.sink.close_visit(visit_id, patch)
        except Exception:
            log.exception("visit_update_failed", extra={"visit_id": visit_id, **patch})
            return False
        log.debug("visit_closed", extra={"visit_id": visit_id, **patch})
        return True
