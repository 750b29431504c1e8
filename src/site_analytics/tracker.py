
from __future__ import annotations

from typing import Optional

from .batcher import EventBatcher, DEFAULT_DEBOUNCE_S
from .consent import ConsentState
from .context import TrackingContext
from .events import EventType, InteractionEvent
from .pageviews import PageViewRecorder, MOBILE_MAX_WIDTH, TABLET_MAX_WIDTH
from .logging_utils import get_logger

log = get_logger("tracker")


class Tracker:
    """
    Per-tab analytics: page visits on every route change plus batched
    interaction events. Every call is a no-op without analytics consent.
    """

    def __init__(
        self,
        ctx: TrackingContext,
        *,
        debounce_s: float = DEFAULT_DEBOUNCE_S,
        mobile_below: int = MOBILE_MAX_WIDTH,
        tablet_below: int = TABLET_MAX_WIDTH,
    ):
        self.ctx = ctx
        self.batcher = EventBatcher(ctx, debounce_s=debounce_s)
        self.pages = PageViewRecorder(ctx, mobile_below=mobile_below, tablet_below=tablet_below)
        self._started = False
        self._unsubscribe = ctx.consent.subscribe(self._on_consent_change)

    @classmethod
    def from_config(cls, ctx: TrackingContext, cfg: dict) -> "Tracker":
        cfg = cfg or {}
        bp = cfg.get("device_breakpoints") or {}
        return cls(
            ctx,
            debounce_s=float(cfg.get("debounce_ms", DEFAULT_DEBOUNCE_S * 1000)) / 1000.0,
            mobile_below=int(bp.get("mobile_below", MOBILE_MAX_WIDTH)),
            tablet_below=int(bp.get("tablet_below", TABLET_MAX_WIDTH)),
        )

    # ----- Route lifecycle -----
    def start(self, path: str, *, referrer: Optional[str] = None) -> None:
        self.ctx.page_path = path
        self.ctx.referrer = referrer
        self._started = True
        self.pages.enter()

    def navigate(self, path: str) -> None:
        """Leave the current page (patch visit, flush events) and enter `path`."""
        if not self._started:
            self.start(path)
            return
        self._leave_current(reason="navigate")
        self.ctx.page_path = path
        self.pages.enter()

    def teardown(self) -> None:
        """Final best-effort write when the tab goes away."""
        if self._started:
            self._leave_current(reason="teardown")
            self._started = False
        self._unsubscribe()
        self._unsubscribe = lambda: None

    def _leave_current(self, *, reason: str) -> None:
        self.pages.leave()
        self.batcher.cancel_pending_flush()
        self.batcher.flush_events(reason=reason)

    def _on_consent_change(self, old: ConsentState, new: ConsentState) -> None:
        if old.analytics == new.analytics:
            return
        if not new.analytics:
            # withdrawn: nothing queued under the old consent may be written
            self.batcher.discard_pending()
            self.pages.reset()
        elif self._started:
            # granted mid-page: this page counts from now
            self.pages.enter()
        else:
            return
        log.info("tracking_consent_changed", extra={"analytics": new.analytics, "page_path": self.ctx.page_path})

    # ----- Instrumentation -----
    def track_event(self, event: InteractionEvent) -> None:
        self.batcher.track_event(event)

    def on_scroll(self, scroll_top: float, scroll_height: float, viewport_height: float) -> None:
        self.pages.on_scroll(scroll_top, scroll_height, viewport_height)

    def track_click(self, element_id: str, element_type: str, x: int, y: int) -> None:
        self.pages.record_click()
        self.track_event(InteractionEvent(
            event_type=EventType.CLICK,
            element_id=element_id,
            element_type=element_type,
            x_position=int(x),
            y_position=int(y),
        ))

    def track_project_view(self, project_id: str, project_title: str) -> None:
        self.track_event(InteractionEvent(
            event_type=EventType.PROJECT_VIEW,
            element_type="project",
            project_id=project_id,
            metadata={"title": project_title, "category": "portfolio"},
        ))

    def track_service_click(self, service_id: str, service_title: str) -> None:
        self.track_event(InteractionEvent(
            event_type=EventType.SERVICE_CLICK,
            element_id=service_id,
            element_type="service_card",
            metadata={"service_title": service_title, "category": "services"},
        ))

    def track_whatsapp_click(self, source: str, message: Optional[str] = None) -> None:
        metadata = {"source": source, "category": "contact"}
        if message:
            metadata["message_length"] = len(message)
        self.track_event(InteractionEvent(
            event_type=EventType.WHATSAPP_CLICK,
            element_id=source,
            element_type="whatsapp_button",
            metadata=metadata,
        ))
