# website.py
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from datetime import datetime, timezone, timedelta

from .tracker import Tracker

CLICK_KINDS = ("button", "link", "service_card", "project", "whatsapp")


@dataclass
class Element:
    """Clickable element on a page."""
    id: str
    kind: str = "button"
    title: Optional[str] = None
    click_prob: float = 0.3


@dataclass
class Page:
    """Page config loaded from YAML."""
    path: str
    dropoff_prob: float = 0.0
    dwell_s: Tuple[float, float] = (3.0, 30.0)
    page_height: int = 2400
    clickable_elements: List[Element] = field(default_factory=list)
    transitions: Optional[List[Tuple[str, float]]] = None  # [(next_path, prob), ...]


class WebsiteGraph:
    """
    Holds the site structure and provides a simulation clock.
    env.now is seconds since sim start.
    """
    def __init__(self, env, pages: Dict[str, Page], start_dt: datetime):
        self.env = env
        if start_dt.tzinfo is None:
            start_dt = start_dt.replace(tzinfo=timezone.utc)
        else:
            start_dt = start_dt.astimezone(timezone.utc)
        self.start_dt = start_dt
        self.pages = pages or {}

    # ----- Authoritative timestamps (UTC) -----
    def get_current_time(self) -> datetime:
        return self.start_dt + timedelta(seconds=float(self.env.now))

    # ----- Page helpers -----
    def get_page(self, path: str) -> Optional[Page]:
        return self.pages.get(path)

    def next_page(self, current: str, rng: random.Random) -> Optional[str]:
        page = self.get_page(current)
        if not page or not page.transitions:
            return None
        names = [t[0] for t in page.transitions]
        probs = [t[1] for t in page.transitions]
        s = sum(probs)
        if s <= 0:
            return None
        return rng.choices(names, weights=[p / s for p in probs], k=1)[0]


class BrowsingSession:
    """
    Drives one browser tab through the site via a Tracker.
    Requires visitor obj with: viewport_width, viewport_height, sim_rng, decide_consent(gate)
    """
    def __init__(self, env, website: WebsiteGraph, visitor, tracker: Tracker, *, prompt=None, logger=None):
        self.env = env
        self.website = website
        self.visitor = visitor
        self.tracker = tracker
        self.prompt = prompt
        self.log = logger
        self.pages_seen: List[str] = []

    @property
    def rng(self) -> random.Random:
        return self.visitor.sim_rng

    def _scroll(self, page: Page, fraction: float) -> None:
        top = max(0.0, (page.page_height - self.visitor.viewport_height) * fraction)
        self.tracker.on_scroll(top, page.page_height, self.visitor.viewport_height)
        if self.prompt:
            self.prompt.on_scroll(top, page.page_height, self.visitor.viewport_height)

    def _click(self, element: Element) -> None:
        x = self.rng.randint(0, self.visitor.viewport_width - 1)
        y = self.rng.randint(0, self.visitor.viewport_height - 1)
        element_type = "link" if element.kind == "link" else "button"
        self.tracker.track_click(element.id, element_type, x, y)
        if element.kind == "service_card":
            self.tracker.track_service_click(element.id, element.title or element.id)
        elif element.kind == "project":
            self.tracker.track_project_view(element.id, element.title or element.id)
        elif element.kind == "whatsapp":
            self.tracker.track_whatsapp_click(element.id)

    # ----- Core step: visit one page -----
    def visit_page(self, path: str):
        page = self.website.get_page(path)
        if not page:
            if self.log:
                self.log.warning("missing_page", extra={"page_path": path})
            return None

        self.pages_seen.append(path)
        lo, hi = page.dwell_s
        dwell = self.rng.uniform(lo, max(lo, hi))
        elements = [e for e in page.clickable_elements if self.rng.random() < e.click_prob]
        steps = max(1, len(elements) + 1)
        depth = self.rng.random()

        # Interleave scrolling and clicks across the dwell time
        for i in range(steps):
            yield self.env.timeout(dwell / steps)
            self._scroll(page, depth * (i + 1) / steps)
            if i < len(elements):
                self._click(elements[i])

        if self.rng.random() < max(0.0, min(1.0, page.dropoff_prob)):
            return None
        return self.website.next_page(path, self.rng)

    # ----- Full session traversal -----
    def simulate(self, start_page: str = "/", *, referrer: Optional[str] = None):
        self.tracker.start(start_page, referrer=referrer)
        self.visitor.decide_consent(self.tracker.ctx.consent)
        current = start_page
        while current:
            nxt = (yield from self.visit_page(current))
            if not nxt:
                break
            self.tracker.navigate(nxt)
            current = nxt
        self.tracker.teardown()
        if self.prompt:
            self.prompt.detach()
        return self.pages_seen
