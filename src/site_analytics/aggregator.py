"""
Admin reporting over raw telemetry rows.

All aggregation happens in Python after fetching rows for the window: every
visit row, but only the 50 most recent events. Event-derived tables are
therefore samples, not totals.

`unique_visitors` counts distinct session ids, the same as `unique_sessions`.
The fingerprint is stored but not joined in; `unique_fingerprints` is
reported beside it so the two can be compared.
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.engine import Engine

from . import db_utils
from .pageviews import js_round
from .logging_utils import get_logger, log_time

log = get_logger("aggregator")

REPORT_WINDOWS_DAYS = (7, 30, 90)
EVENT_FETCH_LIMIT = 50
TOP_N = 10
RECENT_EVENTS = 10


@dataclass
class AnalyticsReport:
    window_days: int
    total_page_views: int = 0
    unique_sessions: int = 0
    unique_visitors: int = 0
    unique_fingerprints: int = 0
    avg_time_on_page: int = 0
    avg_scroll_depth: int = 0
    device_breakdown: Dict[str, int] = field(default_factory=lambda: {"desktop": 0, "tablet": 0, "mobile": 0})
    top_pages: List[Dict[str, Any]] = field(default_factory=list)
    recent_events: List[Dict[str, Any]] = field(default_factory=list)
    top_event_types: List[Dict[str, Any]] = field(default_factory=list)
    top_categories: List[Dict[str, Any]] = field(default_factory=list)
    events_sampled: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _top(counts: Dict[str, int], key_name: str, value_name: str, n: int = TOP_N) -> List[Dict[str, Any]]:
    # sorted() is stable: ties keep first-seen order
    ranked = sorted(counts.items(), key=lambda kv: -kv[1])[:n]
    return [{key_name: k, value_name: v} for k, v in ranked]


def _count(values: Iterable[Any]) -> Dict[Any, int]:
    out: Dict[Any, int] = {}
    for v in values:
        out[v] = out.get(v, 0) + 1
    return out


def _mean_positive(values: Iterable[Optional[int]]) -> int:
    pos = [v for v in values if v is not None and v > 0]
    return js_round(sum(pos) / len(pos)) if pos else 0


def _event_category(ev: Dict[str, Any]) -> str:
    meta = ev.get("metadata") or {}
    if isinstance(meta, dict) and meta.get("category"):
        return str(meta["category"])
    return ev.get("category") or "uncategorized"


def compute_report(
    visits: Sequence[Dict[str, Any]],
    events: Sequence[Dict[str, Any]],
    *,
    window_days: int,
) -> AnalyticsReport:
    """Aggregate fetched rows. `events` must be newest first."""
    report = AnalyticsReport(window_days=window_days)

    report.total_page_views = len(visits)
    report.unique_sessions = len({v.get("session_id") for v in visits})
    report.unique_visitors = report.unique_sessions
    report.unique_fingerprints = len({v.get("fingerprint") for v in visits if v.get("fingerprint")})

    report.avg_time_on_page = _mean_positive(v.get("time_on_page") for v in visits)
    report.avg_scroll_depth = _mean_positive(v.get("scroll_depth") for v in visits)

    for v in visits:
        device = v.get("device_type")
        if device in report.device_breakdown:
            report.device_breakdown[device] += 1

    report.top_pages = _top(_count(v.get("page_path") for v in visits), "page_path", "views")

    report.recent_events = [
        {
            "event_type": e.get("event_type"),
            "element_type": e.get("element_type") or "unknown",
            "created_at": e.get("created_at"),
        }
        for e in events[:RECENT_EVENTS]
    ]
    report.top_event_types = _top(_count(e.get("event_type") for e in events), "event_type", "count")
    report.top_categories = _top(_count(_event_category(e) for e in events), "category", "count")
    report.events_sampled = len(events)
    return report


def window_start(days: int, *, now: Optional[datetime] = None) -> datetime:
    if days not in REPORT_WINDOWS_DAYS:
        raise ValueError(f"report window must be one of {REPORT_WINDOWS_DAYS}, got {days}")
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=days)


def report_from_rows(
    visits: Iterable[Dict[str, Any]],
    events: Iterable[Dict[str, Any]],
    days: int,
    *,
    now: Optional[datetime] = None,
    event_limit: int = EVENT_FETCH_LIMIT,
) -> AnalyticsReport:
    """Same window and event sampling as fetch_report, over rows already in memory."""
    since = window_start(days, now=now)
    visits = [v for v in visits if v.get("created_at") is not None and v["created_at"] >= since]
    events = sorted(
        (e for e in events if e.get("created_at") is not None and e["created_at"] >= since),
        key=lambda e: e["created_at"],
        reverse=True,
    )[:event_limit]
    return compute_report(visits, events, window_days=days)


@log_time(log)
def fetch_report(
    days: int,
    *,
    engine: Engine | None = None,
    now: Optional[datetime] = None,
    event_limit: int = EVENT_FETCH_LIMIT,
) -> AnalyticsReport:
    since = window_start(days, now=now)
    visits = db_utils.fetch_page_visits_since(since, engine=engine)
    events = db_utils.fetch_recent_events_since(since, limit=event_limit, engine=engine)
    return compute_report(visits, events, window_days=days)


class AnalyticsDashboard:
    """
    Holds the last good report. A failed refresh is logged and the previous
    report (or None) stays in place.
    """

    def __init__(
        self,
        engine: Engine | None = None,
        *,
        fetch: Optional[Callable[..., AnalyticsReport]] = None,
        now: Optional[Callable[[], datetime]] = None,
        event_limit: int = EVENT_FETCH_LIMIT,
    ):
        self.engine = engine
        self.event_limit = event_limit
        self._fetch = fetch or fetch_report
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.report: Optional[AnalyticsReport] = None
        self.window_days = REPORT_WINDOWS_DAYS[0]

    def refresh(self, days: Optional[int] = None) -> Optional[AnalyticsReport]:
        days = days or self.window_days
        window_start(days)  # validate before touching state
        try:
            report = self._fetch(days, engine=self.engine, now=self._now(), event_limit=self.event_limit)
        except Exception:
            log.exception("analytics_fetch_failed", extra={"window_days": days})
            return self.report
        # window_days always describes the report being held
        self.report, self.window_days = report, days
        return self.report
