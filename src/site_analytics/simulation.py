# src/site_analytics/simulation.py
from __future__ import annotations

import uuid
import random
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

import simpy
from faker import Faker

from .website import WebsiteGraph, BrowsingSession
from .visitor import VisitorAgent
from .context import TrackingContext
from .tracker import Tracker
from .prompt import ConsultationTrigger
from .sink import TelemetrySink
from .logging_utils import get_logger

log = get_logger("sim")


class CountingSink:
    """Wraps a sink and tallies what reached it."""

    def __init__(self, inner: TelemetrySink):
        self.inner = inner
        self.events_written = 0
        self.visits_opened = 0
        self.visits_closed = 0

    def record_events(self, rows):
        self.inner.record_events(rows)
        self.events_written += len(rows)

    def open_visit(self, row):
        visit_id = self.inner.open_visit(row)
        self.visits_opened += 1
        return visit_id

    def close_visit(self, visit_id, patch):
        self.inner.close_visit(visit_id, patch)
        self.visits_closed += 1


# ---------------------------------------------------------------------------
# Arrival process
# ---------------------------------------------------------------------------
def _generate_arrivals(
    env: simpy.Environment,
    website: WebsiteGraph,
    channel_name: str,
    referrer: Optional[str],
    rng: random.Random,
    faker: Faker,
    sink: TelemetrySink,
    sessions_out: List[BrowsingSession],
    *,
    n_visitors: int,
    window_s: float,
    tracking_cfg: dict,
    consent_mix: Optional[Dict[str, float]],
    logger: logging.Logger,
    start_page: str = "/",
):
    """Spawn n_visitors with exponential gaps spread over the window."""
    if n_visitors <= 0:
        return
    rate_per_s = n_visitors / window_s if window_s > 0 else 0.0
    spawned = 0

    def _spawn_one():
        nonlocal spawned
        v = VisitorAgent(
            unique_id=str(uuid.UUID(int=rng.getrandbits(128))),
            model=None,
            channel=channel_name,
            consent_mix=consent_mix,
            rng=random.Random(rng.getrandbits(64)),
            faker=faker,
        )
        ctx = TrackingContext.from_browser(
            env,
            sink,
            session_storage=v.session_storage,
            local_storage=v.local_storage,
            read_signals=v.read_signals,
            start_dt=website.start_dt,
            rng=v.sim_rng,
            viewport_width=v.viewport_width,
        )
        tracker = Tracker.from_config(ctx, tracking_cfg)
        prompt = ConsultationTrigger(ctx, v.local_storage)
        prompt.on_open = lambda reason, p=prompt: p.close()
        sess = BrowsingSession(env, website, v, tracker, prompt=prompt, logger=logger)
        sessions_out.append(sess)
        env.process(sess.simulate(start_page=start_page, referrer=referrer))
        spawned += 1
        logger.debug("agent_spawn", extra={"channel": channel_name, "env_now": float(env.now)})

    for _ in range(n_visitors):
        gap = rng.expovariate(rate_per_s) if rate_per_s > 0 else 0.0
        if env.now + gap >= window_s:
            break
        if gap > 0:
            yield env.timeout(gap)
        _spawn_one()

    logger.info("arrivals_done", extra={"channel": channel_name, "planned": n_visitors, "actual": spawned})


# ---------------------------------------------------------------------------
# Simulation runner
# ---------------------------------------------------------------------------
def run_simulation(
    *,
    site: WebsiteGraph,
    channel_plan: Dict[str, Dict],
    sink: TelemetrySink,
    seed: int = 42,
    end_dt: Optional[datetime] = None,
    grace_period_s: int = 600,
    tracking_cfg: Optional[dict] = None,
    consent_mix: Optional[Dict[str, float]] = None,
    start_page: str = "/",
) -> dict:
    rng = random.Random(seed)
    faker = Faker()
    faker.seed_instance(seed)

    start_dt = site.start_dt
    if end_dt is None or not (end_dt > start_dt):
        raise ValueError("end_dt is required and must be strictly greater than start_dt")
    if start_page not in site.pages:
        raise ValueError(f"start_page {start_page!r} is not in the site graph")

    env = site.env
    window_s = int((end_dt - start_dt).total_seconds())
    counting = CountingSink(sink)
    sessions: List[BrowsingSession] = []

    for ch, cfg in channel_plan.items():
        env.process(_generate_arrivals(
            env,
            site,
            ch,
            cfg.get("referrer"),
            rng,
            faker,
            counting,
            sessions,
            n_visitors=int(cfg.get("visitors", 0)),
            window_s=window_s,
            tracking_cfg=tracking_cfg or {},
            consent_mix=consent_mix,
            logger=log,
            start_page=start_page,
        ))

    run_id = f"run_{seed}_{int(start_dt.timestamp())}"
    log.info("sim_start", extra={
        "run_id": run_id,
        "seed": seed,
        "start_dt": start_dt.isoformat(),
        "end_dt": end_dt.isoformat(),
        "sim_window_seconds": window_s,
        "grace_period_s": grace_period_s,
        "channels": {k: v.get("visitors") for k, v in channel_plan.items()},
    })

    env.run(until=window_s + int(grace_period_s))

    consent_counts: Dict[str, int] = {}
    for s in sessions:
        consent_counts[s.visitor.consent_choice] = consent_counts.get(s.visitor.consent_choice, 0) + 1
    prompts_opened = sum(1 for s in sessions if s.prompt and s.prompt.has_triggered)
    events_dropped = sum(s.tracker.batcher.total_dropped for s in sessions)

    summary = {
        "run_id": run_id,
        "seed": seed,
        "visitors": len(sessions),
        "page_views": sum(len(s.pages_seen) for s in sessions),
        "visits_written": counting.visits_opened,
        "visits_closed": counting.visits_closed,
        "events_written": counting.events_written,
        "events_dropped": events_dropped,
        "consent": consent_counts,
        "prompts_opened": prompts_opened,
        "start_dt": start_dt,
        "end_dt": end_dt,
        "ended_at": site.get_current_time(),
        "sim_window_seconds": window_s,
    }
    log.info("sim_complete", extra={k: v for k, v in summary.items() if k not in ("start_dt", "end_dt", "ended_at")})
    return summary
