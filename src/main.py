# src/main.py
import json
from pathlib import Path
from datetime import datetime, timezone

import simpy

from site_analytics.website import Page, WebsiteGraph
from site_analytics.simulation import run_simulation
from site_analytics.sink import DatabaseSink, MemorySink
from site_analytics.aggregator import AnalyticsDashboard, report_from_rows
from site_analytics import db_utils
from site_analytics.config_utils import load_yaml, website_factory_from_yaml, build_channel_plan, tracking_settings
from site_analytics.logging_utils import init_logging, get_logger


init_logging(reset=True)
log = get_logger("app")

CONFIG_DIR = Path(__file__).resolve().parents[1] / "configs"


def _parse_utc(ts: str) -> datetime:
    return datetime.fromisoformat(ts.replace("Z", "+00:00")).astimezone(timezone.utc)


def main():
    log.info("starting_app")
    sim_cfg   = load_yaml(CONFIG_DIR / "simulation.default.yaml")
    ch_cfg    = load_yaml(CONFIG_DIR / "channels.yaml")
    web_cfg   = load_yaml(CONFIG_DIR / "website.graph.yaml")
    track_cfg = tracking_settings(load_yaml(CONFIG_DIR / "tracking.yaml"))

    seed  = int(sim_cfg.get("seed", 42))
    grace = int(sim_cfg.get("grace_period_s", 600))

    start_dt = _parse_utc(sim_cfg["start_dt_utc"])
    end_dt   = _parse_utc(sim_cfg["end_dt_utc"])
    if not (end_dt > start_dt):
        raise ValueError("end_dt_utc must be strictly greater than start_dt_utc")

    env = simpy.Environment()
    pages = website_factory_from_yaml(web_cfg) or {"/": Page(path="/", dropoff_prob=1.0)}
    site = WebsiteGraph(env, pages, start_dt=start_dt)

    dry_run = bool(sim_cfg.get("dry_run", False))
    if dry_run:
        sink = MemorySink()
    else:
        engine = db_utils.get_engine()
        db_utils.ensure_schema_and_tables(engine=engine)
        if sim_cfg.get("reset_tables", True):
            db_utils.reset_tables(mode="truncate", engine=engine)
        sink = DatabaseSink(engine)

    summary = run_simulation(
        site=site,
        channel_plan=build_channel_plan(ch_cfg),
        sink=sink,
        seed=seed,
        end_dt=end_dt,
        grace_period_s=grace,
        tracking_cfg=track_cfg,
        consent_mix=sim_cfg.get("consent_mix"),
        start_page=sim_cfg.get("start_page", "/"),
    )
    log.info("run_summary", extra={"visitors": summary["visitors"], "events_written": summary["events_written"]})
    print(json.dumps(summary, default=str, indent=2))

    window = track_cfg["report"]["default_window_days"]
    if dry_run:
        report = report_from_rows(
            sink.visits.values(),
            sink.events,
            window,
            now=site.get_current_time(),
            event_limit=track_cfg["report"]["event_fetch_limit"],
        )
    else:
        dashboard = AnalyticsDashboard(
            sink.engine, now=site.get_current_time, event_limit=track_cfg["report"]["event_fetch_limit"]
        )
        report = dashboard.refresh(window)
    if report is not None:
        print(json.dumps(report.to_dict(), default=str, indent=2))
    log.info("app_completed")


if __name__ == "__main__":
    main()
