from __future__ import annotations

from datetime import timedelta

import pytest
import simpy

from site_analytics.aggregator import compute_report
from site_analytics.sink import MemorySink
from site_analytics.simulation import run_simulation
from site_analytics.website import Element, Page, WebsiteGraph

from conftest import START


def _site() -> WebsiteGraph:
    pages = {
        "/": Page(
            path="/",
            dwell_s=(5, 20),
            page_height=3200,
            clickable_elements=[Element("hero-get-started", "button", click_prob=0.6)],
            transitions=[("/services", 0.7), ("/portfolio", 0.3)],
        ),
        "/services": Page(
            path="/services",
            dwell_s=(5, 30),
            page_height=5200,
            clickable_elements=[Element("web-development", "service_card", "Web Development", 0.7)],
            transitions=[("/contact", 1.0)],
        ),
        "/portfolio": Page(
            path="/portfolio",
            dropoff_prob=0.5,
            clickable_elements=[Element("proj-crm-suite", "project", "CRM Suite", 0.8)],
            transitions=[("/contact", 1.0)],
        ),
        "/contact": Page(
            path="/contact",
            dwell_s=(5, 15),
            clickable_elements=[Element("whatsapp-float", "whatsapp", click_prob=0.9)],
        ),
    }
    return WebsiteGraph(simpy.Environment(), pages, START)


PLAN = {
    "Organic": {"visitors": 25, "referrer": "https://www.google.com/"},
    "Direct": {"visitors": 10, "referrer": None},
}


def _run(sink, **kwargs):
    return run_simulation(
        site=_site(),
        channel_plan=PLAN,
        sink=sink,
        seed=7,
        end_dt=START + timedelta(hours=2),
        grace_period_s=3600,
        **kwargs,
    )


def test_everyone_consents() -> None:
    sink = MemorySink()
    summary = _run(sink, consent_mix={"accept_all": 1.0})

    assert summary["visitors"] > 0
    assert summary["consent"] == {"accept_all": summary["visitors"]}
    assert summary["visits_written"] == len(sink.visits) == summary["page_views"]
    assert summary["visits_closed"] == summary["visits_written"]
    assert summary["events_written"] == len(sink.events)
    assert summary["events_dropped"] == 0
    assert {e["event_type"] for e in sink.events} <= {"click", "project_view", "service_click", "whatsapp_click"}

    report = compute_report(list(sink.visits.values()), sink.events[::-1], window_days=7)
    assert report.total_page_views == summary["visits_written"]
    assert report.unique_sessions == summary["visitors"]


def test_nobody_consents() -> None:
    sink = MemorySink()
    summary = _run(sink, consent_mix={"ignore": 0.5, "necessary_only": 0.5})
    assert summary["visitors"] > 0
    assert sink.write_count == 0
    assert summary["visits_written"] == 0
    assert summary["events_written"] == 0


def test_same_seed_same_summary() -> None:
    a = _run(MemorySink(), consent_mix={"accept_all": 1.0})
    b = _run(MemorySink(), consent_mix={"accept_all": 1.0})
    keys = ("visitors", "page_views", "visits_written", "events_written", "prompts_opened")
    assert {k: a[k] for k in keys} == {k: b[k] for k in keys}


def test_failing_sink_drops_and_continues() -> None:
    sink = MemorySink(fail_with=ConnectionError("store unreachable"))
    summary = _run(sink, consent_mix={"accept_all": 1.0})
    assert summary["visits_written"] == 0
    assert summary["events_written"] == 0
    assert summary["visitors"] > 0


def test_rejects_bad_window() -> None:
    with pytest.raises(ValueError):
        run_simulation(site=_site(), channel_plan=PLAN, sink=MemorySink(), end_dt=START)


def test_rejects_unknown_start_page() -> None:
    with pytest.raises(ValueError):
        run_simulation(site=_site(), channel_plan=PLAN, sink=MemorySink(),
                       end_dt=START + timedelta(hours=1), start_page="/pricing")
