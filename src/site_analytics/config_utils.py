# src/site_analytics/config_utils.py
from pathlib import Path
from typing import Dict, List, Tuple

import yaml

from .website import Element, Page, CLICK_KINDS
from .aggregator import REPORT_WINDOWS_DAYS
from .logging_utils import get_logger

log = get_logger("config")


def load_yaml(p: Path) -> dict:
    return yaml.safe_load(p.read_text()) if p.exists() else {}


def tracking_settings(raw_cfg: dict | None) -> dict:
    """
    Normalize tracking.yaml.

    Expected YAML:
      debounce_ms: 2000
      device_breakpoints: {mobile_below: 768, tablet_below: 1024}
      report: {default_window_days: 7, event_fetch_limit: 50}
    """
    cfg = dict(raw_cfg or {})
    debounce_ms = int(cfg.get("debounce_ms", 2000))
    if debounce_ms < 0:
        raise ValueError("debounce_ms must be >= 0")

    bp = cfg.get("device_breakpoints") or {}
    mobile_below = int(bp.get("mobile_below", 768))
    tablet_below = int(bp.get("tablet_below", 1024))
    if not (0 < mobile_below <= tablet_below):
        raise ValueError("device_breakpoints: need 0 < mobile_below <= tablet_below")

    report = cfg.get("report") or {}
    window = int(report.get("default_window_days", 7))
    if window not in REPORT_WINDOWS_DAYS:
        raise ValueError(f"report.default_window_days must be one of {REPORT_WINDOWS_DAYS}")

    return {
        "debounce_ms": debounce_ms,
        "device_breakpoints": {"mobile_below": mobile_below, "tablet_below": tablet_below},
        "report": {
            "default_window_days": window,
            "event_fetch_limit": int(report.get("event_fetch_limit", 50)),
        },
    }


def website_factory_from_yaml(cfg: dict) -> Dict[str, Page]:
    """
    Build Page objects from YAML, keyed by path.

      "/services":
        dropoff_prob: 0.3
        dwell_s: [10, 90]
        page_height: 5200
        clickable_elements:
          - {id: svc-web, kind: service_card, title: Web Development, click_prob: 0.4}
        transitions: [["/contact", 0.6], ["/", 0.4]]
    """
    pages: Dict[str, Page] = {}

    for path, spec in (cfg or {}).items():
        spec = spec or {}
        elements: List[Element] = []
        for raw in spec.get("clickable_elements") or []:
            if isinstance(raw, str):
                raw = {"id": raw}
            kind = raw.get("kind", "button")
            if kind not in CLICK_KINDS:
                log.warning("unknown_element_kind", extra={"page_path": path, "kind": kind})
                kind = "button"
            elements.append(Element(
                id=str(raw["id"]),
                kind=kind,
                title=raw.get("title"),
                click_prob=float(raw.get("click_prob", 0.3)),
            ))

        transitions: List[Tuple[str, float]] = []
        for t in spec.get("transitions") or []:
            if isinstance(t, (list, tuple)) and len(t) == 2:
                transitions.append((str(t[0]), float(t[1])))

        dwell = spec.get("dwell_s") or [3, 30]
        pages[str(path)] = Page(
            path=str(path),
            dropoff_prob=float(spec.get("dropoff_prob", 0.0)),
            dwell_s=(float(dwell[0]), float(dwell[1])),
            page_height=int(spec.get("page_height", 2400)),
            clickable_elements=elements,
            transitions=transitions or None,
        )

    missing_targets = [
        (pname, tgt)
        for pname, p in pages.items()
        for tgt, _ in (p.transitions or [])
        if tgt not in pages
    ]
    if missing_targets:
        log.warning("missing_transition_targets", extra={"targets": missing_targets})

    return pages


def build_channel_plan(raw_cfg: dict | None) -> dict[str, dict]:
    """
    Normalize raw YAML channel config into the format run_simulation expects.

    Expected YAML:
      Organic:
        visitors: 120
        referrer: https://www.google.com/

    Falls back to defaults if no config provided.
    """
    if not raw_cfg:
        return {
            "Organic":  {"visitors": 60, "referrer": "https://www.google.com/"},
            "Social":   {"visitors": 25, "referrer": "https://www.facebook.com/"},
            "Direct":   {"visitors": 15, "referrer": None},
        }

    plan: dict[str, dict] = {}
    for ch, spec in raw_cfg.items():
        spec = spec or {}
        plan[ch] = {
            "visitors": int(spec.get("visitors", 0)),
            "referrer": spec.get("referrer"),
        }
    return plan
