
from __future__ import annotations

import os
import csv
import json
import time
import uuid
from io import StringIO
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from .models import metadata, visitor_analytics, interaction_events, SCHEMA
from .logging_utils import get_logger

log = get_logger("db")


# -----------------------------------------------------------------------------
# Engine & Schema
# -----------------------------------------------------------------------------
def get_database_url() -> str:
    load_dotenv()
    PG_USER = os.getenv("DB_USER", "postgres")
    PG_PASS = os.getenv("DB_PASSWORD", "postgres")
    PG_HOST = os.getenv("DB_HOST", "127.0.0.1")
    PG_PORT = os.getenv("DB_PORT", "5432")
    PG_DB   = os.getenv("DB_DATABASE", "postgres")
    return (
        os.getenv("DATABASE_URL")
        or os.getenv("POSTGRES_DSN")
        or f"postgresql+psycopg2://{PG_USER}:{PG_PASS}@{PG_HOST}:{PG_PORT}/{PG_DB}"
    )


def get_engine(url: str | None = None) -> Engine:
    url = url or get_database_url()
    connect_args = {}
    if url.startswith("postgresql"):
        connect_args["connect_timeout"] = int(os.getenv("DB_CONNECT_TIMEOUT", "5"))
    return create_engine(url, pool_pre_ping=True, future=True, connect_args=connect_args)


def _qual(table: str) -> str:
    return f"{SCHEMA}.{table}" if SCHEMA else table


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _coerce_utc(dt: datetime | str | None) -> datetime | None:
    if dt is None:
        return None
    if isinstance(dt, str):
        dt = datetime.fromisoformat(dt.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _without_none_timestamp(row: Dict[str, Any]) -> Dict[str, Any]:
    # Let server_default fill created_at when the caller had no clock
    d = dict(row)
    if d.get("created_at") is None:
        d.pop("created_at", None)
    else:
        d["created_at"] = _coerce_utc(d["created_at"])
    return d


# -----------------------------------------------------------------------------
# Page visits
# -----------------------------------------------------------------------------
def insert_page_visit(row: Dict[str, Any], *, engine: Engine | None = None) -> str:
    """Insert one visitor_analytics row; returns its id (the visit handle)."""
    d = _without_none_timestamp(row)
    d["id"] = str(d.get("id") or uuid.uuid4())
    engine = engine or get_engine()
    with engine.begin() as conn:
        conn.execute(visitor_analytics.insert(), d)
    log.debug("visit_insert_done", extra={"visit_id": d["id"], "page_path": d.get("page_path")})
    return d["id"]


def update_page_visit(visit_id: str, patch: Dict[str, Any], *, engine: Engine | None = None) -> int:
    """Patch scroll/dwell/click columns on one visit; returns affected row count."""
    allowed = {"scroll_depth", "time_on_page", "click_count"}
    values = {k: v for k, v in patch.items() if k in allowed}
    if not values:
        return 0
    engine = engine or get_engine()
    with engine.begin() as conn:
        res = conn.execute(
            visitor_analytics.update()
            .where(visitor_analytics.c.id == str(visit_id))
            .values(**values)
        )
    if res.rowcount == 0:
        log.warning("visit_update_missed", extra={"visit_id": visit_id})
    return res.rowcount


# -----------------------------------------------------------------------------
# Interaction events
# -----------------------------------------------------------------------------
def write_interaction_events(rows: List[dict], engine: Engine | None = None) -> int:
    """
    Bulk INSERT into interaction_events.
    PostgreSQL goes through COPY; everything else (and COPY failures) uses executemany.
    Returns number of input rows.
    """
    if not rows:
        return 0

    engine = engine or get_engine()
    normalized = [_without_none_timestamp(r) for r in rows]

    table_cols = [c.name for c in interaction_events.c]
    cols = [c for c in table_cols if c != "id" and any(c in r for r in normalized)]
    if not cols:
        return 0

    if engine.dialect.name == "postgresql":
        try:
            _copy_rows(engine, cols, normalized)
            log.info(
                "events_insert_done",
                extra={"table": _qual(interaction_events.name), "rows_in_batch": len(rows), "path": "copy"},
            )
            return len(rows)
        except Exception:
            log.exception("events_copy_failed_falling_back_to_executemany")

    # executemany needs a uniform key set per statement
    uniform = [{c: r.get(c) for c in cols} for r in normalized]
    with engine.begin() as conn:
        conn.execute(interaction_events.insert(), uniform)
    log.info(
        "events_insert_done",
        extra={"table": _qual(interaction_events.name), "rows_in_batch": len(rows), "path": "executemany"},
    )
    return len(rows)


def _copy_rows(engine: Engine, cols: List[str], rows: List[dict]) -> None:
    buf = StringIO()
    writer = csv.DictWriter(buf, fieldnames=cols, extrasaction="ignore")
    writer.writeheader()
    for r in rows:
        out = {c: r.get(c) for c in cols}
        if out.get("metadata") is not None:
            out["metadata"] = json.dumps(out["metadata"])
        if isinstance(out.get("created_at"), datetime):
            out["created_at"] = out["created_at"].isoformat()
        writer.writerow(out)
    buf.seek(0)

    fq = f'"{SCHEMA}".{interaction_events.name}' if SCHEMA else interaction_events.name
    raw = engine.raw_connection()
    try:
        cur = raw.cursor()
        sql = f'COPY {fq} ({", ".join(cols)}) FROM STDIN WITH (FORMAT CSV, HEADER TRUE)'
        try:
            # psycopg2 path
            cur.copy_expert(sql, buf)
        except AttributeError:
            # psycopg3 path
            with cur.copy(sql) as cp:
                cp.write(buf.getvalue().encode("utf-8"))
        raw.commit()
    finally:
        raw.close()


# -----------------------------------------------------------------------------
# Reads (admin reporting)
# -----------------------------------------------------------------------------
def fetch_page_visits_since(since: datetime, *, engine: Engine | None = None) -> List[Dict[str, Any]]:
    engine = engine or get_engine()
    q = select(visitor_analytics).where(visitor_analytics.c.created_at >= _coerce_utc(since))
    with engine.connect() as conn:
        return [dict(r._mapping) for r in conn.execute(q)]


def fetch_recent_events_since(
    since: datetime, *, limit: int = 50, engine: Engine | None = None
) -> List[Dict[str, Any]]:
    engine = engine or get_engine()
    q = (
        select(interaction_events)
        .where(interaction_events.c.created_at >= _coerce_utc(since))
        .order_by(interaction_events.c.created_at.desc(), interaction_events.c.id.desc())
        .limit(limit)
    )
    with engine.connect() as conn:
        return [dict(r._mapping) for r in conn.execute(q)]


# -----------------------------------------------------------------------------
# Ensure schema / reset (dev)
# -----------------------------------------------------------------------------
def ensure_schema_and_tables(*, engine: Engine | None = None) -> None:
    engine = engine or get_engine()
    t0 = time.perf_counter()
    with engine.begin() as conn:
        if SCHEMA and engine.dialect.name == "postgresql":
            conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{SCHEMA}"'))
        metadata.create_all(conn)
    log.info("schema_ready", extra={
        "schema": SCHEMA or "default",
        "tables": sorted(t.name for t in metadata.sorted_tables),
        "seconds": round(time.perf_counter() - t0, 3),
    })


def reset_tables(mode: str = "delete", *, engine: Engine | None = None) -> None:
    """Dangerous: dev-only helper. Empties both telemetry tables."""
    if mode not in ("truncate", "delete"):
        raise ValueError("reset_tables: mode must be 'truncate' or 'delete'")
    engine = engine or get_engine()
    tables = [interaction_events, visitor_analytics]
    with engine.begin() as conn:
        if mode == "truncate" and engine.dialect.name == "postgresql":
            qualified = ", ".join(_qual(t.name) for t in tables)
            conn.execute(text(f"TRUNCATE TABLE {qualified} RESTART IDENTITY"))
        else:
            for t in tables:
                conn.execute(t.delete())
    log.info("db_reset_done", extra={"mode": mode, "tables": [t.name for t in tables]})


__all__ = [
    "get_engine",
    "get_database_url",
    "insert_page_visit",
    "update_page_visit",
    "write_interaction_events",
    "fetch_page_visits_since",
    "fetch_recent_events_since",
    "ensure_schema_and_tables",
    "reset_tables",
]
