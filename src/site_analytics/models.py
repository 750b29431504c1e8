# models.py
import os
from sqlalchemy import (
    Table, Column, MetaData, Integer, String, DateTime, JSON, Index, func
)

SCHEMA = (os.getenv("DB_SCHEMA") or "").strip() or None
metadata = MetaData(schema=SCHEMA)

# One row per page load; patched once on leave with scroll/dwell/clicks.
visitor_analytics = Table(
    "visitor_analytics", metadata,
    Column("id", String(36), primary_key=True),
    Column("session_id", String, nullable=False),
    Column("fingerprint", String),
    Column("page_path", String, nullable=False),
    Column("device_type", String),                  # desktop | tablet | mobile
    Column("referrer", String),
    Column("scroll_depth", Integer),                # 0..100, max observed
    Column("time_on_page", Integer),                # seconds
    Column("click_count", Integer),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)
Index("ix_visitor_analytics_created", visitor_analytics.c.created_at)
Index("ix_visitor_analytics_session_path", visitor_analytics.c.session_id, visitor_analytics.c.page_path)

# Write-once interaction rows.
interaction_events = Table(
    "interaction_events", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("session_id", String, nullable=False),
    Column("fingerprint", String),
    Column("event_type", String, nullable=False),
    Column("element_id", String),
    Column("element_type", String),
    Column("x_position", Integer),
    Column("y_position", Integer),
    Column("page_path", String, nullable=False),
    Column("project_id", String),
    Column("metadata", JSON),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)
Index("ix_interaction_events_created", interaction_events.c.created_at)
Index("ix_interaction_events_session", interaction_events.c.session_id)
