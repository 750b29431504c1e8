from __future__ import annotations

from datetime import timedelta

from site_analytics.batcher import EventBatcher
from site_analytics.events import EventType, InteractionEvent
from site_analytics.sink import MemorySink

from conftest import FINGERPRINT, SESSION_ID, START


def _click(element_id: str) -> InteractionEvent:
    return InteractionEvent(event_type=EventType.CLICK, element_id=element_id, element_type="button")


def test_burst_coalesces_into_one_flush_in_order(env, sink, make_ctx) -> None:
    batcher = EventBatcher(make_ctx(path="/services"))

    batcher.track_event(_click("a"))
    env.run(until=0.5)
    batcher.track_event(_click("b"))
    env.run(until=1.5)
    batcher.track_event(_click("c"))

    env.run(until=3.4)          # last event at 1.5 -> flush due at 3.5
    assert sink.event_batches == []

    env.run(until=10)
    assert len(sink.event_batches) == 1
    assert [e["element_id"] for e in sink.event_batches[0]] == ["a", "b", "c"]
    assert batcher.pending == 0


def test_rows_are_stamped_with_identity_and_path(env, sink, make_ctx) -> None:
    ctx = make_ctx(path="/portfolio")
    batcher = EventBatcher(ctx)
    batcher.track_event(_click("hero"))
    ctx.page_path = "/contact"        # captured at enqueue time, not flush time
    env.run(until=3)

    (row,) = sink.events
    assert row["session_id"] == SESSION_ID
    assert row["fingerprint"] == FINGERPRINT
    assert row["page_path"] == "/portfolio"
    assert row["event_type"] == "click"
    assert row["created_at"] == START + timedelta(seconds=2)


def test_separate_quiet_periods_flush_separately(env, sink, make_ctx) -> None:
    batcher = EventBatcher(make_ctx())
    batcher.track_event(_click("a"))
    env.run(until=5)
    batcher.track_event(_click("b"))
    env.run(until=10)
    assert [len(b) for b in sink.event_batches] == [1, 1]


def test_no_consent_means_no_queue_and_no_write(env, sink, make_ctx) -> None:
    batcher = EventBatcher(make_ctx(consent=False))
    batcher.track_event(_click("a"))
    assert batcher.pending == 0
    assert not batcher.timer.armed
    assert batcher.flush_events() == 0
    env.run(until=10)
    assert sink.write_count == 0


def test_empty_flush_is_noop(env, sink, make_ctx) -> None:
    batcher = EventBatcher(make_ctx())
    assert batcher.flush_events() == 0
    assert sink.event_batches == []


def test_failed_flush_drops_batch_without_retry(env, make_ctx) -> None:
    ctx = make_ctx()
    ctx.sink = MemorySink(fail_with=RuntimeError("503 from store"))
    batcher = EventBatcher(ctx)
    batcher.track_event(_click("a"))
    batcher.track_event(_click("b"))
    env.run(until=10)

    assert batcher.pending == 0
    assert batcher.total_dropped == 2
    assert batcher.total_flushed == 0
    assert not batcher.timer.armed


def test_custom_debounce(env, sink, make_ctx) -> None:
    batcher = EventBatcher(make_ctx(), debounce_s=0.25)
    batcher.track_event(_click("a"))
    env.run(until=0.3)
    assert len(sink.event_batches) == 1
