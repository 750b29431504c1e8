"""Session id, fingerprint hashing and the storage fallbacks."""
from __future__ import annotations

import random
import re

import pytest

from site_analytics.identity import (
    EnvironmentSignals,
    djb2_hex,
    generate_fingerprint,
    get_fingerprint,
    get_session_id,
)
from site_analytics.storage import (
    DisabledStorage,
    MemoryStorage,
    FINGERPRINT_KEY,
    SESSION_ID_KEY,
)

SIGNALS = EnvironmentSignals(
    user_agent="Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36",
    language="en-US",
    platform="Linux x86_64",
    screen_width=1920,
    screen_height=1080,
    color_depth=24,
    timezone="Asia/Dhaka",
)


# ===========================================================================
# djb2 / fingerprint
# ===========================================================================

def test_djb2_known_values() -> None:
    assert djb2_hex("") == "1505"          # 5381
    assert djb2_hex("a") == "2b5c4"        # (5381*33) ^ 97


def test_djb2_stays_32_bit() -> None:
    token = djb2_hex("x" * 5000)
    assert len(token) <= 8
    assert int(token, 16) < 2 ** 32


def test_generate_fingerprint_is_deterministic() -> None:
    again = EnvironmentSignals(**SIGNALS.__dict__)
    assert generate_fingerprint(SIGNALS) == generate_fingerprint(again)
    assert re.fullmatch(r"[0-9a-f]{1,8}", generate_fingerprint(SIGNALS))


def test_generate_fingerprint_uses_raw_signal_string() -> None:
    raw = "::".join([
        SIGNALS.user_agent, "en-US", "Linux x86_64", "1920x1080@24", "Asia/Dhaka",
    ])
    assert generate_fingerprint(SIGNALS) == djb2_hex(raw)


@pytest.mark.parametrize("field,value", [
    ("user_agent", "curl/8.0"),
    ("language", "bn-BD"),
    ("screen_width", 1366),
    ("timezone", "Europe/Berlin"),
])
def test_fingerprint_changes_with_signals(field: str, value) -> None:
    changed = EnvironmentSignals(**{**SIGNALS.__dict__, field: value})
    assert generate_fingerprint(changed) != generate_fingerprint(SIGNALS)


def test_timezone_falls_back_to_utc_offset() -> None:
    no_tz = EnvironmentSignals(**{**SIGNALS.__dict__, "timezone": None, "utc_offset_minutes": -360})
    assert no_tz.timezone_label == "-360"


def test_canvas_sample_only_appended_when_present() -> None:
    with_canvas = EnvironmentSignals(**{**SIGNALS.__dict__, "canvas_sample": "data:image/png;base64,iVBOR"})
    assert generate_fingerprint(with_canvas) != generate_fingerprint(SIGNALS)


# ===========================================================================
# get_session_id
# ===========================================================================

def test_session_id_format_and_reuse() -> None:
    storage = MemoryStorage()
    sid = get_session_id(storage, now_ms=lambda: 1760875200000, rng=random.Random(1))
    assert re.fullmatch(r"1760875200000-[0-9a-z]{9}", sid)
    assert storage.get_item(SESSION_ID_KEY) == sid
    assert get_session_id(storage, now_ms=lambda: 1, rng=random.Random(2)) == sid


def test_session_id_regenerated_after_storage_cleared() -> None:
    storage = MemoryStorage()
    first = get_session_id(storage, rng=random.Random(1))
    storage.clear()
    second = get_session_id(storage, rng=random.Random(2))
    assert first != second


def test_session_id_with_disabled_storage_is_ephemeral() -> None:
    storage = DisabledStorage()
    a = get_session_id(storage, rng=random.Random(1))
    b = get_session_id(storage, rng=random.Random(2))
    assert a and b and a != b


# ===========================================================================
# get_fingerprint
# ===========================================================================

def test_fingerprint_computed_once_and_persisted() -> None:
    storage = MemoryStorage()
    calls = []

    def read():
        calls.append(1)
        return SIGNALS

    fp = get_fingerprint(storage, read)
    assert fp == generate_fingerprint(SIGNALS)
    assert storage.get_item(FINGERPRINT_KEY) == fp
    assert get_fingerprint(storage, read) == fp
    assert len(calls) == 1


def test_fingerprint_disabled_storage_falls_back_to_random() -> None:
    fp = get_fingerprint(DisabledStorage(), lambda: SIGNALS, rng=random.Random(3))
    assert re.fullmatch(r"[0-9a-z]{8}", fp)


def test_fingerprint_signal_read_failure_falls_back() -> None:
    storage = MemoryStorage()

    def broken():
        raise AttributeError("navigator is not defined")

    fp = get_fingerprint(storage, broken, rng=random.Random(4))
    assert re.fullmatch(r"[0-9a-z]{8}", fp)
    assert storage.get_item(FINGERPRINT_KEY) is None
