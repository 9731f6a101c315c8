from datetime import timedelta

from donorlink.utils.location_filter import (
    add_expiry_info,
    effective_time,
    filter_live,
    time_remaining,
)
from donorlink.utils.time import utcnow


def _entry(name, **times):
    return {"user_name": name, **times}


def test_keeps_only_entries_inside_the_window():
    now = utcnow()
    fresh = _entry("fresh", timestamp=now - timedelta(minutes=10))
    stale = _entry("stale", timestamp=now - timedelta(hours=2))
    undated = _entry("undated")

    assert filter_live([fresh, stale, undated], 1, now) == [fresh]


def test_cutoff_is_inclusive():
    now = utcnow()
    boundary = _entry("boundary", timestamp=now - timedelta(hours=1))
    assert filter_live([boundary], 1, now) == [boundary]


def test_filter_is_idempotent_and_order_preserving():
    now = utcnow()
    entries = [_entry(str(i), timestamp=now - timedelta(minutes=i * 15)) for i in range(8)]

    once = filter_live(entries, 1, now)
    assert [e["user_name"] for e in once] == ["0", "1", "2", "3", "4"]
    assert filter_live(once, 1, now) == once


def test_effective_time_falls_back_to_response_then_creation_time():
    now = utcnow()
    assert effective_time(_entry("a", response_time=now)) == now
    assert effective_time(_entry("b", created_at=now)) == now
    assert effective_time(_entry("c", timestamp=now.isoformat())) == now
    assert effective_time(_entry("d", timestamp="not a date")) is None


def test_naive_timestamps_are_treated_as_utc():
    now = utcnow()
    naive = _entry("naive", timestamp=(now - timedelta(minutes=5)).replace(tzinfo=None))
    assert filter_live([naive], 1, now) == [naive]


def test_time_remaining():
    now = utcnow()
    remaining = time_remaining(now - timedelta(minutes=30), 1, now)
    assert remaining == {"expired": False, "minutes": 30, "seconds": 0, "total_ms": 30 * 60 * 1000}

    assert time_remaining(now - timedelta(hours=2), 1, now)["expired"]


def test_expiry_info_flags_entries_about_to_drop_out():
    now = utcnow()
    soon = add_expiry_info(_entry("soon", timestamp=now - timedelta(minutes=55)), 1, now)
    later = add_expiry_info(_entry("later", timestamp=now - timedelta(minutes=5)), 1, now)

    assert soon["expiry_info"]["is_expiring_soon"]
    assert not later["expiry_info"]["is_expiring_soon"]
    assert later["expiry_info"]["expires_at"] == now + timedelta(minutes=55)
    assert later["user_name"] == "later"
