"""
Session accounting, IP limiting and the concurrency gate.
"""

from datetime import datetime, timedelta, timezone

import pytest

from memory.session_store import SessionTracker
from memory.state_store import InMemoryStateStore
from orchestration.admission import ConcurrencyGate, IpRateLimiter
from schemas.errors import ConcurrencyExceeded, IpRateLimitExceeded, SessionLimitExceeded


# --- SessionTracker ---

def test_track_is_idempotent(log_sink):
    tracker = SessionTracker(log_sink=log_sink)
    first = tracker.track("alice", "10.0.0.1")
    second = tracker.track("alice", "10.0.0.2")

    assert first.created_at == second.created_at
    assert second.client_ip == "10.0.0.1"
    assert tracker.active_count() == 1
    assert [e.message for e in log_sink.query("alice")] == ["New session created"]


def test_consume_counts_until_limit():
    tracker = SessionTracker(request_limit=3)
    counts = [tracker.consume("alice").request_count for _ in range(3)]
    assert counts == [1, 2, 3]

    with pytest.raises(SessionLimitExceeded) as exc_info:
        tracker.consume("alice")
    assert exc_info.value.details == {"requests_used": 3}
    assert exc_info.value.status_code == 429

    # Rejected requests do not bump the counter
    assert tracker.info("alice")["requests_used"] == 3


def test_info_reports_remaining():
    tracker = SessionTracker(request_limit=10)
    tracker.track("alice", "127.0.0.1")
    tracker.consume("alice")

    info = tracker.info("alice")
    assert info["requests_used"] == 1
    assert info["requests_remaining"] == 9
    assert info["request_limit"] == 10
    assert info["is_active"] is True
    assert tracker.info("nobody") is None


def test_clear_resets_the_counter():
    tracker = SessionTracker(request_limit=1)
    tracker.consume("alice")
    assert tracker.clear("alice") is True
    assert tracker.clear("alice") is False
    assert tracker.consume("alice").request_count == 1


def test_sweep_removes_sessions_by_age(log_sink):
    tracker = SessionTracker(max_age_seconds=60, log_sink=log_sink)
    tracker.track("old")
    tracker.track("new")

    later = datetime.now(timezone.utc) + timedelta(seconds=61)
    assert tracker.sweep(now=later) in (["old", "new"], ["new", "old"])
    assert tracker.active_count() == 0
    assert any(e.message == "Cleaned up expired sessions" for e in log_sink.query(None))


def test_sweep_keeps_young_sessions():
    tracker = SessionTracker(max_age_seconds=60)
    tracker.track("alice")
    assert tracker.sweep() == []
    assert tracker.active_count() == 1


# --- IpRateLimiter ---

def test_ip_limiter_fixed_window():
    limiter = IpRateLimiter(window_seconds=60, max_requests=2)
    now = datetime.now(timezone.utc)

    assert limiter.hit("1.2.3.4", now) == 1
    assert limiter.hit("1.2.3.4", now) == 2
    with pytest.raises(IpRateLimitExceeded):
        limiter.hit("1.2.3.4", now)

    # Other IPs are unaffected
    assert limiter.hit("5.6.7.8", now) == 1

    # A new window starts after the old one elapses
    assert limiter.hit("1.2.3.4", now + timedelta(seconds=60)) == 1


def test_ip_limiter_sweep_drops_elapsed_windows():
    store = InMemoryStateStore()
    limiter = IpRateLimiter(store, window_seconds=60)
    now = datetime.now(timezone.utc)
    limiter.hit("1.2.3.4", now)

    assert limiter.sweep(now + timedelta(seconds=30)) == 0
    assert limiter.sweep(now + timedelta(seconds=61)) == 1
    assert store.keys() == []


def test_sessions_and_ip_windows_share_a_store():
    store = InMemoryStateStore()
    tracker = SessionTracker(store)
    limiter = IpRateLimiter(store)
    tracker.track("alice")
    limiter.hit("1.2.3.4")

    assert tracker.active_count() == 1
    assert limiter.sweep() == 0
    assert len(store) == 2


# --- ConcurrencyGate ---

def test_gate_rejects_when_full():
    gate = ConcurrencyGate(max_active=2)
    gate.acquire()
    gate.acquire()
    with pytest.raises(ConcurrencyExceeded) as exc_info:
        gate.acquire("alice")
    assert exc_info.value.message == "Server busy, try again later"
    assert gate.active == 2

    gate.release()
    gate.acquire()
    assert gate.active == 2


def test_gate_release_never_goes_negative():
    gate = ConcurrencyGate(max_active=1)
    gate.release()
    assert gate.active == 0


@pytest.mark.asyncio
async def test_gate_slot_releases_on_error():
    gate = ConcurrencyGate(max_active=1)
    with pytest.raises(RuntimeError):
        async with gate.slot("alice"):
            assert gate.active == 1
            raise RuntimeError("boom")
    assert gate.active == 0

    async with gate.slot("alice"):
        assert gate.active == 1
    assert gate.active == 0


def test_empty_injected_store_is_kept():
    store = InMemoryStateStore()
    assert len(store) == 0

    assert SessionTracker(store)._store is store
    assert IpRateLimiter(store)._store is store
