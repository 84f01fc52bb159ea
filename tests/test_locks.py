"""Tests for the cooperative focus lock."""
from datetime import datetime, timedelta

from latidos.modules.audit.locks import (
    UNLOCKED,
    LockState,
    apply_focus,
    effective_lock_owner,
    release_focus,
    request_focus,
)

NOW = datetime(2026, 10, 19, 12, 0, 0)


def test_lock_steal_then_stale_release_is_noop():
    lock = request_focus(UNLOCKED, "A", NOW)
    assert lock.locked_by == "A"

    lock = request_focus(lock, "B", NOW + timedelta(seconds=1))
    assert lock.locked_by == "B"

    lock = release_focus(lock, "A")
    assert lock.locked_by == "B"
    assert lock.locked_at == NOW + timedelta(seconds=1)


def test_owner_release_clears_lock():
    lock = request_focus(UNLOCKED, "A", NOW)

    lock = release_focus(lock, "A")

    assert lock.locked_by is None
    assert lock.locked_at is None
    assert not lock.is_locked


def test_apply_focus_without_signal_keeps_lock():
    lock = LockState(locked_by="A", locked_at=NOW)

    assert apply_focus(lock, "B", None, NOW) == lock
    assert apply_focus(lock, "B", True, NOW).locked_by == "B"
    assert apply_focus(lock, "B", False, NOW) == lock
    assert apply_focus(lock, "A", False, NOW) == UNLOCKED


def test_effective_owner_without_ttl_never_expires():
    lock = LockState(locked_by="A", locked_at=NOW)

    assert effective_lock_owner(lock, NOW + timedelta(days=2)) == "A"
    assert effective_lock_owner(UNLOCKED, NOW) is None


def test_effective_owner_with_ttl():
    lock = LockState(locked_by="A", locked_at=NOW)

    assert effective_lock_owner(lock, NOW + timedelta(seconds=30), ttl_seconds=60) == "A"
    assert effective_lock_owner(lock, NOW + timedelta(seconds=61), ttl_seconds=60) is None
