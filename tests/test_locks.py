"""Tests for the per-product lock manager."""

from __future__ import annotations

import threading
import time

import pytest

from store_ledger.exceptions import ContentionError
from store_ledger.locks import ProductLockManager


def test_rejects_non_positive_timeout():
    with pytest.raises(ValueError):
        ProductLockManager(timeout=0)


def test_hold_yields_sorted_unique_ids_and_releases():
    manager = ProductLockManager(timeout=0.5)

    with manager.hold(["P3", "P1", "P3", "P2"]) as held:
        assert held == ["P1", "P2", "P3"]
        assert all(manager.is_locked(pid) for pid in held)

    assert not any(manager.is_locked(pid) for pid in ("P1", "P2", "P3"))


def test_hold_releases_when_block_raises():
    manager = ProductLockManager(timeout=0.5)

    with pytest.raises(RuntimeError):
        with manager.hold(["P1"]):
            raise RuntimeError("boom")

    assert not manager.is_locked("P1")


def test_forget_drops_idle_lock_and_keeps_held_one_releasable():
    manager = ProductLockManager(timeout=0.5)

    with manager.hold(["P1"]):
        manager.forget("P1")
        assert "P1" not in manager

    assert "P1" not in manager
    with manager.hold(["P1"]) as held:
        assert held == ["P1"]
        assert "P1" in manager


def test_busy_lock_times_out_with_contention_error():
    manager = ProductLockManager(timeout=0.1)
    holding = threading.Event()
    release = threading.Event()

    def holder():
        with manager.hold(["P1"]):
            holding.set()
            release.wait(2)

    thread = threading.Thread(target=holder)
    thread.start()
    try:
        assert holding.wait(2)
        started = time.monotonic()
        with pytest.raises(ContentionError) as excinfo:
            with manager.hold(["P1"]):
                pass
        assert time.monotonic() - started < 1.0
        assert excinfo.value.retryable is True
    finally:
        release.set()
        thread.join(2)


def test_partial_acquisition_is_released_on_timeout():
    """Locks taken before the busy one must not leak after a timeout."""

    manager = ProductLockManager(timeout=0.1)
    holding = threading.Event()
    release = threading.Event()

    def holder():
        with manager.hold(["P2"]):
            holding.set()
            release.wait(2)

    thread = threading.Thread(target=holder)
    thread.start()
    try:
        assert holding.wait(2)
        with pytest.raises(ContentionError):
            with manager.hold(["P1", "P2"]):
                pass
        assert not manager.is_locked("P1")
    finally:
        release.set()
        thread.join(2)


def test_overlapping_sets_do_not_deadlock():
    manager = ProductLockManager(timeout=2)
    errors: list[Exception] = []
    counter = {"value": 0}

    def worker(ids):
        try:
            for _ in range(50):
                with manager.hold(ids):
                    counter["value"] += 1
        except Exception as exc:  # pragma: no cover - surfaced by the assertion below
            errors.append(exc)

    threads = [
        threading.Thread(target=worker, args=(["P1", "P2"],)),
        threading.Thread(target=worker, args=(["P2", "P1"],)),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)

    assert errors == []
    assert counter["value"] == 100
