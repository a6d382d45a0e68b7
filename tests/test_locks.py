import threading

import pytest

from app.services.locks import LockTimeout, ProductLockRegistry


def test_entry_is_dropped_after_release():
    locks = ProductLockRegistry()
    with locks.hold(1):
        assert len(locks) == 1
    assert len(locks) == 0


def test_timeout_while_held_elsewhere():
    locks = ProductLockRegistry()
    held = threading.Event()
    release = threading.Event()

    def owner():
        with locks.hold("sku"):
            held.set()
            release.wait(timeout=5)

    thread = threading.Thread(target=owner)
    thread.start()
    try:
        assert held.wait(timeout=5)
        with pytest.raises(LockTimeout):
            with locks.hold("sku", timeout=0.05):
                pass
    finally:
        release.set()
        thread.join(timeout=5)

    assert len(locks) == 0


def test_distinct_keys_do_not_block_each_other():
    locks = ProductLockRegistry()
    with locks.hold(1):
        with locks.hold(2, timeout=0.05):
            assert len(locks) == 2
    assert len(locks) == 0


def test_same_key_is_not_reentrant():
    locks = ProductLockRegistry()
    with locks.hold(7):
        with pytest.raises(LockTimeout):
            with locks.hold(7, timeout=0.01):
                pass
        assert len(locks) == 1
