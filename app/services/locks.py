import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager


class LockTimeout(Exception):
    pass


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class ProductLockRegistry:
    """One mutex per key, created on demand and dropped once nobody waits on it.

    Keys for different products never share a lock, so work on distinct
    products proceeds in parallel.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[Hashable, _Entry] = {}

    @contextmanager
    def hold(self, key: Hashable, timeout: float | None = None) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.holders += 1

        acquired = False
        try:
            acquired = entry.lock.acquire(timeout=-1 if timeout is None else timeout)
            if not acquired:
                raise LockTimeout(f"Timed out waiting for lock on {key!r}")
            yield
        finally:
            if acquired:
                entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


product_locks = ProductLockRegistry()
