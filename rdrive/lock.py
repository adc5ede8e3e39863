"""An ownership lock that records which process holds a driver."""

from __future__ import annotations

import threading
import weakref
from typing import Generic, TypeVar

from rdrive.base import _CustomId

T = TypeVar("T")

_FREE = -1


class PId(_CustomId):
    """Identifies the holder of a lock."""


class LockError(Exception):
    """A lock could not be taken."""


class UsedByOthers(LockError):
    """The lock is already held."""

    def __init__(self, pid: PId) -> None:
        super().__init__(f"used by pid: {pid!r}")
        self.pid = pid


class DeviceReleased(LockError):
    """The locked object no longer exists."""

    def __init__(self) -> None:
        super().__init__("device released")


class _LockInner(Generic[T]):
    __slots__ = ("data", "_borrowed", "_mutex", "__weakref__")

    def __init__(self, data: T) -> None:
        self.data = data
        self._borrowed = _FREE
        self._mutex = threading.Lock()

    def acquire(self, pid: PId) -> int | None:
        """Take the lock for pid; return the current holder if it is taken."""
        with self._mutex:
            if self._borrowed != _FREE:
                return self._borrowed
            self._borrowed = pid.value
            return None

    def release(self) -> None:
        with self._mutex:
            self._borrowed = _FREE


def _wrap(inner: _LockInner[T]) -> Lock[T]:
    lock: Lock[T] = Lock.__new__(Lock)
    lock._inner = inner
    return lock


class Lock(Generic[T]):
    """Shared ownership of an object that one holder at a time may use."""

    def __init__(self, data: T) -> None:
        self._inner = _LockInner(data)

    def try_borrow(self, pid: PId) -> LockGuard[T]:
        """Take the object for pid, or raise UsedByOthers naming the holder."""
        holder = self._inner.acquire(pid)
        if holder is not None:
            raise UsedByOthers(PId(holder))
        return LockGuard(self._inner)

    def weak(self) -> LockWeak[T]:
        """Return a reference that does not keep the object alive."""
        return LockWeak(weakref.ref(self._inner))

    def force_use(self) -> T:
        """Return the object without taking the lock, e.g. in an interrupt handler."""
        return self._inner.data


class LockWeak(Generic[T]):
    """A non-owning reference to a Lock."""

    def __init__(self, ref: weakref.ReferenceType[_LockInner[T]]) -> None:
        self._ref = ref

    def upgrade(self) -> Lock[T] | None:
        """Return the Lock if the object still exists, else None."""
        inner = self._ref()
        return None if inner is None else _wrap(inner)

    def try_borrow(self, pid: PId) -> LockGuard[T]:
        """Take the object for pid; raise DeviceReleased if it is gone."""
        lock = self.upgrade()
        if lock is None:
            raise DeviceReleased()
        return lock.try_borrow(pid)


class LockGuard(Generic[T]):
    """Exclusive access to a locked object until released."""

    def __init__(self, inner: _LockInner[T]) -> None:
        self._inner = inner
        self._released = False

    @property
    def value(self) -> T:
        """The guarded object."""
        self._check()
        return self._inner.data

    @value.setter
    def value(self, data: T) -> None:
        self._check()
        self._inner.data = data

    def _check(self) -> None:
        if self._released:
            raise RuntimeError("guard already released")

    def release(self) -> None:
        """Give the lock back; further calls do nothing."""
        if not self._released:
            self._released = True
            self._inner.release()

    def __enter__(self) -> LockGuard[T]:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    def __del__(self) -> None:
        if getattr(self, "_released", True) is False:
            self.release()