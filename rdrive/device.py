"""Devices: probed drivers wrapped with their descriptor and an ownership lock."""

from __future__ import annotations

import enum
import itertools
import threading
import time
from dataclasses import dataclass, field
from typing import ClassVar, Generic, TypeVar

from rdrive.base import DriverGeneric, IrqConfig, _CustomId
from rdrive.interfaces import (
    BlockDriver,
    ClockInterface,
    IntcInterface,
    PowerInterface,
    SystickInterface,
)
from rdrive.lock import (
    DeviceReleased,
    Lock,
    LockError,
    LockGuard,
    LockWeak,
    PId,
    UsedByOthers,
)

T = TypeVar("T")


class DeviceId(_CustomId):
    """Identifies a device."""

    _format: ClassVar[str] = "{}"


class DriverId(_CustomId):
    """Identifies a driver."""

    _format: ClassVar[str] = "{}"


_device_ids = itertools.count()
_device_ids_lock = threading.Lock()


def next_device_id() -> DeviceId:
    """Return a fresh device id; ids count up from zero."""
    with _device_ids_lock:
        return DeviceId(next(_device_ids))


@dataclass(frozen=True)
class Descriptor:
    """What is known about a device apart from its driver."""

    device_id: DeviceId = field(default_factory=DeviceId)
    name: str = ""
    irq_parent: DeviceId | None = None
    irqs: tuple[IrqConfig, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "irqs", tuple(self.irqs))


class Empty(DriverGeneric):
    """A driver that does nothing, for devices that only need initialising."""

    def open(self) -> None:
        """Do nothing."""

    def close(self) -> None:
        """Do nothing."""


class HardwareKind(enum.Enum):
    """The kinds of device a driver can provide."""

    INTC = "Intc"
    SYSTICK = "Systick"
    POWER = "Power"
    BLOCK = "Block"
    CLK = "Clk"
    SYS_INIT = "SysInit"

    @property
    def interface(self) -> type:
        """The interface a driver of this kind implements."""
        return _INTERFACES[self]


_INTERFACES: dict[HardwareKind, type] = {
    HardwareKind.INTC: IntcInterface,
    HardwareKind.SYSTICK: SystickInterface,
    HardwareKind.POWER: PowerInterface,
    HardwareKind.BLOCK: BlockDriver,
    HardwareKind.CLK: ClockInterface,
    HardwareKind.SYS_INIT: Empty,
}


class DeviceError(Exception):
    """A device could not be borrowed."""


class DeviceUsedByOthers(DeviceError):
    """Another holder has the device."""

    def __init__(self, pid: PId) -> None:
        super().__init__(f"used by pid: {pid!r}")
        self.pid = pid


class DeviceDropped(DeviceError):
    """The device no longer exists."""

    def __init__(self) -> None:
        super().__init__("droped")


def _device_error(error: LockError) -> DeviceError:
    if isinstance(error, UsedByOthers):
        return DeviceUsedByOthers(error.pid)
    if isinstance(error, DeviceReleased):
        return DeviceDropped()
    raise TypeError(f"unexpected lock error {error!r}")


@dataclass(frozen=True)
class Hardware:
    """A driver returned by a probe function, tagged with its kind."""

    kind: HardwareKind
    driver: DriverGeneric

    def __post_init__(self) -> None:
        if not isinstance(self.driver, self.kind.interface):
            raise TypeError(
                f"{self.kind.value} driver must implement "
                f"{self.kind.interface.__name__}, got {type(self.driver).__name__}"
            )

    def to_device(self, descriptor: Descriptor) -> Device[DriverGeneric]:
        """Wrap the driver into a device with the given descriptor."""
        return Device(self.kind, descriptor, self.driver)


class DeviceGuard(Generic[T]):
    """Exclusive use of a device's driver until released."""

    def __init__(self, descriptor: Descriptor, lock: LockGuard[T]) -> None:
        self.descriptor = descriptor
        self._lock = lock

    @property
    def value(self) -> T:
        """The driver."""
        return self._lock.value

    def release(self) -> None:
        """Give the device back; further calls do nothing."""
        self._lock.release()

    def __enter__(self) -> DeviceGuard[T]:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class Device(Generic[T]):
    """A driver together with its descriptor."""

    def __init__(self, kind: HardwareKind, descriptor: Descriptor, driver: T) -> None:
        self.kind = kind
        self.descriptor = descriptor
        self._driver: Lock[T] = Lock(driver)

    @classmethod
    def _from_lock(
        cls, kind: HardwareKind, descriptor: Descriptor, lock: Lock[T]
    ) -> Device[T]:
        device: Device[T] = cls.__new__(cls)
        device.kind = kind
        device.descriptor = descriptor
        device._driver = lock
        return device

    def try_borrow_by(self, pid: PId) -> DeviceGuard[T]:
        """Take the driver for pid, or raise DeviceUsedByOthers."""
        try:
            guard = self._driver.try_borrow(pid)
        except LockError as error:
            raise _device_error(error) from error
        return DeviceGuard(self.descriptor, guard)

    def weak(self) -> DeviceWeak[T]:
        """Return a reference that does not keep the driver alive."""
        return DeviceWeak(self.kind, self.descriptor, self._driver.weak())

    def spin_try_borrow_by(self, pid: PId) -> DeviceGuard[T]:
        """Take the driver for pid, retrying until it is free."""
        while True:
            try:
                return self.try_borrow_by(pid)
            except DeviceError:
                time.sleep(0)

    def force_use(self) -> T:
        """Return the driver without taking the lock, e.g. in an interrupt handler."""
        return self._driver.force_use()

    def open(self) -> None:
        """Open the driver on behalf of pid 0; ErrorBase from the driver propagates."""
        with self.try_borrow_by(PId(0)) as guard:
            guard.value.open()  # type: ignore[attr-defined]


class DeviceWeak(Generic[T]):
    """A non-owning reference to a device."""

    def __init__(
        self, kind: HardwareKind, descriptor: Descriptor, driver: LockWeak[T]
    ) -> None:
        self.kind = kind
        self.descriptor = descriptor
        self._driver = driver

    def upgrade(self) -> Device[T] | None:
        """Return the device if it still exists, else None."""
        lock = self._driver.upgrade()
        if lock is None:
            return None
        return Device._from_lock(self.kind, self.descriptor, lock)

    def try_borrow_by(self, pid: PId) -> DeviceGuard[T]:
        """Take the driver for pid; raise DeviceDropped or DeviceUsedByOthers."""
        device = self.upgrade()
        if device is None:
            raise DeviceDropped()
        return device.try_borrow_by(pid)

    def spin_try_borrow_by(self, pid: PId) -> DeviceGuard[T]:
        """Take the driver for pid, retrying while others hold it."""
        while True:
            try:
                return self.try_borrow_by(pid)
            except DeviceUsedByOthers:
                time.sleep(0)