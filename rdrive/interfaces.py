"""Interfaces for the kinds of device a driver can provide."""

from __future__ import annotations

import abc
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import ClassVar, TypeVar

from rdrive.base import DriverGeneric, IrqConfig, IrqId, Trigger, _CustomId

R = TypeVar("R")


def _spin_on(awaitable: Awaitable[R]) -> R:
    """Drive an awaitable to completion by polling it repeatedly.

    The awaitable may only suspend with a bare yield (as ``asyncio.sleep(0)``
    does); it is resumed at once each time.
    """
    steps = awaitable.__await__()
    while True:
        try:
            steps.send(None)
        except StopIteration as done:
            return done.value


class BlockDriver(DriverGeneric):
    """A block storage device."""

    @abc.abstractmethod
    def num_blocks(self) -> int:
        """The number of blocks; the device size is num_blocks() * block_size()."""

    @abc.abstractmethod
    def block_size(self) -> int:
        """The size of each block in bytes."""

    @abc.abstractmethod
    def read_block(self, block_id: int, buf: bytearray | memoryview) -> None:
        """Fill buf from block_id on; a buffer longer than a block spans blocks."""

    @abc.abstractmethod
    def write_block(self, block_id: int, buf: bytes) -> None:
        """Write buf from block_id on; a buffer longer than a block spans blocks."""

    @abc.abstractmethod
    def flush(self) -> None:
        """Write all pending data to storage."""


class ClockId(_CustomId):
    """Identifies a clock output."""

    _format: ClassVar[str] = "{:#x}"


class ClockInterface(DriverGeneric):
    """A clock controller."""

    @abc.abstractmethod
    def perper_enable(self) -> None:
        """Enable the peripheral clocks."""

    @abc.abstractmethod
    def get_rate(self, clock_id: ClockId) -> int:
        """Return the rate of a clock in Hz."""

    @abc.abstractmethod
    def set_rate(self, clock_id: ClockId, rate: int) -> None:
        """Set the rate of a clock in Hz."""


class CpuId(_CustomId):
    """Identifies a CPU."""

    _format: ClassVar[str] = "{:#x}"


class IntcError(Exception):
    """An interrupt controller rejected a request."""


class IrqIdNotCompatible(IntcError):
    """The interrupt number does not fit the controller."""

    def __init__(self, irq_id: IrqId) -> None:
        super().__init__(f"IrqIdNotCompatible {{ id: {irq_id!r} }}")
        self.irq_id = irq_id


class NotSupported(IntcError):
    """The controller does not support the request."""

    def __init__(self) -> None:
        super().__init__("NotSupport")


@dataclass(frozen=True)
class FdtParseConfig:
    """Capability to parse one cell of a device-tree ``interrupts`` property."""

    parse: Callable[[Sequence[int]], IrqConfig]


class CpuCapLocalIrq(abc.ABC):
    """Per-CPU control of local interrupts."""

    @abc.abstractmethod
    def irq_enable(self, irq: IrqId) -> None:
        """Enable an interrupt; raise IntcError on failure."""

    @abc.abstractmethod
    def irq_disable(self, irq: IrqId) -> None:
        """Disable an interrupt; raise IntcError on failure."""

    @abc.abstractmethod
    def set_priority(self, irq: IrqId, priority: int) -> None:
        """Set the priority of an interrupt."""

    @abc.abstractmethod
    def set_trigger(self, irq: IrqId, trigger: Trigger) -> None:
        """Set how an interrupt is triggered."""


@dataclass(frozen=True)
class LocalIrqCapability:
    """A CPU interface that can also control local interrupts."""

    local_irq: CpuCapLocalIrq


class IntcCpuInterface(abc.ABC):
    """The per-CPU side of an interrupt controller."""

    @abc.abstractmethod
    def setup(self) -> None:
        """Prepare the interface on the current CPU."""

    @abc.abstractmethod
    def ack(self) -> IrqId | None:
        """Acknowledge the pending interrupt and return it, or None."""

    @abc.abstractmethod
    def eoi(self, irq: IrqId) -> None:
        """Signal the end of handling an interrupt."""

    @abc.abstractmethod
    def capability(self) -> LocalIrqCapability | None:
        """Return the extra capability of this interface, or None."""


class IntcInterface(DriverGeneric):
    """An interrupt controller."""

    @abc.abstractmethod
    def cpu_interface(self) -> IntcCpuInterface:
        """Return the interface for the current CPU."""

    @abc.abstractmethod
    def irq_enable(self, irq: IrqId) -> None:
        """Enable an interrupt; raise IntcError on failure."""

    @abc.abstractmethod
    def irq_disable(self, irq: IrqId) -> None:
        """Disable an interrupt; raise IntcError on failure."""

    @abc.abstractmethod
    def set_priority(self, irq: IrqId, priority: int) -> None:
        """Set the priority of an interrupt."""

    @abc.abstractmethod
    def set_trigger(self, irq: IrqId, trigger: Trigger) -> None:
        """Set how an interrupt is triggered."""

    @abc.abstractmethod
    def set_target_cpu(self, irq: IrqId, cpu: CpuId) -> None:
        """Route an interrupt to a CPU."""

    def capabilities(self) -> list[FdtParseConfig]:
        """Return the controller's capabilities; none by default."""
        return []


class PowerInterface(DriverGeneric):
    """A power controller."""

    @abc.abstractmethod
    def shutdown(self) -> None:
        """Power the system off."""


class SerialSender(abc.ABC):
    """The transmitting half of a serial port."""

    @abc.abstractmethod
    async def send(self, data: int) -> None:
        """Send one byte."""

    def send_blocking(self, data: int) -> None:
        """Send one byte, polling until it has gone."""
        _spin_on(self.send(data))


class SerialReceiver(abc.ABC):
    """The receiving half of a serial port."""

    @abc.abstractmethod
    async def receive(self) -> int:
        """Receive one byte."""

    def receive_blocking(self) -> int:
        """Receive one byte, polling until it has arrived."""
        return _spin_on(self.receive())


class SerialInterface(DriverGeneric):
    """A serial port that can be split into sending and receiving halves."""

    @abc.abstractmethod
    def handle_irq(self) -> None:
        """Service the port's interrupt."""

    @abc.abstractmethod
    def take_split(self) -> tuple[SerialSender, SerialReceiver] | None:
        """Hand out both halves, or None if they are already out."""

    @abc.abstractmethod
    def restore_split(self, split: tuple[SerialSender, SerialReceiver]) -> None:
        """Take back both halves."""


class TimerCpuInterface(abc.ABC):
    """The per-CPU side of a timer."""

    @abc.abstractmethod
    def set_timeval(self, ticks: int) -> None:
        """Arm the timer to fire after the given ticks."""

    @abc.abstractmethod
    def current_ticks(self) -> int:
        """Return the current tick count."""

    @abc.abstractmethod
    def tick_hz(self) -> int:
        """Return the tick frequency in Hz."""

    @abc.abstractmethod
    def set_irq_enable(self, enable: bool) -> None:
        """Enable or disable the timer interrupt."""

    @abc.abstractmethod
    def get_irq_status(self) -> bool:
        """Return whether the timer interrupt is enabled."""

    @abc.abstractmethod
    def irq(self) -> IrqConfig:
        """Return the timer's interrupt configuration."""


class TimerInterface(DriverGeneric):
    """A timer device."""

    @abc.abstractmethod
    def get_current_cpu(self) -> TimerCpuInterface:
        """Return the timer interface of the current CPU."""


class SystickInterface(DriverGeneric):
    """A system tick timer."""

    @abc.abstractmethod
    def get_current_cpu(self) -> TimerCpuInterface:
        """Return the tick interface of the current CPU."""