"""Base definitions shared by every driver interface."""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass
from typing import ClassVar


class ErrorBase(Exception):
    """Base of the errors a driver reports."""

    def __eq__(self, other: object) -> bool:
        if type(self) is not type(other):
            return NotImplemented
        return self.args == other.args  # type: ignore[union-attr]

    def __hash__(self) -> int:
        return hash((type(self), self.args))


class IoFailure(ErrorBase):
    """Input/output failed."""

    def __init__(self) -> None:
        super().__init__("IO error")


class NoMemory(ErrorBase):
    """Memory could not be allocated."""

    def __init__(self) -> None:
        super().__init__("No memory")


class TryAgain(ErrorBase):
    """The operation should be retried."""

    def __init__(self) -> None:
        super().__init__("Try Again")


class Busy(ErrorBase):
    """The device is busy."""

    def __init__(self) -> None:
        super().__init__("Busy")


class BadAddress(ErrorBase):
    """An address was rejected."""

    def __init__(self, address: int) -> None:
        super().__init__(f"Bad Address: {address:#x}")
        self.address = address


class InvalidArgument(ErrorBase):
    """An argument had a value the driver cannot accept."""

    def __init__(self, name: str, value: str) -> None:
        super().__init__(f"Invalid Argument `{name}`: [{value}]")
        self.name = name
        self.value = value


class DriverGeneric(abc.ABC):
    """Operations every driver provides."""

    @abc.abstractmethod
    def open(self) -> None:
        """Bring the device up; raise ErrorBase on failure."""

    @abc.abstractmethod
    def close(self) -> None:
        """Shut the device down; raise ErrorBase on failure."""


@dataclass(frozen=True, order=True, repr=False)
class _CustomId:
    """A typed wrapper around a non-negative integer."""

    value: int = 0
    _format: ClassVar[str] = "{}"

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise TypeError(f"{type(self).__name__} needs an int, got {self.value!r}")
        if self.value < 0:
            raise ValueError(f"{type(self).__name__} cannot be negative: {self.value}")

    def __int__(self) -> int:
        return self.value

    def __index__(self) -> int:
        return self.value

    def __repr__(self) -> str:
        return self._format.format(self.value)


class IrqId(_CustomId):
    """An interrupt number."""

    _format: ClassVar[str] = "{:#x}"


class Trigger(enum.Enum):
    """The trigger configuration for an interrupt."""

    EDGE_BOTH = enum.auto()
    EDGE_RISING = enum.auto()
    EDGE_FALLING = enum.auto()
    LEVEL_HIGH = enum.auto()
    LEVEL_LOW = enum.auto()


@dataclass(frozen=True)
class IrqConfig:
    """An interrupt together with how it is triggered."""

    irq: IrqId
    trigger: Trigger