"""Driver registrations and the container that tracks them."""

from __future__ import annotations

import dataclasses
import enum
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, ClassVar

from rdrive.base import _CustomId
from rdrive.device import Descriptor, Hardware


@dataclass(frozen=True, order=True)
class ProbePriority:
    """Probe order: lower values are probed first."""

    value: int

    CLK: ClassVar[ProbePriority]
    INTC: ClassVar[ProbePriority]
    DEFAULT: ClassVar[ProbePriority]

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise TypeError(f"priority needs an int, got {self.value!r}")
        if self.value < 0:
            raise ValueError(f"priority cannot be negative: {self.value}")


ProbePriority.CLK = ProbePriority(6)
ProbePriority.INTC = ProbePriority(10)
ProbePriority.DEFAULT = ProbePriority(256)


class ProbeLevel(enum.IntEnum):
    """When a driver is probed: before or after the kernel is up."""

    PRE_KERNEL = 0
    POST_KERNEL = 1

    @classmethod
    def default(cls) -> ProbeLevel:
        """The level used when none is given."""
        return cls.POST_KERNEL


@dataclass(frozen=True)
class FdtProbe:
    """Probe a driver on device-tree nodes with one of the given compatibles."""

    compatibles: tuple[str, ...]
    on_probe: Callable[[Any, Descriptor], Hardware]

    def __post_init__(self) -> None:
        if isinstance(self.compatibles, str):
            raise TypeError("compatibles must be a sequence of strings")
        object.__setattr__(self, "compatibles", tuple(self.compatibles))


@dataclass(frozen=True)
class DriverRegister:
    """A driver's name, when it is probed, and how it is found."""

    name: str
    level: ProbeLevel
    priority: ProbePriority
    probe_kinds: tuple[FdtProbe, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "probe_kinds", tuple(self.probe_kinds))


class RegisterId(_CustomId):
    """Identifies a registration."""

    _format: ClassVar[str] = "{}"


@dataclass
class DriverRegisterData:
    """A registration with its id and whether it has been probed."""

    id: RegisterId
    register: DriverRegister
    probed: bool = False


class RegisterContainer:
    """Holds registrations in the order they were added."""

    def __init__(self) -> None:
        self._last_id = 0
        self._registers: dict[RegisterId, DriverRegisterData] = {}

    def add(self, register: DriverRegister) -> RegisterId:
        """Add a registration and return the id it was given."""
        self._last_id += 1
        register_id = RegisterId(self._last_id)
        self._registers[register_id] = DriverRegisterData(register_id, register)
        return register_id

    def append(self, registers: Iterable[DriverRegister]) -> None:
        """Add several registrations in order."""
        for register in registers:
            self.add(register)

    def set_probed(self, register_id: RegisterId) -> None:
        """Mark a registration as probed; unknown ids are ignored."""
        data = self._registers.get(register_id)
        if data is not None:
            data.probed = True

    def unregistered(self) -> list[DriverRegisterData]:
        """Return copies of the registrations not yet probed, in id order."""
        return [
            dataclasses.replace(data)
            for data in self._registers.values()
            if not data.probed
        ]

    def __len__(self) -> int:
        return len(self._registers)