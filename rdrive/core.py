"""The process-wide driver manager and the probing entry points."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from rdrive.base import ErrorBase
from rdrive.device import DeviceId, DeviceWeak, HardwareKind
from rdrive.errors import OpenFailError, ProbeError
from rdrive.manager import Manager
from rdrive.register import (
    DriverRegister,
    DriverRegisterData,
    FdtProbe,
    ProbeLevel,
    ProbePriority,
)

R = TypeVar("R")

_log = logging.getLogger(__name__)

_MANAGER: Manager | None = None
_MANAGER_LOCK = threading.RLock()

_LINKED: dict[str, DriverRegister] = {}
_LINKED_LOCK = threading.Lock()


def init(fdt_data: bytes) -> None:
    """Start a fresh manager that probes against the given device-tree blob."""
    global _MANAGER
    manager = Manager(fdt_data)
    with _MANAGER_LOCK:
        _MANAGER = manager


def _current() -> Manager:
    if _MANAGER is None:
        raise RuntimeError("manager not init")
    return _MANAGER


def edit(func: Callable[[Manager], R]) -> R:
    """Call func with the manager while holding it; raise RuntimeError before init."""
    with _MANAGER_LOCK:
        return func(_current())


def read(func: Callable[[Manager], R]) -> R:
    """Call func with the manager while holding it; raise RuntimeError before init."""
    with _MANAGER_LOCK:
        return func(_current())


def register_add(register: DriverRegister) -> None:
    """Add one driver registration."""
    edit(lambda manager: manager.registers.add(register))


def register_append(registers: Iterable[DriverRegister]) -> None:
    """Add several driver registrations in order."""
    items = list(registers)
    edit(lambda manager: manager.registers.append(items))


def _probe_with(registers: Iterable[DriverRegisterData], stop_if_fail: bool) -> None:
    for one in registers:
        to_probe = edit(lambda manager, one=one: manager.to_unprobed(one))
        if to_probe is None:
            continue
        try:
            probed = to_probe()
        except ProbeError as error:
            if stop_if_fail:
                raise
            _log.warning("probe fail: %s", error)
            continue
        _log.info("open [%s]", probed.descriptor.name)
        try:
            probed.dev.open()
        except ErrorBase as error:
            if stop_if_fail:
                raise OpenFailError(error) from error
            _log.warning("open fail: %s", error)
            continue
        edit(lambda manager, probed=probed: manager.add_probed(probed))


def probe_pre_kernel() -> None:
    """Probe the registrations of the pre-kernel level; stop at the first failure."""
    unregistered = edit(lambda manager: manager.unregistered())
    _probe_with(
        (one for one in unregistered if one.register.level is ProbeLevel.PRE_KERNEL),
        True,
    )


def probe_all(stop_if_fail: bool) -> None:
    """Probe every registration not yet probed.

    With stop_if_fail the first ProbeError is raised; otherwise failures are
    logged and the registration is left for a later attempt.
    """
    unregistered = edit(lambda manager: manager.unregistered())
    _probe_with(unregistered, stop_if_fail)


def dev_list(kind: HardwareKind) -> list[DeviceWeak[Any]]:
    """Return references to every probed device of a kind."""
    return read(lambda manager: manager.dev_list(kind))


def get_dev(kind: HardwareKind, device_id: DeviceId | None = None) -> DeviceWeak[Any] | None:
    """Return the device with this id if it is of kind, or the first of kind, or None."""
    return read(lambda manager: manager.get_dev(kind, device_id))


def _symbol(name: str) -> str:
    return "DRIVER_" + name.replace("-", "_").replace(" ", "_").upper()


def module_driver(
    name: str,
    level: ProbeLevel,
    priority: ProbePriority | int,
    probe_kinds: Iterable[FdtProbe],
) -> DriverRegister:
    """Declare a driver so that linked_registers() includes it, and return it.

    Names that differ only in case, dashes or spaces clash and raise ValueError.
    """
    if not isinstance(priority, ProbePriority):
        priority = ProbePriority(priority)
    register = DriverRegister(
        name=name,
        level=ProbeLevel(level),
        priority=priority,
        probe_kinds=tuple(probe_kinds),
    )
    symbol = _symbol(name)
    with _LINKED_LOCK:
        if symbol in _LINKED:
            raise ValueError(f"driver `{name}` clashes with an existing {symbol}")
        _LINKED[symbol] = register
    return register


def linked_registers() -> list[DriverRegister]:
    """Return every driver declared with module_driver, in declaration order."""
    with _LINKED_LOCK:
        return list(_LINKED.values())