"""Matching driver registrations to device-tree nodes and probing them."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from rdrive.base import IrqConfig
from rdrive.device import (
    Descriptor,
    Device,
    DeviceError,
    DeviceId,
    Hardware,
    HardwareKind,
    next_device_id,
)
from rdrive.errors import FdtProbeError, IrqNotInit, OnProbeError
from rdrive.fdt import ClockRef, Fdt, FdtFormatError, Node, Status
from rdrive.interfaces import FdtParseConfig
from rdrive.lock import PId
from rdrive.register import DriverRegisterData, RegisterId

_log = logging.getLogger(__name__)


@contextlib.contextmanager
def _fdt_errors() -> Iterator[None]:
    try:
        yield
    except FdtFormatError as error:
        raise FdtProbeError(str(error)) from error


@dataclass(frozen=True)
class FdtInfo:
    """The device-tree node a driver is probed on."""

    node: Node
    phandle_map: Mapping[int, DeviceId] = field(default_factory=dict)

    def phandle_to_device_id(self, phandle: int) -> DeviceId | None:
        """Return the id of the device at the node with this phandle, or None."""
        return self.phandle_map.get(phandle)

    def find_clk_by_name(self, name: str) -> ClockRef | None:
        """Return the node's clock with this name, or None."""
        return next((clock for clock in self.node.clocks() if clock.name == name), None)


@dataclass(frozen=True)
class ProbedDevice:
    """A device created by a successful probe."""

    register_id: RegisterId
    descriptor: Descriptor
    dev: Device[Any]


UnprobedDevice = Callable[[], ProbedDevice]


@dataclass(frozen=True)
class _FdtMatch:
    register_id: RegisterId
    name: str
    node: Node
    on_probe: Callable[[FdtInfo, Descriptor], Hardware]


def _irq_parser(
    name: str, irq_parent: DeviceId, devices: Mapping[DeviceId, Device[Any]]
) -> Callable[..., IrqConfig]:
    intc = devices.get(irq_parent)
    if intc is None or intc.kind is not HardwareKind.INTC:
        raise IrqNotInit(name)
    try:
        guard = intc.weak().spin_try_borrow_by(PId(0))
    except DeviceError as error:
        raise OnProbeError(error) from error
    parse = None
    with guard:
        for capability in guard.value.capabilities():
            if isinstance(capability, FdtParseConfig):
                parse = capability.parse
    if parse is None:
        raise FdtProbeError("irq parent does not have irq parse fn")
    return parse


def _run_probe(
    found: _FdtMatch,
    device_id: DeviceId,
    irq_parent: DeviceId | None,
    phandle_map: Mapping[int, DeviceId],
    devices: Mapping[DeviceId, Device[Any]],
) -> ProbedDevice:
    _log.debug("Probe [%s]->[%s]", found.node.name, found.name)
    irqs: list[IrqConfig] = []
    if irq_parent is not None:
        raws = found.node.interrupts()
        if raws is not None:
            parse = _irq_parser(found.name, irq_parent, devices)
            for raw in raws:
                try:
                    irqs.append(parse(raw))
                except Exception as error:  # noqa: BLE001 - unparsable entries are skipped
                    _log.debug("skip interrupt %s of [%s]: %s", raw, found.name, error)

    descriptor = Descriptor(
        device_id=device_id, name=found.name, irq_parent=irq_parent, irqs=tuple(irqs)
    )
    try:
        hardware = found.on_probe(FdtInfo(found.node, phandle_map), descriptor)
    except Exception as error:
        raise OnProbeError(error) from error
    if not isinstance(hardware, Hardware):
        raise OnProbeError(
            TypeError(f"probe of `{found.name}` returned {type(hardware).__name__}, not Hardware")
        )
    return ProbedDevice(found.register_id, descriptor, hardware.to_device(descriptor))


class ProbeFunc:
    """Finds the device-tree node for each registration and prepares its probe."""

    def __init__(self, fdt_data: bytes) -> None:
        self._data = bytes(fdt_data)
        self._fdt: Fdt | None = None
        self._phandle_map: dict[int, DeviceId] = {}

    def _parsed(self) -> Fdt:
        if self._fdt is None:
            with _fdt_errors():
                self._fdt = Fdt(self._data)
        return self._fdt

    def init(self) -> None:
        """Give every node with a phandle a device id; raise FdtProbeError on a bad blob."""
        fdt = self._parsed()
        with _fdt_errors():
            for node in fdt.all_nodes():
                phandle = node.phandle()
                if phandle is not None:
                    self._phandle_map[phandle] = next_device_id()

    def _match(self, register: DriverRegisterData, fdt: Fdt) -> _FdtMatch | None:
        for node in fdt.all_nodes():
            if node.status() is Status.DISABLED:
                continue
            node_compatibles = node.compatibles()
            for probe in register.register.probe_kinds:
                if any(compatible in probe.compatibles for compatible in node_compatibles):
                    return _FdtMatch(register.id, register.register.name, node, probe.on_probe)
        return None

    def to_unprobed(
        self, register: DriverRegisterData, devices: Mapping[DeviceId, Device[Any]]
    ) -> UnprobedDevice | None:
        """Return a callable that probes the first enabled node matching register.

        Returns None if no node matches. ``devices`` is looked up when the
        callable runs, to find the device's interrupt controller.
        """
        fdt = self._parsed()
        with _fdt_errors():
            found = self._match(register, fdt)
            if found is None:
                return None
            node_phandle = found.node.phandle()
            device_id = (
                self._phandle_map[node_phandle] if node_phandle is not None else next_device_id()
            )
            irq_parent = None
            parent = found.node.interrupt_parent()
            if parent is not None:
                parent_phandle = parent.node.phandle()
                if parent_phandle is not None and parent_phandle != node_phandle:
                    irq_parent = self._phandle_map.get(parent_phandle)

        phandle_map = MappingProxyType(dict(self._phandle_map))

        def probe() -> ProbedDevice:
            with _fdt_errors():
                return _run_probe(found, device_id, irq_parent, phandle_map, devices)

        return probe