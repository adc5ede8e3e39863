"""The manager that holds driver registrations and probed devices."""

from __future__ import annotations

from typing import Any

from rdrive.device import Device, DeviceId, DeviceWeak, HardwareKind
from rdrive.probe import ProbedDevice, ProbeFunc, UnprobedDevice
from rdrive.register import DriverRegisterData, RegisterContainer


class Manager:
    """Registrations, the device tree they are probed against, and the devices found."""

    def __init__(self, fdt_data: bytes = b"") -> None:
        self.registers = RegisterContainer()
        self.dev_map: dict[DeviceId, Device[Any]] = {}
        self.enum_system = ProbeFunc(fdt_data)
        self._initialized = False

    def to_unprobed(self, register: DriverRegisterData) -> UnprobedDevice | None:
        """Return a callable probing the node that matches register, or None."""
        return self.enum_system.to_unprobed(register, self.dev_map)

    def unregistered(self) -> list[DriverRegisterData]:
        """Return the registrations not yet probed, ordered by priority.

        The device tree is read the first time this is called; registrations
        of equal priority keep the order they were added in.
        """
        if not self._initialized:
            self.enum_system.init()
            self._initialized = True
        return sorted(self.registers.unregistered(), key=lambda data: data.register.priority)

    def add_probed(self, probed: ProbedDevice) -> None:
        """Record a probed device and mark its registration as probed."""
        self.registers.set_probed(probed.register_id)
        self.dev_map[probed.descriptor.device_id] = probed.dev

    def dev_list(self, kind: HardwareKind) -> list[DeviceWeak[Any]]:
        """Return references to every device of a kind, in device-id order."""
        return [
            device.weak()
            for _, device in sorted(self.dev_map.items(), key=lambda item: item[0])
            if device.kind is kind
        ]

    def get_dev(
        self, kind: HardwareKind, device_id: DeviceId | None = None
    ) -> DeviceWeak[Any] | None:
        """Return the device with this id if it is of kind, or the first of kind.

        Returns None when there is no such device.
        """
        if device_id is None:
            devices = self.dev_list(kind)
            return devices[0] if devices else None
        device = self.dev_map.get(device_id)
        if device is None or device.kind is not kind:
            return None
        return device.weak()