"""Errors raised while setting up and probing drivers."""

from __future__ import annotations

from rdrive.base import ErrorBase


class DriverError(Exception):
    """A driver could not be set up."""


class FdtDriverError(DriverError):
    """The device tree could not be read."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"fdt error: {detail}")
        self.detail = detail


class UnknownDriverError(DriverError):
    """A driver failed for a reason of its own."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"unknown driver error: {detail}")
        self.detail = detail


class ProbeError(Exception):
    """A device could not be probed."""


class IrqNotInit(ProbeError):
    """The interrupt controller a device needs has not been probed yet."""

    def __init__(self, name: str) -> None:
        super().__init__(f"probe `{name}` fail: irq chip not init")
        self.name = name


class FdtProbeError(ProbeError):
    """The device tree did not describe the device usably."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"fdt parse error: {detail}")
        self.detail = detail


class OnProbeError(ProbeError):
    """The driver's probe function failed."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"on probe error: {cause}")
        self.cause = cause
        self.__cause__ = cause


class OpenFailError(ProbeError):
    """The probed device could not be opened."""

    def __init__(self, error: ErrorBase) -> None:
        super().__init__("open device fail")
        self.error = error
        self.__cause__ = error