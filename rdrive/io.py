"""Byte-stream device traits and their error type."""

from __future__ import annotations

import abc
import enum


class IoErrorKind(enum.Enum):
    """What kind of I/O error occurred."""

    OTHER = "Other"
    PERMISSION_DENIED = "PermissionDenied"
    NOT_AVAILABLE = "NotAvailable"
    BROKEN_PIPE = "BrokenPipe"
    INVALID_PARAMETER = "InvalidParameter"
    INVALID_DATA = "InvalidData"
    TIMED_OUT = "TimedOut"
    INTERRUPTED = "Interrupted"
    UNSUPPORTED = "Unsupported"
    OUT_OF_MEMORY = "OutOfMemory"
    WRITE_ZERO = "WriteZero"


_NEEDS_DETAIL = {IoErrorKind.OTHER, IoErrorKind.INVALID_PARAMETER}


class IoError(Exception):
    """An I/O error of a given kind.

    ``OTHER`` carries a description and ``INVALID_PARAMETER`` the name of
    the parameter; the other kinds carry nothing.
    """

    def __init__(self, kind: IoErrorKind, detail: str | None = None) -> None:
        if kind in _NEEDS_DETAIL and detail is None:
            raise ValueError(f"{kind.value} needs a detail")
        if kind not in _NEEDS_DETAIL and detail is not None:
            raise ValueError(f"{kind.value} takes no detail")
        self.kind = kind
        self.detail = detail
        super().__init__(self._describe())

    def _describe(self) -> str:
        if self.kind is IoErrorKind.OTHER:
            return f'Other("{self.detail}")'
        if self.kind is IoErrorKind.INVALID_PARAMETER:
            return f'InvalidParameter {{ name: "{self.detail}" }}'
        return self.kind.value


class Read(abc.ABC):
    """A device data can be read from."""

    @abc.abstractmethod
    def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes and return them; raise IoError on failure."""

    @abc.abstractmethod
    def can_read(self) -> bool:
        """Return True if the device is ready to read."""


class Write(abc.ABC):
    """A device data can be written to."""

    @abc.abstractmethod
    def write(self, data: bytes) -> int:
        """Write data and return how many bytes were written; raise IoError on failure."""

    @abc.abstractmethod
    def can_write(self) -> bool:
        """Return True if the device is ready to accept data."""