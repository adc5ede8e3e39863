"""Reading flattened device tree (DTB) blobs."""

from __future__ import annotations

import enum
import itertools
import struct
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

FDT_MAGIC = 0xD00DFEED

_HEADER = struct.Struct(">10I")
_U32 = struct.Struct(">I")
_PROP = struct.Struct(">II")

_TOKEN_BEGIN_NODE = 0x1
_TOKEN_END_NODE = 0x2
_TOKEN_PROP = 0x3
_TOKEN_NOP = 0x4
_TOKEN_END = 0x9

_MIN_VERSION = 16
_MAX_COMPATIBLE_VERSION = 17


class FdtFormatError(ValueError):
    """The blob is not a well-formed flattened device tree."""


class Status(enum.Enum):
    """The value of a node's ``status`` property."""

    OKAY = "okay"
    DISABLED = "disabled"


def _align(offset: int) -> int:
    return (offset + 3) & ~3


def _u32_array(raw: bytes, what: str) -> tuple[int, ...]:
    if len(raw) % 4:
        raise FdtFormatError(f"{what} is not a list of 32-bit cells")
    return tuple(value for (value,) in _U32.iter_unpack(raw))


def _string_list(raw: bytes, what: str) -> list[str]:
    if not raw:
        return []
    if not raw.endswith(b"\0"):
        raise FdtFormatError(f"{what} is not NUL-terminated")
    return [part.decode("utf-8", errors="replace") for part in raw[:-1].split(b"\0")]


def _string_at(strings: bytes, offset: int) -> str:
    end = strings.find(b"\0", offset)
    if offset >= len(strings) or end < 0:
        raise FdtFormatError(f"property name offset {offset} lies outside the strings block")
    return strings[offset:end].decode("utf-8", errors="replace")


def _read_u32(block: bytes, pos: int) -> tuple[int, int]:
    if pos + _U32.size > len(block):
        raise FdtFormatError("structure block is truncated")
    return _U32.unpack_from(block, pos)[0], pos + _U32.size


@dataclass(frozen=True)
class InterruptController:
    """A node that other nodes send their interrupts to."""

    node: Node
    interrupt_cells: int | None = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "interrupt_cells", self.node._cell("#interrupt-cells"))


@dataclass(frozen=True)
class ClockRef:
    """One entry of a node's ``clocks`` property."""

    name: str | None
    node: Node
    specifier: tuple[int, ...] = ()


class Node:
    """A node of a device tree."""

    def __init__(self, fdt: Fdt, name: str, parent: Node | None) -> None:
        self.name = name
        self.parent = parent
        self._fdt = fdt
        self._children: list[Node] = []
        self._properties: dict[str, bytes] = {}

    def __repr__(self) -> str:
        return f"Node({self.path!r})"

    @property
    def children(self) -> tuple[Node, ...]:
        """The node's direct children in blob order."""
        return tuple(self._children)

    @property
    def properties(self) -> Mapping[str, bytes]:
        """The node's raw property values by name."""
        return MappingProxyType(self._properties)

    @property
    def path(self) -> str:
        """The full path of the node, ``/`` for the root."""
        names = [node.name for node in self._ancestry()][:-1]
        return "/" + "/".join(reversed(names))

    def _ancestry(self) -> Iterator[Node]:
        node: Node | None = self
        while node is not None:
            yield node
            node = node.parent

    def _cell(self, name: str) -> int | None:
        raw = self._properties.get(name)
        if raw is None:
            return None
        if len(raw) != _U32.size:
            raise FdtFormatError(f"{self.path}: `{name}` is not a single cell")
        return _U32.unpack(raw)[0]

    def property(self, name: str) -> bytes | None:
        """Return the raw value of a property, or None if it is absent."""
        return self._properties.get(name)

    def phandle(self) -> int | None:
        """Return the node's phandle, or None if it has none."""
        value = self._cell("phandle")
        return value if value is not None else self._cell("linux,phandle")

    def compatibles(self) -> list[str]:
        """Return the strings of the ``compatible`` property."""
        raw = self._properties.get("compatible")
        return [] if raw is None else _string_list(raw, f"{self.path}: compatible")

    def status(self) -> Status | None:
        """Return the node's status, or None if absent or unrecognised."""
        raw = self._properties.get("status")
        if raw is None:
            return None
        values = _string_list(raw, f"{self.path}: status")
        if not values:
            return None
        if values[0] in ("okay", "ok"):
            return Status.OKAY
        if values[0] == "disabled":
            return Status.DISABLED
        return None

    def interrupt_parent(self) -> InterruptController | None:
        """Return the controller named by the nearest ``interrupt-parent``."""
        for node in self._ancestry():
            phandle = node._cell("interrupt-parent")
            if phandle is not None:
                target = self._fdt.find_by_phandle(phandle)
                return None if target is None else InterruptController(target)
        return None

    def interrupts(self) -> list[tuple[int, ...]] | None:
        """Return the ``interrupts`` property split into one tuple per interrupt.

        None if the node has no interrupts or no usable interrupt parent. An
        incomplete trailing entry is dropped.
        """
        raw = self._properties.get("interrupts")
        if raw is None:
            return None
        parent = self.interrupt_parent()
        if parent is None or not parent.interrupt_cells:
            return None
        cells = iter(_u32_array(raw, f"{self.path}: interrupts"))
        size = parent.interrupt_cells
        groups = []
        while chunk := tuple(itertools.islice(cells, size)):
            if len(chunk) == size:
                groups.append(chunk)
        return groups

    def clocks(self) -> list[ClockRef]:
        """Return the clocks this node consumes, named from ``clock-names``."""
        raw = self._properties.get("clocks")
        if raw is None:
            return []
        names_raw = self._properties.get("clock-names", b"")
        names = iter(_string_list(names_raw, f"{self.path}: clock-names"))
        cells = iter(_u32_array(raw, f"{self.path}: clocks"))
        refs = []
        for phandle in cells:
            provider = self._fdt.find_by_phandle(phandle)
            if provider is None:
                raise FdtFormatError(f"{self.path}: clocks refers to unknown phandle {phandle:#x}")
            count = provider._cell("#clock-cells") or 0
            specifier = tuple(itertools.islice(cells, count))
            if len(specifier) != count:
                raise FdtFormatError(f"{self.path}: clocks entry is truncated")
            refs.append(ClockRef(next(names, None), provider, specifier))
        return refs


class Fdt:
    """A parsed flattened device tree."""

    def __init__(self, data: bytes) -> None:
        blob = bytes(data)
        if len(blob) < _HEADER.size:
            raise FdtFormatError(f"blob of {len(blob)} bytes is shorter than the header")
        (
            magic,
            total_size,
            off_struct,
            off_strings,
            _off_mem_rsvmap,
            version,
            last_comp_version,
            boot_cpuid_phys,
            size_strings,
            size_struct,
        ) = _HEADER.unpack_from(blob)
        if magic != FDT_MAGIC:
            raise FdtFormatError(f"bad magic {magic:#010x}")
        if total_size > len(blob):
            raise FdtFormatError(
                f"header claims {total_size} bytes but only {len(blob)} are present"
            )
        if version < _MIN_VERSION or last_comp_version > _MAX_COMPATIBLE_VERSION:
            raise FdtFormatError(f"unsupported version {version}")
        struct_end = off_struct + size_struct if version >= 17 else total_size
        strings_end = off_strings + size_strings
        if off_struct > struct_end or struct_end > total_size or strings_end > total_size:
            raise FdtFormatError("a block lies outside the blob")

        self.version = version
        self.boot_cpuid_phys = boot_cpuid_phys
        self._nodes: list[Node] = []
        self.root = self._parse(blob[off_struct:struct_end], blob[off_strings:strings_end])
        self._by_phandle: dict[int, Node] = {}
        for node in self._nodes:
            phandle = node.phandle()
            if phandle is not None:
                self._by_phandle.setdefault(phandle, node)

    def _parse(self, block: bytes, strings: bytes) -> Node:
        stack: list[Node] = []
        root: Node | None = None
        pos = 0
        while True:
            token, pos = _read_u32(block, pos)
            if token == _TOKEN_BEGIN_NODE:
                end = block.find(b"\0", pos)
                if end < 0:
                    raise FdtFormatError("node name is not NUL-terminated")
                name = block[pos:end].decode("utf-8", errors="replace")
                pos = _align(end + 1)
                parent = stack[-1] if stack else None
                if parent is None and root is not None:
                    raise FdtFormatError("more than one root node")
                node = Node(self, name, parent)
                if parent is None:
                    root = node
                else:
                    parent._children.append(node)
                self._nodes.append(node)
                stack.append(node)
            elif token == _TOKEN_END_NODE:
                if not stack:
                    raise FdtFormatError("node end without a node")
                stack.pop()
            elif token == _TOKEN_PROP:
                if not stack:
                    raise FdtFormatError("property outside a node")
                if pos + _PROP.size > len(block):
                    raise FdtFormatError("structure block is truncated")
                length, name_offset = _PROP.unpack_from(block, pos)
                pos += _PROP.size
                if pos + length > len(block):
                    raise FdtFormatError("property value runs past the structure block")
                value = block[pos : pos + length]
                pos = _align(pos + length)
                stack[-1]._properties[_string_at(strings, name_offset)] = value
            elif token == _TOKEN_NOP:
                continue
            elif token == _TOKEN_END:
                if stack:
                    raise FdtFormatError("structure block ends inside a node")
                break
            else:
                raise FdtFormatError(f"unknown token {token:#x} at offset {pos - 4}")
        if root is None:
            raise FdtFormatError("no root node")
        return root

    def all_nodes(self) -> list[Node]:
        """Return every node, depth first in blob order, the root first."""
        return list(self._nodes)

    def find_by_phandle(self, phandle: int) -> Node | None:
        """Return the node with the given phandle, or None."""
        return self._by_phandle.get(phandle)