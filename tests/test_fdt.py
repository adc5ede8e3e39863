import struct

import pytest

from rdrive.fdt import FDT_MAGIC, ClockRef, Fdt, FdtFormatError, Status


def u32(*values):
    return b"".join(struct.pack(">I", v) for v in values)


def strs(*values):
    return b"".join(v.encode() + b"\0" for v in values)


def build_fdt(root, version=17):
    strings = bytearray()
    offsets = {}
    block = bytearray()

    def pad():
        block.extend(b"\0" * (-len(block) % 4))

    def name_offset(name):
        if name not in offsets:
            offsets[name] = len(strings)
            strings.extend(name.encode() + b"\0")
        return offsets[name]

    def emit(node):
        name, props, children = node
        block.extend(struct.pack(">I", 1))
        block.extend(name.encode() + b"\0")
        pad()
        for key, value in props.items():
            block.extend(struct.pack(">III", 3, len(value), name_offset(key)))
            block.extend(value)
            pad()
        for child in children:
            emit(child)
        block.extend(struct.pack(">I", 2))

    emit(root)
    block.extend(struct.pack(">I", 9))
    off_struct = 40 + 16
    off_strings = off_struct + len(block)
    total = off_strings + len(strings)
    header = struct.pack(
        ">10I", FDT_MAGIC, total, off_struct, off_strings, 40, version, 16, 0,
        len(strings), len(block),
    )
    return header + bytes(16) + bytes(block) + bytes(strings)


TREE = (
    "",
    {"interrupt-parent": u32(1), "#address-cells": u32(2)},
    [
        (
            "intc@8000000",
            {
                "compatible": strs("arm,cortex-a15-gic"),
                "interrupt-controller": b"",
                "#interrupt-cells": u32(3),
                "phandle": u32(1),
            },
            [],
        ),
        ("apb-pclk", {"compatible": strs("fixed-clock"), "#clock-cells": u32(0), "phandle": u32(2)}, []),
        ("pll", {"#clock-cells": u32(1), "linux,phandle": u32(3)}, []),
        (
            "pl011@9000000",
            {
                "compatible": strs("arm,pl011", "arm,primecell"),
                "interrupts": u32(0, 1, 4, 0, 2, 4),
                "clocks": u32(2, 3, 7),
                "clock-names": strs("uartclk", "apb_pclk"),
                "status": strs("okay"),
            },
            [("child", {"status": strs("ok")}, [])],
        ),
        ("pl031@9010000", {"compatible": strs("arm,pl031"), "status": strs("disabled")}, []),
    ],
)


@pytest.fixture
def fdt():
    return Fdt(build_fdt(TREE))


def by_name(fdt, name):
    return next(node for node in fdt.all_nodes() if node.name == name)


def test_all_nodes_depth_first(fdt):
    names = [node.name for node in fdt.all_nodes()]
    assert names == ["", "intc@8000000", "apb-pclk", "pll", "pl011@9000000", "child", "pl031@9010000"]
    assert fdt.all_nodes()[0] is fdt.root


def test_parent_children_and_path(fdt):
    uart = by_name(fdt, "pl011@9000000")
    child = by_name(fdt, "child")
    assert child.parent is uart
    assert uart.children == (child,)
    assert child.path == "/pl011@9000000/child"
    assert fdt.root.path == "/"


def test_phandle_round_trip(fdt):
    for node in fdt.all_nodes():
        phandle = node.phandle()
        if phandle is not None:
            assert fdt.find_by_phandle(phandle) is node
    assert by_name(fdt, "pll").phandle() == 3
    assert fdt.find_by_phandle(99) is None
    assert by_name(fdt, "child").phandle() is None


def test_compatibles_and_property(fdt):
    uart = by_name(fdt, "pl011@9000000")
    assert uart.compatibles() == ["arm,pl011", "arm,primecell"]
    assert fdt.root.compatibles() == []
    assert uart.property("interrupts") == u32(0, 1, 4, 0, 2, 4)
    assert uart.property("missing") is None
    assert uart.properties["status"] == strs("okay")


def test_status(fdt):
    assert by_name(fdt, "pl011@9000000").status() is Status.OKAY
    assert by_name(fdt, "child").status() is Status.OKAY
    assert by_name(fdt, "pl031@9010000").status() is Status.DISABLED
    assert by_name(fdt, "apb-pclk").status() is None


def test_interrupt_parent_is_inherited(fdt):
    parent = by_name(fdt, "pl011@9000000").interrupt_parent()
    assert parent.node is by_name(fdt, "intc@8000000")
    assert parent.interrupt_cells == 3


def test_interrupts_grouped_by_cells(fdt):
    assert by_name(fdt, "pl011@9000000").interrupts() == [(0, 1, 4), (0, 2, 4)]
    assert by_name(fdt, "apb-pclk").interrupts() is None


def test_interrupts_without_parent():
    tree = ("", {}, [("dev", {"interrupts": u32(5)}, [])])
    fdt = Fdt(build_fdt(tree))
    assert by_name(fdt, "dev").interrupt_parent() is None
    assert by_name(fdt, "dev").interrupts() is None


def test_clocks(fdt):
    clocks = by_name(fdt, "pl011@9000000").clocks()
    assert clocks == [
        ClockRef("uartclk", by_name(fdt, "apb-pclk"), ()),
        ClockRef("apb_pclk", by_name(fdt, "pll"), (7,)),
    ]
    assert fdt.root.clocks() == []


def test_clock_with_unknown_phandle():
    tree = ("", {}, [("dev", {"clocks": u32(42)}, [])])
    fdt = Fdt(build_fdt(tree))
    with pytest.raises(FdtFormatError):
        by_name(fdt, "dev").clocks()


def test_bad_magic():
    blob = bytearray(build_fdt(TREE))
    blob[0:4] = u32(0x12345678)
    with pytest.raises(FdtFormatError):
        Fdt(bytes(blob))


def test_too_short():
    with pytest.raises(FdtFormatError):
        Fdt(b"\xd0\x0d\xfe\xed")


def test_truncated_blob():
    blob = build_fdt(TREE)
    with pytest.raises(FdtFormatError):
        Fdt(blob[:-8])


def test_unsupported_version():
    with pytest.raises(FdtFormatError):
        Fdt(build_fdt(TREE, version=15))


def test_unknown_token():
    blob = bytearray(build_fdt(TREE))
    off_struct = struct.unpack_from(">I", blob, 8)[0]
    blob[off_struct : off_struct + 4] = u32(7)
    with pytest.raises(FdtFormatError):
        Fdt(bytes(blob))


def test_bad_phandle_size():
    tree = ("", {"phandle": b"\x00\x01"}, [])
    with pytest.raises(FdtFormatError):
        Fdt(build_fdt(tree))