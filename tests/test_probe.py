import struct

import pytest

from rdrive.base import IrqConfig, IrqId, Trigger
from rdrive.device import Descriptor, Empty, Hardware, HardwareKind
from rdrive.errors import FdtProbeError, IrqNotInit, OnProbeError
from rdrive.interfaces import ClockInterface, FdtParseConfig, IntcInterface, NotSupported
from rdrive.lock import PId
from rdrive.probe import ProbeFunc
from rdrive.register import (
    DriverRegister,
    DriverRegisterData,
    FdtProbe,
    ProbeLevel,
    ProbePriority,
    RegisterId,
)


def u32(*values):
    return b"".join(struct.pack(">I", v) for v in values)


def strs(*values):
    return b"".join(v.encode() + b"\0" for v in values)


def build_fdt(root):
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
    off_struct = 56
    off_strings = off_struct + len(block)
    total = off_strings + len(strings)
    header = struct.pack(
        ">10I", 0xD00DFEED, total, off_struct, off_strings, 40, 17, 16, 0,
        len(strings), len(block),
    )
    return header + bytes(16) + bytes(block) + bytes(strings)


TREE = (
    "",
    {"interrupt-parent": u32(1)},
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
        (
            "pl011@9000000",
            {
                "compatible": strs("arm,pl011", "arm,primecell"),
                "interrupts": u32(0, 1, 4, 0, 99, 4, 0, 5, 4),
                "clocks": u32(2, 2),
                "clock-names": strs("uartclk", "apb_pclk"),
            },
            [],
        ),
        ("pl031@9010000", {"compatible": strs("arm,pl031"), "status": strs("disabled")}, []),
        ("virtio@a000000", {"compatible": strs("virtio,mmio")}, []),
        ("virtio@a000200", {"compatible": strs("virtio,mmio")}, []),
    ],
)


def parse_cells(cells):
    if cells[1] == 99:
        raise ValueError("unsupported interrupt")
    return IrqConfig(IrqId(cells[1]), Trigger.EDGE_BOTH)


class FakeIntc(IntcInterface):
    def __init__(self, with_parser=True):
        self.with_parser = with_parser

    def open(self):
        pass

    def close(self):
        pass

    def cpu_interface(self):
        raise NotSupported()

    def irq_enable(self, irq):
        raise NotSupported()

    def irq_disable(self, irq):
        raise NotSupported()

    def set_priority(self, irq, priority):
        raise NotSupported()

    def set_trigger(self, irq, trigger):
        raise NotSupported()

    def set_target_cpu(self, irq, cpu):
        raise NotSupported()

    def capabilities(self):
        return [FdtParseConfig(parse_cells)] if self.with_parser else []


class FakeClock(ClockInterface):
    def open(self):
        pass

    def close(self):
        pass

    def perper_enable(self):
        pass

    def get_rate(self, clock_id):
        return 0

    def set_rate(self, clock_id, rate):
        pass


def recording(make_hardware, seen):
    def on_probe(info, descriptor):
        seen.append((info, descriptor))
        return make_hardware()

    return on_probe


def make_register(name, compatibles, on_probe, register_id=1):
    return DriverRegisterData(
        RegisterId(register_id),
        DriverRegister(
            name,
            ProbeLevel.PRE_KERNEL,
            ProbePriority.DEFAULT,
            (FdtProbe(tuple(compatibles), on_probe),),
        ),
    )


def sys_init():
    return Hardware(HardwareKind.SYS_INIT, Empty())


@pytest.fixture
def probe_func():
    func = ProbeFunc(build_fdt(TREE))
    func.init()
    return func


def probe_intc(probe_func, with_parser=True):
    register = make_register(
        "IrqTest", ["arm,cortex-a15-gic"],
        lambda info, desc: Hardware(HardwareKind.INTC, FakeIntc(with_parser)),
    )
    return probe_func.to_unprobed(register, {})()


def test_init_rejects_bad_blob():
    with pytest.raises(FdtProbeError):
        ProbeFunc(b"not a device tree").init()


def test_no_matching_node(probe_func):
    register = make_register("none", ["vendor,nothing"], recording(sys_init, []))
    assert probe_func.to_unprobed(register, {}) is None


def test_disabled_node_is_skipped(probe_func):
    register = make_register("rtc", ["arm,pl031"], recording(sys_init, []))
    assert probe_func.to_unprobed(register, {}) is None


def test_probe_is_deferred_until_called(probe_func):
    seen = []
    register = make_register("virtio", ["virtio,mmio"], recording(sys_init, seen))
    unprobed = probe_func.to_unprobed(register, {})
    assert seen == []
    probed = unprobed()
    assert len(seen) == 1
    assert seen[0][1] == probed.descriptor


def test_probe_intc(probe_func):
    probed = probe_intc(probe_func)
    assert probed.register_id == RegisterId(1)
    assert probed.descriptor.name == "IrqTest"
    assert probed.descriptor.irq_parent is None
    assert probed.descriptor.irqs == ()
    assert probed.dev.kind is HardwareKind.INTC
    assert probed.dev.descriptor == probed.descriptor


def test_uart_gets_irq_parent_and_irqs(probe_func):
    intc = probe_intc(probe_func)
    devices = {intc.descriptor.device_id: intc.dev}
    register = make_register("PL011", ["arm,pl011"], recording(sys_init, []), register_id=4)
    probed = probe_func.to_unprobed(register, devices)()
    assert probed.descriptor.irq_parent == intc.descriptor.device_id
    assert probed.descriptor.irqs == (
        IrqConfig(IrqId(1), Trigger.EDGE_BOTH),
        IrqConfig(IrqId(5), Trigger.EDGE_BOTH),
    )
    assert probed.register_id == RegisterId(4)
    with intc.dev.try_borrow_by(PId(3)) as guard:
        assert guard.descriptor == intc.descriptor


def test_uart_without_intc_device(probe_func):
    probe_intc(probe_func)
    register = make_register("PL011", ["arm,pl011"], recording(sys_init, []))
    unprobed = probe_func.to_unprobed(register, {})
    with pytest.raises(IrqNotInit) as info:
        unprobed()
    assert info.value.name == "PL011"


def test_irq_parent_of_wrong_kind(probe_func):
    intc = probe_intc(probe_func)
    clock = Hardware(HardwareKind.CLK, FakeClock()).to_device(Descriptor(device_id=intc.descriptor.device_id))
    register = make_register("PL011", ["arm,pl011"], recording(sys_init, []))
    unprobed = probe_func.to_unprobed(register, {intc.descriptor.device_id: clock})
    with pytest.raises(IrqNotInit):
        unprobed()


def test_intc_without_parse_capability(probe_func):
    intc = probe_intc(probe_func, with_parser=False)
    register = make_register("PL011", ["arm,pl011"], recording(sys_init, []))
    unprobed = probe_func.to_unprobed(register, {intc.descriptor.device_id: intc.dev})
    with pytest.raises(FdtProbeError):
        unprobed()


def test_on_probe_failure_is_wrapped(probe_func):
    failure = RuntimeError("no such device")

    def on_probe(info, descriptor):
        raise failure

    register = make_register("virtio", ["virtio,mmio"], on_probe)
    with pytest.raises(OnProbeError) as info:
        probe_func.to_unprobed(register, {})()
    assert info.value.cause is failure


def test_on_probe_must_return_hardware(probe_func):
    register = make_register("virtio", ["virtio,mmio"], lambda info, desc: Empty())
    with pytest.raises(OnProbeError) as info:
        probe_func.to_unprobed(register, {})()
    assert isinstance(info.value.cause, TypeError)


def test_fdt_info_lookups(probe_func):
    intc = probe_intc(probe_func)
    seen = []
    register = make_register("PL011", ["arm,pl011"], recording(sys_init, seen))
    probe_func.to_unprobed(register, {intc.descriptor.device_id: intc.dev})()
    fdt_info = seen[0][0]
    assert fdt_info.node.name == "pl011@9000000"
    assert fdt_info.phandle_to_device_id(1) == intc.descriptor.device_id
    assert fdt_info.phandle_to_device_id(77) is None
    clock = fdt_info.find_clk_by_name("apb_pclk")
    assert clock.node.phandle() == 2
    assert fdt_info.find_clk_by_name("missing") is None


def test_only_first_matching_node_is_used(probe_func):
    seen = []
    register = make_register("virtio", ["virtio,mmio"], recording(sys_init, seen))
    probe_func.to_unprobed(register, {})()
    assert seen[0][0].node.name == "virtio@a000000"


def test_node_without_phandle_gets_fresh_ids(probe_func):
    intc = probe_intc(probe_func)
    register = make_register("virtio", ["virtio,mmio"], recording(sys_init, []))
    first = probe_func.to_unprobed(register, {})()
    second = probe_func.to_unprobed(register, {})()
    ids = {first.descriptor.device_id, second.descriptor.device_id, intc.descriptor.device_id}
    assert len(ids) == 3


def test_phandle_node_id_is_stable(probe_func):
    first = probe_intc(probe_func)
    second = probe_intc(probe_func)
    assert first.descriptor.device_id == second.descriptor.device_id