# rdrive

`rdrive` is a dynamic driver manager. A driver describes itself with a
`DriverRegister`: a name, a probe level, a priority and the device-tree
`compatible` strings it handles. The manager reads a flattened device tree
(a `.dtb` blob), matches each registration against the enabled nodes, calls
the driver's probe function, opens the resulting device and keeps it in a
device map keyed by `DeviceId`.

No third-party libraries are needed at run time. The tests use pytest:

```
pip install "rdrive[test]"
pytest
```

## Modules

- `rdrive.base` – `DriverGeneric` (`open` / `close`), the driver errors
  (`ErrorBase` and its subclasses `IoFailure`, `NoMemory`, `TryAgain`, `Busy`,
  `BadAddress`, `InvalidArgument`), `IrqId`, `Trigger` and `IrqConfig`.
- `rdrive.interfaces` – abstract driver contracts: `IntcInterface` (with
  `IntcCpuInterface`, `CpuCapLocalIrq`, `LocalIrqCapability`, `FdtParseConfig`
  and the errors `IntcError`, `IrqIdNotCompatible`, `NotSupported`),
  `SystickInterface`, `TimerInterface` with `TimerCpuInterface`,
  `ClockInterface` with `ClockId`, `PowerInterface`, `BlockDriver`, and
  `SerialInterface` with the async halves `SerialSender` / `SerialReceiver`
  (whose `send_blocking` / `receive_blocking` poll the coroutine to
  completion).
- `rdrive.io` – the `Read` and `Write` byte-stream traits and `IoError`,
  which carries an `IoErrorKind`.
- `rdrive.lock` – `Lock`, `LockWeak` and `LockGuard`: one holder at a time,
  identified by a `PId`; a second holder gets `UsedByOthers`, a weak
  reference to a freed object gets `DeviceReleased`.
- `rdrive.device` – `Descriptor`, `DeviceId` (`next_device_id()` counts up
  from zero), `HardwareKind`, `Hardware`, `Device`, `DeviceWeak`,
  `DeviceGuard` and the errors `DeviceUsedByOthers` / `DeviceDropped`.
- `rdrive.register` – `DriverRegister`, `FdtProbe`, `ProbeLevel`
  (`PRE_KERNEL`, `POST_KERNEL`), `ProbePriority` (`CLK` = 6, `INTC` = 10,
  `DEFAULT` = 256, or any non-negative integer; lower is probed first) and
  `RegisterContainer`.
- `rdrive.fdt` – a reader for device-tree blobs: `Fdt(data)` with
  `all_nodes()` and `find_by_phandle()`; `Node` with `phandle()`,
  `compatibles()`, `status()`, `property()`, `interrupt_parent()`,
  `interrupts()` and `clocks()`. Malformed blobs raise `FdtFormatError`.
- `rdrive.probe` – `ProbeFunc`, which matches registrations to nodes, and
  `FdtInfo`, handed to every probe function.
- `rdrive.manager` – `Manager`, holding registrations and probed devices.
- `rdrive.core` – one process-wide manager and the entry points that work on
  it.
- `rdrive.errors` – `ProbeError` and its subclasses `IrqNotInit`,
  `FdtProbeError`, `OnProbeError`, `OpenFailError`; also `DriverError` with
  `FdtDriverError` and `UnknownDriverError`.

## Writing a driver

A probe function takes an `FdtInfo` and the device's `Descriptor` and returns
a `Hardware` pairing a `HardwareKind` with the driver object. `Hardware`
checks that the driver implements the interface of its kind:

| `HardwareKind` | interface            |
|----------------|----------------------|
| `INTC`         | `IntcInterface`      |
| `SYSTICK`      | `SystickInterface`   |
| `POWER`        | `PowerInterface`     |
| `BLOCK`        | `BlockDriver`        |
| `CLK`          | `ClockInterface`     |
| `SYS_INIT`     | `Empty`              |

```python
from rdrive import core
from rdrive.device import Hardware, HardwareKind
from rdrive.interfaces import ClockInterface
from rdrive.register import FdtProbe, ProbeLevel, ProbePriority


class FixedClock(ClockInterface):
    def __init__(self):
        self.rate = 0

    def open(self):
        pass

    def close(self):
        pass

    def perper_enable(self):
        pass

    def get_rate(self, clock_id):
        return self.rate

    def set_rate(self, clock_id, rate):
        self.rate = rate


def probe_clock(info, descriptor):
    return Hardware(HardwareKind.CLK, FixedClock())


with open("board.dtb", "rb") as blob:
    core.init(blob.read())

core.module_driver(
    name="APB CLK",
    level=ProbeLevel.PRE_KERNEL,
    priority=ProbePriority.CLK,
    probe_kinds=[FdtProbe(compatibles=["fixed-clock"], on_probe=probe_clock)],
)
core.register_append(core.linked_registers())

core.probe_pre_kernel()             # PRE_KERNEL registrations only; raises on the first failure
core.probe_all(stop_if_fail=False)  # everything left; failures are logged and skipped

for clock in core.dev_list(HardwareKind.CLK):
    print(clock.descriptor.name)
```

`module_driver` records a registration so that `linked_registers()` returns
it; names that differ only in case, dashes or spaces clash and raise
`ValueError`. Registrations can also be added directly with
`core.register_add` or `core.register_append`.

## How probing works

- The device tree is parsed the first time unprobed registrations are asked
  for; every node with a phandle is given a `DeviceId` then.
- Registrations are probed in priority order; equal priorities keep the order
  they were added in. Each registration is matched to the first node whose
  `status` is not `disabled` and whose `compatible` list shares a string with
  one of its `FdtProbe` entries. A registration with no matching node is
  passed over.
- If the node has an interrupt parent other than itself, that controller must
  already be probed as an `INTC` device (otherwise `IrqNotInit`) and must offer
  an `FdtParseConfig` capability (otherwise `FdtProbeError`). Each entry of
  the node's `interrupts` property is passed to it as a tuple of cells; the
  results fill `Descriptor.irqs`, and entries it fails on are left out.
- An exception from the probe function, or a return value that is not a
  `Hardware`, is raised as `OnProbeError`. The device is then opened on
  behalf of pid 0; an `ErrorBase` from `open` becomes `OpenFailError` when
  stopping on failure. A device that fails is not recorded and its
  registration stays unprobed.

`FdtInfo.find_clk_by_name(name)` returns the node's `ClockRef` of that name,
and `FdtInfo.phandle_to_device_id(phandle)` the device id given to a phandle,
so a driver can look up the devices it depends on with
`core.get_dev(kind, device_id)`.

## Using devices

`core.dev_list(kind)` and `core.get_dev(kind, device_id=None)` return
`DeviceWeak` references; `get_dev` without an id returns the first device of
that kind, and `None` when there is none. A reference hands out exclusive
access to the driver:

```python
clock = core.get_dev(HardwareKind.CLK)
with clock.try_borrow_by(PId(1)) as guard:
    guard.value.set_rate(ClockId(0), 24_000_000)
```

(`PId` comes from `rdrive.lock`, `ClockId` from `rdrive.interfaces`.) While a
guard is held, other borrowers get `DeviceUsedByOthers`;
`spin_try_borrow_by` retries until the device is free. Once a device is gone,
its weak references raise `DeviceDropped`.

`core.read(func)` and `core.edit(func)` run a function against the global
`Manager`. `init`, `read`, `edit`, the `register_*`, `probe_*`, `dev_list`
and `get_dev` functions need `core.init` to have been called first and
otherwise raise `RuntimeError("manager not init")`.

## What it does not do

- It drives no hardware itself and ships no drivers: drivers are Python
  objects implementing the interfaces above.
- Devices are found only through a flattened device tree; there is no other
  enumeration.
- There is no kind for timers or serial ports in `HardwareKind`, so
  `TimerInterface` and `SerialInterface` drivers cannot be probed into the
  device map.
- There is no command-line tool; everything is used as a library.