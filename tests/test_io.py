import pytest

from rdrive.io import IoError, IoErrorKind, Read, Write


@pytest.mark.parametrize(
    "kind",
    [
        IoErrorKind.PERMISSION_DENIED,
        IoErrorKind.NOT_AVAILABLE,
        IoErrorKind.TIMED_OUT,
        IoErrorKind.WRITE_ZERO,
    ],
)
def test_plain_kinds_describe_themselves(kind):
    error = IoError(kind)
    assert str(error) == kind.value
    assert error.kind is kind
    assert error.detail is None


def test_permission_denied_text():
    assert str(IoError(IoErrorKind.PERMISSION_DENIED)) == "PermissionDenied"


def test_other_carries_description():
    error = IoError(IoErrorKind.OTHER, "fifo stuck")
    assert str(error) == 'Other("fifo stuck")'
    assert error.detail == "fifo stuck"


def test_invalid_parameter_carries_name():
    error = IoError(IoErrorKind.INVALID_PARAMETER, "baud")
    assert str(error) == 'InvalidParameter { name: "baud" }'


def test_detail_required_where_the_kind_has_one():
    with pytest.raises(ValueError):
        IoError(IoErrorKind.OTHER)
    with pytest.raises(ValueError):
        IoError(IoErrorKind.INVALID_PARAMETER)


def test_detail_refused_where_the_kind_has_none():
    with pytest.raises(ValueError):
        IoError(IoErrorKind.BROKEN_PIPE, "extra")


def test_read_and_write_are_abstract():
    with pytest.raises(TypeError):
        Read()
    with pytest.raises(TypeError):
        Write()


class _Loopback(Read, Write):
    def __init__(self):
        self.buffer = bytearray()

    def read(self, size):
        if not self.buffer:
            raise IoError(IoErrorKind.INTERRUPTED)
        data = bytes(self.buffer[:size])
        del self.buffer[:size]
        return data

    def can_read(self):
        return bool(self.buffer)

    def write(self, data):
        self.buffer.extend(data)
        return len(data)

    def can_write(self):
        return True


def test_loopback_round_trip_and_error():
    port = _Loopback()
    assert port.can_read() is False
    assert port.write(b"hello") == 5
    assert port.can_read() is True
    assert port.read(5) == b"hello"
    with pytest.raises(IoError) as info:
        port.read(1)
    assert info.value.kind is IoErrorKind.INTERRUPTED
    expected = IoError(IoErrorKind.INTERRUPTED)
    assert str(info.value) == str(expected)
    assert expected.detail is None