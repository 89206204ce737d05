"""Tests for the pyserial-backed transport."""

import pytest
import serial

from milandr_flasher.errors import TransportError
from milandr_flasher.protocol import transport as transport_mod
from milandr_flasher.protocol.transport import ByteTransport, SerialTransport, open_serial


class MockSerial:
    """Stand-in for serial.Serial recording the open arguments."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.is_open = True
        self.written = bytearray()
        self.incoming = bytearray(kwargs.pop("incoming", b""))
        self.short_write = False

    def reset_input_buffer(self):
        pass

    def reset_output_buffer(self):
        pass

    def write(self, data):
        if self.short_write:
            return len(data) - 1
        self.written.extend(data)
        return len(data)

    def flush(self):
        pass

    def read(self, length):
        data = bytes(self.incoming[:length])
        del self.incoming[:length]
        return data

    def close(self):
        self.is_open = False


@pytest.fixture
def mock_serial(monkeypatch):
    opened = []

    def factory(**kwargs):
        ser = MockSerial(**kwargs)
        opened.append(ser)
        return ser

    monkeypatch.setattr(transport_mod.serial, "Serial", factory)
    return opened


class TestSerialTransport:

    def test_open_uses_8n1_without_flow_control(self, mock_serial):
        transport = open_serial("/dev/ttyUSB0", 115200, 1.5)
        kwargs = mock_serial[0].kwargs
        assert kwargs["baudrate"] == 115200
        assert kwargs["timeout"] == 1.5
        assert (kwargs["bytesize"], kwargs["parity"], kwargs["stopbits"]) == (8, "N", 1)
        assert kwargs["rtscts"] is False and kwargs["dsrdtr"] is False
        assert transport.is_open
        assert isinstance(transport, ByteTransport)

    def test_write_and_read(self, mock_serial):
        with SerialTransport("COM3") as transport:
            mock_serial[0].incoming.extend(b"\x0D\x0A\x3E")
            transport.write(b"\x0D")
            assert transport.read(3) == b"\x0D\x0A\x3E"
            # short read is returned as-is
            assert transport.read(1) == b""
        assert mock_serial[0].written == b"\x0D"
        assert not transport.is_open

    def test_short_write_raises(self, mock_serial):
        transport = open_serial("COM3")
        mock_serial[0].short_write = True
        with pytest.raises(TransportError):
            transport.write(b"ABC")

    def test_closed_port_raises(self):
        transport = SerialTransport("COM3")
        with pytest.raises(TransportError):
            transport.read(1)

    def test_open_failure_wrapped(self, monkeypatch):
        def fail(**kwargs):
            raise serial.SerialException("no such port")

        monkeypatch.setattr(transport_mod.serial, "Serial", fail)
        with pytest.raises(TransportError) as ei:
            open_serial("/dev/nope")
        assert "no such port" in str(ei.value)
