"""
Byte transport for the 1986 UART bootloader.

The protocol engine only needs a duplex byte channel with blocking
``write``/``read`` bounded by a timeout. :class:`ByteTransport` describes
that capability; :class:`SerialTransport` provides it over pyserial.

Port lifecycle (open, close, reopening at a new baud rate) belongs to the
caller, never to the protocol engine.
"""

import logging
from typing import Optional, Protocol, runtime_checkable

import serial

from milandr_flasher.errors import TransportError

logger = logging.getLogger(__name__)

INITIAL_BAUD_RATE = 9600
DEFAULT_TIMEOUT = 3.0


@runtime_checkable
class ByteTransport(Protocol):
    """
    Blocking duplex byte channel.

    ``read(length)`` may return fewer bytes than requested when the
    timeout expires; callers treat that as a failure.
    """

    def write(self, data: bytes) -> None:
        ...

    def read(self, length: int) -> bytes:
        ...


class SerialTransport:
    """
    pyserial-backed transport for the bootloader UART.

    Example:
        transport = SerialTransport("/dev/ttyUSB0", baudrate=9600)
        transport.open()
        transport.write(b"I")
        ident = transport.read(12)
        transport.close()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = INITIAL_BAUD_RATE,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Args:
            port: Serial port (e.g., "/dev/ttyUSB0", "COM3")
            baudrate: Serial baud rate (default 9600, the bootloader power-up rate)
            timeout: Read/write timeout in seconds (default 3.0)
        """
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.ser: Optional[serial.Serial] = None

    def open(self) -> None:
        """
        Open the serial port 8N1 without flow control.

        Raises:
            TransportError: If port cannot be opened
        """
        try:
            self.ser = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=8,
                parity="N",
                stopbits=1,
                timeout=self.timeout,
                write_timeout=self.timeout,
                rtscts=False,
                dsrdtr=False,
            )
            self.ser.reset_input_buffer()
            self.ser.reset_output_buffer()
            logger.debug(
                f"Opened {self.port} at {self.baudrate} bps (timeout={self.timeout}s)"
            )
        except serial.SerialException as e:
            raise TransportError(f"Cannot open port {self.port}: {e}")

    def close(self) -> None:
        """Close serial port."""
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.debug(f"Closed {self.port}")

    @property
    def is_open(self) -> bool:
        return bool(self.ser and self.ser.is_open)

    def __enter__(self) -> "SerialTransport":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def write(self, data: bytes) -> None:
        """
        Send raw bytes.

        Raises:
            TransportError: If the port is closed or the write is short
        """
        if not self.is_open:
            raise TransportError("Serial port not open")
        try:
            written = self.ser.write(data)
            self.ser.flush()
        except serial.SerialException as e:
            raise TransportError(f"Write error: {e}")
        if written != len(data):
            raise TransportError(f"Incomplete write: sent {written}/{len(data)} bytes")
        logger.debug(f">>> {data[:32].hex().upper()}" + ("..." if len(data) > 32 else ""))

    def read(self, length: int) -> bytes:
        """
        Receive up to ``length`` bytes, blocking until timeout.

        Raises:
            TransportError: If the port is closed or the driver fails
        """
        if not self.is_open:
            raise TransportError("Serial port not open")
        try:
            data = self.ser.read(length)
        except serial.SerialException as e:
            raise TransportError(f"Read error: {e}")
        logger.debug(f"<<< {data.hex().upper()}")
        return data


def open_serial(
    port: str,
    baudrate: int = INITIAL_BAUD_RATE,
    timeout: float = DEFAULT_TIMEOUT,
) -> SerialTransport:
    """
    Open a bootloader transport connection.

    Returns:
        SerialTransport instance (already open)
    """
    transport = SerialTransport(port, baudrate, timeout)
    transport.open()
    return transport
