"""Bootloader protocol layer - byte transport and command sequence."""

from .transport import (
    ByteTransport,
    SerialTransport,
    open_serial,
    INITIAL_BAUD_RATE,
    DEFAULT_TIMEOUT,
)
from .bootloader import (
    BootloaderSession,
    SessionObserver,
    SessionState,
    checksum,
    iter_chunks,
    CHUNK_SIZE,
    SUB_BLOCK_SIZE,
    EXPECTED_IDENTITY,
)

__all__ = [
    # Transport
    "ByteTransport",
    "SerialTransport",
    "open_serial",
    "INITIAL_BAUD_RATE",
    "DEFAULT_TIMEOUT",
    # Bootloader protocol
    "BootloaderSession",
    "SessionObserver",
    "SessionState",
    "checksum",
    "iter_chunks",
    "CHUNK_SIZE",
    "SUB_BLOCK_SIZE",
    "EXPECTED_IDENTITY",
]
