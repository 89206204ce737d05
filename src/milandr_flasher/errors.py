"""
Exception hierarchy shared by the HEX decoder, the bootloader protocol
and the CLI.

Every error is terminal for the current upload session: nothing in this
package retries a failed step.
"""

from typing import Optional


class FlasherError(Exception):
    """Base exception for all flasher operations."""


class TransportError(FlasherError):
    """Serial read/write failure, including a read that timed out short."""

    def __init__(self, message: str, step: Optional[str] = None):
        self.step = step
        if step:
            message = f"{step}: {message}"
        super().__init__(message)


class ParseError(FlasherError):
    """Malformed Intel-HEX record or unreadable firmware file."""

    def __init__(self, message: str, line: Optional[int] = None, text: str = ""):
        self.line = line
        self.text = text
        if line is not None:
            message = f"line {line}: {message}"
        if text:
            message = f"{message}: {text!r}"
        super().__init__(message)


class ProtocolError(FlasherError):
    """
    Device answered with something other than the expected acknowledge.

    Attributes:
        step: Protocol step that failed (e.g. "confirm_baud")
        expected: Bytes the bootloader should have sent, if known
        actual: Bytes actually received
    """

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        expected: Optional[bytes] = None,
        actual: Optional[bytes] = None,
    ):
        self.step = step
        self.expected = expected
        self.actual = actual
        details = []
        if expected is not None:
            details.append(f"expected {expected.hex().upper()}")
        if actual is not None:
            details.append(f"got {actual.hex().upper() or 'nothing'}")
        if step:
            message = f"{step}: {message}"
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)


class ChecksumError(ProtocolError):
    """Checksum echoed for a program chunk differs from the local one."""

    def __init__(self, chunk_index: int, expected: int, actual: int):
        self.chunk_index = chunk_index
        self.expected_sum = expected
        self.actual_sum = actual
        super().__init__(
            f"checksum mismatch on chunk {chunk_index}: "
            f"expected 0x{expected:02X}, got 0x{actual:02X}",
            step="program",
            expected=bytes([expected]),
            actual=bytes([actual]),
        )


class VerifyError(ProtocolError):
    """Read-back data differs from the firmware image."""

    def __init__(self, byte_offset: int, expected: bytes = b"", actual: bytes = b""):
        self.byte_offset = byte_offset
        super().__init__(
            f"read-back mismatch at image offset 0x{byte_offset:06X}",
            step="verify",
            expected=expected,
            actual=actual,
        )


class EraseError(ProtocolError):
    """Post-erase sentinel (address, data) pair is not the erased pattern."""

    def __init__(self, address: int, data: int):
        self.address = address
        self.data = data
        super().__init__(
            f"chip erase failed addr=0x{address:08X} data=0x{data:08X}",
            step="erase_chip",
        )


class SessionStateError(FlasherError):
    """Protocol step invoked out of order, or after the session failed."""


class PortSelectionError(FlasherError):
    """Serial port auto-detection found no port or more than one."""
