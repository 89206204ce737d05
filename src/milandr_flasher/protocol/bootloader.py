"""
Milandr 1986 UART bootloader protocol.

Implements the command/response exchange of the mask-ROM UART loader and
of the RAM boot loader injected through it. The session is a strict
one-way sequence:

1. check_link        512 x 0x00               -> 3 bytes (unchecked)
2. set_baud          'B' u32 rate 0x0D        -> 1 byte (unchecked)
   (caller reopens the port at the new rate and calls replace_transport)
3. confirm_baud      0x0D                     -> 0D 0A 3E
4. inject_boot_loader
                     'L' u32 addr u32 size    -> 'L'
                     boot loader bytes        -> 'K'
                     'Y' u32 addr u32 0x08    -> 'Y' ... 'K' (10 bytes)
                     'R' u32 addr u32 size    -> 'R'
5. read_identity     'I'                      -> 12 bytes ("1986BOOTUART")
6. erase_chip        'E'                      -> 'E' u32 addr u32 data
7. program           'A' u32 addr             -> 0x08
                     'P' 256 bytes (per chunk) -> 1 byte checksum
8. verify            'A' u32 addr             -> 0x08
                     'V' (per 8 bytes)        -> 8 bytes

All 32-bit fields are little-endian. Nothing is retried: any failure puts
the session in the FAILED state and it must be discarded.
"""

import logging
import struct
from contextlib import contextmanager
from enum import Enum
from typing import Callable, Iterator, Optional, Tuple

from milandr_flasher.errors import (
    ChecksumError,
    EraseError,
    ProtocolError,
    SessionStateError,
    TransportError,
    VerifyError,
)
from milandr_flasher.firmware import FirmwareImage
from .transport import ByteTransport

logger = logging.getLogger(__name__)

# Opcodes
CMD_BAUD = b"B"
CMD_LOAD = b"L"
CMD_READ_BACK = b"Y"
CMD_RUN = b"R"
CMD_IDENTITY = b"I"
CMD_ERASE = b"E"
CMD_ADDRESS = b"A"
CMD_PROGRAM = b"P"
CMD_VERIFY = b"V"
CR = b"\x0D"

# Responses
LINK_PROBE = bytes(512)
LINK_REPLY_LENGTH = 3
BAUD_CONFIRM_REPLY = b"\x0D\x0A\x3E"
LOAD_ACK = b"L"
DATA_ACK = b"K"
RUN_ACK = b"R"
ERASE_ACK = b"E"
ADDRESS_ACK = b"\x08"
READ_BACK_REPLY_LENGTH = 10

# Opaque constant the loader expects after the address in the 'Y' command
BOOT_VERIFY_LENGTH = 0x00000008

IDENTITY_LENGTH = 12
EXPECTED_IDENTITY = "1986BOOTUART"

ERASE_CHECK_ADDRESS = 0x08020000
ERASED_WORD = 0xFFFFFFFF

CHUNK_SIZE = 256
SUB_BLOCK_SIZE = 8
PAD_BYTE = 0x00

ProgressCallback = Callable[[int, int], None]


class SessionState(Enum):
    """Position of a BootloaderSession in the upload sequence."""
    IDLE = "idle"
    LINK_CHECKED = "link_checked"
    BAUD_SET = "baud_set"
    BAUD_CONFIRMED = "baud_confirmed"
    BOOT_INJECTED = "boot_injected"
    IDENTITY_READ = "identity_read"
    ERASED = "erased"
    PROGRAMMED = "programmed"
    VERIFIED = "verified"
    FAILED = "failed"


def checksum(buffer: bytes) -> int:
    """8-bit wrapping sum of all bytes, as computed by the boot loader."""
    return sum(buffer) & 0xFF


def iter_chunks(
    data: bytes,
    chunk_size: int = CHUNK_SIZE,
    pad_last_chunk: bool = False,
) -> Iterator[Tuple[int, bytes]]:
    """
    Split data into (offset, chunk) pairs.

    Args:
        data: Image bytes
        chunk_size: Bytes per chunk
        pad_last_chunk: If True, right-pad the final chunk with PAD_BYTE
    """
    for offset in range(0, len(data), chunk_size):
        chunk = data[offset:offset + chunk_size]
        if pad_last_chunk and len(chunk) < chunk_size:
            chunk = chunk + bytes([PAD_BYTE]) * (chunk_size - len(chunk))
        yield offset, chunk


def build_command(opcode: bytes, *words: int) -> bytes:
    """Opcode followed by little-endian u32 fields."""
    return opcode + struct.pack(f"<{len(words)}I", *words)


class SessionObserver:
    """
    Side channel for step and progress reporting.

    The session never prints; front ends subclass this to drive their own
    output. The default implementation does nothing.
    """

    def on_step(self, step: str) -> None:
        pass

    def on_progress(self, step: str, done: int, total: int) -> None:
        pass


class BootloaderSession:
    """
    One upload session against one device.

    Example:
        session = BootloaderSession(transport)
        session.check_link()
        session.set_baud(115200)
        transport.close()
        session.replace_transport(open_serial(port, 115200))
        session.confirm_baud()
        session.inject_boot_loader(boot_image)
        session.read_identity()
        session.erase_chip()
        session.program(image)
        session.verify(image)
    """

    def __init__(self, transport: ByteTransport, observer: Optional[SessionObserver] = None):
        self.transport = transport
        self.observer = observer or SessionObserver()
        self.state = SessionState.IDLE
        self._step_name = ""

    @property
    def failed(self) -> bool:
        return self.state is SessionState.FAILED

    def replace_transport(self, transport: ByteTransport) -> None:
        """Hand over the transport reopened at the new baud rate."""
        if self.state is not SessionState.BAUD_SET:
            raise SessionStateError(
                f"Transport can only be replaced after set_baud (state is {self.state.value})"
            )
        self.transport = transport

    @contextmanager
    def _step(self, name: str, required: SessionState, reached: SessionState):
        if self.state is SessionState.FAILED:
            raise SessionStateError(f"{name}: session already failed, start a new one")
        if self.state is not required:
            raise SessionStateError(
                f"{name} requires state {required.value}, session is {self.state.value}"
            )
        logger.info(f"Step {name}")
        self._step_name = name
        self.observer.on_step(name)
        try:
            yield
        except Exception:
            self.state = SessionState.FAILED
            raise
        self.state = reached
        logger.debug(f"Step {name} complete, state {reached.value}")

    def _write(self, data: bytes) -> None:
        try:
            self.transport.write(data)
        except TransportError as e:
            raise TransportError(str(e), step=self._step_name) from e
        except OSError as e:
            raise TransportError(f"Write error: {e}", step=self._step_name) from e

    def _read(self, length: int) -> bytes:
        try:
            data = self.transport.read(length)
        except TransportError as e:
            raise TransportError(str(e), step=self._step_name) from e
        except OSError as e:
            raise TransportError(f"Read error: {e}", step=self._step_name) from e
        if len(data) != length:
            raise TransportError(
                f"Timeout: expected {length} bytes, got {len(data)} ({data.hex().upper()})",
                step=self._step_name,
            )
        return bytes(data)

    def _expect(self, expected: bytes, message: str) -> bytes:
        response = self._read(len(expected))
        if response != expected:
            raise ProtocolError(message, step=self._step_name, expected=expected, actual=response)
        return response

    def _report(self, done: int, total: int, progress_cb: Optional[ProgressCallback]) -> None:
        self.observer.on_progress(self._step_name, done, total)
        if progress_cb:
            progress_cb(done, total)

    def check_link(self) -> None:
        """Probe the mask-ROM loader with 512 zero bytes."""
        with self._step("check_link", SessionState.IDLE, SessionState.LINK_CHECKED):
            self._write(LINK_PROBE)
            self._read(LINK_REPLY_LENGTH)

    def set_baud(self, rate: int) -> None:
        """
        Ask the loader to switch to ``rate``.

        The caller must then close the port, reopen it at ``rate`` and pass
        it to replace_transport() before confirm_baud().
        """
        with self._step("set_baud", SessionState.LINK_CHECKED, SessionState.BAUD_SET):
            if not 0 <= rate <= 0xFFFFFFFF:
                raise ValueError(f"Baud rate does not fit in u32: {rate}")
            self._write(build_command(CMD_BAUD, rate) + CR)
            self._read(1)

    def confirm_baud(self) -> None:
        """Check the loader prompt at the new baud rate."""
        with self._step("confirm_baud", SessionState.BAUD_SET, SessionState.BAUD_CONFIRMED):
            self._write(CR)
            self._expect(BAUD_CONFIRM_REPLY, "baud confirm mismatch")

    def inject_boot_loader(self, image: FirmwareImage) -> None:
        """Load the RAM boot loader, read back its header and start it."""
        with self._step("inject_boot_loader", SessionState.BAUD_CONFIRMED, SessionState.BOOT_INJECTED):
            logger.info(
                f"Loading {image.size} bytes of boot loader to 0x{image.load_address:08X}"
            )
            self._write(build_command(CMD_LOAD, image.load_address, image.size))
            self._expect(LOAD_ACK, "load address not accepted")

            self._write(image.data)
            self._expect(DATA_ACK, "boot loader data not accepted")

            self._write(build_command(CMD_READ_BACK, image.load_address, BOOT_VERIFY_LENGTH))
            reply = self._read(READ_BACK_REPLY_LENGTH)
            if reply[0:1] != CMD_READ_BACK or reply[9:10] != DATA_ACK:
                raise ProtocolError(
                    "boot loader read-back not framed by 'Y'...'K'",
                    step=self._step_name,
                    actual=reply,
                )

            self._write(build_command(CMD_RUN, image.load_address, image.size))
            self._expect(RUN_ACK, "boot loader did not start")

    def read_identity(self) -> str:
        """Return the 12-byte identity string of the running boot loader."""
        with self._step("read_identity", SessionState.BOOT_INJECTED, SessionState.IDENTITY_READ):
            self._write(CMD_IDENTITY)
            identity = self._read(IDENTITY_LENGTH).decode("latin-1")
            logger.info(f"Boot loader identity: {identity!r}")
        return identity

    def erase_chip(self) -> None:
        """Full chip erase, checked against the erased-flash sentinel."""
        with self._step("erase_chip", SessionState.IDENTITY_READ, SessionState.ERASED):
            self._write(CMD_ERASE)
            self._expect(ERASE_ACK, "erase not acknowledged")
            address, data = struct.unpack("<II", self._read(8))
            logger.debug(f"Erase check addr=0x{address:08X} data=0x{data:08X}")
            if address != ERASE_CHECK_ADDRESS or data != ERASED_WORD:
                raise EraseError(address, data)

    def _set_flash_address(self, address: int) -> None:
        self._write(build_command(CMD_ADDRESS, address))
        self._expect(ADDRESS_ACK, "flash address not accepted")

    def program(self, image: FirmwareImage, progress_cb: Optional[ProgressCallback] = None) -> None:
        """
        Write the image to flash in zero-padded 256-byte chunks.

        Raises:
            ChecksumError: On the first chunk whose echoed sum differs;
                no later chunk is sent
        """
        with self._step("program", SessionState.ERASED, SessionState.PROGRAMMED):
            self._set_flash_address(image.load_address)
            done = 0
            self._report(done, image.size, progress_cb)
            for index, (offset, chunk) in enumerate(iter_chunks(image.data, pad_last_chunk=True)):
                self._write(CMD_PROGRAM + chunk)
                expected = checksum(chunk)
                actual = self._read(1)[0]
                logger.debug(f"Chunk {index} at +0x{offset:06X}: sum 0x{expected:02X} == 0x{actual:02X}")
                if actual != expected:
                    raise ChecksumError(index, expected, actual)
                done = min(offset + CHUNK_SIZE, image.size)
                self._report(done, image.size, progress_cb)

    def verify(self, image: FirmwareImage, progress_cb: Optional[ProgressCallback] = None) -> None:
        """
        Read flash back in 8-byte sub-blocks and compare with the image.

        Raises:
            VerifyError: On the first differing sub-block
        """
        with self._step("verify", SessionState.PROGRAMMED, SessionState.VERIFIED):
            self._set_flash_address(image.load_address)
            self._report(0, image.size, progress_cb)
            for chunk_offset, chunk in iter_chunks(image.data):
                for block_offset, block in iter_chunks(chunk, SUB_BLOCK_SIZE):
                    self._write(CMD_VERIFY)
                    readback = self._read(SUB_BLOCK_SIZE)[:len(block)]
                    if readback != block:
                        raise VerifyError(chunk_offset + block_offset, block, readback)
                self._report(chunk_offset + len(chunk), image.size, progress_cb)


