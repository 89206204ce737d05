"""
Intel-HEX firmware image decoding.

Turns the text of a ``.hex`` document into a flat :class:`FirmwareImage`
(load address, size, bytes) as consumed by the UART bootloader.

Addressing rules follow what the 1986 bootloader expects:

- the high half of the load address is the *sum* of every extended
  linear/segment address record in the document
- the low half is the offset of the first data record
- data bytes are concatenated in document order, without sorting by
  offset and without filling gaps

Record framing and checksums are validated with the ``intelhex`` library.
"""

import io
import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Iterator, Union

from intelhex import IntelHex, IntelHexError

from .errors import ParseError

logger = logging.getLogger(__name__)


class RecordType(IntEnum):
    """Intel-HEX record types."""
    DATA = 0x00
    END_OF_FILE = 0x01
    EXTENDED_SEGMENT_ADDRESS = 0x02
    START_SEGMENT_ADDRESS = 0x03
    EXTENDED_LINEAR_ADDRESS = 0x04
    START_LINEAR_ADDRESS = 0x05


ADDRESS_RECORDS = (
    RecordType.EXTENDED_LINEAR_ADDRESS,
    RecordType.EXTENDED_SEGMENT_ADDRESS,
)


@dataclass(frozen=True)
class HexRecord:
    """Single decoded record with its 1-based line number."""

    line: int
    record_type: RecordType
    offset: int
    payload: bytes

    @property
    def value(self) -> int:
        """Payload read as a big-endian integer (address records)."""
        return int.from_bytes(self.payload, "big")

    def describe(self) -> str:
        if self.record_type == RecordType.DATA:
            return f"Data at offset 0x{self.offset:04X} len {len(self.payload)}"
        if self.record_type == RecordType.EXTENDED_LINEAR_ADDRESS:
            return f"Extended linear address 0x{self.value:04X}"
        if self.record_type == RecordType.EXTENDED_SEGMENT_ADDRESS:
            return f"Extended segment address 0x{self.value:04X}"
        if self.record_type == RecordType.START_LINEAR_ADDRESS:
            return f"Start linear address 0x{self.value:08X}"
        if self.record_type == RecordType.START_SEGMENT_ADDRESS:
            cs, ip = struct.unpack(">HH", self.payload)
            return f"Start segment address {cs:04X}:{ip:04X}"
        return "End of file"


@dataclass(frozen=True)
class FirmwareImage:
    """
    Flat firmware image ready for upload.

    Attributes:
        load_address: 32-bit address the image is loaded/programmed at
        size: Number of data bytes (always ``len(data)``)
        data: Image bytes in document order
    """

    load_address: int
    size: int
    data: bytes

    def __post_init__(self) -> None:
        if self.size != len(self.data):
            raise ValueError(
                f"Image size {self.size} does not match data length {len(self.data)}"
            )
        if not 0 <= self.load_address <= 0xFFFFFFFF:
            raise ValueError(f"Load address out of range: 0x{self.load_address:X}")

    @classmethod
    def from_bytes(cls, load_address: int, data: bytes) -> "FirmwareImage":
        data = bytes(data)
        return cls(load_address=load_address, size=len(data), data=data)

    @property
    def end_address(self) -> int:
        return self.load_address + self.size


def _decode_line(text: str, line: int) -> HexRecord:
    """Validate one record with intelhex and unpack its fields."""
    # IntelHex only validates here; its address-keyed buffer loses document order.
    try:
        IntelHex().loadhex(io.StringIO(text + "\n"))
    except IntelHexError as exc:
        raise ParseError(f"invalid record ({type(exc).__name__})", line=line, text=text) from exc

    raw = bytes.fromhex(text[1:])
    length, offset, record_type = struct.unpack(">BHB", raw[:4])
    try:
        record_type = RecordType(record_type)
    except ValueError:
        raise ParseError(f"Unknown record type 0x{record_type:02X}", line=line, text=text)
    return HexRecord(
        line=line,
        record_type=record_type,
        offset=offset,
        payload=raw[4:4 + length],
    )


def iter_records(text: str) -> Iterator[HexRecord]:
    """
    Yield records of a HEX document in document order.

    Blank lines are skipped and nothing after the end-of-file record is
    read. Raises ParseError on the first record that fails to decode.
    """
    for line_no, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line:
            continue
        record = _decode_line(line, line_no)
        yield record
        if record.record_type == RecordType.END_OF_FILE:
            return


def decode_hex(text: str) -> FirmwareImage:
    """
    Decode a full Intel-HEX document into a FirmwareImage.

    Args:
        text: Contents of the .hex file

    Returns:
        FirmwareImage with load address, size and data

    Raises:
        ParseError: On a malformed record or a document without data
    """
    high = 0
    low = None
    payloads = []

    for record in iter_records(text):
        logger.debug("line %d: %s", record.line, record.describe())
        if record.record_type in ADDRESS_RECORDS:
            # Accumulated, not replaced: the bootloader addressing rule.
            high = (high + record.value) & 0xFFFF
        elif record.record_type == RecordType.DATA:
            if low is None:
                low = record.offset
            payloads.append(record.payload)

    if low is None:
        raise ParseError("HEX document contains no data records")

    image = FirmwareImage.from_bytes((high << 16) | low, b"".join(payloads))
    logger.debug(
        "Decoded image: base 0x%04X, data 0x%04X, load 0x%08X, %d bytes",
        high,
        low,
        image.load_address,
        image.size,
    )
    return image


def read_hex_file(path: Union[str, Path]) -> FirmwareImage:
    """Read and decode a .hex file from disk."""
    path = Path(path)
    try:
        text = path.read_text(encoding="ascii")
    except (OSError, UnicodeDecodeError) as exc:
        raise ParseError(f"Cannot read HEX file {path}: {exc}") from exc
    logger.info("Loaded %s", path)
    return decode_hex(text)
