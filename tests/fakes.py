"""Scripted byte transport and device replies for protocol tests."""

import struct
from typing import Iterable, List, Optional

from milandr_flasher.firmware import FirmwareImage
from milandr_flasher.protocol.bootloader import checksum, iter_chunks


class FakeTransport:
    """
    ByteTransport double.

    Replies are consumed in order by read(); once they run out, read()
    returns short like a serial port that timed out.
    """

    def __init__(
        self,
        replies: Iterable[bytes] = (),
        write_error: Optional[Exception] = None,
        read_error: Optional[Exception] = None,
    ):
        self.replies = bytearray(b"".join(replies))
        self.write_error = write_error
        self.read_error = read_error
        self.writes: List[bytes] = []
        self.reads: List[int] = []
        self.closed = False

    @property
    def written(self) -> bytes:
        return b"".join(self.writes)

    def write(self, data: bytes) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.writes.append(bytes(data))

    def read(self, length: int) -> bytes:
        self.reads.append(length)
        if self.read_error is not None:
            raise self.read_error
        data = bytes(self.replies[:length])
        del self.replies[:length]
        return data

    def close(self) -> None:
        self.closed = True


def link_replies() -> List[bytes]:
    """check_link + set_baud at 9600."""
    return [b"\x00\x00\x00", b"\x00"]


def boot_replies() -> List[bytes]:
    """confirm_baud + inject_boot_loader + read_identity."""
    return [
        b"\x0D\x0A\x3E",
        b"L",
        b"K",
        b"Y" + bytes(8) + b"K",
        b"R",
        b"1986BOOTUART",
    ]


def erase_reply(address: int = 0x08020000, data: int = 0xFFFFFFFF) -> bytes:
    return b"E" + struct.pack("<II", address, data)


def program_replies(image: FirmwareImage) -> List[bytes]:
    replies = [b"\x08"]
    for _, chunk in iter_chunks(image.data, pad_last_chunk=True):
        replies.append(bytes([checksum(chunk)]))
    return replies


def verify_replies(image: FirmwareImage) -> List[bytes]:
    replies = [b"\x08"]
    for _, chunk in iter_chunks(image.data):
        for _, block in iter_chunks(chunk, 8):
            replies.append(block.ljust(8, b"\x00"))
    return replies
