"""Tests for Intel-HEX decoding into firmware images."""

import pytest

from milandr_flasher.errors import ParseError
from milandr_flasher.firmware import (
    FirmwareImage,
    RecordType,
    decode_hex,
    iter_records,
    read_hex_file,
)

EOF = ":00000001FF"


def _record(record_type: int, offset: int = 0, payload: bytes = b"") -> str:
    """Build one HEX record line with a valid checksum."""
    body = bytes([len(payload), offset >> 8, offset & 0xFF, record_type]) + payload
    return ":" + (body + bytes([(-sum(body)) & 0xFF])).hex().upper()


def _document(*lines: str) -> str:
    return "\n".join(lines) + "\n"


class TestDecodeHex:
    """Addressing and data assembly rules."""

    def test_two_data_records_concatenate(self):
        text = _document(
            _record(0x00, 0x0000, b"\x01\x02\x03"),
            _record(0x00, 0x0003, b"\x04\x05"),
            EOF,
        )
        image = decode_hex(text)
        assert image.size == 5
        assert image.data == b"\x01\x02\x03\x04\x05"
        assert image.load_address & 0xFFFF == 0
        assert image.load_address == 0

    def test_extended_linear_addresses_accumulate(self):
        text = _document(
            _record(0x04, 0, b"\x08\x00"),
            _record(0x00, 0x1000, b"\xAA"),
            _record(0x04, 0, b"\x00\x00"),
            _record(0x00, 0x1001, b"\xBB"),
            EOF,
        )
        image = decode_hex(text)
        assert image.load_address >> 16 == 0x0800
        assert image.load_address == 0x08001000

    def test_extended_addresses_are_summed_not_replaced(self):
        text = _document(
            _record(0x04, 0, b"\x08\x00"),
            _record(0x00, 0x0000, b"\x01"),
            _record(0x04, 0, b"\x00\x01"),
            _record(0x00, 0x0000, b"\x02"),
            EOF,
        )
        assert decode_hex(text).load_address == 0x08010000

    def test_segment_address_records_add_to_high_half(self):
        text = _document(
            _record(0x02, 0, b"\x10\x00"),
            _record(0x04, 0, b"\x00\x20"),
            _record(0x00, 0x0010, b"\x55"),
            EOF,
        )
        assert decode_hex(text).load_address == 0x10200010

    def test_low_half_from_first_data_record(self):
        text = _document(
            _record(0x00, 0x0200, b"\x01\x02"),
            _record(0x00, 0x0100, b"\x03"),
            EOF,
        )
        image = decode_hex(text)
        assert image.load_address == 0x0200
        # document order, not address order
        assert image.data == b"\x01\x02\x03"

    def test_start_address_records_ignored(self):
        text = _document(
            _record(0x04, 0, b"\x20\x00"),
            _record(0x00, 0x0000, b"\xDE\xAD"),
            _record(0x05, 0, b"\x20\x00\x00\x01"),
            _record(0x03, 0, b"\x00\x00\x01\x00"),
            EOF,
        )
        image = decode_hex(text)
        assert image.load_address == 0x20000000
        assert image.data == b"\xDE\xAD"

    def test_blank_lines_and_crlf(self):
        text = "\r\n".join(["", _record(0x00, 0, b"\x01"), "", EOF, ""])
        assert decode_hex(text).data == b"\x01"

    def test_records_after_eof_ignored(self):
        text = _document(_record(0x00, 0, b"\x01"), EOF, "garbage")
        assert decode_hex(text).data == b"\x01"

    def test_no_data_records(self):
        with pytest.raises(ParseError):
            decode_hex(_document(_record(0x04, 0, b"\x08\x00"), EOF))


class TestParseErrors:
    """Malformed records fail fast with the line number."""

    def test_bad_checksum(self):
        good = _record(0x00, 0, b"\x01")
        bad = good[:-2] + "00"
        text = _document(good, bad, EOF)
        with pytest.raises(ParseError) as ei:
            decode_hex(text)
        assert ei.value.line == 2
        assert ei.value.text == bad
        assert str(ei.value).startswith("line 2: invalid record")

    def test_missing_colon(self):
        with pytest.raises(ParseError) as ei:
            decode_hex(_document("0100000001FE", EOF))
        assert ei.value.line == 1

    def test_bad_length(self):
        with pytest.raises(ParseError):
            decode_hex(_document(":0500000001FA", EOF))

    def test_unknown_record_type(self):
        with pytest.raises(ParseError):
            decode_hex(_document(_record(0x07, 0, b""), EOF))

    def test_iteration_stops_at_bad_record(self):
        text = _document(_record(0x00, 0, b"\x01"), "nonsense", _record(0x00, 1, b"\x02"))
        records = []
        with pytest.raises(ParseError):
            for record in iter_records(text):
                records.append(record)
        assert len(records) == 1


class TestRecords:
    """Record listing used by the inspect command."""

    def test_record_fields(self):
        text = _document(_record(0x04, 0, b"\x08\x00"), _record(0x00, 0x0010, b"\x01\x02"), EOF)
        records = list(iter_records(text))
        assert [r.record_type for r in records] == [
            RecordType.EXTENDED_LINEAR_ADDRESS,
            RecordType.DATA,
            RecordType.END_OF_FILE,
        ]
        assert records[0].value == 0x0800
        assert records[1].offset == 0x0010
        assert records[1].payload == b"\x01\x02"
        assert records[1].line == 2
        assert records[1].describe() == "Data at offset 0x0010 len 2"


class TestFirmwareImage:
    """Image invariants and file loading."""

    def test_size_must_match_data(self):
        with pytest.raises(ValueError):
            FirmwareImage(load_address=0, size=3, data=b"\x00")

    def test_from_bytes(self):
        image = FirmwareImage.from_bytes(0x08000000, bytearray(b"\x01\x02"))
        assert image.size == 2
        assert isinstance(image.data, bytes)
        assert image.end_address == 0x08000002

    def test_read_hex_file(self, tmp_path):
        path = tmp_path / "fw.hex"
        path.write_text(_document(_record(0x04, 0, b"\x08\x00"), _record(0x00, 0, b"\x01"), EOF))
        image = read_hex_file(path)
        assert image.load_address == 0x08000000

    def test_read_missing_file(self, tmp_path):
        with pytest.raises(ParseError):
            read_hex_file(tmp_path / "missing.hex")
