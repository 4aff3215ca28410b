#!/usr/bin/env python3
"""
Tests for the stream conversion engine.
"""

import io
import logging
import sys
import unittest
from pathlib import Path
from typing import Optional
from unittest.mock import MagicMock, patch

# Add parent directory to path to import the eolconv package
sys.path.insert(0, str(Path(__file__).parent.parent))
from eolconv import engine  # pylint: disable=wrong-import-position
from eolconv.engine import (  # pylint: disable=wrong-import-position
    ConversionParameters,
    Convention,
    Encoding,
    FileReport,
    convert_stream,
    get_source_convention,
)

# Disable logging for tests
engine.logger.setLevel(logging.CRITICAL)


def convert(data: bytes, convention: Optional[Convention] = Convention.LF, **kwargs):
    """Run the engine over data; returns (output bytes or None, report)."""
    out = io.BytesIO() if convention is not None else None
    params = ConversionParameters(
        instream=io.BytesIO(data),
        outstream=out,
        dst_convention=convention if convention is not None else Convention.NONE,
        **kwargs,
    )
    report = convert_stream(params)
    return (out.getvalue() if out is not None else None), report


class TrickleStream(io.RawIOBase):
    """A non-seekable stream returning one byte per read."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        chunk = self.data[self.pos : self.pos + 1]
        self.pos += len(chunk)
        return chunk


class TestConversionScenarios(unittest.TestCase):
    def test_mixed_single_byte_to_lf(self) -> None:
        """Test the three kinds of endings in one single-byte input."""
        output, report = convert(b"a\r\nb\rc\n", Convention.LF)
        self.assertEqual(output, b"a\nb\nc\n")
        self.assertEqual(
            (report.crlf_count, report.cr_count, report.lf_count), (1, 1, 1)
        )
        self.assertEqual(get_source_convention(report), Convention.MIXED)
        self.assertEqual(report.encoding, Encoding.SINGLE_BYTE)

    def test_utf8_bom_to_crlf(self) -> None:
        """Test that a UTF-8 byte-order mark is kept and detected."""
        output, report = convert(b"\xef\xbb\xbfhello\n", Convention.CRLF)
        self.assertEqual(output, b"\xef\xbb\xbfhello\r\n")
        self.assertEqual(report.encoding, Encoding.UTF8_BOM)
        self.assertEqual(get_source_convention(report), Convention.LF)

    def test_utf16_le_to_lf(self) -> None:
        """Test two-byte code units in little endian order."""
        output, report = convert(
            b"\xff\xfeh\x00i\x00\r\x00\n\x00", Convention.LF
        )
        self.assertEqual(output, b"\xff\xfeh\x00i\x00\n\x00")
        self.assertEqual(report.encoding, Encoding.UTF16_LE_BOM)
        self.assertEqual(get_source_convention(report), Convention.CRLF)

    def test_utf16_le_to_crlf_writes_four_bytes(self) -> None:
        output, report = convert(b"\xff\xfea\x00\n\x00", Convention.CRLF)
        self.assertEqual(output, b"\xff\xfea\x00\r\x00\n\x00")
        self.assertEqual(report.lf_count, 1)

    def test_utf16_be_to_cr(self) -> None:
        """Test two-byte code units in big endian order."""
        output, report = convert(b"\xfe\xff\x00h\x00\r\x00\n\x00i", Convention.CR)
        self.assertEqual(output, b"\xfe\xff\x00h\x00\r\x00i")
        self.assertEqual(report.encoding, Encoding.UTF16_BE_BOM)
        self.assertEqual(report.crlf_count, 1)

    def test_utf16_unit_with_line_feed_low_byte_is_not_a_line_ending(self) -> None:
        """U+010A and U+0A0D contain 0x0A/0x0D bytes but are ordinary characters."""
        data = b"\xff\xfe\x0a\x01\x0d\x0a"
        output, report = convert(data, Convention.CRLF)
        self.assertEqual(output, data)
        self.assertEqual(get_source_convention(report), Convention.NONE)
        self.assertFalse(report.contains_non_text_chars)

    def test_trailing_lone_cr(self) -> None:
        output, report = convert(b"x\r", Convention.LF)
        self.assertEqual(output, b"x\n")
        self.assertEqual(report.cr_count, 1)

    def test_consecutive_cr(self) -> None:
        output, report = convert(b"a\r\r\nb", Convention.LF)
        self.assertEqual(output, b"a\n\nb")
        self.assertEqual((report.cr_count, report.crlf_count), (1, 1))

    def test_no_line_endings(self) -> None:
        output, report = convert(b"abc", Convention.CRLF)
        self.assertEqual(output, b"abc")
        self.assertEqual(get_source_convention(report), Convention.NONE)

    def test_empty_input(self) -> None:
        output, report = convert(b"", Convention.CRLF)
        self.assertEqual(output, b"")
        self.assertEqual(report, FileReport())

    def test_truncated_utf16_unit_is_written_verbatim(self) -> None:
        """Test that an odd trailing byte is passed through unclassified."""
        data = b"\xff\xfea\x00\n"
        output, report = convert(data, Convention.LF)
        self.assertEqual(output, data)
        self.assertEqual(report.lf_count, 0)

    def test_non_terminator_bytes_are_preserved(self) -> None:
        data = b"caf\xe9 \xa3\xb0\t tab\x0b\x0c\x08\r\nend"
        output, report = convert(data, Convention.LF)
        self.assertEqual(output, data.replace(b"\r\n", b"\n"))
        self.assertFalse(report.contains_non_text_chars)

    def test_conversion_is_idempotent(self) -> None:
        data = b"one\rtwo\r\nthree\nfour\r"
        for convention in (Convention.LF, Convention.CRLF, Convention.CR):
            once, _ = convert(data, convention)
            twice, _ = convert(once, convention)
            self.assertEqual(once, twice, convention)

    def test_check_counts_match_converted_terminators(self) -> None:
        data = b"one\rtwo\r\nthree\nfour\r\r\n"
        _, report = convert(data, None)
        output, _ = convert(data, Convention.CRLF)
        total = report.cr_count + report.lf_count + report.crlf_count
        self.assertEqual(output.count(b"\r\n"), total)

    def test_bom_appears_once_at_start(self) -> None:
        output, _ = convert(b"\xef\xbb\xbfa\r\nb\r\n", Convention.LF)
        self.assertTrue(output.startswith(b"\xef\xbb\xbf"))
        self.assertEqual(output.count(b"\xef\xbb\xbf"), 1)


class TestChunkBoundaries(unittest.TestCase):
    def test_crlf_split_between_chunks(self) -> None:
        with patch("eolconv.engine.CHUNK_SIZE", 1):
            output, report = convert(b"abc\r\ndef\r", Convention.LF)
        self.assertEqual(output, b"abc\ndef\n")
        self.assertEqual((report.crlf_count, report.cr_count), (1, 1))

    def test_utf16_units_split_between_chunks(self) -> None:
        data = b"\xff\xfea\x00\r\x00\n\x00b\x00\r\x00"
        with patch("eolconv.engine.CHUNK_SIZE", 3):
            output, report = convert(data, Convention.LF)
        self.assertEqual(output, b"\xff\xfea\x00\n\x00b\x00\n\x00")
        self.assertEqual((report.crlf_count, report.cr_count), (1, 1))

    def test_bom_detected_from_short_reads(self) -> None:
        out = io.BytesIO()
        report = convert_stream(
            ConversionParameters(
                instream=TrickleStream(b"\xef\xbb\xbfx\r\n"),
                outstream=out,
                dst_convention=Convention.LF,
            )
        )
        self.assertEqual(report.encoding, Encoding.UTF8_BOM)
        self.assertEqual(out.getvalue(), b"\xef\xbb\xbfx\n")

    def test_short_input_without_bom(self) -> None:
        output, report = convert(b"\xff", Convention.LF)
        self.assertEqual(output, b"\xff")
        self.assertEqual(report.encoding, Encoding.SINGLE_BYTE)


class TestNonTextDetection(unittest.TestCase):
    def test_control_char_marks_report(self) -> None:
        output, report = convert(b"ab\x07cd\n", Convention.LF)
        self.assertTrue(report.contains_non_text_chars)
        self.assertEqual(output, b"ab\x07cd\n")
        self.assertEqual(report.lf_count, 1)

    def test_interrupt_if_non_text(self) -> None:
        _, report = convert(b"a\nb\x00c\nd\n", None, interrupt_if_non_text=True)
        self.assertTrue(report.contains_non_text_chars)
        self.assertEqual(report.lf_count, 1)

    def test_utf16_nul_unit_is_non_text(self) -> None:
        _, report = convert(b"\xff\xfeh\x00\x00\x00", None)
        self.assertTrue(report.contains_non_text_chars)

    def test_utf16_text_is_not_binary(self) -> None:
        _, report = convert("\ufeff\u4e00\u0100 text\r\n".encode("utf-16-le"), None)
        self.assertFalse(report.contains_non_text_chars)
        self.assertEqual(report.crlf_count, 1)

    def test_every_control_char_is_classified(self) -> None:
        """Test each value below 0x20 in single-byte and UTF-16 input."""
        for value in range(0x20):
            expected = value not in engine.ALLOWED_CONTROL_CHARS
            text = "a" + chr(value) + "b"
            samples = (
                text.encode("latin-1"),
                ("\ufeff" + text).encode("utf-16-le"),
                ("\ufeff" + text).encode("utf-16-be"),
            )
            for data in samples:
                _, report = convert(data, None)
                self.assertEqual(report.contains_non_text_chars, expected, data)

    def test_control_char_high_byte_is_text_in_utf16(self) -> None:
        """Test that U+1B00 is not mistaken for ESC."""
        _, report = convert("\ufeff\u1b00\u0700".encode("utf-16-le"), None)
        self.assertFalse(report.contains_non_text_chars)


class TestEarlyExit(unittest.TestCase):
    def test_interrupt_on_first_unlike_ending(self) -> None:
        _, report = convert(
            b"a\nb\r\nc\nd\n",
            None,
            interrupt_if_not_like_dst_convention=True,
        )
        # dst_convention is NONE here, so the first ending already differs
        self.assertEqual(report.lf_count, 1)
        self.assertEqual(report.crlf_count, 0)

    def test_interrupt_stops_after_divergence(self) -> None:
        report = convert_stream(
            ConversionParameters(
                instream=io.BytesIO(b"a\nb\r\nc\nd\n"),
                dst_convention=Convention.LF,
                interrupt_if_not_like_dst_convention=True,
            )
        )
        self.assertEqual((report.lf_count, report.crlf_count), (1, 1))

    def test_conforming_input_scans_to_end(self) -> None:
        report = convert_stream(
            ConversionParameters(
                instream=io.BytesIO(b"a\nb\nc\n"),
                dst_convention=Convention.LF,
                interrupt_if_not_like_dst_convention=True,
            )
        )
        self.assertEqual(report.lf_count, 3)
        self.assertEqual(get_source_convention(report), Convention.LF)


class TestErrors(unittest.TestCase):
    def test_read_error(self) -> None:
        instream = MagicMock()
        instream.read.side_effect = OSError("Read error")
        report = convert_stream(ConversionParameters(instream=instream))
        self.assertTrue(report.error_during_conversion)

    def test_write_error(self) -> None:
        outstream = MagicMock()
        outstream.write.side_effect = OSError("Write error")
        report = convert_stream(
            ConversionParameters(
                instream=io.BytesIO(b"a\r\n"),
                outstream=outstream,
                dst_convention=Convention.LF,
            )
        )
        self.assertTrue(report.error_during_conversion)

    def test_mixed_is_not_a_target(self) -> None:
        with self.assertRaises(ValueError):
            ConversionParameters(
                instream=io.BytesIO(),
                outstream=io.BytesIO(),
                dst_convention=Convention.MIXED,
            )


class TestSourceConvention(unittest.TestCase):
    def test_classification(self) -> None:
        cases = [
            ((0, 0, 0), Convention.NONE),
            ((2, 0, 0), Convention.CR),
            ((0, 5, 0), Convention.LF),
            ((0, 0, 1), Convention.CRLF),
            ((1, 1, 0), Convention.MIXED),
            ((0, 3, 4), Convention.MIXED),
            ((1, 1, 1), Convention.MIXED),
        ]
        for (cr, lf, crlf), expected in cases:
            report = FileReport(cr_count=cr, lf_count=lf, crlf_count=crlf)
            self.assertEqual(get_source_convention(report), expected)

    def test_display_names(self) -> None:
        self.assertEqual(Convention.CRLF.display_name, "Windows (CR-LF)")
        self.assertEqual(Convention.NONE.short_name, "None")
        self.assertEqual(Convention.MIXED.display_name, "Mixed endings")


if __name__ == "__main__":
    unittest.main()
