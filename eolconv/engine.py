"""
Stream conversion engine.

Reads a byte stream once, detects its encoding from the byte-order mark,
classifies every line ending it meets and, when an output stream is given,
writes the same bytes back with the requested line endings. The input does
not need to be seekable.
"""

import codecs
import enum
import logging
import re
from dataclasses import dataclass
from typing import BinaryIO, Optional, Tuple

logger = logging.getLogger("eolconv")

CHUNK_SIZE: int = 64 * 1024

CR: int = 0x0D
LF: int = 0x0A

# Control characters that still count as text: BS, TAB, LF, VT, FF, CR
ALLOWED_CONTROL_CHARS = frozenset({0x08, 0x09, 0x0A, 0x0B, 0x0C, 0x0D})


def is_non_text_code_unit(value: int) -> bool:
    return value < 0x20 and value not in ALLOWED_CONTROL_CHARS


class Convention(enum.Enum):
    NONE = "none"
    CR = "cr"
    LF = "lf"
    CRLF = "crlf"
    MIXED = "mixed"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self][0]

    @property
    def short_name(self) -> str:
        return _DISPLAY_NAMES[self][1]


_DISPLAY_NAMES = {
    Convention.NONE: ("No line ending", "None"),
    Convention.CR: ("Legacy Mac (CR)", "CR"),
    Convention.LF: ("Unix (LF)", "LF"),
    Convention.CRLF: ("Windows (CR-LF)", "CRLF"),
    Convention.MIXED: ("Mixed endings", "Mixed"),
}


class Encoding(enum.Enum):
    SINGLE_BYTE = "single-byte"
    UTF8_BOM = "utf8-bom"
    UTF16_LE_BOM = "utf16-le-bom"
    UTF16_BE_BOM = "utf16-be-bom"

    @property
    def codec(self) -> str:
        """Python codec used to spell line terminators in this encoding."""
        return _ENCODING_DETAILS[self][0]

    @property
    def bom(self) -> bytes:
        return _ENCODING_DETAILS[self][1]

    @property
    def unit_width(self) -> int:
        """Number of bytes in one code unit."""
        return 2 if self in (Encoding.UTF16_LE_BOM, Encoding.UTF16_BE_BOM) else 1


_ENCODING_DETAILS = {
    Encoding.SINGLE_BYTE: ("latin-1", b""),
    Encoding.UTF8_BOM: ("utf-8", codecs.BOM_UTF8),
    Encoding.UTF16_LE_BOM: ("utf-16-le", codecs.BOM_UTF16_LE),
    Encoding.UTF16_BE_BOM: ("utf-16-be", codecs.BOM_UTF16_BE),
}

# Order matters: the UTF-8 mark is the only three byte one
_BYTE_ORDER_MARKS = (
    (codecs.BOM_UTF8, Encoding.UTF8_BOM),
    (codecs.BOM_UTF16_LE, Encoding.UTF16_LE_BOM),
    (codecs.BOM_UTF16_BE, Encoding.UTF16_BE_BOM),
)

# Code units the state machine has to look at: CR, LF and the control
# characters that are not text. Everything else is copied in runs.
_SPECIAL_BYTE = (
    b"["
    + b"".join(
        re.escape(bytes([value]))
        for value in range(0x20)
        if value in (CR, LF) or is_non_text_code_unit(value)
    )
    + b"]"
)
_SPECIAL_UNITS = {
    Encoding.SINGLE_BYTE: re.compile(_SPECIAL_BYTE),
    Encoding.UTF8_BOM: re.compile(_SPECIAL_BYTE),
    Encoding.UTF16_LE_BOM: re.compile(_SPECIAL_BYTE + rb"\x00"),
    Encoding.UTF16_BE_BOM: re.compile(rb"\x00" + _SPECIAL_BYTE),
}

_TERMINATORS = {
    Convention.CR: "\r",
    Convention.LF: "\n",
    Convention.CRLF: "\r\n",
}


@dataclass
class FileReport:
    """Statistics gathered by one pass of the engine."""

    cr_count: int = 0
    lf_count: int = 0
    crlf_count: int = 0
    contains_non_text_chars: bool = False
    error_during_conversion: bool = False
    encoding: Encoding = Encoding.SINGLE_BYTE


@dataclass
class ConversionParameters:
    """
    Configuration for one call to convert_stream.

    With no outstream the pass only inspects the input. The interrupt flags
    make the engine return a partial report as soon as it meets a line
    ending unlike dst_convention, or a non-text character.
    """

    instream: BinaryIO
    outstream: Optional[BinaryIO] = None
    dst_convention: Convention = Convention.NONE
    interrupt_if_not_like_dst_convention: bool = False
    interrupt_if_non_text: bool = False

    def __post_init__(self) -> None:
        if self.outstream is not None and self.dst_convention not in _TERMINATORS:
            raise ValueError(
                f"Cannot write line endings as {self.dst_convention.value!r}"
            )


def get_source_convention(report: FileReport) -> Convention:
    """Derive the convention a file follows from the endings counted in it."""
    counts = (
        (Convention.CR, report.cr_count),
        (Convention.LF, report.lf_count),
        (Convention.CRLF, report.crlf_count),
    )
    seen = [convention for convention, count in counts if count]
    if not seen:
        return Convention.NONE
    if len(seen) == 1:
        return seen[0]
    return Convention.MIXED


def _read_prefix(instream: BinaryIO, size: int) -> bytes:
    prefix = b""
    while len(prefix) < size:
        data = instream.read(size - len(prefix))
        if not data:
            break
        prefix += data
    return prefix


def sniff_encoding(instream: BinaryIO) -> Tuple[Encoding, bytes]:
    """
    Read up to three bytes and identify the encoding from its byte-order mark.

    Returns the encoding and the bytes read past the mark, which the caller
    must treat as the start of the content.
    """
    prefix = _read_prefix(instream, 3)
    for bom, encoding in _BYTE_ORDER_MARKS:
        if prefix.startswith(bom):
            return encoding, prefix[len(bom) :]
    return Encoding.SINGLE_BYTE, prefix


class _StreamConverter:
    """Line ending state machine over the code units of one stream."""

    def __init__(self, params: ConversionParameters, report: FileReport) -> None:
        self.params = params
        self.report = report
        encoding = report.encoding
        self.width = encoding.unit_width
        self.pattern = _SPECIAL_UNITS[encoding]
        # Offset of the meaningful byte inside a special code unit
        self.low_byte = 1 if encoding is Encoding.UTF16_BE_BOM else 0
        self.terminator = b""
        if params.outstream is not None:
            self.terminator = _TERMINATORS[params.dst_convention].encode(
                encoding.codec
            )
        self.saw_cr = False
        self.carry = b""

    def write(self, data: bytes) -> None:
        if self.params.outstream is not None and data:
            self.params.outstream.write(data)

    def _end_line(self, convention: Convention) -> bool:
        if convention is Convention.CR:
            self.report.cr_count += 1
        elif convention is Convention.LF:
            self.report.lf_count += 1
        else:
            self.report.crlf_count += 1
        self.write(self.terminator)
        return not (
            self.params.interrupt_if_not_like_dst_convention
            and convention is not self.params.dst_convention
        )

    def _flush_pending_cr(self) -> bool:
        if not self.saw_cr:
            return True
        self.saw_cr = False
        return self._end_line(Convention.CR)

    def _find_special(self, data: bytes, pos: int, end: int) -> int:
        match = self.pattern.search(data, pos, end)
        # UTF-16 matches straddling two code units are not real units
        while match is not None and match.start() % self.width:
            match = self.pattern.search(data, match.start() + 1, end)
        return end if match is None else match.start()

    def _handle_special(self, value: int, raw: bytes) -> bool:
        if value == CR:
            if not self._flush_pending_cr():
                return False
            self.saw_cr = True
            return True
        if value == LF:
            convention = Convention.CRLF if self.saw_cr else Convention.LF
            self.saw_cr = False
            return self._end_line(convention)
        if not self._flush_pending_cr():
            return False
        if is_non_text_code_unit(value):
            self.report.contains_non_text_chars = True
            if self.params.interrupt_if_non_text:
                return False
        self.write(raw)
        return True

    def feed(self, chunk: bytes) -> bool:
        """Process a chunk of input. Returns False when the pass must stop."""
        data = self.carry + chunk
        end = len(data) - len(data) % self.width
        self.carry = data[end:]
        pos = 0
        while pos < end:
            stop = self._find_special(data, pos, end)
            if stop > pos:
                if not self._flush_pending_cr():
                    return False
                self.write(data[pos:stop])
                pos = stop
                continue
            raw = data[pos : pos + self.width]
            if not self._handle_special(raw[self.low_byte], raw):
                return False
            pos += self.width
        return True

    def finish(self) -> None:
        self._flush_pending_cr()
        # A truncated trailing code unit goes out as it came in
        self.write(self.carry)
        self.carry = b""


def convert_stream(params: ConversionParameters) -> FileReport:
    """
    Run one pass of the engine over params.instream.

    When params.outstream is set it receives a byte-exact copy of the input
    where every line ending is replaced by params.dst_convention. I/O errors
    are reported through FileReport.error_during_conversion, never raised.
    """
    report = FileReport()
    try:
        report.encoding, pushed_back = sniff_encoding(params.instream)
        converter = _StreamConverter(params, report)
        converter.write(report.encoding.bom)
        if not converter.feed(pushed_back):
            return report
        while True:
            chunk = params.instream.read(CHUNK_SIZE)
            if not chunk:
                break
            if not converter.feed(chunk):
                return report
        converter.finish()
    except OSError as e:
        logger.debug("I/O error during conversion: %s", str(e))
        report.error_during_conversion = True
    return report
