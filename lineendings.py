"""
Line ending detection for encoded byte buffers.

Counting happens on code units rather than raw bytes, so a CR or LF byte
that is only half of a UTF-16 or UTF-32 unit is never mistaken for a line
terminator.
"""

import enum
from dataclasses import dataclass
from typing import BinaryIO, Optional

from textcodec import Encoding, code_units

CR = 0x0D
LF = 0x0A


class LineEnding(enum.Enum):
    LF = "\n"
    CRLF = "\r\n"

    @property
    def label(self) -> str:
        return self.name

    @classmethod
    def from_name(cls, name: str) -> "LineEnding":
        key = name.strip().lower()
        if key in ("lf", "unix", "linux"):
            return cls.LF
        if key in ("crlf", "windows", "win", "dos"):
            return cls.CRLF
        raise ValueError(f"Unknown line ending '{name}' (expected lf or crlf)")


@dataclass(frozen=True)
class LineEndingCounts:
    """Terminators found in a sample. CR counts lone carriage returns only."""

    lf: int = 0
    crlf: int = 0
    cr: int = 0

    @property
    def lf_equivalent(self) -> int:
        """LF terminators, with lone CRs counted as LF-style line breaks."""
        return self.lf + self.cr

    @property
    def total(self) -> int:
        return self.lf + self.crlf + self.cr

    @property
    def dominant(self) -> LineEnding:
        return LineEnding.CRLF if self.crlf > self.lf_equivalent else LineEnding.LF


def _strip_bom(buffer: bytes, encoding: Encoding) -> bytes:
    if encoding.bom and buffer.startswith(encoding.bom):
        return buffer[len(encoding.bom) :]
    return buffer


def _terminator_stream(buffer: bytes, encoding: Encoding) -> bytes:
    """One byte per code unit: CR and LF kept, everything else blanked."""
    body = _strip_bom(buffer, encoding)
    if encoding.width == 1:
        return body
    return bytes(
        unit if unit in (CR, LF) else 0x20 for unit in code_units(body, encoding)
    )


def count_line_endings(
    buffer: bytes, encoding: Encoding, complete: bool = True
) -> LineEndingCounts:
    """
    Count LF, CRLF and lone CR terminators in buffer.

    When buffer is only the start of a file (``complete`` is False) a CR in
    the last code unit is ignored, because its LF may lie past the sample.
    """
    stream = _terminator_stream(buffer, encoding)
    if not complete and stream.endswith(b"\r"):
        stream = stream[:-1]
    crlf = stream.count(b"\r\n")
    return LineEndingCounts(
        lf=stream.count(b"\n") - crlf,
        crlf=crlf,
        cr=stream.count(b"\r") - crlf,
    )


def needs_line_ending_conversion(
    counts: LineEndingCounts, target: Optional[LineEnding]
) -> bool:
    """Return True if any terminator in counts differs from target."""
    if target is None:
        return False
    if target is LineEnding.LF:
        return counts.crlf > 0 or counts.cr > 0
    return counts.lf > 0 or counts.cr > 0


def _is_terminator_unit(tail: bytes, encoding: Encoding) -> bool:
    return int.from_bytes(tail, encoding.byteorder) in (CR, LF)


def tail_is_newline(buffer: bytes, encoding: Encoding) -> bool:
    """Trailing newline check for a buffer that holds the whole file."""
    body = _strip_bom(buffer, encoding)
    end = len(body) - len(body) % encoding.width
    if end == 0:
        return False
    return _is_terminator_unit(body[end - encoding.width : end], encoding)


def ends_with_newline(handle: BinaryIO, size: int, encoding: Encoding) -> bool:
    """Read the last code unit of an open file and test it for CR or LF.

    Files with no content after their byte order mark report False.
    """
    body = size - len(encoding.bom)
    # A trailing partial code unit is ignored
    end = size - body % encoding.width
    if end - len(encoding.bom) < encoding.width:
        return False
    handle.seek(end - encoding.width)
    tail = handle.read(encoding.width)
    if len(tail) < encoding.width:
        return False
    return _is_terminator_unit(tail, encoding)
