"""
Single-pass file analysis: binary check, encoding, line endings and the
trailing newline, all from one read of the start of the file.
"""

import enum
import logging
import os
from dataclasses import dataclass
from typing import Optional

from lineendings import (
    LineEnding,
    LineEndingCounts,
    count_line_endings,
    ends_with_newline,
    needs_line_ending_conversion,
    tail_is_newline,
)
from textcodec import (
    DETECTION_SAMPLE_SIZE,
    Encoding,
    detect_encoding,
    is_binary_content,
    is_binary_extension,
    refine_ansi,
)

logger = logging.getLogger("TextForge.analysis")

# Bytes read from the start of every file
SAMPLE_SIZE = 64 * 1024


class ErrorKind(enum.Enum):
    BINARY_FILE_SKIPPED = "binary file skipped"
    ANALYSIS_IO = "analysis I/O error"
    READ_ONLY_FILE = "read-only file"
    CONVERSION_IO = "conversion I/O error"

    @property
    def is_failure(self) -> bool:
        return self is not ErrorKind.BINARY_FILE_SKIPPED


@dataclass(frozen=True)
class ErrorInfo:
    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass(frozen=True)
class FileTimes:
    """Timestamps captured before a file is opened."""

    accessed_ns: int
    modified_ns: int
    created: Optional[float] = None


def capture_times(path: str) -> FileTimes:
    st = os.stat(path)
    created = getattr(st, "st_birthtime", None)
    if created is None and os.name == "nt":
        created = st.st_ctime
    return FileTimes(
        accessed_ns=st.st_atime_ns, modified_ns=st.st_mtime_ns, created=created
    )


@dataclass(frozen=True)
class FileAnalysisResult:  # pylint: disable=too-many-instance-attributes
    """What a file needs to reach the requested line ending and encoding.

    When ``is_binary`` is set the remaining fields carry no meaning and the
    file must not be opened for writing.
    """

    path: str
    is_binary: bool
    source_encoding: Optional[Encoding] = None
    needs_line_ending_conversion: bool = False
    needs_encoding_conversion: bool = False
    needs_trailing_newline: bool = False
    error: Optional[ErrorInfo] = None
    line_endings: Optional[LineEndingCounts] = None
    ends_with_newline: bool = False
    size: int = 0

    @property
    def needs_conversion(self) -> bool:
        return (
            self.needs_line_ending_conversion
            or self.needs_encoding_conversion
            or self.needs_trailing_newline
        )

    @classmethod
    def binary(cls, path: str, size: int = 0) -> "FileAnalysisResult":
        return cls(path=path, is_binary=True, size=size)

    @classmethod
    def failed(cls, path: str, error: ErrorInfo) -> "FileAnalysisResult":
        # Unreadable files are treated as binary so nothing ever writes them
        return cls(path=path, is_binary=True, error=error)


def analyze_file(
    path: str,
    line_ending: Optional[LineEnding] = LineEnding.LF,
    encoding: Optional[Encoding] = None,
    check_trailing_newline: bool = False,
) -> FileAnalysisResult:
    """
    Analyze a file against a target line ending and encoding.

    A ``line_ending`` or ``encoding`` of None means the file's own is kept.
    The file is opened once; the leading SAMPLE_SIZE bytes drive every check,
    plus one seek to the end for the trailing newline when the sample does
    not already reach it. I/O errors are returned in ``error``.
    """
    if is_binary_extension(path):
        logger.debug("Binary extension, not reading content: %s", path)
        return FileAnalysisResult.binary(path)

    try:
        with open(path, "rb") as handle:
            size = os.fstat(handle.fileno()).st_size
            sample = handle.read(SAMPLE_SIZE)
            complete = len(sample) >= size

            if is_binary_content(sample, complete=complete):
                logger.debug("Binary content detected: %s", path)
                return FileAnalysisResult.binary(path, size)

            source = detect_encoding(
                sample[:DETECTION_SAMPLE_SIZE],
                complete=complete and size <= DETECTION_SAMPLE_SIZE,
            )
            if encoding is Encoding.ANSI:
                source = refine_ansi(sample, source, complete)
            counts = count_line_endings(sample, source, complete=complete)

            has_newline = False
            if check_trailing_newline:
                if complete:
                    has_newline = tail_is_newline(sample, source)
                else:
                    has_newline = ends_with_newline(handle, size, source)
    except OSError as e:
        logger.debug("Could not analyze %s: %s", path, e)
        return FileAnalysisResult.failed(
            path, ErrorInfo(ErrorKind.ANALYSIS_IO, str(e))
        )

    has_content = size > len(source.bom)
    result = FileAnalysisResult(
        path=path,
        is_binary=False,
        source_encoding=source,
        needs_line_ending_conversion=needs_line_ending_conversion(
            counts, line_ending
        ),
        needs_encoding_conversion=(
            encoding is not None and not source.satisfies(encoding)
        ),
        needs_trailing_newline=(
            check_trailing_newline and has_content and not has_newline
        ),
        line_endings=counts,
        ends_with_newline=has_newline,
        size=size,
    )
    logger.debug(
        "Analyzed %s: encoding=%s lf=%d crlf=%d cr=%d needs_conversion=%s",
        path,
        source,
        counts.lf,
        counts.crlf,
        counts.cr,
        result.needs_conversion,
    )
    return result
