"""
Streaming rewrite of a text file to a new encoding and/or line ending.

The converted content is written to a temporary sibling file which only
replaces the original once it is complete and synced to disk. Whatever goes
wrong before that point, the original file keeps its exact bytes.
"""

import codecs
import logging
import os
import re
import shutil
import stat
import tempfile
from dataclasses import dataclass, replace
from datetime import datetime
from typing import BinaryIO, Dict, Optional, Tuple

from analysis import ErrorInfo, ErrorKind, FileTimes, analyze_file, capture_times
from lineendings import LineEnding, LineEndingCounts
from textcodec import Encoding

logger = logging.getLogger("TextForge.transcode")

# Bytes decoded per read
CHUNK_SIZE = 64 * 1024

_TERMINATOR_RE = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True)
class ConversionOutcome:  # pylint: disable=too-many-instance-attributes
    """Result of converting (or deciding not to convert) one file.

    ``original_lf`` and ``new_lf`` include lone CR terminators.
    """

    path: str
    source_encoding: Optional[str] = None
    target_encoding: Optional[str] = None
    original_lf: int = 0
    original_crlf: int = 0
    new_lf: int = 0
    new_crlf: int = 0
    encoding_changed: bool = False
    line_endings_changed: bool = False
    trailing_newline_added: bool = False
    skipped: bool = False
    binary: bool = False
    dry_run: bool = False
    success: bool = True
    error: Optional[ErrorInfo] = None

    @property
    def changed(self) -> bool:
        return self.success and not self.skipped

    def failed(self, kind: ErrorKind, message: str) -> "ConversionOutcome":
        return replace(self, success=False, error=ErrorInfo(kind, message))


class _TerminatorRewriter:
    """Rewrites line terminators in decoded text fed to it piece by piece.

    With ``newline`` set every terminator becomes it, otherwise terminators
    are copied unchanged. A CR at the end of a piece is held back until the
    next piece shows whether an LF follows it.
    """

    def __init__(self, newline: Optional[str]) -> None:
        self.newline = newline
        self.original: Dict[str, int] = {"\n": 0, "\r\n": 0, "\r": 0}
        self.new_lf = 0
        self.new_crlf = 0
        self.changed = False
        self.has_content = False
        self.ends_with_terminator = False
        self.appended = False
        self._pending_cr = False

    @property
    def counts(self) -> LineEndingCounts:
        return LineEndingCounts(
            lf=self.original["\n"],
            crlf=self.original["\r\n"],
            cr=self.original["\r"],
        )

    def _count_new(self, terminator: str) -> None:
        if terminator == "\r\n":
            self.new_crlf += 1
        else:
            self.new_lf += 1

    def _replace(self, match: "re.Match[str]") -> str:
        original = match.group(0)
        self.original[original] += 1
        replacement = self.newline if self.newline is not None else original
        if replacement != original:
            self.changed = True
        self._count_new(replacement)
        return replacement

    def feed(self, text: str) -> str:
        if self._pending_cr:
            text = "\r" + text
            self._pending_cr = False
        if text.endswith("\r"):
            self._pending_cr = True
            self.has_content = True
            text = text[:-1]
        if not text:
            return ""
        self.has_content = True
        self.ends_with_terminator = text[-1] in "\r\n"
        return _TERMINATOR_RE.sub(self._replace, text)

    def finish(self) -> str:
        if not self._pending_cr:
            return ""
        self._pending_cr = False
        self.ends_with_terminator = True
        return _TERMINATOR_RE.sub(self._replace, "\r")

    def append(self, terminator: str) -> str:
        self._count_new(terminator)
        self.ends_with_terminator = True
        self.appended = True
        return terminator


def _codecs_for(source: Encoding, output: Encoding) -> Tuple[str, str, str]:
    """Decoder codec, encoder codec and error handler for a conversion.

    ASCII detection only covers the first few KiB, so ASCII sources are read
    as UTF-8. When both sides share a codec, bytes that do not decode are
    carried through unchanged instead of failing the conversion.
    """
    source_codec = "utf-8" if source is Encoding.ASCII else source.codec
    output_codec = output.codec
    if output is Encoding.ASCII and source is Encoding.ASCII:
        output_codec = source_codec
    if source_codec != output_codec:
        return source_codec, output_codec, "strict"
    errors = "surrogateescape" if source.width == 1 else "surrogatepass"
    return source_codec, output_codec, errors


def _skip_bom(handle: BinaryIO, encoding: Encoding) -> None:
    if not encoding.bom:
        return
    if handle.read(len(encoding.bom)) != encoding.bom:
        handle.seek(0)


def _stream_convert(  # pylint: disable=too-many-arguments
    source: BinaryIO,
    target: BinaryIO,
    source_encoding: Encoding,
    output_encoding: Encoding,
    newline: Optional[str],
    trailing_newline: Optional[str],
) -> _TerminatorRewriter:
    source_codec, output_codec, errors = _codecs_for(source_encoding, output_encoding)
    decoder = codecs.getincrementaldecoder(source_codec)(errors)
    encoder = codecs.getincrementalencoder(output_codec)(errors)
    rewriter = _TerminatorRewriter(newline)

    _skip_bom(source, source_encoding)
    target.write(output_encoding.bom)
    while True:
        chunk = source.read(CHUNK_SIZE)
        text = decoder.decode(chunk, final=not chunk)
        target.write(encoder.encode(rewriter.feed(text)))
        if not chunk:
            break

    tail = rewriter.finish()
    # An empty file gets no newline, only the target BOM
    if (
        trailing_newline is not None
        and rewriter.has_content
        and not rewriter.ends_with_terminator
    ):
        tail += rewriter.append(trailing_newline or rewriter.counts.dominant.value)
    target.write(encoder.encode(tail, final=True))
    return rewriter


def _is_read_only(mode: int) -> bool:
    return not mode & stat.S_IWRITE


def _replace_original(temp_path: str, path: str, mode: int) -> None:
    shutil.copymode(path, temp_path)
    # Windows refuses to replace a read-only file; POSIX only checks the directory
    if os.name == "nt" and _is_read_only(mode):
        os.chmod(path, mode | stat.S_IWRITE)
        try:
            os.replace(temp_path, path)
        except OSError:
            os.chmod(path, mode)
            raise
    else:
        os.replace(temp_path, path)


def _remove_temp(temp_path: str) -> None:
    try:
        os.remove(temp_path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove temporary file %s: %s", temp_path, e)


def _restore_times(path: str, times: FileTimes) -> None:
    try:
        os.utime(path, ns=(times.accessed_ns, times.modified_ns))
    except OSError as e:
        logger.warning("Could not restore timestamps for %s: %s", path, e)
    if times.created is not None:
        # os.utime has no creation time argument
        logger.debug(
            "Creation time of %s not restored (was %s)",
            path,
            datetime.fromtimestamp(times.created).isoformat(sep=" "),
        )


def transcode_file(  # pylint: disable=too-many-arguments,too-many-locals
    path: str,
    source_encoding: Encoding,
    target_encoding: Optional[Encoding] = None,
    line_ending: Optional[LineEnding] = LineEnding.LF,
    convert_line_endings: bool = True,
    enforce_trailing_newline: bool = False,
    preserve_timestamps: bool = True,
    original_times: Optional[FileTimes] = None,
    force: bool = False,
) -> ConversionOutcome:
    """
    Rewrite path from source_encoding to target_encoding.

    Line terminators become ``line_ending`` only when ``convert_line_endings``
    is set; otherwise they are copied unchanged, so an encoding-only
    conversion never moves a CR or LF. A trailing newline is appended when
    requested and the content does not already end in one. Read-only files
    are refused unless ``force`` is given.
    """
    output_encoding = target_encoding or source_encoding
    outcome = ConversionOutcome(
        path=path,
        source_encoding=source_encoding.label,
        target_encoding=output_encoding.label,
    )

    try:
        mode = os.stat(path).st_mode
    except OSError as e:
        logger.error("Error converting %s: %s", path, e)
        return outcome.failed(ErrorKind.CONVERSION_IO, str(e))

    if _is_read_only(mode) and not force:
        logger.error("File is read-only (use --force to convert it): %s", path)
        return outcome.failed(ErrorKind.READ_ONLY_FILE, f"{path} is read-only")

    newline = line_ending.value if convert_line_endings and line_ending else None
    trailing_newline = None
    if enforce_trailing_newline:
        # Empty string means: use the file's dominant terminator
        trailing_newline = line_ending.value if line_ending else ""

    directory = os.path.dirname(os.path.abspath(path))
    try:
        fd, temp_path = tempfile.mkstemp(
            prefix=f".{os.path.basename(path)}.", suffix=".tmp", dir=directory
        )
    except OSError as e:
        logger.error("Could not create temporary file for %s: %s", path, e)
        return outcome.failed(ErrorKind.CONVERSION_IO, str(e))

    replaced = False
    try:
        with os.fdopen(fd, "wb") as target, open(path, "rb") as source:
            rewriter = _stream_convert(
                source,
                target,
                source_encoding,
                output_encoding,
                newline,
                trailing_newline,
            )
            target.flush()
            os.fsync(target.fileno())
        _replace_original(temp_path, path, mode)
        replaced = True
    except (OSError, UnicodeError) as e:
        logger.error("Error converting %s: %s", path, e)
        return outcome.failed(ErrorKind.CONVERSION_IO, str(e))
    finally:
        if not replaced:
            _remove_temp(temp_path)

    if preserve_timestamps and original_times is not None:
        _restore_times(path, original_times)

    counts = rewriter.counts
    outcome = replace(
        outcome,
        original_lf=counts.lf_equivalent,
        original_crlf=counts.crlf,
        new_lf=rewriter.new_lf,
        new_crlf=rewriter.new_crlf,
        encoding_changed=not source_encoding.satisfies(output_encoding),
        line_endings_changed=rewriter.changed,
        trailing_newline_added=rewriter.appended,
    )
    logger.debug(
        "Converted %s (%s -> %s, LF %d -> %d, CRLF %d -> %d)",
        path,
        outcome.source_encoding,
        outcome.target_encoding,
        outcome.original_lf,
        outcome.new_lf,
        outcome.original_crlf,
        outcome.new_crlf,
    )
    return outcome


def convert_file(  # pylint: disable=too-many-arguments
    path: str,
    line_ending: Optional[LineEnding] = LineEnding.LF,
    encoding: Optional[Encoding] = None,
    trailing_newline: bool = False,
    preserve_timestamps: bool = True,
    force: bool = False,
    dry_run: bool = False,
) -> ConversionOutcome:
    """
    Analyze a file and rewrite it only if it differs from the targets.

    Binary files, unreadable files and files that already match are left
    alone and reported as skipped. With ``dry_run`` the outcome describes
    what would change and nothing is written.
    """
    times = None
    if preserve_timestamps:
        # Captured before the analysis read can touch the access time
        try:
            times = capture_times(path)
        except OSError:
            times = None

    analysis = analyze_file(path, line_ending, encoding, trailing_newline)

    if analysis.error is not None:
        logger.error("Could not read %s: %s", path, analysis.error.message)
        return ConversionOutcome(
            path=path,
            skipped=True,
            binary=True,
            success=False,
            error=analysis.error,
        )

    if analysis.is_binary:
        logger.warning("Skipping binary file: %s", path)
        return ConversionOutcome(
            path=path,
            skipped=True,
            binary=True,
            error=ErrorInfo(ErrorKind.BINARY_FILE_SKIPPED, path),
        )

    source = analysis.source_encoding
    counts = analysis.line_endings or LineEndingCounts()
    target_label = (encoding or source).label
    if not analysis.needs_conversion:
        logger.debug("No changes needed for file: %s", path)
        return ConversionOutcome(
            path=path,
            source_encoding=source.label,
            target_encoding=target_label,
            original_lf=counts.lf_equivalent,
            original_crlf=counts.crlf,
            new_lf=counts.lf_equivalent,
            new_crlf=counts.crlf,
            skipped=True,
        )

    if dry_run:
        logger.info("Would convert: %s", path)
        return ConversionOutcome(
            path=path,
            source_encoding=source.label,
            target_encoding=target_label,
            original_lf=counts.lf_equivalent,
            original_crlf=counts.crlf,
            encoding_changed=analysis.needs_encoding_conversion,
            line_endings_changed=analysis.needs_line_ending_conversion,
            trailing_newline_added=analysis.needs_trailing_newline,
            dry_run=True,
        )

    return transcode_file(
        path,
        source,
        target_encoding=encoding,
        line_ending=line_ending,
        convert_line_endings=analysis.needs_line_ending_conversion,
        enforce_trailing_newline=analysis.needs_trailing_newline,
        preserve_timestamps=preserve_timestamps,
        original_times=times,
        force=force,
    )
