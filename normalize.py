#!/usr/bin/env python3
"""
TextForge

A cross-platform Python script to convert line endings and text encodings
of files, rewriting only the files that need it.
"""

import argparse
import fnmatch
import logging
import os
import sys
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from tqdm import tqdm

from analysis import ErrorKind
from lineendings import LineEnding
from textcodec import (
    BINARY_EXTENSIONS,
    Encoding,
    UnsupportedEncodingError,
    parse_target_encoding,
)
from transcode import ConversionOutcome, convert_file

# Define version
__version__ = "1.0.0"
__author__ = "tboy1337"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_LOG_FILE = "textforge.log"

logger = logging.getLogger("TextForge")

DEFAULT_INCLUDE: List[str] = [
    "*.txt",
    "*.md",
    "*.rst",
    "*.csv",
    "*.tsv",
    "*.json",
    "*.xml",
    "*.yml",
    "*.yaml",
    "*.toml",
    "*.ini",
    "*.cfg",
    "*.conf",
    "*.py",
    "*.js",
    "*.ts",
    "*.html",
    "*.htm",
    "*.css",
    "*.c",
    "*.h",
    "*.cpp",
    "*.hpp",
    "*.cs",
    "*.java",
    "*.go",
    "*.rs",
    "*.sql",
    "*.sh",
    "*.bat",
    "*.cmd",
    "*.ps1",
    "*.psm1",
    "*.psd1",
]
DEFAULT_EXCLUDE: List[str] = sorted(f"*{ext}" for ext in BINARY_EXTENSIONS)
DEFAULT_IGNORE_DIRS: List[str] = [
    ".git",
    ".github",
    "__pycache__",
    "node_modules",
    "venv",
    ".venv",
]

FORMAT_CHOICES = ["crlf", "lf", "keep"]


def configure_logging(
    verbose: bool = False, log_file: Optional[str] = DEFAULT_LOG_FILE
) -> None:
    """Send TextForge log records to the console and, optionally, a log file."""
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False


@dataclass(frozen=True)
class ConversionOptions:
    """Targets and switches applied to every file of a run."""

    line_ending: Optional[LineEnding] = LineEnding.CRLF
    encoding: Optional[Encoding] = None
    trailing_newline: bool = False
    preserve_timestamps: bool = True
    force: bool = False
    dry_run: bool = False

    def as_kwargs(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BatchResult:
    """Counters for one batch, plus per-file outcomes in passthru mode."""

    total: int = 0
    converted: int = 0
    unchanged: int = 0
    binary: int = 0
    errors: int = 0
    cancelled: bool = False
    outcomes: List[ConversionOutcome] = field(default_factory=list)

    def record(self, outcome: ConversionOutcome) -> None:
        if not outcome.success:
            self.errors += 1
        elif outcome.binary:
            self.binary += 1
        elif outcome.skipped:
            self.unchanged += 1
        else:
            self.converted += 1


def _to_glob(pattern: str) -> str:
    # A bare extension such as ".txt" matches every file ending with it
    if pattern.startswith(".") and "/" not in pattern and "\\" not in pattern:
        return f"*{pattern}"
    return pattern


def _clean_patterns(patterns: Optional[Iterable[str]]) -> List[str]:
    if not patterns:
        return []
    return [_to_glob(p.strip()) for p in patterns if p.strip()]


def _matches(filename: str, patterns: Sequence[str]) -> bool:
    return any(fnmatch.fnmatch(filename, pattern) for pattern in patterns)


def find_files(  # pylint: disable=too-many-branches
    roots: Union[str, Sequence[str]],
    include: Optional[List[str]] = None,
    exclude: Optional[List[str]] = None,
    recursive: bool = True,
    ignore_dirs: Optional[List[str]] = None,
) -> List[str]:
    """
    Collect candidate files under one or more root paths.

    Directories are walked (recursively unless told otherwise), keeping files
    that match an include pattern and no exclude pattern. A root that is a
    file is taken as given unless an exclude pattern matches it.

    Raises ValueError for a root that does not exist.
    """
    if isinstance(roots, str):
        roots = [roots]
    include_patterns = _clean_patterns(include) or DEFAULT_INCLUDE
    exclude_patterns = (
        DEFAULT_EXCLUDE if exclude is None else _clean_patterns(exclude)
    )
    if ignore_dirs is None:
        ignore_dirs = DEFAULT_IGNORE_DIRS
    ignore_dirs_set = set(ignore_dirs)

    for root in roots:
        if not os.path.exists(root):
            raise ValueError(f"Path not found: {root}")

    all_files: List[str] = []
    seen = set()

    def add(file_path: str) -> None:
        key = os.path.normcase(os.path.abspath(file_path))
        if key not in seen:
            seen.add(key)
            all_files.append(file_path)

    for root in roots:
        if os.path.isfile(root):
            if not _matches(os.path.basename(root), exclude_patterns):
                add(root)
            continue

        for current, dirs, files in os.walk(root):
            # Skip ignored directories
            dirs[:] = sorted(d for d in dirs if d not in ignore_dirs_set)
            for filename in sorted(files):
                if _matches(filename, include_patterns) and not _matches(
                    filename, exclude_patterns
                ):
                    add(os.path.join(current, filename))
            if not recursive:
                break

    return all_files


def format_outcome(outcome: ConversionOutcome) -> str:
    """One line summary of an outcome, as printed in passthru mode."""
    if outcome.error is not None and outcome.error.kind.is_failure:
        return f"ERROR     {outcome.path}: {outcome.error}"
    if outcome.binary:
        return f"BINARY    {outcome.path}"
    if outcome.skipped:
        return f"UNCHANGED {outcome.path}"

    changes = []
    if outcome.encoding_changed:
        changes.append(f"{outcome.source_encoding} -> {outcome.target_encoding}")
    if outcome.line_endings_changed:
        if outcome.dry_run:
            changes.append(
                f"line endings (LF {outcome.original_lf}, "
                f"CRLF {outcome.original_crlf})"
            )
        else:
            changes.append(
                f"LF {outcome.original_lf} -> {outcome.new_lf}, "
                f"CRLF {outcome.original_crlf} -> {outcome.new_crlf}"
            )
    if outcome.trailing_newline_added:
        changes.append("trailing newline")
    status = "WOULD FIX" if outcome.dry_run else "CONVERTED"
    return f"{status} {outcome.path} ({'; '.join(changes)})"


def process_files(
    files: List[str],
    options: ConversionOptions,
    cancel_event: Optional[threading.Event] = None,
    passthru: bool = False,
    show_progress: bool = True,
) -> BatchResult:
    """
    Convert files one after another.

    A failure on one file is recorded and the batch moves on. Setting
    ``cancel_event`` stops the batch before the next file; the file being
    converted at that moment is finished first.
    """
    result = BatchResult(total=len(files))
    kwargs = options.as_kwargs()

    with tqdm(
        total=len(files),
        desc="Converting files",
        unit="file",
        disable=not show_progress,
    ) as pbar:
        for index, file_path in enumerate(files):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(
                    "Cancelled, %d files were not processed", len(files) - index
                )
                result.cancelled = True
                break

            try:
                outcome = convert_file(file_path, **kwargs)
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.error("Unhandled error processing %s: %s", file_path, str(e))
                outcome = ConversionOutcome(path=file_path).failed(
                    ErrorKind.CONVERSION_IO, str(e)
                )

            result.record(outcome)
            if passthru:
                result.outcomes.append(outcome)
                tqdm.write(format_outcome(outcome))
            pbar.update(1)

    if result.errors > 0:
        logger.warning("Encountered errors while processing %d files", result.errors)
    logger.info(
        "%s: %d, Unchanged: %d, Binary: %d, Errors: %d",
        "Would convert" if options.dry_run else "Converted",
        result.converted,
        result.unchanged,
        result.binary,
        result.errors,
    )
    return result


def format_duration(execution_time: float) -> str:
    if execution_time < 60:
        return f"{execution_time:.2f} seconds"
    if execution_time < 3600:
        minutes = int(execution_time // 60)
        seconds = execution_time % 60
        return f"{minutes} minute{'s' if minutes != 1 else ''} {seconds:.2f} seconds"
    hours = int(execution_time // 3600)
    minutes = int((execution_time % 3600) // 60)
    seconds = execution_time % 60
    return (
        f"{hours} hour{'s' if hours != 1 else ''} "
        f"{minutes} minute{'s' if minutes != 1 else ''} "
        f"{seconds:.2f} seconds"
    )


def _encoding_arg(value: str) -> Optional[Encoding]:
    try:
        return parse_target_encoding(value)
    except UnsupportedEncodingError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser(version: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Convert line endings and text encodings of files"
    )
    parser.add_argument(
        "paths",
        nargs="*",
        help="Files or directories to process (default: current directory)",
    )
    parser.add_argument(
        "--include",
        nargs="+",
        default=None,
        help="File patterns to process, e.g. '.txt *.py' "
        "(default: common text file extensions)",
    )
    parser.add_argument(
        "--exclude",
        nargs="+",
        default=None,
        help="File patterns to skip (default: common binary file extensions)",
    )
    parser.add_argument(
        "--no-recursive",
        action="store_true",
        help="Only process files directly inside the given directories",
    )
    parser.add_argument(
        "--format",
        choices=FORMAT_CHOICES,
        default="crlf",
        help="Target line ending format, 'keep' leaves them alone (default: crlf)",
    )
    parser.add_argument(
        "--encoding",
        type=_encoding_arg,
        default=None,
        help="Target encoding: utf8, utf8bom, utf16le, utf16be, utf32le, "
        "utf32be, ascii, ansi or auto to keep each file's own (default: auto)",
    )
    parser.add_argument(
        "--trailing-newline",
        action="store_true",
        help="Make sure every non-empty file ends with a line break",
    )
    parser.add_argument(
        "--no-preserve-timestamps",
        action="store_true",
        help="Let converted files get a new modification time",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Also convert read-only files",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would change without writing anything",
    )
    parser.add_argument(
        "--passthru",
        action="store_true",
        help="Print the outcome for every processed file",
    )
    parser.add_argument(
        "--non-interactive",
        action="store_true",
        help="Run in non-interactive mode with provided options",
    )
    parser.add_argument(
        "--ignore-dirs",
        nargs="+",
        default=[],
        help="Directories to ignore during processing "
        "(default: .git, .github, __pycache__, node_modules, venv, .venv)",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--log-file",
        default=DEFAULT_LOG_FILE,
        help=f"Log file to append to, empty to disable (default: {DEFAULT_LOG_FILE})",
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Do not show a progress bar",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"TextForge v{version}",
        help="Show program version and exit",
    )
    return parser


def _prompt_for_options(args: argparse.Namespace) -> None:
    """Fill in unset options by asking on the console."""
    root_dir = input(
        "Convert files under what directory? [default: current directory] "
    ).strip()
    args.paths = [root_dir or os.getcwd()]

    if args.include is None:
        patterns = input(
            "Convert files that end with what? (e.g., '.txt .py') "
            "[default: common text files] "
        ).strip()
        if patterns:
            args.include = patterns.split()

    format_choice = (
        input("Convert to which line ending format? [crlf/lf/keep, default: crlf] ")
        .strip()
        .lower()
    )
    if format_choice in FORMAT_CHOICES:
        args.format = format_choice

    if args.encoding is None:
        encoding_choice = input(
            "Convert to which encoding? [utf8/utf8bom/utf16le/..., default: auto] "
        ).strip()
        if encoding_choice:
            args.encoding = parse_target_encoding(encoding_choice)

    trailing_newline = (
        input("Make sure files end with a newline (y/n)? [default: n] ")
        .strip()
        .lower()
    )
    args.trailing_newline = trailing_newline.startswith("y")

    ignore_dirs_input = input(
        "Directories to ignore (space-separated)? "
        "[default: .git .github __pycache__ node_modules venv .venv] "
    ).strip()
    if ignore_dirs_input:
        args.ignore_dirs = ignore_dirs_input.split()


def main() -> (
    int
):  # pylint: disable=too-many-locals,too-many-branches,too-many-statements,too-many-return-statements
    # Get the program version from the module
    version: str = getattr(sys.modules[__name__], "__version__", "1.0.0")
    parser = build_parser(version)
    args = parser.parse_args()

    configure_logging(args.verbose, args.log_file)
    try:
        logger.info("TextForge v%s - Line Ending and Encoding Converter", version)

        # Interactive mode if no paths were provided
        if not args.non_interactive and not args.paths:
            _prompt_for_options(args)

        paths: List[str] = [os.path.abspath(p) for p in args.paths or [os.getcwd()]]
        ignore_dirs: List[str] = (
            args.ignore_dirs if args.ignore_dirs else DEFAULT_IGNORE_DIRS
        )
        options = ConversionOptions(
            line_ending=(
                None if args.format == "keep" else LineEnding.from_name(args.format)
            ),
            encoding=args.encoding,
            trailing_newline=args.trailing_newline,
            preserve_timestamps=not args.no_preserve_timestamps,
            force=args.force,
            dry_run=args.dry_run,
        )

        logger.info("Searching for files in %s", ", ".join(paths))
        logger.info("Ignoring directories: %s", ", ".join(ignore_dirs))
        logger.info("Target line ending format: %s", args.format.upper())
        logger.info(
            "Target encoding: %s", options.encoding.label if options.encoding else "auto"
        )
        logger.info("Trailing newline: %s", "Yes" if options.trailing_newline else "No")
        if options.dry_run:
            logger.info("Dry run: no files will be written")

        # Measure execution time
        start_time: float = time.time()

        try:
            files: List[str] = find_files(
                paths,
                include=args.include,
                exclude=args.exclude,
                recursive=not args.no_recursive,
                ignore_dirs=ignore_dirs,
            )
        except ValueError as e:
            logger.error("Error: %s", e)
            return 1

        if not files:
            logger.warning("No matching files found.")
            return 0

        logger.info("Found %d files to process.", len(files))

        result = process_files(
            files,
            options,
            passthru=args.passthru,
            show_progress=not args.no_progress,
        )

        logger.info(
            "Done! %s %d of %d files in %s.",
            "Would convert" if options.dry_run else "Converted",
            result.converted,
            len(files),
            format_duration(time.time() - start_time),
        )
        return 0
    except UnsupportedEncodingError as e:
        logger.error("Error: %s", e)
        return 2
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user.")
        return 130
    except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error("An unexpected error occurred: %s", str(e))
        if logger.level <= logging.DEBUG:
            import traceback  # pylint: disable=import-outside-toplevel

            logger.debug("Traceback: %s", traceback.format_exc())
        return 1


if __name__ == "__main__":
    sys.exit(main())
