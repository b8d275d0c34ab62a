"""
Encoding descriptors, binary/text classification and encoding detection.

Everything in this module works on byte buffers that the caller has already
read, so it never touches the filesystem apart from looking at a path's
extension.
"""

import codecs
import enum
import locale
import logging
import os
import re
import struct
from typing import Dict, Optional, Sequence

logger = logging.getLogger("TextForge.textcodec")

# Bytes inspected by the encoding detector
DETECTION_SAMPLE_SIZE = 8192

# Minimum printable ratio for content that decoded cleanly (BOM or UTF-8)
DECODED_TEXT_RATIO = 0.75
# Minimum printable ASCII ratio when nothing could be decoded
RAW_TEXT_RATIO = 0.60
# More NUL bytes than this in a BOM-less window means binary
MAX_NUL_RATIO = 0.01

BINARY_EXTENSIONS = {
    # executables and compiled artifacts
    ".bin",
    ".exe",
    ".dll",
    ".so",
    ".dylib",
    ".obj",
    ".o",
    ".a",
    ".lib",
    ".class",
    ".jar",
    ".pyc",
    ".pyo",
    ".pyd",
    ".wasm",
    # images
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".bmp",
    ".ico",
    ".tif",
    ".tiff",
    ".webp",
    # archives
    ".zip",
    ".tar",
    ".gz",
    ".bz2",
    ".xz",
    ".7z",
    ".rar",
    ".whl",
    # documents
    ".pdf",
    ".doc",
    ".docx",
    ".xls",
    ".xlsx",
    ".ppt",
    ".pptx",
    # audio and video
    ".mp3",
    ".mp4",
    ".avi",
    ".mov",
    ".mkv",
    ".wav",
    ".flac",
    ".ogg",
    # fonts
    ".ttf",
    ".otf",
    ".woff",
    ".woff2",
    ".eot",
    # databases
    ".db",
    ".sqlite",
    ".sqlite3",
    ".mdb",
}

BINARY_SIGNATURES = (
    b"\x89PNG",
    b"GIF87a",
    b"GIF89a",
    b"\xff\xd8\xff",
    b"%PDF",
    b"PK\x03\x04",
    b"\x7fELF",
    b"\x1f\x8b",
    b"7z\xbc\xaf\x27\x1c",
    b"Rar!\x1a\x07",
    b"\xca\xfe\xba\xbe",
    b"\xce\xfa\xed\xfe",
    b"\xcf\xfa\xed\xfe",
)

# Control characters that do not count as printable text. BEL, BS, TAB, LF,
# FF, CR and ESC are allowed.
_NON_PRINTABLE_RE = re.compile("[\x00-\x06\x0b\x0e-\x1a\x1c-\x1f\x7f-\x9f]")
_PRINTABLE_CONTROLS = frozenset((7, 8, 9, 10, 12, 13, 27))
_PRINTABLE_ASCII = bytes(sorted(_PRINTABLE_CONTROLS | set(range(0x20, 0x7F))))


class UnsupportedEncodingError(ValueError):
    """Raised when an encoding name does not map to a known encoding."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Unsupported encoding '{name}' "
            f"(expected one of: {', '.join(e.label for e in Encoding)})"
        )
        self.name = name


class Encoding(enum.Enum):
    """A text encoding the converter can read and write.

    Each member knows its code unit width, its byte order mark and the
    Python codec that decodes the content after that mark.
    """

    UTF8 = ("utf8", "utf-8", 1, b"", "little")
    UTF8_BOM = ("utf8bom", "utf-8", 1, codecs.BOM_UTF8, "little")
    UTF16_LE = ("utf16le", "utf-16-le", 2, codecs.BOM_UTF16_LE, "little")
    UTF16_BE = ("utf16be", "utf-16-be", 2, codecs.BOM_UTF16_BE, "big")
    UTF32_LE = ("utf32le", "utf-32-le", 4, codecs.BOM_UTF32_LE, "little")
    UTF32_BE = ("utf32be", "utf-32-be", 4, codecs.BOM_UTF32_BE, "big")
    ASCII = ("ascii", "ascii", 1, b"", "little")
    ANSI = ("ansi", None, 1, b"", "little")

    def __init__(
        self,
        label: str,
        codec_name: Optional[str],
        width: int,
        bom: bytes,
        byteorder: str,
    ) -> None:
        self.label = label
        self.codec_name = codec_name
        self.width = width
        self.bom = bom
        self.byteorder = byteorder

    def __str__(self) -> str:
        return self.label

    @property
    def codec(self) -> str:
        """Python codec name; ANSI resolves to the platform's locale encoding."""
        if self.codec_name is None:
            return codecs.lookup(locale.getpreferredencoding(False)).name
        return self.codec_name

    @property
    def has_bom(self) -> bool:
        return bool(self.bom)

    def satisfies(self, target: "Encoding") -> bool:
        """Return True if content detected as this encoding already meets target.

        Pure ASCII content is byte-identical in UTF-8 without a BOM, and in
        the platform code page. BOM-less content whose codec is the platform
        code page already is ANSI.
        """
        if self is target:
            return True
        if target is Encoding.UTF8:
            return self is Encoding.ASCII
        if target is Encoding.ANSI and not self.has_bom:
            return self is Encoding.ASCII or self.codec == target.codec
        return False

    @classmethod
    def from_name(cls, name: str) -> "Encoding":
        key = name.strip().lower().replace("_", "-")
        try:
            return _ALIASES[key]
        except KeyError:
            raise UnsupportedEncodingError(name) from None


_ALIASES: Dict[str, Encoding] = {
    "utf8": Encoding.UTF8,
    "utf-8": Encoding.UTF8,
    "utf8nobom": Encoding.UTF8,
    "utf-8-nobom": Encoding.UTF8,
    "utf8bom": Encoding.UTF8_BOM,
    "utf8-bom": Encoding.UTF8_BOM,
    "utf-8-bom": Encoding.UTF8_BOM,
    "utf-8-sig": Encoding.UTF8_BOM,
    "utf8sig": Encoding.UTF8_BOM,
    "utf16": Encoding.UTF16_LE,
    "utf-16": Encoding.UTF16_LE,
    "utf16le": Encoding.UTF16_LE,
    "utf-16le": Encoding.UTF16_LE,
    "utf-16-le": Encoding.UTF16_LE,
    "unicode": Encoding.UTF16_LE,
    "utf16be": Encoding.UTF16_BE,
    "utf-16be": Encoding.UTF16_BE,
    "utf-16-be": Encoding.UTF16_BE,
    "bigendianunicode": Encoding.UTF16_BE,
    "utf32": Encoding.UTF32_LE,
    "utf-32": Encoding.UTF32_LE,
    "utf32le": Encoding.UTF32_LE,
    "utf-32le": Encoding.UTF32_LE,
    "utf-32-le": Encoding.UTF32_LE,
    "utf32be": Encoding.UTF32_BE,
    "utf-32be": Encoding.UTF32_BE,
    "utf-32-be": Encoding.UTF32_BE,
    "bigendianutf32": Encoding.UTF32_BE,
    "ascii": Encoding.ASCII,
    "us-ascii": Encoding.ASCII,
    "ansi": Encoding.ANSI,
    "default": Encoding.ANSI,
}

# Longest marks first so UTF-32 LE is not mistaken for UTF-16 LE
_BOM_ORDER = (
    Encoding.UTF32_LE,
    Encoding.UTF32_BE,
    Encoding.UTF8_BOM,
    Encoding.UTF16_LE,
    Encoding.UTF16_BE,
)

PRESERVE_NAMES = {"auto", "preserve", "keep"}


def parse_target_encoding(name: Optional[str]) -> Optional[Encoding]:
    """Map a user supplied name to an Encoding, or None to keep the source."""
    if name is None or name.strip().lower() in PRESERVE_NAMES:
        return None
    return Encoding.from_name(name)


def bom_encoding(buffer: bytes) -> Optional[Encoding]:
    """Return the encoding whose byte order mark starts buffer, if any."""
    for encoding in _BOM_ORDER:
        if buffer.startswith(encoding.bom):
            return encoding
    return None


def code_units(buffer: bytes, encoding: Encoding) -> Sequence[int]:
    """Split buffer into code units of the encoding's width and byte order.

    A trailing partial unit is dropped.
    """
    if encoding.width == 1:
        return buffer
    count = len(buffer) // encoding.width
    order = "<" if encoding.byteorder == "little" else ">"
    unit = "H" if encoding.width == 2 else "I"
    return struct.unpack(f"{order}{count}{unit}", buffer[: count * encoding.width])


def _is_printable_unit(unit: int) -> bool:
    if unit in _PRINTABLE_CONTROLS:
        return True
    return 0x20 <= unit < 0x7F or 0xA0 <= unit <= 0x10FFFF


def _decode_utf8(sample: bytes, complete: bool) -> Optional[str]:
    """Strictly decode sample, tolerating a sequence cut at the sample end."""
    decoder = codecs.getincrementaldecoder("utf-8")("strict")
    try:
        return decoder.decode(sample, final=complete)
    except UnicodeDecodeError:
        return None


def is_binary_extension(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in BINARY_EXTENSIONS


def is_binary_content(
    buffer: bytes, extension: Optional[str] = None, complete: bool = True
) -> bool:  # pylint: disable=too-many-return-statements
    """
    Decide whether buffer (the start of a file) holds binary content.

    ``complete`` tells whether buffer is the whole file; when it is not, a
    UTF-8 sequence cut by the end of the buffer is not held against it.
    """
    if extension and extension.lower() in BINARY_EXTENSIONS:
        return True

    # Empty files are never binary
    if not buffer:
        return False

    if buffer.startswith(BINARY_SIGNATURES):
        return True

    encoding = bom_encoding(buffer)
    if encoding is not None and encoding.width > 1:
        units = code_units(buffer[len(encoding.bom) :], encoding)
        if not units:
            return False
        printable = sum(1 for unit in units if _is_printable_unit(unit))
        return printable / len(units) < DECODED_TEXT_RATIO

    if buffer.count(b"\x00") / len(buffer) > MAX_NUL_RATIO:
        return True

    text = _decode_utf8(buffer, complete)
    if text is not None:
        if not text:
            return False
        non_printable = len(_NON_PRINTABLE_RE.findall(text))
        return (len(text) - non_printable) / len(text) < DECODED_TEXT_RATIO

    # Not UTF-8: only printable ASCII counts as evidence of text
    non_text = buffer.translate(None, _PRINTABLE_ASCII)
    return (len(buffer) - len(non_text)) / len(buffer) < RAW_TEXT_RATIO


def detect_encoding(sample: bytes, complete: bool = True) -> Encoding:
    """
    Detect the encoding of a file from its first bytes.

    Byte order marks win. Without one, only the first
    DETECTION_SAMPLE_SIZE bytes are looked at: pure 7-bit content is ASCII,
    anything else is UTF-8 whether or not it decodes. Never raises.
    """
    encoding = bom_encoding(sample)
    if encoding is not None:
        return encoding

    if len(sample) > DETECTION_SAMPLE_SIZE:
        sample = sample[:DETECTION_SAMPLE_SIZE]
        complete = False

    if sample.isascii():
        return Encoding.ASCII

    text = _decode_utf8(sample, complete)
    if text is not None and sample.startswith(text.encode("utf-8")):
        return Encoding.UTF8

    logger.debug("Sample is neither ASCII nor UTF-8, assuming UTF-8")
    return Encoding.UTF8


def refine_ansi(sample: bytes, detected: Encoding, complete: bool = True) -> Encoding:
    """
    Tell platform code page content apart from UTF-8.

    The detector never reports ANSI. When ANSI is the target, a BOM-less
    sample that is not valid UTF-8 but decodes strictly with the platform
    code page is reported as ANSI, so a converted file is recognised on the
    next run.
    """
    if detected is not Encoding.UTF8:
        return detected
    codec = Encoding.ANSI.codec
    if codec == "utf-8":
        return detected

    if len(sample) > DETECTION_SAMPLE_SIZE:
        sample = sample[:DETECTION_SAMPLE_SIZE]
        complete = False
    if _decode_utf8(sample, complete) is not None:
        return detected

    decoder = codecs.getincrementaldecoder(codec)("strict")
    try:
        decoder.decode(sample, final=complete)
    except UnicodeDecodeError:
        return detected
    return Encoding.ANSI
