#!/usr/bin/env python3
"""
Test edge cases and performance scenarios for the converter.
"""

import codecs
import logging
import os
import shutil
import sys
import tempfile
import time
import unittest
from pathlib import Path

# Add parent directory to path to import the TextForge modules
sys.path.insert(0, str(Path(__file__).parent.parent))
import analysis  # pylint: disable=wrong-import-position
import normalize  # pylint: disable=wrong-import-position
from lineendings import LineEnding  # pylint: disable=wrong-import-position
from textcodec import Encoding  # pylint: disable=wrong-import-position
from transcode import convert_file  # pylint: disable=wrong-import-position

# Disable logging for tests
normalize.logger.setLevel(logging.CRITICAL)


class TestEdgeCases(unittest.TestCase):
    def setUp(self) -> None:
        # Create a temporary directory
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self) -> None:
        # Clean up the temporary directory
        shutil.rmtree(self.test_dir)

    def write(self, name: str, content: bytes) -> str:
        file_path = os.path.join(self.test_dir, name)
        with open(file_path, "wb") as f:
            f.write(content)
        return file_path

    @staticmethod
    def read(file_path: str) -> bytes:
        with open(file_path, "rb") as f:
            return f.read()

    def test_very_long_lines(self) -> None:
        """Test processing files with very long lines."""
        long_line = b"a" * 10000 + b"\r\n"
        long_file = self.write("long.txt", long_line * 5)

        outcome = convert_file(long_file, LineEnding.LF)
        self.assertTrue(outcome.changed)
        self.assertEqual(self.read(long_file), (b"a" * 10000 + b"\n") * 5)

    def test_file_larger_than_sample(self) -> None:
        """Terminators past the analysis sample are converted as well."""
        content = (b"x" * 99 + b"\r\n") * 2000
        self.assertGreater(len(content), analysis.SAMPLE_SIZE)
        large_file = self.write("large.txt", content)

        outcome = convert_file(large_file, LineEnding.LF)
        self.assertEqual(outcome.original_crlf, 2000)
        self.assertEqual(outcome.new_lf, 2000)
        self.assertEqual(self.read(large_file), (b"x" * 99 + b"\n") * 2000)

    def test_unicode_content(self) -> None:
        text = "Hello 世界 🌍\r\nПривет мир\r\nمرحبا\r\n"
        unicode_file = self.write("unicode.txt", text.encode("utf-8"))

        outcome = convert_file(unicode_file, LineEnding.LF)
        self.assertEqual(outcome.source_encoding, "utf8")
        self.assertEqual(self.read(unicode_file), text.replace("\r\n", "\n").encode("utf-8"))

    def test_unicode_to_utf16_and_back(self) -> None:
        text = "Hello 世界 🌍\n"
        unicode_file = self.write("roundtrip.txt", text.encode("utf-8"))

        convert_file(unicode_file, LineEnding.LF, Encoding.UTF16_LE)
        self.assertEqual(
            self.read(unicode_file), codecs.BOM_UTF16_LE + text.encode("utf-16-le")
        )
        convert_file(unicode_file, LineEnding.LF, Encoding.UTF8)
        self.assertEqual(self.read(unicode_file), text.encode("utf-8"))

    def test_utf32_le_file(self) -> None:
        utf32_file = self.write(
            "utf32.txt", codecs.BOM_UTF32_LE + "a\r\nb\r\n".encode("utf-32-le")
        )
        outcome = convert_file(utf32_file, LineEnding.LF)
        self.assertEqual(outcome.source_encoding, "utf32le")
        self.assertEqual(
            self.read(utf32_file), codecs.BOM_UTF32_LE + "a\nb\n".encode("utf-32-le")
        )

    def test_newline_only_file(self) -> None:
        newline_file = self.write("newlines.txt", b"\r\n\r\n\r\n")
        convert_file(newline_file, LineEnding.LF)
        self.assertEqual(self.read(newline_file), b"\n\n\n")

    def test_single_carriage_return(self) -> None:
        cr_file = self.write("cr.txt", b"\r")
        outcome = convert_file(cr_file, LineEnding.LF, trailing_newline=True)
        self.assertEqual(self.read(cr_file), b"\n")
        self.assertFalse(outcome.trailing_newline_added)

    def test_whitespace_only_file_gets_newline(self) -> None:
        spaces_file = self.write("spaces.txt", b"   ")
        outcome = convert_file(spaces_file, LineEnding.LF, trailing_newline=True)
        self.assertTrue(outcome.trailing_newline_added)
        self.assertEqual(self.read(spaces_file), b"   \n")

    def test_special_filenames(self) -> None:
        names = [
            "file with spaces.txt",
            "file-with-dashes.txt",
            "file.multiple.dots.txt",
            "ünïcödé.txt",
        ]
        for name in names:
            self.write(name, b"content\r\n")

        files = normalize.find_files(self.test_dir, include=[".txt"])
        self.assertEqual(len(files), len(names))
        for file_path in files:
            outcome = convert_file(file_path, LineEnding.LF)
            self.assertTrue(outcome.changed, file_path)
            self.assertEqual(self.read(file_path), b"content\n")

    def test_deep_directory_structure(self) -> None:
        current = self.test_dir
        for level in range(10):
            current = os.path.join(current, f"level{level}")
        os.makedirs(current)
        deep_file = os.path.join(current, "deep.txt")
        with open(deep_file, "wb") as f:
            f.write(b"deep\r\n")

        files = normalize.find_files(self.test_dir, include=[".txt"])
        self.assertEqual(files, [deep_file])

        result = normalize.process_files(
            files, normalize.ConversionOptions(line_ending=LineEnding.LF), show_progress=False
        )
        self.assertEqual(result.converted, 1)
        self.assertEqual(self.read(deep_file), b"deep\n")

    def test_many_files(self) -> None:
        for i in range(50):
            self.write(f"file{i:02d}.txt", f"Line {i}\nSecond line\n".encode("ascii"))

        files = normalize.find_files(self.test_dir, include=[".txt"])
        self.assertEqual(len(files), 50)

        start = time.time()
        result = normalize.process_files(
            files, normalize.ConversionOptions(), show_progress=False
        )
        elapsed = time.time() - start

        self.assertEqual(result.converted, 50)
        self.assertEqual(result.errors, 0)
        self.assertLess(elapsed, 30)
        self.assertEqual(self.read(files[7]), b"Line 7\r\nSecond line\r\n")


if __name__ == "__main__":
    unittest.main()
