"""
eolconv - A line ending normalizer for text files.

This package provides functionality to:
- Check which line ending convention (CR, LF, CRLF or a mix) a file uses
- Convert line endings to LF (Unix), CRLF (Windows) or CR (legacy Mac)
- Handle single-byte codesets, UTF-8 and UTF-16 files with a byte-order mark
- Rewrite files in place atomically, optionally keeping their timestamps
- Process files recursively across directories, or stdin to stdout
"""

__version__ = "1.0.0"
