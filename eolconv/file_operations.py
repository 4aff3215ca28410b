"""
Per-file operations.

A file is checked with a single inspection pass. A conversion first runs a
preliminary pass that stops at the first line ending unlike the target, so
files that already conform are never rewritten. Otherwise the converted copy
goes to a temporary file next to the original, which then replaces it.
"""

import enum
import itertools
import logging
import os
import stat
import time
from typing import BinaryIO, Optional, Tuple

from .engine import (
    ConversionParameters,
    Convention,
    FileReport,
    convert_stream,
    get_source_convention,
)

logger = logging.getLogger("eolconv")

TMP_FILENAME_BASE: str = ".eolconv_tmp_"
SESSION_SUFFIX_MODULUS: int = 9999999

# Extensions of common binary formats, skipped without being read
BINARY_EXTENSIONS = frozenset(
    {
        ".7z",
        ".a",
        ".avi",
        ".bin",
        ".bmp",
        ".bz2",
        ".class",
        ".db",
        ".dll",
        ".doc",
        ".docx",
        ".dylib",
        ".eot",
        ".exe",
        ".flac",
        ".gif",
        ".gz",
        ".ico",
        ".jar",
        ".jpeg",
        ".jpg",
        ".lib",
        ".mkv",
        ".mov",
        ".mp3",
        ".mp4",
        ".o",
        ".obj",
        ".odt",
        ".ogg",
        ".otf",
        ".pdf",
        ".png",
        ".ppt",
        ".pptx",
        ".pyc",
        ".pyd",
        ".pyo",
        ".rar",
        ".so",
        ".sqlite",
        ".tar",
        ".tif",
        ".tiff",
        ".ttf",
        ".wav",
        ".webp",
        ".woff",
        ".woff2",
        ".xls",
        ".xlsx",
        ".xz",
        ".zip",
    }
)


class FileOpStatus(enum.Enum):
    DONE = "done"
    SKIPPED_BINARY = "skipped_binary"
    FILEOP_ERROR = "fileop_error"
    # Internal to the per-file operations: proceed with the next step
    CAN_CONTINUE = "can_continue"


def has_known_binary_file_extension(file_path: str) -> bool:
    ext: str = os.path.splitext(file_path)[1].lower()
    return ext in BINARY_EXTENSIONS


class Session:
    """
    Run-scoped naming of temporary files.

    The suffix is drawn from the clock once per run; the process id and a
    counter keep names apart across concurrent runs and successive files.
    """

    def __init__(self) -> None:
        self._suffix: Optional[int] = None
        self._counter = itertools.count()

    @property
    def suffix(self) -> int:
        if self._suffix is None:
            self._suffix = time.time_ns() % SESSION_SUFFIX_MODULUS
        return self._suffix

    def temp_path_for(self, file_path: str) -> str:
        """Return a fresh temporary file path in the directory of file_path."""
        name = f"{TMP_FILENAME_BASE}{self.suffix}.{os.getpid()}.{next(self._counter)}"
        return os.path.join(os.path.dirname(file_path), name)


def _conversion_outcome(
    report: FileReport, file_path: str, binaries: bool, phase: str
) -> FileOpStatus:
    if report.error_during_conversion:
        logger.error("file access error during %s of %s", phase, file_path)
        return FileOpStatus.FILEOP_ERROR
    if report.contains_non_text_chars and not binaries:
        return FileOpStatus.SKIPPED_BINARY
    return FileOpStatus.CAN_CONTINUE


def _open_input_file(file_path: str) -> Tuple[FileOpStatus, Optional[BinaryIO]]:
    try:
        return FileOpStatus.CAN_CONTINUE, open(file_path, "rb")
    except OSError as e:
        logger.error("can't open %s: %s", file_path, str(e))
        return FileOpStatus.FILEOP_ERROR, None


def open_temporary_file(tmp_path: str) -> Tuple[FileOpStatus, Optional[BinaryIO]]:
    flags = os.O_WRONLY | os.O_CREAT | os.O_TRUNC | getattr(os, "O_BINARY", 0)
    try:
        fd = os.open(tmp_path, flags, 0o600)
    except OSError as e:
        logger.error("can't create temporary file %s: %s", tmp_path, str(e))
        return FileOpStatus.FILEOP_ERROR, None
    return FileOpStatus.CAN_CONTINUE, os.fdopen(fd, "wb")


def _discard_temp_file(tmp_path: str) -> None:
    try:
        os.unlink(tmp_path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.error("can't remove temporary file %s: %s", tmp_path, str(e))


def move_temp_file_to_destination(
    tmp_path: str, file_path: str, statinfo: os.stat_result
) -> FileOpStatus:
    """Give the temporary file the original's permissions, then swap it in."""
    try:
        os.chmod(tmp_path, stat.S_IMODE(statinfo.st_mode))
        os.replace(tmp_path, file_path)
    except OSError as e:
        logger.error("can't replace %s with its converted copy: %s", file_path, str(e))
        return FileOpStatus.FILEOP_ERROR
    return FileOpStatus.DONE


def restore_file_times(file_path: str, statinfo: os.stat_result) -> None:
    try:
        os.utime(file_path, ns=(statinfo.st_atime_ns, statinfo.st_mtime_ns))
    except OSError as e:
        logger.warning("can't restore times of %s: %s", file_path, str(e))


def _pre_conversion_check(
    infile: BinaryIO, file_path: str, convention: Convention, binaries: bool
) -> Tuple[FileOpStatus, FileReport]:
    report = convert_stream(
        ConversionParameters(
            instream=infile,
            dst_convention=convention,
            interrupt_if_not_like_dst_convention=True,
            interrupt_if_non_text=not binaries,
        )
    )
    status = _conversion_outcome(report, file_path, binaries, "preliminary check")
    if status is FileOpStatus.CAN_CONTINUE and get_source_convention(report) in (
        Convention.NONE,
        convention,
    ):
        status = FileOpStatus.DONE
    return status, report


def _rewrite_through_temp_file(
    infile: BinaryIO,
    file_path: str,
    statinfo: os.stat_result,
    convention: Convention,
    session: Session,
    binaries: bool,
) -> Tuple[FileOpStatus, FileReport]:
    report = FileReport()
    try:
        infile.seek(0)
    except OSError as e:
        logger.error("can't rewind %s: %s", file_path, str(e))
        return FileOpStatus.FILEOP_ERROR, report

    tmp_path = session.temp_path_for(file_path)
    status, outfile = open_temporary_file(tmp_path)
    if status is not FileOpStatus.CAN_CONTINUE:
        return status, report

    status = FileOpStatus.FILEOP_ERROR
    try:
        with outfile:
            report = convert_stream(
                ConversionParameters(
                    instream=infile,
                    outstream=outfile,
                    dst_convention=convention,
                    interrupt_if_non_text=not binaries,
                )
            )
            status = _conversion_outcome(report, file_path, binaries, "conversion")
            if status is FileOpStatus.CAN_CONTINUE:
                outfile.flush()
                os.fsync(outfile.fileno())
        if status is FileOpStatus.CAN_CONTINUE:
            status = move_temp_file_to_destination(tmp_path, file_path, statinfo)
    except OSError as e:
        logger.error("file access error during conversion of %s: %s", file_path, str(e))
        status = FileOpStatus.FILEOP_ERROR
    finally:
        if status is not FileOpStatus.DONE:
            _discard_temp_file(tmp_path)
    return status, report


def convert_one_file(
    file_path: str,
    statinfo: os.stat_result,
    convention: Convention,
    session: Session,
    binaries: bool = False,
    keepdate: bool = False,
) -> Tuple[FileOpStatus, FileReport]:
    """
    Rewrite file_path in place with the given line ending convention.

    statinfo is the result of stat() on file_path taken before the call; its
    permission bits are carried over to the rewritten file and, with keepdate,
    its access and modification times are restored afterwards.
    """
    # Replace the file a symbolic link points to, not the link itself
    target_path = file_path
    if os.path.islink(file_path):
        target_path = os.path.realpath(file_path)

    status, infile = _open_input_file(target_path)
    if infile is None:
        return status, FileReport()
    with infile:
        status, report = _pre_conversion_check(infile, file_path, convention, binaries)
        if status is FileOpStatus.CAN_CONTINUE:
            status, report = _rewrite_through_temp_file(
                infile, target_path, statinfo, convention, session, binaries
            )

    if status is FileOpStatus.DONE and keepdate:
        restore_file_times(target_path, statinfo)
    return status, report


def check_one_file(
    file_path: str, binaries: bool = False
) -> Tuple[FileOpStatus, FileReport]:
    """Inspect file_path without modifying it."""
    status, infile = _open_input_file(file_path)
    if infile is None:
        return status, FileReport()
    with infile:
        report = convert_stream(
            ConversionParameters(instream=infile, interrupt_if_non_text=not binaries)
        )
    status = _conversion_outcome(report, file_path, binaries, "check")
    if status is FileOpStatus.CAN_CONTINUE:
        status = FileOpStatus.DONE
    return status, report
