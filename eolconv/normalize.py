"""
eolconv

Command line front end: converts files (or standard input) to a line ending
convention, or checks which convention they follow, and reports totals.
"""

import argparse
import logging
import os
import sys
from collections import Counter
from dataclasses import dataclass, field
from typing import List, NoReturn, Optional, Tuple

from tqdm import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from . import __version__
from .engine import (
    ConversionParameters,
    Convention,
    FileReport,
    convert_stream,
    get_source_convention,
)
from .file_operations import (
    FileOpStatus,
    Session,
    check_one_file,
    convert_one_file,
    has_known_binary_file_extension,
)
from .walkers import WalkTracker, walk_filenames

PROG: str = "eolconv"

EXIT_HELP_OR_VERSION: int = 1
EXIT_UNKNOWN_OPTION: int = 4
EXIT_UNKNOWN_ACTION: int = 8

CONSOLE_FORMAT: str = "%(name)s : %(message)s"
LOG_FILE_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

ACTION_NAMES = {
    "check": Convention.NONE,
    "lf": Convention.LF,
    "unix": Convention.LF,
    "linux": Convention.LF,
    "osx": Convention.LF,
    "crlf": Convention.CRLF,
    "windows": Convention.CRLF,
    "win": Convention.CRLF,
    "dos": Convention.CRLF,
    "cr": Convention.CR,
    "oldmac": Convention.CR,
}

VERSION_TEXT: str = f"\n   * {PROG} version {__version__}\n\n"

logger = logging.getLogger("eolconv")
# Handlers installed by setup_logging, replaced on each call
_handlers: List[logging.Handler] = []


@dataclass
class CommandLine:
    convention: Convention
    quiet: bool = False
    verbose: bool = False
    binaries: bool = False
    keepdate: bool = False
    recurse: bool = False
    process_hidden: bool = False
    filenames: List[str] = field(default_factory=list)
    log_file: Optional[str] = None


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        self.exit(EXIT_UNKNOWN_OPTION, f"{self.prog} : {message}\n")


class _HelpAction(argparse.Action):
    def __init__(  # pylint: disable=redefined-builtin
        self, option_strings, dest=argparse.SUPPRESS, help=None
    ):
        super().__init__(option_strings, dest=dest, nargs=0, help=help)

    def __call__(self, parser, namespace, values, option_string=None):
        parser.print_help(sys.stderr)
        parser.exit(EXIT_HELP_OR_VERSION)


class _VersionAction(argparse.Action):
    def __init__(  # pylint: disable=redefined-builtin
        self, option_strings, dest=argparse.SUPPRESS, help=None
    ):
        super().__init__(option_strings, dest=dest, nargs=0, help=help)

    def __call__(self, parser, namespace, values, option_string=None):
        parser.exit(EXIT_HELP_OR_VERSION, VERSION_TEXT)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog=PROG,
        usage=f"{PROG} ACTION [OPTIONS] [FILES]",
        description=(
            "Convert line endings of text files, or check which convention "
            "they follow.\nIf no files are specified, converts from stdin to "
            "stdout.\nSupports UTF-8, UTF-16 with BOM, and all major single "
            "byte codesets."
        ),
        epilog=(
            "ACTION can be :\n"
            "  lf, unix, linux, osx    : convert all endings to LF.\n"
            "  crlf, windows, win, dos : convert all endings to CR-LF.\n"
            "  cr, oldmac              : convert all endings to CR.\n"
            "  check                   : perform a dry run to check current\n"
            "                            conventions.\n\n"
            "Examples:\n"
            f"  {PROG} check *.txt\n"
            f"  {PROG} linux -k -r aFolder anotherFolder"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
        allow_abbrev=False,
    )
    parser.add_argument("action", metavar="ACTION", help="what to do, see below")
    parser.add_argument(
        "filenames", metavar="FILES", nargs="*", help="files or directories to process"
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="silence all but the error messages",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="print more about what's going on"
    )
    parser.add_argument(
        "-b", "--binaries", action="store_true", help="don't skip binary files"
    )
    parser.add_argument(
        "-h",
        "--hidden",
        dest="process_hidden",
        action="store_true",
        help="process hidden files (/directories) too",
    )
    parser.add_argument(
        "-k",
        "--keepdate",
        action="store_true",
        help="keep last modified and last access times",
    )
    parser.add_argument(
        "-r", "--recurse", action="store_true", help="recurse into directories"
    )
    parser.add_argument(
        "--log-file",
        metavar="PATH",
        default=None,
        help="also append log messages to this file",
    )
    parser.add_argument("--help", action=_HelpAction, help="show this help and exit")
    parser.add_argument(
        "--version", action=_VersionAction, help="print version and exit"
    )
    return parser


def parse_cmd_line_args(argv: Optional[List[str]] = None) -> CommandLine:
    """Parse the command line. Exits the process on bad usage, help or version."""
    if argv is None:
        argv = sys.argv[1:]
    parser = build_parser()
    if not argv:
        parser.print_help(sys.stderr)
        parser.exit(EXIT_HELP_OR_VERSION)

    # The first argument is always the ACTION, even when it looks like an option
    action = argv[0]
    if action not in ACTION_NAMES and action not in ("--help", "--version"):
        parser.exit(EXIT_UNKNOWN_ACTION, f"{PROG} : unknown action : {action}\n")

    args = parser.parse_intermixed_args(argv)
    convention = ACTION_NAMES[args.action]

    return CommandLine(
        convention=convention,
        quiet=args.quiet,
        verbose=args.verbose,
        binaries=args.binaries,
        keepdate=args.keepdate,
        recurse=args.recurse,
        process_hidden=args.process_hidden,
        filenames=list(args.filenames),
        log_file=args.log_file,
    )


def setup_logging(quiet: bool, verbose: bool, log_file: Optional[str] = None) -> None:
    """Route the eolconv logger to stderr, and to log_file when given."""
    while _handlers:
        handler = _handlers.pop()
        logger.removeHandler(handler)
        handler.close()

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    handlers[0].setFormatter(logging.Formatter(CONSOLE_FORMAT))
    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setFormatter(logging.Formatter(LOG_FILE_FORMAT))
        handlers.append(file_handler)
    for handler in handlers:
        logger.addHandler(handler)
        _handlers.append(handler)
    logger.propagate = False

    if quiet:
        logger.setLevel(logging.WARNING)
    elif verbose:
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


class Accumulator:
    """Outcome and source convention totals for one run."""

    def __init__(
        self, cmd_line_args: CommandLine, session: Optional[Session] = None
    ) -> None:
        self.cmd_line_args = cmd_line_args
        self.session = session if session is not None else Session()
        self.outcome_totals: Counter = Counter()
        self.convention_totals: Counter = Counter()
        self.progress: Optional[tqdm] = None

    def process_file(
        self, file_path: str, statinfo: os.stat_result
    ) -> FileOpStatus:
        args = self.cmd_line_args
        report = FileReport()
        if not args.binaries and has_known_binary_file_extension(file_path):
            outcome = FileOpStatus.SKIPPED_BINARY
        elif args.convention is Convention.NONE:
            outcome, report = check_one_file(file_path, binaries=args.binaries)
        else:
            outcome, report = convert_one_file(
                file_path,
                statinfo,
                args.convention,
                self.session,
                binaries=args.binaries,
                keepdate=args.keepdate,
            )

        source_convention = get_source_convention(report)
        self.outcome_totals[outcome] += 1
        if outcome is FileOpStatus.DONE:
            self.convention_totals[source_convention] += 1
            logger.debug("%s -- %s", source_convention.short_name, file_path)
        elif outcome is FileOpStatus.SKIPPED_BINARY:
            logger.debug("skipped probable binary %s", file_path)

        if self.progress is not None:
            self.progress.update(1)
        return outcome


def print_outcome_totals(accumulator: Accumulator, tracker: WalkTracker) -> None:
    dry_run = accumulator.cmd_line_args.convention is Convention.NONE
    done = accumulator.outcome_totals[FileOpStatus.DONE]
    headline = (
        f"{done} {_plural(done, 'file', 'files')} "
        f"{'checked' if dry_run else 'converted'}"
    )

    if done:
        logger.info("%s%s :", headline, "; found" if dry_run else " from")
        for convention in Convention:
            count = accumulator.convention_totals[convention]
            if count:
                logger.info("  - %d %s", count, convention.display_name)
    else:
        logger.info("%s", headline)

    binaries = accumulator.outcome_totals[FileOpStatus.SKIPPED_BINARY]
    errors = (
        accumulator.outcome_totals[FileOpStatus.FILEOP_ERROR]
        + tracker.read_errors_count
    )
    skipped = (
        (tracker.skipped_directories_count, "directory", "directories"),
        (binaries, "binary", "binaries"),
        (tracker.skipped_hidden_files_count, "hidden file", "hidden files"),
    )
    for count, singular, plural in skipped:
        if count:
            logger.info("%d %s skipped", count, _plural(count, singular, plural))
    if errors:
        logger.info("%d %s", errors, _plural(errors, "error", "errors"))


def convert_files(cmd_line_args: CommandLine) -> Tuple[Accumulator, WalkTracker]:
    """Convert or check every file reachable from the command line paths."""
    if cmd_line_args.convention is Convention.NONE:
        logger.info("dry run, scanning files")
    else:
        logger.info("converting files to %s", cmd_line_args.convention.display_name)

    accumulator = Accumulator(cmd_line_args)
    tracker = WalkTracker(
        process_file=accumulator.process_file,
        recurse=cmd_line_args.recurse,
        skip_hidden=not cmd_line_args.process_hidden,
    )

    with logging_redirect_tqdm(loggers=[logger]):
        with tqdm(
            desc="Processing files",
            unit="file",
            leave=False,
            disable=True if cmd_line_args.quiet else None,
        ) as pbar:
            accumulator.progress = pbar
            walk_filenames(cmd_line_args.filenames, tracker)
        accumulator.progress = None

    print_outcome_totals(accumulator, tracker)
    return accumulator, tracker


def convert_standard_input(cmd_line_args: CommandLine) -> FileReport:
    """Convert stdin to stdout, or only inspect stdin in check mode."""
    dry_run = cmd_line_args.convention is Convention.NONE
    if dry_run:
        logger.info("dry run, scanning standard input")
    else:
        logger.info(
            "converting standard input to %s", cmd_line_args.convention.display_name
        )

    outstream = None if dry_run else sys.stdout.buffer
    report = convert_stream(
        ConversionParameters(
            instream=sys.stdin.buffer,
            outstream=outstream,
            dst_convention=cmd_line_args.convention,
        )
    )
    if outstream is not None and not report.error_during_conversion:
        try:
            outstream.flush()
        except OSError as e:
            logger.debug("Flushing standard output failed: %s", str(e))
            report.error_during_conversion = True

    if report.error_during_conversion:
        logger.error("file access error while processing standard input")
    elif dry_run:
        logger.info(
            "standard input : %s", get_source_convention(report).display_name
        )
    return report


def main(argv: Optional[List[str]] = None) -> int:
    cmd_line_args = parse_cmd_line_args(argv)
    try:
        setup_logging(
            cmd_line_args.quiet, cmd_line_args.verbose, cmd_line_args.log_file
        )
    except OSError as e:
        logger.error("can't open log file %s: %s", cmd_line_args.log_file, str(e))
        return 1

    try:
        if cmd_line_args.filenames:
            convert_files(cmd_line_args)
        else:
            convert_standard_input(cmd_line_args)
        return 0
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user.")
        return 130

