"""
Expansion of command line paths into the files to process.
"""

import logging
import os
import stat
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple

logger = logging.getLogger("eolconv")

WALKERS_MAX_PATH_LENGTH: int = 4096


@dataclass
class WalkTracker:
    """Walk settings, the per-file callback, and what the walk skipped."""

    process_file: Callable[[str, os.stat_result], object]
    recurse: bool = False
    skip_hidden: bool = True
    skipped_directories_count: int = 0
    skipped_hidden_files_count: int = 0
    read_errors_count: int = 0


def _stat_path(path: str, tracker: WalkTracker) -> Optional[os.stat_result]:
    if len(os.fsencode(path)) > WALKERS_MAX_PATH_LENGTH:
        logger.error("path too long: %s", path)
        tracker.read_errors_count += 1
        return None
    try:
        return os.stat(path)
    except OSError as e:
        logger.error("can't stat %s: %s", path, str(e))
        tracker.read_errors_count += 1
        return None


def _list_directory(dir_path: str, tracker: WalkTracker) -> List[str]:
    try:
        with os.scandir(dir_path) as entries:
            names: List[str] = [entry.name for entry in entries]
    except OSError as e:
        logger.error("can't open directory %s: %s", dir_path, str(e))
        tracker.read_errors_count += 1
        return []

    children: List[str] = []
    for name in names:
        if tracker.skip_hidden and name.startswith("."):
            logger.debug("skipped hidden %s", os.path.join(dir_path, name))
            tracker.skipped_hidden_files_count += 1
            continue
        children.append(os.path.join(dir_path, name))
    return children


def _walk_one_argument(path: str, tracker: WalkTracker) -> None:
    # Depth-first, with entries visited in the order the directory lists them
    pending: List[Tuple[str, bool]] = [(path, True)]
    while pending:
        current, given_on_command_line = pending.pop()
        statinfo = _stat_path(current, tracker)
        if statinfo is None:
            continue

        if stat.S_ISREG(statinfo.st_mode):
            tracker.process_file(current, statinfo)
        elif stat.S_ISDIR(statinfo.st_mode):
            if not tracker.recurse:
                logger.debug("skipped directory %s", current)
                tracker.skipped_directories_count += 1
            elif not given_on_command_line and os.path.islink(current):
                logger.debug("not following link to directory %s", current)
                tracker.skipped_directories_count += 1
            else:
                children = _list_directory(current, tracker)
                pending.extend((child, False) for child in reversed(children))
        else:
            logger.debug("skipped special file %s", current)


def walk_filenames(filenames: Iterable[str], tracker: WalkTracker) -> None:
    """
    Feed every regular file reachable from filenames to tracker.process_file.

    Directories are entered only when tracker.recurse is set. Links to
    directories found while recursing are not followed.
    """
    for filename in filenames:
        _walk_one_argument(filename, tracker)
