"""Removal of expired run directories."""

import logging
import shutil
import time
from pathlib import Path
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def expired_run_dirs(log_root: Path, days: int, now: Optional[float] = None) -> Iterable[Path]:
    """First level directories of ``log_root`` last modified more than ``days`` ago."""
    now = time.time() if now is None else now
    cutoff = now - days * SECONDS_PER_DAY
    for entry in sorted(Path(log_root).iterdir()):
        if entry.is_symlink() or not entry.is_dir():
            continue
        if entry.stat().st_mtime < cutoff:
            yield entry


def sweep_logs(log_root: Path, days: int, keep: Optional[Path] = None, now: Optional[float] = None) -> int:
    """Delete expired run directories and return how many were removed.

    The log root itself and ``keep`` are never removed. A directory that
    cannot be removed is reported and skipped.
    """
    log_root = Path(log_root)
    logger.info("Cleaning up logs older than %d days", days)
    if not log_root.is_dir():
        logger.info("No log directories older than %d days found.", days)
        return 0

    root = log_root.resolve()
    protected = {root, Path(keep).resolve()} if keep else {root}
    removed = 0
    for directory in expired_run_dirs(log_root, days, now):
        if directory.resolve() in protected or directory.resolve() == Path("/"):
            continue
        try:
            shutil.rmtree(directory)
        except OSError as e:
            logger.warning("cannot remove %s: %s", directory, e.strerror or e)
            continue
        removed += 1

    if removed:
        logger.info("%d log directories removed.", removed)
    else:
        logger.info("No log directories older than %d days found.", days)
    return removed
