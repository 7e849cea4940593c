"""Building the list of backup targets."""

import logging
import os
import random
import re
from typing import Iterable, List, MutableSequence, Optional, Tuple

import psutil

from .errors import EnumerationError
from .models import Config, Target

logger = logging.getLogger(__name__)

RANDOM_RANGE = 32768  # 15-bit draws


def mounted_filesystems() -> List[str]:
    """Mount points of the mounted filesystems."""
    return [part.mountpoint for part in psutil.disk_partitions(all=False)]


def enumerate_flat(mounts: Iterable[str], include: str = ".", exclude: Optional[str] = None) -> List[Target]:
    """Targets for every mount point matching ``include`` and not ``exclude``."""
    incl = re.compile(include)
    excl = re.compile(exclude) if exclude else None
    targets = []
    for mount in mounts:
        if not incl.search(mount):
            continue
        if excl is not None and excl.search(mount):
            continue
        targets.append(Target(path=mount))
    return targets


def _child_directories(parent: str) -> List[str]:
    try:
        with os.scandir(parent) as entries:
            return sorted(
                entry.path for entry in entries
                if entry.is_dir(follow_symlinks=False)
            )
    except OSError as e:
        logger.warning("cannot scan %s: %s", parent, e.strerror)
        return []


def enumerate_largefs(parents: Iterable[str]) -> Tuple[List[Target], List[Target]]:
    """Split each parent directory into itself plus its immediate children.

    The parent is returned as an exempt target backed up without recursion;
    each child directory becomes a queued target backed up recursively.
    """
    exempt, queued = [], []
    for parent in parents:
        parent = parent.rstrip("/") or "/"
        exempt.append(Target(path=parent, recurse=False))
        queued.extend(Target(path=child) for child in _child_directories(parent))
    return exempt, queued


def shuffle(items: MutableSequence, rng: Optional[random.Random] = None) -> None:
    """Fisher-Yates shuffle in place.

    Draws at or above the largest multiple of ``i + 1`` that fits in the
    random range are rejected before reducing, so every position is equally
    likely.
    """
    rng = rng or random.SystemRandom()
    for i in range(len(items) - 1, 0, -1):
        limit = RANDOM_RANGE // (i + 1) * (i + 1)
        draw = rng.getrandbits(15)
        while draw >= limit:
            draw = rng.getrandbits(15)
        j = draw % (i + 1)
        items[i], items[j] = items[j], items[i]


class JobQueue:
    """Enumerates, shuffles and numbers the targets of a run."""

    def __init__(self, config: Config, rng: Optional[random.Random] = None,
                 mounts: Optional[Iterable[str]] = None):
        self.config = config
        self.rng = rng
        self.mounts = mounts

    def build(self) -> Tuple[List[Target], List[Target]]:
        """Return ``(exempt, queued)`` targets with their job indexes set."""
        if self.config.largefs_mode:
            exempt, queued = enumerate_largefs(self.config.largefs)
        else:
            mounts = self.mounts if self.mounts is not None else mounted_filesystems()
            exempt = []
            queued = enumerate_flat(mounts, self.config.inclregx, self.config.exclregx)

        if not exempt and not queued:
            raise EnumerationError("cannot find any eligible filesystems for backup")

        shuffle(queued, self.rng)
        numbered = [
            target.model_copy(update={"index": i})
            for i, target in enumerate(exempt + queued, start=1)
        ]
        return numbered[:len(exempt)], numbered[len(exempt):]
