"""Per-PR run lock.

Two reviews of the same PR must not interleave: both would read the same
previous run and append competing successors. Reviews of different PRs take
different locks and never wait on each other.

The lock is a file created with O_CREAT | O_EXCL, which is atomic on local
filesystems, so it also holds across processes (e.g. parallel CI jobs sharing
a workspace). The file holds the owner's PID. A lock left behind by a
process that no longer exists (killed CI job, OOM) is taken over instead of
waited on.
"""

from __future__ import annotations

import logging
import os
import re
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.2
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class ReviewInProgressError(RuntimeError):
    """Another run holds the lock for this PR and did not release it in time."""

    def __init__(self, repo: str, pr_number: int, lock_path: Path):
        super().__init__(f"another review of {repo}#{pr_number} is in progress (lock file: {lock_path})")
        self.repo = repo
        self.pr_number = pr_number
        self.lock_path = lock_path


def _holder_is_gone(path: Path) -> bool:
    """True when the PID recorded in the lock file names no running process."""
    if os.name != "posix":
        # Signal 0 terminates the target on Windows rather than probing it.
        return False
    try:
        pid = int(path.read_text().strip())
    except FileNotFoundError:
        return True
    except (OSError, ValueError):
        # Empty while the holder is still writing its PID.
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    except PermissionError:
        return False
    return False


def lock_path_for(lock_dir: str | Path, repo: str, pr_number: int) -> Path:
    return Path(lock_dir) / f"{_UNSAFE_CHARS.sub('_', repo)}-{pr_number}.lock"


@contextmanager
def pr_lock(lock_dir: str | Path, repo: str, pr_number: int, timeout: float = 30.0) -> Iterator[Path]:
    """Hold the exclusive lock for (repo, pr_number) for the duration of the block.

    Waits up to ``timeout`` seconds for a concurrent holder, then raises
    ReviewInProgressError. A timeout of 0 fails immediately when the lock is taken.
    """
    path = lock_path_for(lock_dir, repo, pr_number)
    path.parent.mkdir(parents=True, exist_ok=True)
    deadline = time.monotonic() + timeout

    while True:
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            break
        except FileExistsError:
            if _holder_is_gone(path):
                try:
                    path.unlink()
                except FileNotFoundError:
                    continue
                logger.warning("Took over stale lock %s", path)
                continue
            if time.monotonic() >= deadline:
                raise ReviewInProgressError(repo, pr_number, path) from None
            logger.debug("Waiting for lock %s", path)
            time.sleep(_POLL_INTERVAL)

    try:
        os.write(fd, str(os.getpid()).encode())
    finally:
        os.close(fd)

    logger.debug("Acquired lock %s", path)
    try:
        yield path
    finally:
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("Lock file %s disappeared before release", path)
