from __future__ import annotations

import asyncio
import itertools
import logging
import os
import time
from pathlib import Path
from typing import Dict, Optional

from .errors import StagingWriteFailure

logger = logging.getLogger(__name__)

ARTIFACT_PREFIX = "sc_eval_"
ARTIFACT_SUFFIX = ".scd"
DEFAULT_TTL = 15.0

_counter = itertools.count()


def next_artifact_id() -> str:
    """
    Unique id for one eval: epoch millis, pid and a process-wide counter.
    Two requests within the same millisecond still differ by counter, and two
    bridge processes sharing a staging dir differ by pid.
    """
    return f"{time.time_ns() // 1_000_000}_{os.getpid()}_{next(_counter)}"


def wrap_block(code: str) -> str:
    # sclang evaluates a parenthesised region as one block
    return f"(\n{code.rstrip()}\n)\n"


class StagingStore:
    """
    Scratch area for code waiting to be loaded by sclang.

    Every artifact is created exclusively (never overwritten) and removed
    exactly once: either by its TTL timer, by discard(), or by close().
    """

    def __init__(self, directory: str | os.PathLike, ttl: float = DEFAULT_TTL):
        self.directory = Path(directory).resolve()
        self.ttl = ttl
        self._timers: Dict[Path, asyncio.TimerHandle] = {}

    def path_for(self, artifact_id: str) -> Path:
        return self.directory / f"{ARTIFACT_PREFIX}{artifact_id}{ARTIFACT_SUFFIX}"

    def write(self, artifact_id: str, code: str) -> Path:
        path = self.path_for(artifact_id)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            # "x": fail instead of clobbering an artifact another eval owns
            with open(path, "x", encoding="utf-8") as fp:
                fp.write(wrap_block(code))
        except OSError as e:
            # drop a partial file if the write itself failed
            if not isinstance(e, FileExistsError):
                self.remove(path)
            raise StagingWriteFailure(f"could not write {path}: {e}") from e
        return path

    def remove(self, path: Path) -> bool:
        """Delete ``path`` if it still exists. Returns False on a repeated delete."""
        timer = self._timers.pop(path, None)
        if timer is not None:
            timer.cancel()
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("could not remove staging artifact %s: %s", path, e)
            return False
        return True

    def schedule_removal(self, path: Path, ttl: Optional[float] = None) -> None:
        loop = asyncio.get_running_loop()
        delay = self.ttl if ttl is None else ttl
        old = self._timers.pop(path, None)
        if old is not None:
            old.cancel()
        self._timers[path] = loop.call_later(delay, self.remove, path)

    def discard(self, path: Path) -> bool:
        """Remove now instead of waiting for the TTL."""
        return self.remove(path)

    @property
    def pending(self) -> list[Path]:
        return list(self._timers)

    def close(self) -> None:
        for path in list(self._timers):
            self.remove(path)
