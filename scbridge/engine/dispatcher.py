from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .errors import EngineWriteError, EvalRejected
from .sanitizer import INTERRUPT_DIRECTIVE
from .staging import StagingStore, next_artifact_id
from .supervisor import EngineSupervisor, load_directive

logger = logging.getLogger(__name__)

NOT_READY = "sclang not ready"
DEFAULT_MAX_CODE_BYTES = 200_000


@dataclass
class EvalRequest:
    code: str
    source: str = "?"
    id: str = field(default_factory=next_artifact_id)
    artifact: Optional[Path] = None
    created_at: float = field(default_factory=time.time)


class EvalDispatcher:
    """
    Deliver client code to sclang.

    Code is written to a staging file and sclang is told to load() it, so
    multi-line blocks never have to travel through the REPL line reader.
    There is no correlation between a request and the output it produces:
    results show up in order on the shared transcript like any other post.
    """

    def __init__(
        self,
        supervisor: EngineSupervisor,
        staging: StagingStore,
        max_code_bytes: int = DEFAULT_MAX_CODE_BYTES,
    ):
        self.supervisor = supervisor
        self.staging = staging
        self.max_code_bytes = max_code_bytes

    async def submit(self, code: str, source: str = "?") -> EvalRequest:
        if not self.supervisor.booted:
            raise EvalRejected(NOT_READY)
        if len(code.encode("utf-8", "ignore")) > self.max_code_bytes:
            raise EvalRejected(f"code too large (>{self.max_code_bytes} bytes)")

        req = EvalRequest(code=code, source=source)
        # StagingWriteFailure propagates before any directive is sent
        req.artifact = self.staging.write(req.id, code)
        directive = load_directive(req.artifact)
        logger.info("eval %s from %s -> %s", req.id, source, directive.strip())
        try:
            await self.supervisor.write_line(directive)
        except EngineWriteError:
            self.staging.discard(req.artifact)
            raise
        # fire-and-forget: not synchronized with sclang actually reading the file
        self.staging.schedule_removal(req.artifact)
        return req

    async def interrupt(self) -> bool:
        """Send CmdPeriod.run when booted. Otherwise ignored, no error."""
        if not self.supervisor.booted:
            return False
        try:
            await self.supervisor.write_line(INTERRUPT_DIRECTIVE)
        except EngineWriteError as e:
            logger.warning("stop not delivered: %s", e)
            return False
        logger.info("stop sent")
        return True
