from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .dispatcher import EvalDispatcher
from .errors import EngineWriteError, EvalRejected, MalformedClientMessage, StagingWriteFailure
from .hub import BroadcastHub, ClientChannel
from .messages import PostMessage, StatusMessage, StopMessage, parse_client_message
from .staging import StagingStore
from .supervisor import EngineSupervisor

logger = logging.getLogger(__name__)


@dataclass
class Bridge:
    hub: BroadcastHub
    staging: StagingStore
    supervisor: EngineSupervisor
    dispatcher: EvalDispatcher

    def status(self) -> StatusMessage:
        return StatusMessage(connected=self.supervisor.booted)

    async def start(self) -> None:
        self.supervisor.start()

    async def stop(self) -> None:
        await self.supervisor.stop()
        self.staging.close()
        await self.hub.close()

    async def handle(self, channel: ClientChannel, raw: str | bytes) -> None:
        """Act on one inbound frame from ``channel``. Never raises for bad input."""
        try:
            msg = parse_client_message(raw)
        except MalformedClientMessage as e:
            logger.warning("bad message from %s: %s", channel.name, e)
            return

        if isinstance(msg, StopMessage):
            await self.dispatcher.interrupt()
            return

        try:
            await self.dispatcher.submit(msg.code, source=channel.name)
        except EvalRejected as e:
            # only the sender hears about it
            self.hub.send_private(channel, PostMessage(text=f"[bridge] {e}\n"))
        except (StagingWriteFailure, EngineWriteError) as e:
            logger.error("eval from %s failed: %s", channel.name, e)
            self.hub.send_private(channel, PostMessage(text=f"[bridge] eval failed: {e}\n"))


def build_bridge(
    *,
    command: Sequence[str] | str,
    startup_script: str,
    staging_dir: str,
    cwd: Optional[str] = None,
    staging_ttl: float = 15.0,
    restart_delay: float = 3.0,
    queue_size: int = 256,
    max_code_bytes: int = 200_000,
) -> Bridge:
    hub = BroadcastHub(queue_size=queue_size)
    staging = StagingStore(staging_dir, ttl=staging_ttl)
    supervisor = EngineSupervisor(
        hub,
        command=command,
        startup_script=startup_script,
        cwd=cwd,
        restart_delay=restart_delay,
    )
    dispatcher = EvalDispatcher(supervisor, staging, max_code_bytes=max_code_bytes)
    return Bridge(hub=hub, staging=staging, supervisor=supervisor, dispatcher=dispatcher)
