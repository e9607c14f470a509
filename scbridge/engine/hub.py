from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

from .errors import BroadcastDeliveryFailure
from .messages import OutputMessage

logger = logging.getLogger(__name__)

SendFn = Callable[[dict], Awaitable[Any]]

DEFAULT_QUEUE_SIZE = 256


class ClientChannel:
    """
    One connected viewer: a bounded outbox drained by its own writer task.

    offer() never blocks. When the outbox is full the oldest queued message is
    dropped, so a stalled socket only ever loses its own backlog.
    """

    def __init__(self, send: SendFn, name: str = "client", maxsize: int = DEFAULT_QUEUE_SIZE):
        self.name = name
        self._send = send
        self._queue: asyncio.Queue[dict] = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None
        self.dropped = 0
        self.closed = False

    def offer(self, payload: dict) -> None:
        if self.closed:
            return
        while True:
            try:
                self._queue.put_nowait(payload)
                return
            except asyncio.QueueFull:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except asyncio.QueueEmpty:
                    pass

    @property
    def backlog(self) -> int:
        return self._queue.qsize()

    def start(self, on_failure: Callable[["ClientChannel"], None]) -> None:
        self._task = asyncio.create_task(self._pump(on_failure), name=f"ws-writer:{self.name}")

    async def _pump(self, on_failure: Callable[["ClientChannel"], None]) -> None:
        while True:
            payload = await self._queue.get()
            try:
                await self._send(payload)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                failure = BroadcastDeliveryFailure(f"{self.name}: {e!r}")
                logger.info("dropping client after failed send: %s", failure)
                self.closed = True
                on_failure(self)
                return

    async def aclose(self) -> None:
        self.closed = True
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


class BroadcastHub:
    """Fan engine output and status changes out to every connected client."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._clients: Set[ClientChannel] = set()

    def __len__(self) -> int:
        return len(self._clients)

    @property
    def clients(self) -> frozenset[ClientChannel]:
        return frozenset(self._clients)

    def connect(self, send: SendFn, name: str, initial: OutputMessage) -> ClientChannel:
        """
        Register a client. ``initial`` is queued before the channel joins the
        set, so it is always the first message the client sees.
        """
        channel = ClientChannel(send, name=name, maxsize=self.queue_size)
        channel.offer(initial.model_dump())
        self._clients.add(channel)
        channel.start(self._on_failure)
        logger.info("client connected: %s (%d total)", name, len(self._clients))
        return channel

    async def disconnect(self, channel: ClientChannel) -> None:
        if channel in self._clients:
            self._clients.discard(channel)
            logger.info("client disconnected: %s (%d total)", channel.name, len(self._clients))
        await channel.aclose()

    def _on_failure(self, channel: ClientChannel) -> None:
        self._clients.discard(channel)

    def broadcast(self, message: OutputMessage) -> None:
        payload = message.model_dump()
        for channel in tuple(self._clients):
            channel.offer(payload)

    def send_private(self, channel: ClientChannel, message: OutputMessage) -> None:
        channel.offer(message.model_dump())

    async def close(self) -> None:
        channels = tuple(self._clients)
        self._clients.clear()
        for channel in channels:
            await channel.aclose()
