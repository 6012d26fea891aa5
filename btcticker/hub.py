"""Fan-out of messages to every registered websocket connection."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Protocol, Set, Tuple, Union

import aiohttp

logger = logging.getLogger(__name__)

SHARD_COUNT = 32


class Connection(Protocol):
    async def send_str(self, data: str) -> None: ...


class Hub:
    """Keeps websocket connections in shards and broadcasts text messages to them.

    :meth:`broadcast` hands a message over to the :meth:`run` loop, which writes
    it to every connection. A connection that fails to receive it is dropped.
    """

    def __init__(self) -> None:
        self._shards: Tuple[Set[Connection], ...] = tuple(set() for _ in range(SHARD_COUNT))
        self._queue: "asyncio.Queue[bytes]" = asyncio.Queue(maxsize=1)

    def _shard_for(self, conn: Connection) -> Set[Connection]:
        return self._shards[id(conn) % SHARD_COUNT]

    def register(self, conn: Connection) -> None:
        """Add ``conn`` to the set of recipients."""
        self._shard_for(conn).add(conn)

    def unregister(self, conn: Connection) -> None:
        """Remove ``conn``; unknown connections are ignored."""
        self._shard_for(conn).discard(conn)

    def __len__(self) -> int:
        return sum(len(shard) for shard in self._shards)

    async def broadcast(self, message: Union[bytes, str]) -> None:
        """Queue ``message`` for delivery to every registered connection."""
        if isinstance(message, str):
            message = message.encode()
        await self._queue.put(message)

    async def run(self) -> None:
        """Deliver queued messages until the task is cancelled."""
        while True:
            message = await self._queue.get()
            try:
                await self._broadcast_msg(message)
            finally:
                self._queue.task_done()

    async def _broadcast_msg(self, message: bytes) -> None:
        text = message.decode()
        await asyncio.gather(*(self._process_shard(shard, text) for shard in self._shards))

    async def _process_shard(self, shard: Set[Connection], text: str) -> None:
        recipients: List[Connection] = list(shard)
        for conn in recipients:
            try:
                await conn.send_str(text)
            except (OSError, RuntimeError, aiohttp.ClientError) as exc:
                logger.debug("dropping connection after failed write: %s", exc)
                self.unregister(conn)