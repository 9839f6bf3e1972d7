"""Raw byte splicing between a client and the backend."""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536


class Splice:
    """Forwards bytes both ways between two stream pairs.

    Takes exclusive ownership of both connections: once constructed, nothing
    else reads from or writes to either side. When one direction ends,
    through EOF or an error, both connections are closed.
    """

    def __init__(
        self,
        client_reader: asyncio.StreamReader,
        client_writer: asyncio.StreamWriter,
        backend_reader: asyncio.StreamReader,
        backend_writer: asyncio.StreamWriter,
    ) -> None:
        self.client_reader = client_reader
        self.client_writer = client_writer
        self.backend_reader = backend_reader
        self.backend_writer = backend_writer
        self.bytes_up = 0
        self.bytes_down = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def run(self) -> None:
        """Forward until either side closes, then tear both down."""
        pumps = [
            asyncio.create_task(self._pump(self.client_reader, self.backend_writer, up=True)),
            asyncio.create_task(self._pump(self.backend_reader, self.client_writer, up=False)),
        ]
        try:
            done, pending = await asyncio.wait(pumps, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.debug(f"Splice direction failed: {task.exception()!r}")
        finally:
            for task in pumps:
                task.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)
            await self.close()

        logger.debug(f"Splice closed ({self.bytes_up}B up, {self.bytes_down}B down)")

    async def close(self) -> None:
        """Close both connections. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        for writer in (self.client_writer, self.backend_writer):
            writer.close()
        await asyncio.gather(
            self.client_writer.wait_closed(),
            self.backend_writer.wait_closed(),
            return_exceptions=True,
        )

    async def _pump(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, up: bool
    ) -> None:
        while True:
            data = await reader.read(CHUNK_SIZE)
            if not data:
                return
            if up:
                self.bytes_up += len(data)
            else:
                self.bytes_down += len(data)
            writer.write(data)
            await writer.drain()
