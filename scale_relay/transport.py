import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Tuple, Union

from websockets.exceptions import ConnectionClosed

from .protocol import encode

logger = logging.getLogger(__name__)

OUTBOUND_QUEUE_SIZE = 256


class Transport(Protocol):
    """What the relay core needs from a connection."""

    @property
    def is_open(self) -> bool: ...

    def send(self, payload: Dict[str, Any]) -> bool: ...

    def close(self, code: int, reason: str) -> None: ...


class _CloseFrame:
    __slots__ = ("code", "reason")

    def __init__(self, code: int, reason: str):
        self.code = code
        self.reason = reason


class WebSocketTransport:
    """Fire-and-forget wrapper around a websockets connection.

    Outbound frames go through a bounded queue drained by one writer task, so
    a status reply queued before ``close`` is written before the close frame.
    ``send`` and ``close`` never block and never raise.
    """

    def __init__(self, ws, queue_size: int = OUTBOUND_QUEUE_SIZE):
        self.ws = ws
        self.remote = _format_remote(getattr(ws, "remote_address", None))
        self.alive = True
        self.close_code: Optional[int] = None
        self._queue: "asyncio.Queue[Union[str, _CloseFrame]]" = asyncio.Queue(maxsize=queue_size)
        self._writer_task: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return self.alive

    def start(self):
        if self._writer_task is None:
            self._writer_task = asyncio.create_task(self._writer())

    def send(self, payload: Dict[str, Any]) -> bool:
        if not self.alive:
            return False
        try:
            self._queue.put_nowait(encode(payload))
        except asyncio.QueueFull:
            logger.warning("Outbound queue full for %s; dropping frame", self.remote)
            return False
        return True

    def close(self, code: int, reason: str):
        if not self.alive:
            return
        self.alive = False
        self.close_code = code
        frame = _CloseFrame(code, reason)
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            # Pending frames are lost; the close itself must go out
            self._drain()
            self._queue.put_nowait(frame)

    def mark_closed(self):
        """Called once the peer side is gone; stops the writer.

        A writer with a queued close frame is left to finish on its own: the
        close either completes or fails fast on the dead connection.
        """
        self.alive = False
        if self.close_code is not None:
            return
        if self._writer_task and not self._writer_task.done():
            self._writer_task.cancel()

    async def wait_flushed(self):
        if self._writer_task:
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass

    def _drain(self):
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return

    async def _writer(self):
        try:
            while True:
                item = await self._queue.get()
                if isinstance(item, _CloseFrame):
                    await self.ws.close(item.code, item.reason)
                    return
                await self.ws.send(item)
        except ConnectionClosed:
            logger.debug("Writer for %s stopped: connection closed", self.remote)
        except OSError as e:
            logger.warning("Failed to send to %s: %s", self.remote, e)
        finally:
            self.alive = False


def _format_remote(addr: Optional[Tuple[Any, ...]]) -> str:
    if not addr:
        return "?"
    try:
        return f"{addr[0]}:{addr[1]}"
    except (IndexError, TypeError):
        return str(addr)
