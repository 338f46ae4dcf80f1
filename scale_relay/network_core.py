import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from .broadcaster import Broadcaster
from .protocol import (
    DISCONNECT_BRIDGE,
    DISCONNECT_CLIENT,
    REGISTER_BRIDGE,
    REGISTER_CLIENT,
    WEIGHT,
    ActionRecord,
    parse_action,
)
from .reaper import IDLE_TIMEOUT, SWEEP_INTERVAL, Reaper
from .registration import RegistrationEngine
from .registry import Session, SessionRegistry
from .transport import WebSocketTransport

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 15
HEARTBEAT_TIMEOUT = 45
STATUS_INTERVAL = 60


@dataclass
class RelayConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    idle_timeout: float = IDLE_TIMEOUT
    sweep_interval: float = SWEEP_INTERVAL
    status_interval: float = STATUS_INTERVAL
    ping_interval: Optional[float] = HEARTBEAT_INTERVAL
    ping_timeout: Optional[float] = HEARTBEAT_TIMEOUT
    echo_to_sender: bool = True
    clear_weight_on_prune: bool = False


class RelayCore:
    def __init__(self, config: Optional[RelayConfig] = None):
        self.config = config or RelayConfig()
        self.registry = SessionRegistry(clear_weight_on_prune=self.config.clear_weight_on_prune)
        self.engine = RegistrationEngine(self.registry)
        self.broadcaster = Broadcaster(self.registry, echo_to_sender=self.config.echo_to_sender)
        self.reaper = Reaper(
            self.registry,
            idle_timeout=self.config.idle_timeout,
            sweep_interval=self.config.sweep_interval,
        )

        # websocket -> Session, for every open connection
        self.sessions: Dict[Any, Session] = {}

        self._reaper_task: Optional[asyncio.Task] = None
        self._status_task: Optional[asyncio.Task] = None

    async def handler(self, ws, path: Optional[str] = None):
        transport = WebSocketTransport(ws)
        transport.start()
        session = Session(transport, remote=transport.remote)
        self.sessions[ws] = session
        logger.info("WS connected from %s", session.remote)
        try:
            await self.receive_loop(session, ws)
        finally:
            transport.mark_closed()
            self.cleanup_connection(ws, session)

    async def receive_loop(self, session: Session, ws):
        try:
            async for raw in ws:
                record = parse_action(raw)
                if record is None:
                    logger.debug("Ignoring frame from %s", session.remote)
                    continue
                try:
                    self.handle_action(session, record)
                except Exception:
                    logger.exception("Error handling %s from %s", record.action, session.remote)
        except ConnectionClosed as e:
            logger.debug("Connection from %s closed: %s", session.remote, e)

    def handle_action(self, session: Session, record: ActionRecord):
        # Frames still arriving during a server-initiated close are dropped
        if not session.is_open:
            logger.debug("Dropping %s from closing session %s", record.action, session.remote)
            return
        session.touch()
        action = record.action
        if action == REGISTER_BRIDGE:
            self.engine.register_bridge(session, record.scale_id, record.device_id)
        elif action == DISCONNECT_BRIDGE:
            self.engine.disconnect_bridge(session, record.scale_id)
        elif action == REGISTER_CLIENT:
            self.engine.register_client(session, record.scale_id, record.device_id)
        elif action == DISCONNECT_CLIENT:
            self.engine.disconnect_client(session, record.scale_id)
        elif action == WEIGHT:
            self.broadcaster.weight(record.scale_id, record.weight, sender=session)

    def cleanup_connection(self, ws, session: Session):
        with self.registry.lock:
            self.registry.discard(session)
            self.sessions.pop(ws, None)
        logger.info(
            "WS disconnected from %s (%s, scale=%s)",
            session.remote, session.role.value, session.scale_id,
        )

    def list_status(self) -> Dict[str, Any]:
        with self.registry.lock:
            return {
                "connections": len(self.sessions),
                "scales": self.registry.snapshot(),
            }

    async def status_loop(self):
        while True:
            await asyncio.sleep(self.config.status_interval)
            st = self.list_status()
            logger.info("Connections: %s", st["connections"])
            logger.info("Scales: %s", st["scales"])

    def start_background(self):
        self._reaper_task = asyncio.create_task(self.reaper.run())
        if self.config.status_interval and self.config.status_interval > 0:
            self._status_task = asyncio.create_task(self.status_loop())

    async def stop_background(self):
        for task in (self._reaper_task, self._status_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._reaper_task = None
        self._status_task = None


async def main_loop(config: RelayConfig, stop: Optional[asyncio.Event] = None):
    core = RelayCore(config)

    async with websockets.serve(
        core.handler,
        config.host,
        config.port,
        ping_interval=config.ping_interval,
        ping_timeout=config.ping_timeout,
    ):
        logger.info("WS server running at ws://%s:%s", config.host, config.port)
        core.start_background()
        try:
            await (stop or asyncio.Event()).wait()
        finally:
            await core.stop_background()
            logger.info("Shutting down")
