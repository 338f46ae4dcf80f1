import argparse
import asyncio
import json
import os
import sys
from typing import Optional
from urllib.parse import urlparse

import websockets
from websockets.exceptions import ConnectionClosed

from .protocol import (
    CLOSE_REASONS,
    DISCONNECT_BRIDGE,
    DISCONNECT_CLIENT,
    REGISTER_BRIDGE,
    REGISTER_CLIENT,
    WEIGHT,
    make_action,
)

QUIT_COMMAND = "/quit"


class Colors:
    RESET = '\033[0m'
    BOLD = '\033[1m'
    RED = '\033[31m'
    GREEN = '\033[32m'
    YELLOW = '\033[33m'
    CYAN = '\033[36m'


def colorize(text, color):
    """Add color to text if terminal supports it"""
    if os.getenv('TERM') and os.getenv('TERM') != 'dumb':
        return f"{color}{text}{Colors.RESET}"
    return text


def parse_weight(line: str):
    """Turn a typed line into a weight value; numbers stay numbers."""
    line = line.strip()
    if not line:
        return None
    try:
        return int(line)
    except ValueError:
        pass
    try:
        return float(line)
    except ValueError:
        return line


class ScaleClient:
    def __init__(self, role: str, scale_id: str, device_id: Optional[str] = None):
        self.role = role
        self.scale_id = scale_id
        self.device_id = device_id

    @property
    def _tag(self) -> str:
        return f"[{self.role.upper()}:{self.scale_id}]"

    async def register(self, ws):
        action = REGISTER_BRIDGE if self.role == "bridge" else REGISTER_CLIENT
        await ws.send(make_action(action, self.scale_id, self.device_id))

    async def sender(self, ws):
        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line or line.strip() == QUIT_COMMAND:
                action = DISCONNECT_BRIDGE if self.role == "bridge" else DISCONNECT_CLIENT
                await ws.send(make_action(action, self.scale_id))
                await ws.close(code=1000)
                return
            if self.role != "bridge":
                continue
            value = parse_weight(line)
            if value is not None:
                await ws.send(make_action(WEIGHT, self.scale_id, weight=value))

    async def receiver(self, ws):
        async for raw in ws:
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if "weight" in frame:
                print(colorize(f"{self._tag} weight {frame['weight']}", Colors.CYAN))
            elif "error" in frame:
                print(colorize(f"{self._tag} error: {frame['error']}", Colors.RED))
            elif "status" in frame:
                print(colorize(f"{self._tag} {frame['status']}", Colors.GREEN))

    async def run(self, uri: str) -> Optional[int]:
        async with websockets.connect(uri) as ws:
            print(colorize(f"{self._tag} Connected to {uri}", Colors.GREEN + Colors.BOLD))
            await self.register(ws)
            tasks = [asyncio.create_task(self.receiver(ws))]
            if sys.stdin and not sys.stdin.closed:
                tasks.append(asyncio.create_task(self.sender(ws)))
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for t in pending:
                t.cancel()
            for t in done:
                exc = t.exception()
                if exc is not None and not isinstance(exc, ConnectionClosed):
                    raise exc
            code = ws.close_code
        reason = CLOSE_REASONS.get(code, "")
        print(colorize(f"{self._tag} Disconnected (code={code} {reason})".rstrip(), Colors.YELLOW))
        return code


def _server_uri(server: Optional[str]) -> str:
    server = server or os.getenv("RELAY_URI", "ws://127.0.0.1:8080")
    if not server.startswith(("ws://", "wss://")):
        server = f"ws://{server}"
    p = urlparse(server)
    if not p.hostname:
        raise SystemExit(f"--server: cannot parse {server!r}")
    return server


def main(argv=None):
    ap = argparse.ArgumentParser(description="Scale relay bridge/client runner")
    ap.add_argument("--server", help="ws://host:port of the relay")
    ap.add_argument("--role", choices=["bridge", "client"], default="client")
    ap.add_argument("--scale", required=True, help="Scale id")
    ap.add_argument("--device", default=os.getenv("DEVICE_ID"), help="Device id of this PC")
    args = ap.parse_args(argv)

    client = ScaleClient(args.role, args.scale, args.device)
    try:
        asyncio.run(client.run(_server_uri(args.server)))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
