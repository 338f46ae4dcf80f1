import argparse
import asyncio
import logging
import os
import signal
from urllib.parse import urlparse

from .network_core import (
    HEARTBEAT_INTERVAL,
    HEARTBEAT_TIMEOUT,
    STATUS_INTERVAL,
    RelayConfig,
    main_loop,
)
from .reaper import IDLE_TIMEOUT, SWEEP_INTERVAL

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8080


def _parse_bind(bind_uri: str) -> tuple[str, int]:
    # Accept ws://host:port, host:port or just a port
    if bind_uri.startswith("ws://") or bind_uri.startswith("wss://"):
        p = urlparse(bind_uri)
        host = p.hostname or "0.0.0.0"
        port = p.port or DEFAULT_PORT
        return host, int(port)
    if ":" in bind_uri:
        host, port = bind_uri.rsplit(":", 1)
        host = host or "0.0.0.0"
        return host, int(port)
    return "0.0.0.0", int(bind_uri)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scale weight relay server")
    parser.add_argument(
        "--bind",
        default=os.getenv("BIND", f"ws://0.0.0.0:{DEFAULT_PORT}"),
        help="Bind address ws://host:port, host:port or port",
    )
    parser.add_argument(
        "--idle-timeout",
        type=float,
        default=float(os.getenv("IDLE_TIMEOUT", IDLE_TIMEOUT)),
        help="Seconds without activity before a session is closed",
    )
    parser.add_argument(
        "--sweep-interval",
        type=float,
        default=float(os.getenv("SWEEP_INTERVAL", SWEEP_INTERVAL)),
        help="Seconds between idle sweeps",
    )
    parser.add_argument(
        "--status-interval",
        type=float,
        default=float(os.getenv("STATUS_INTERVAL", STATUS_INTERVAL)),
        help="Seconds between status log lines (0 disables)",
    )
    parser.add_argument(
        "--ping-interval",
        type=float,
        default=float(os.getenv("PING_INTERVAL", HEARTBEAT_INTERVAL)),
    )
    parser.add_argument(
        "--ping-timeout",
        type=float,
        default=float(os.getenv("PING_TIMEOUT", HEARTBEAT_TIMEOUT)),
    )
    parser.add_argument(
        "--no-echo",
        action="store_true",
        default=not _env_flag("ECHO_TO_SENDER", True),
        help="Do not send a weight back to the session that published it",
    )
    parser.add_argument(
        "--clear-weight-on-prune",
        action="store_true",
        default=_env_flag("CLEAR_WEIGHT_ON_PRUNE", False),
        help="Forget a scale's last weight when its group is deleted",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
    )
    return parser


def config_from_args(args: argparse.Namespace) -> RelayConfig:
    try:
        host, port = _parse_bind(args.bind)
    except ValueError:
        raise SystemExit(f"--bind: cannot parse {args.bind!r}")
    if args.idle_timeout <= 0 or args.sweep_interval <= 0:
        raise SystemExit("--idle-timeout and --sweep-interval must be positive")
    if args.status_interval < 0:
        raise SystemExit("--status-interval must not be negative")
    return RelayConfig(
        host=host,
        port=port,
        idle_timeout=args.idle_timeout,
        sweep_interval=args.sweep_interval,
        status_interval=args.status_interval,
        ping_interval=args.ping_interval or None,
        ping_timeout=args.ping_timeout or None,
        echo_to_sender=not args.no_echo,
        clear_weight_on_prune=args.clear_weight_on_prune,
    )


async def _run(config: RelayConfig) -> None:
    stop = asyncio.Event()

    # Install signal handlers when supported
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows may not support SIGTERM
            pass

    logger.info(
        "Starting relay on %s:%s; idle_timeout=%ss sweep=%ss",
        config.host, config.port, config.idle_timeout, config.sweep_interval,
    )
    await main_loop(config, stop)
    logger.info("Relay shutdown complete")


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level), format="%(asctime)s %(levelname)s %(message)s"
    )
    config = config_from_args(args)
    try:
        asyncio.run(_run(config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
