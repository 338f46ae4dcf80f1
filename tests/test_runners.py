from __future__ import annotations

import pytest

from scale_relay.run_client import parse_weight
from scale_relay.run_server import _parse_bind, build_parser, config_from_args


@pytest.mark.parametrize(
    "bind, expected",
    [
        ("ws://127.0.0.1:9000", ("127.0.0.1", 9000)),
        ("ws://localhost", ("localhost", 8080)),
        ("0.0.0.0:8081", ("0.0.0.0", 8081)),
        (":8082", ("0.0.0.0", 8082)),
        ("8083", ("0.0.0.0", 8083)),
    ],
)
def test_parse_bind(bind, expected):
    assert _parse_bind(bind) == expected


def test_config_defaults(monkeypatch):
    for name in ("BIND", "IDLE_TIMEOUT", "SWEEP_INTERVAL", "ECHO_TO_SENDER", "CLEAR_WEIGHT_ON_PRUNE"):
        monkeypatch.delenv(name, raising=False)

    cfg = config_from_args(build_parser().parse_args([]))

    assert (cfg.host, cfg.port) == ("0.0.0.0", 8080)
    assert cfg.idle_timeout == 3600
    assert cfg.sweep_interval == 600
    assert cfg.echo_to_sender is True
    assert cfg.clear_weight_on_prune is False


def test_config_from_environment(monkeypatch):
    monkeypatch.setenv("BIND", "127.0.0.1:9999")
    monkeypatch.setenv("IDLE_TIMEOUT", "60")
    monkeypatch.setenv("ECHO_TO_SENDER", "0")
    monkeypatch.setenv("CLEAR_WEIGHT_ON_PRUNE", "yes")

    cfg = config_from_args(build_parser().parse_args([]))

    assert (cfg.host, cfg.port) == ("127.0.0.1", 9999)
    assert cfg.idle_timeout == 60
    assert cfg.echo_to_sender is False
    assert cfg.clear_weight_on_prune is True


def test_bad_config_exits():
    with pytest.raises(SystemExit):
        config_from_args(build_parser().parse_args(["--idle-timeout", "0"]))
    with pytest.raises(SystemExit):
        config_from_args(build_parser().parse_args(["--bind", "host:notaport"]))


def test_parse_weight():
    assert parse_weight("12\n") == 12
    assert parse_weight(" 12.4 ") == 12.4
    assert parse_weight("OVERLOAD") == "OVERLOAD"
    assert parse_weight("   ") is None
