import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

# Frame keys: action, scaleId, deviceId, weight

REGISTER_BRIDGE = "register-bridge"
DISCONNECT_BRIDGE = "disconnect-bridge"
REGISTER_CLIENT = "register-client"
DISCONNECT_CLIENT = "disconnect-client"
WEIGHT = "weight"

ACTIONS = (REGISTER_BRIDGE, DISCONNECT_BRIDGE, REGISTER_CLIENT, DISCONNECT_CLIENT, WEIGHT)

# Application close codes carried on the websocket close frame
CLOSE_SCALE_DISCONNECTED = 4001
CLOSE_INACTIVE = 4002
CLOSE_MERGED = 4003
CLOSE_SCALE_MISMATCH = 4004

CLOSE_REASONS = {
    CLOSE_SCALE_DISCONNECTED: "Scale disconnected",
    CLOSE_INACTIVE: "Inactive for 1 hour",
    CLOSE_MERGED: "Merged",
    CLOSE_SCALE_MISMATCH: "Scale mismatch – cannot merge",
}

MISSING_SCALE_ID = "Missing Scale ID"


@dataclass(frozen=True)
class ActionRecord:
    action: str
    scale_id: Optional[str] = None
    device_id: Optional[str] = None
    weight: Any = None


def _opt_str(value: Any) -> Optional[str]:
    # Ids arrive as strings from the bridge software, but numeric ids are
    # accepted and normalised. Empty means missing.
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    value = str(value)
    return value or None


def parse_action(raw: Any) -> Optional[ActionRecord]:
    """Decode one inbound frame into an ActionRecord.

    Returns None for anything that is not a JSON object carrying a known
    ``action``; such frames are ignored by the relay without a reply.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict):
        return None
    action = data.get("action")
    if action not in ACTIONS:
        return None
    return ActionRecord(
        action=action,
        scale_id=_opt_str(data.get("scaleId")),
        device_id=_opt_str(data.get("deviceId")),
        weight=data.get("weight"),
    )


def make_status(text: str) -> Dict[str, Any]:
    return {"status": text}


def make_error(text: str) -> Dict[str, Any]:
    return {"error": text}


def make_weight(value: Any) -> Dict[str, Any]:
    return {"weight": value}


def encode(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False)


def make_action(action: str, scale_id: Optional[str] = None, device_id: Optional[str] = None, weight: Any = None) -> str:
    """Build an outbound action frame (used by the client runner)."""
    frame: Dict[str, Any] = {"action": action}
    if scale_id is not None:
        frame["scaleId"] = scale_id
    if device_id is not None:
        frame["deviceId"] = device_id
    if weight is not None:
        frame["weight"] = weight
    return json.dumps(frame)
