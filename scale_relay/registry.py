import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from .transport import Transport

logger = logging.getLogger(__name__)


class Role(Enum):
    UNASSIGNED = "unassigned"
    BRIDGE = "bridge"
    CLIENT = "client"


@dataclass(eq=False)
class Session:
    """Per-connection state. Hashes by identity so it can live in a group set."""

    transport: Transport
    remote: str = "?"
    role: Role = Role.UNASSIGNED
    scale_id: Optional[str] = None
    device_id: Optional[str] = None
    last_activity: float = field(default_factory=time.time)

    @property
    def is_open(self) -> bool:
        return self.transport.is_open

    def touch(self, now: Optional[float] = None):
        self.last_activity = time.time() if now is None else now

    def send(self, payload: Dict[str, Any]) -> bool:
        return self.transport.send(payload)

    def close(self, code: int, reason: str):
        self.transport.close(code, reason)

    def __repr__(self):
        return (
            f"Session({self.role.value}, scale={self.scale_id!r}, "
            f"device={self.device_id!r}, remote={self.remote})"
        )


class SessionRegistry:
    """Scale id -> group of sessions, plus the last broadcast weight per scale.

    Callers hold ``lock`` around every operation that scans and mutates
    membership so a sweep or fan-out never sees a half-updated group.
    """

    def __init__(self, clear_weight_on_prune: bool = False):
        self.groups: Dict[str, Set[Session]] = {}
        self.last_weights: Dict[str, Any] = {}
        self.clear_weight_on_prune = clear_weight_on_prune
        self.lock = threading.RLock()

    def group_for(self, scale_id: str, create: bool = False) -> Optional[Set[Session]]:
        group = self.groups.get(scale_id)
        if group is None and create:
            group = set()
            self.groups[scale_id] = group
        return group

    def all_groups(self) -> List[Tuple[str, Set[Session]]]:
        # Snapshot so callers may delete groups while iterating
        return list(self.groups.items())

    def remove_if_empty(self, scale_id: Optional[str]) -> bool:
        group = self.groups.get(scale_id)
        if group is not None and not group:
            self.delete_group(scale_id)
            return True
        return False

    def delete_group(self, scale_id: str):
        self.groups.pop(scale_id, None)
        if self.clear_weight_on_prune:
            self.last_weights.pop(scale_id, None)
        logger.debug("Group %s deleted", scale_id)

    def add(self, scale_id: str, session: Session):
        # A session lives in at most one group
        if session.scale_id is not None and session.scale_id != scale_id:
            self.discard(session)
        self.group_for(scale_id, create=True).add(session)
        session.scale_id = scale_id

    def discard(self, session: Session) -> bool:
        group = self.groups.get(session.scale_id) if session.scale_id else None
        if group is None or session not in group:
            return False
        group.discard(session)
        self.remove_if_empty(session.scale_id)
        return True

    def last_weight(self, scale_id: str, default: Any = None) -> Any:
        return self.last_weights.get(scale_id, default)

    def set_weight(self, scale_id: str, value: Any):
        self.last_weights[scale_id] = value

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        out = {}
        for scale_id, group in self.all_groups():
            members = list(group)
            out[scale_id] = {
                "bridges": sum(1 for s in members if s.role is Role.BRIDGE),
                "clients": sum(1 for s in members if s.role is Role.CLIENT),
            }
        return out
