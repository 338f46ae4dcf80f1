import logging
from typing import Any, Optional

from .protocol import make_weight
from .registry import Session, SessionRegistry

logger = logging.getLogger(__name__)


class Broadcaster:
    def __init__(self, registry: SessionRegistry, echo_to_sender: bool = True):
        self.registry = registry
        self.echo_to_sender = echo_to_sender

    def weight(self, scale_id: Optional[str], value: Any, sender: Optional[Session] = None) -> int:
        """Fan a changed reading out to the scale's group.

        Returns how many sessions the reading was queued for; 0 when it was
        dropped or suppressed as unchanged.
        """
        if value is None or not scale_id:
            return 0

        with self.registry.lock:
            group = self.registry.group_for(scale_id)
            if group is None:
                return 0
            if scale_id in self.registry.last_weights and _same_reading(self.registry.last_weight(scale_id), value):
                logger.debug("Weight for %s unchanged (%r); suppressed", scale_id, value)
                return 0
            self.registry.set_weight(scale_id, value)

            payload = make_weight(value)
            sent = 0
            for member in list(group):
                if not member.is_open:
                    continue
                if member is sender and not self.echo_to_sender:
                    continue
                if member.send(payload):
                    sent += 1
        return sent


def _same_reading(prev: Any, value: Any) -> bool:
    # Strict comparison: true is not 1, "5" is not 5. Structured readings
    # never compare equal, so they always go out.
    if isinstance(prev, (dict, list)) or isinstance(value, (dict, list)):
        return False
    if isinstance(prev, bool) or isinstance(value, bool):
        return type(prev) is type(value) and prev == value
    if isinstance(prev, (int, float)) and isinstance(value, (int, float)):
        return prev == value
    return type(prev) is type(value) and prev == value
