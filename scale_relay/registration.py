import logging
import time
from typing import Callable, Optional

from .protocol import (
    CLOSE_MERGED,
    CLOSE_REASONS,
    CLOSE_SCALE_DISCONNECTED,
    CLOSE_SCALE_MISMATCH,
    MISSING_SCALE_ID,
    make_error,
    make_status,
)
from .registry import Role, Session, SessionRegistry

logger = logging.getLogger(__name__)


class RegistrationEngine:
    """Admission and merge rules for bridge/client registration.

    Every public method runs as one critical section on the registry lock and
    never awaits; replies and closes are queued on the session transports.
    """

    def __init__(self, registry: SessionRegistry, clock: Callable[[], float] = time.time):
        self.registry = registry
        self.clock = clock

    # ---- bridges ----

    def register_bridge(self, session: Session, scale_id: Optional[str], device_id: Optional[str]) -> str:
        """Returns the rule that decided the request, for logging and tests."""
        if not scale_id:
            session.send(make_error(MISSING_SCALE_ID))
            return "missing"

        with self.registry.lock:
            group = self.registry.group_for(scale_id, create=True)

            # Rule 1: another PC already bridges this scale
            for member in group:
                if member.role is Role.BRIDGE and member.device_id != device_id and member is not session:
                    logger.warning(
                        "Scale %s in use by %s; rejecting bridge from %s (%s)",
                        scale_id, member.device_id, device_id, session.remote,
                    )
                    session.send(make_status(f"Scale {scale_id} already in use by another PC"))
                    return "in-use"

            if self._bridges_elsewhere(session, scale_id):
                # This connection already bridges another scale; it has to
                # disconnect that one first
                existing = session
            else:
                existing = self._find_live_bridge(device_id, exclude=session, keep=scale_id)

            # Rule 2A: same PC already bound to a different scale
            if existing is not None and existing.scale_id != scale_id:
                self.registry.remove_if_empty(scale_id)
                logger.warning(
                    "PC %s already bridges %s; refusing %s from %s",
                    device_id, existing.scale_id, scale_id, session.remote,
                )
                session.send(make_status(
                    f"This PC is already connected with scale {existing.scale_id}, cannot register {scale_id}"
                ))
                if existing is not session:
                    session.close(CLOSE_SCALE_MISMATCH, CLOSE_REASONS[CLOSE_SCALE_MISMATCH])
                return "mismatch"

            # Rule 2B: same PC, same scale; keep the older connection
            if existing is not None:
                logger.info("Merging duplicate bridge from PC %s for scale %s", device_id, scale_id)
                existing.role = Role.BRIDGE
                existing.device_id = device_id
                existing.touch(self.clock())
                self.registry.add(scale_id, existing)
                session.send(make_status("Merged into existing connection"))
                session.close(CLOSE_MERGED, CLOSE_REASONS[CLOSE_MERGED])
                return "merged"

            # Rule 3: new bridge for this PC
            session.role = Role.BRIDGE
            session.device_id = device_id
            session.touch(self.clock())
            self.registry.add(scale_id, session)

        session.send(make_status(f"Bridge registered for {scale_id}"))
        logger.info("Bridge registered for %s (device %s, %s)", scale_id, device_id, session.remote)
        return "registered"

    def _bridges_elsewhere(self, session: Session, scale_id: str) -> bool:
        if session.role is not Role.BRIDGE or session.scale_id in (None, scale_id):
            return False
        group = self.registry.group_for(session.scale_id)
        return group is not None and session in group

    def _find_live_bridge(self, device_id: Optional[str], exclude: Session, keep: str) -> Optional[Session]:
        # At most one live bridge per device can exist, so the first hit wins.
        # Dead ones met along the way are evicted.
        for scale_id, group in self.registry.all_groups():
            for member in list(group):
                if member is exclude or member.role is not Role.BRIDGE or member.device_id != device_id:
                    continue
                if not member.is_open:
                    group.discard(member)
                    logger.info("Evicted stale bridge %r", member)
                    if scale_id != keep:
                        self.registry.remove_if_empty(scale_id)
                    continue
                return member
        return None

    def disconnect_bridge(self, session: Session, scale_id: Optional[str]):
        if not scale_id:
            session.send(make_error(MISSING_SCALE_ID))
            return

        with self.registry.lock:
            group = self.registry.group_for(scale_id)
            if group is None:
                return
            logger.info("Disconnecting all for scale %s", scale_id)
            session.send(make_status(f"Bridge disconnected {scale_id}"))
            for member in list(group):
                if member.is_open:
                    member.close(CLOSE_SCALE_DISCONNECTED, CLOSE_REASONS[CLOSE_SCALE_DISCONNECTED])
                group.discard(member)
            self.registry.delete_group(scale_id)

    # ---- clients ----

    def register_client(self, session: Session, scale_id: Optional[str], device_id: Optional[str]):
        if not scale_id:
            session.send(make_error(MISSING_SCALE_ID))
            return

        with self.registry.lock:
            if self.registry.group_for(scale_id) is None:
                session.send(make_status(f"No scale registered for {scale_id}"))
                return
            session.role = Role.CLIENT
            session.device_id = device_id
            session.touch(self.clock())
            self.registry.add(scale_id, session)

        session.send(make_status(f"Client registered for {scale_id}"))
        logger.info("Client registered for %s (%s)", scale_id, session.remote)

    def disconnect_client(self, session: Session, scale_id: Optional[str]):
        if not scale_id:
            session.send(make_error(MISSING_SCALE_ID))
            return

        with self.registry.lock:
            group = self.registry.group_for(scale_id)
            if group is None:
                return
            logger.info("Disconnecting clients for scale %s", scale_id)
            session.send(make_status(f"Client disconnected {scale_id}"))
            for member in list(group):
                if member.role is Role.CLIENT and member.is_open:
                    member.close(CLOSE_SCALE_DISCONNECTED, CLOSE_REASONS[CLOSE_SCALE_DISCONNECTED])
                    group.discard(member)
            self.registry.remove_if_empty(scale_id)
