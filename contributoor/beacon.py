"""Beacon node wrapper: network sanity checks and attestation subnet tracking."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from contributoor.topic_manager import TopicManager

log = logging.getLogger(__name__)

# Events further than this many slots from the wallclock slot are assumed to
# come from a different network.
MAX_REASONABLE_SLOT_DIFFERENCE = 10000

CurrentSlot = Callable[[], "int | None"]


def is_slot_difference_too_large(slot_a: int, slot_b: int) -> bool:
    """Return whether two slots are too far apart to be on the same network."""
    return abs(slot_a - slot_b) > MAX_REASONABLE_SLOT_DIFFERENCE


class BeaconWrapper:
    """Adds network checks and attestation subnet tracking to a beacon node.

    ``current_slot`` returns the wallclock slot of the network, or None when
    it is not known. Without it, or a topic manager, the related checks
    answer conservatively.
    """

    def __init__(
        self,
        topic_manager: TopicManager | None = None,
        current_slot: CurrentSlot | None = None,
    ) -> None:
        self._topic_manager = topic_manager
        self._current_slot = current_slot

    def is_slot_from_unexpected_network(self, event_slot: int) -> bool:
        """Return whether the slot is implausibly far from the wallclock slot."""
        if self._current_slot is None:
            return False

        try:
            current = self._current_slot()
        except Exception as exc:  # noqa: BLE001 - cannot verify, so accept
            log.debug("Failed to read wallclock slot: %s", exc)
            return False

        if current is None:
            return False

        return is_slot_difference_too_large(event_slot, current)

    def is_active_subnet(self, subnet_id: int) -> bool:
        """Return whether the subnet is the one selected for forwarding."""
        if self._topic_manager is None:
            return False
        return self._topic_manager.is_active_subnet(subnet_id)

    def record_seen_subnet(self, subnet_id: int, slot: int) -> None:
        """Record that an attestation was seen on the subnet at the slot."""
        if self._topic_manager is None:
            return
        self._topic_manager.record_attestation(subnet_id, slot)

    def needs_reconnection(self) -> threading.Event | None:
        """Return the event set when a reconnection is needed, if tracking runs."""
        if self._topic_manager is None:
            return None
        return self._topic_manager.needs_reconnection()

    def topic_manager(self) -> TopicManager | None:
        """Return the topic manager of this beacon."""
        return self._topic_manager