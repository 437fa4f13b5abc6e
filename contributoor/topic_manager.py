"""Topic subscription decisions and attestation subnet mismatch tracking."""

from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable

log = logging.getLogger(__name__)

TopicCondition = Callable[[], bool]
SubnetFetcher = Callable[[], "list[int] | None"]

_NO_SUBNET = -1
_HIGH_WATER_WARNING_RATIO = 0.8


@dataclass
class TopicConfig:
    """Settings for topic selection and attestation subnet tracking."""

    all_topics: list[str] = field(default_factory=list)
    opt_in_topics: list[str] = field(default_factory=list)
    attestation_enabled: bool = False
    attestation_max_subnets: int = 2
    mismatch_detection_window: int = 2
    mismatch_threshold: int = 1
    mismatch_cooldown: float = 300.0
    subnet_high_water_mark: int = 30


class TopicManager:
    """Decides which topics to subscribe to and watches for subnet mismatches.

    One advertised attestation subnet is picked at random for forwarding.
    Attestations seen on subnets the node does not advertise are counted per
    detection window; when their number passes the high water mark often
    enough, the reconnection event is set, at most once per cooldown period.
    """

    def __init__(self, config: TopicConfig | None = None) -> None:
        cfg = config if config is not None else TopicConfig()

        self._lock = threading.RLock()

        self._all_topics = list(cfg.all_topics)
        self._opt_in_topics = set(cfg.opt_in_topics)
        self._conditions: dict[str, TopicCondition] = {}
        self._excluded_topics: set[str] = set()

        self._advertised_subnets: list[int] = []
        self._selected_subnet = _NO_SUBNET
        self._seen_subnets: set[int] = set()
        self._tracking_start_slot = 0

        self._detection_window = cfg.mismatch_detection_window
        self._mismatch_threshold = cfg.mismatch_threshold
        self._cooldown_period = cfg.mismatch_cooldown
        self._high_water_mark = cfg.subnet_high_water_mark
        self._attestation_max_subnets = cfg.attestation_max_subnets

        self._mismatch_count = 0
        self._last_mismatch_time: float | None = None
        self._mismatch_enabled = cfg.attestation_enabled

        self._reconnect = threading.Event()

        self._refresh_stop: threading.Event | None = None

    # Topic selection.

    def register_condition(self, topic: str, condition: TopicCondition) -> None:
        """Attach a condition that decides whether the topic is subscribed."""
        with self._lock:
            self._conditions[topic] = condition

    def should_subscribe(self, topic: str) -> bool:
        """Return whether the topic should be subscribed to."""
        with self._lock:
            condition = self._conditions.get(topic)
            opt_in = topic in self._opt_in_topics

        if condition is None:
            # Opt-in topics need a condition; everything else is on by default.
            return not opt_in

        try:
            return bool(condition())
        except Exception as exc:  # noqa: BLE001 - any failing condition excludes
            log.warning(
                "Failed to evaluate topic condition, excluding topic %s: %s",
                topic,
                exc,
            )
            return False

    def get_enabled_topics(self) -> list[str]:
        """Return the topics that should be subscribed to, in configured order."""
        enabled = []
        for topic in self._all_topics:
            if self.is_excluded(topic):
                log.debug("Excluding explicitly excluded topic %s", topic)
                continue
            if self.should_subscribe(topic):
                enabled.append(topic)
                continue
            log.debug("Excluding topic %s based on condition", topic)

        log.info("Enabled subscription topics: %s", enabled)
        return enabled

    def exclude_topic(self, topic: str) -> None:
        """Mark a topic as never to be subscribed."""
        with self._lock:
            self._excluded_topics.add(topic)

    def is_excluded(self, topic: str) -> bool:
        """Return whether the topic has been excluded."""
        with self._lock:
            return topic in self._excluded_topics

    # Attestation subnets.

    def _attestations_will_be_enabled(self, count: int) -> bool:
        return self._attestation_max_subnets > 0 and count <= self._attestation_max_subnets

    def _select_subnet(self, subnets: list[int]) -> None:
        """Pick the forwarding subnet for a new advertised list (lock held)."""
        if subnets and self._attestations_will_be_enabled(len(subnets)):
            self._selected_subnet = secrets.choice(subnets)
            log.info("Selected random subnet %d for forwarding", self._selected_subnet)
        else:
            self._selected_subnet = _NO_SUBNET

    def set_advertised_subnets(self, subnets: Iterable[int]) -> None:
        """Set the subnets the node advertises and pick one to forward."""
        subnets = list(subnets)
        with self._lock:
            self._advertised_subnets = subnets
            if not subnets:
                log.warning("Missing advertised attestation subnets")
            self._select_subnet(subnets)

    def record_attestation(self, subnet_id: int, slot: int) -> None:
        """Record an attestation seen on a subnet at a slot."""
        if not self._mismatch_enabled:
            return

        with self._lock:
            if self._reconnect.is_set():
                return

            if self._tracking_start_slot == 0:
                self._tracking_start_slot = slot

            if slot - self._tracking_start_slot >= self._detection_window:
                self._seen_subnets = set()
                self._tracking_start_slot = slot
                self._mismatch_count = 0

            self._seen_subnets.add(subnet_id)

            if not self._check_for_mismatch():
                return

            self._mismatch_count += 1
            log.warning(
                "Subnet mismatch detected: count=%d threshold=%d advertised=%s "
                "selected=%d seen=%s slot=%d",
                self._mismatch_count,
                self._mismatch_threshold,
                self._advertised_subnets,
                self._selected_subnet,
                sorted(self._seen_subnets),
                slot,
            )

            if self._mismatch_count < self._mismatch_threshold:
                return

            now = time.monotonic()
            if (
                self._last_mismatch_time is None
                or now - self._last_mismatch_time >= self._cooldown_period
            ):
                self._last_mismatch_time = now
                self._reconnect.set()

    def _check_for_mismatch(self) -> bool:
        """Return whether too many non-advertised subnets were seen (lock held)."""
        if not self._advertised_subnets:
            return False

        advertised = set(self._advertised_subnets)
        non_advertised = sum(1 for s in self._seen_subnets if s not in advertised)
        advertised_not_selected = sum(
            1
            for s in self._seen_subnets
            if s in advertised
            and self._selected_subnet >= 0
            and s != self._selected_subnet
        )

        warning_threshold = int(self._high_water_mark * _HIGH_WATER_WARNING_RATIO)
        if warning_threshold <= non_advertised <= self._high_water_mark:
            log.warning(
                "Approaching subnet high water mark threshold: non_advertised=%d "
                "advertised_but_not_selected=%d high_water_mark=%d advertised=%s "
                "selected=%d",
                non_advertised,
                advertised_not_selected,
                self._high_water_mark,
                self._advertised_subnets,
                self._selected_subnet,
            )

        return non_advertised > self._high_water_mark

    def is_active_subnet(self, subnet_id: int) -> bool:
        """Return whether the subnet is the one selected for forwarding."""
        with self._lock:
            return self._selected_subnet >= 0 and self._selected_subnet == subnet_id

    def needs_reconnection(self) -> threading.Event:
        """Return the event that is set when a reconnection is needed."""
        with self._lock:
            return self._reconnect

    def reset_after_reconnection(self) -> None:
        """Clear tracking state and arm a fresh reconnection event."""
        with self._lock:
            self._mismatch_count = 0
            self._seen_subnets = set()
            self._tracking_start_slot = 0
            self._reconnect = threading.Event()

    def cooldown_period(self) -> float:
        """Return the minimum number of seconds between reconnections."""
        with self._lock:
            return self._cooldown_period

    # Periodic refresh.

    def start_subnet_refresh(self, refresh_interval: float, fetcher: SubnetFetcher) -> None:
        """Poll the fetcher every refresh_interval seconds for advertised subnets.

        A fetcher result of None is ignored. Any earlier refresh is stopped.
        """
        stop = threading.Event()
        with self._lock:
            if self._refresh_stop is not None:
                self._refresh_stop.set()
            self._refresh_stop = stop

        thread = threading.Thread(
            target=self._refresh_loop,
            args=(stop, refresh_interval, fetcher),
            name="subnet-refresh",
            daemon=True,
        )
        thread.start()

    def _refresh_loop(
        self, stop: threading.Event, interval: float, fetcher: SubnetFetcher
    ) -> None:
        while not stop.wait(interval):
            new_subnets = fetcher()
            if new_subnets is None:
                continue
            new_subnets = list(new_subnets)
            with self._lock:
                if stop.is_set() or new_subnets == self._advertised_subnets:
                    continue
                log.info(
                    "Advertised subnets changed from %s to %s, updating",
                    self._advertised_subnets,
                    new_subnets,
                )
                self._advertised_subnets = new_subnets
                if new_subnets and not self._attestations_will_be_enabled(len(new_subnets)):
                    log.debug(
                        "Attestations disabled: %d subnets exceed maximum of %d",
                        len(new_subnets),
                        self._attestation_max_subnets,
                    )
                self._select_subnet(new_subnets)

    def stop_subnet_refresh(self) -> None:
        """Stop the periodic refresh, if one is running."""
        with self._lock:
            if self._refresh_stop is not None:
                self._refresh_stop.set()
                self._refresh_stop = None


def create_attestation_subnet_condition(
    node_subnet_count: int, max_subnets: int
) -> TopicCondition:
    """Return a condition that holds when the node is on few enough subnets."""

    def condition() -> bool:
        return node_subnet_count <= max_subnets

    return condition