import asyncio
import logging
import time
from collections import Counter
from typing import Callable, Dict, Generic, List, Optional, Set, Tuple, TypeVar

from poller.client import AccountSnapshot, MonitorRecord, UptimeRobotClient, UptimeRobotError
from poller.metrics import (
    ACCOUNT_DETAILS,
    DOWN_MONITORS,
    MONITORS_STATUS,
    PAUSED_MONITORS,
    RESPONSE_TIME,
    UP_MONITORS,
    LabelTuple,
    MetricsRegistry,
    account_details_labels,
    response_time_labels,
    status_labels,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

IDENTITY_KEYS: Dict[str, Callable[[MonitorRecord], object]] = {
    "friendly_name": lambda m: m.friendly_name,
    "id": lambda m: m.id,
}


class PeriodicPoller(Generic[T]):
    """Fetch-then-publish loop run on a fixed interval.

    Cycles never overlap: a cycle that outlasts the interval delays the next
    one. The first missed tick then runs straight away and the rest are
    dropped rather than queued.
    """

    name = "poller"

    def __init__(self, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_seconds = interval_seconds

    def fetch(self) -> T:
        raise NotImplementedError

    def publish(self, result: T) -> None:
        raise NotImplementedError

    async def poll_once(self) -> bool:
        """Run one cycle. Returns False if the fetch failed and nothing was published."""
        logger.info(f"Fetching {self.name}")
        try:
            result = await asyncio.to_thread(self.fetch)
        except UptimeRobotError as e:
            logger.error(f"Failed to fetch {self.name}: {e}")
            return False
        self.publish(result)
        return True

    async def run_forever(self, stop: Optional[asyncio.Event] = None) -> None:
        """Main polling loop, until ``stop`` is set or the task is cancelled."""
        stop = stop or asyncio.Event()
        next_tick = time.monotonic()
        while not stop.is_set():
            try:
                await self.poll_once()
            except Exception:
                logger.exception(f"Unexpected error while polling {self.name}")

            now = time.monotonic()
            next_tick += self.interval_seconds
            if now > next_tick:
                # Run one delayed tick right away and restart the grid from
                # here; the other missed ticks are dropped.
                missed = int((now - next_tick) // self.interval_seconds) + 1
                logger.warning(
                    f"{self.name} cycle overran the {self.interval_seconds}s interval "
                    f"({missed} tick(s) missed), polling again now"
                )
                next_tick = now
            try:
                await asyncio.wait_for(stop.wait(), timeout=max(next_tick - now, 0))
            except asyncio.TimeoutError:
                pass
        logger.info(f"{self.name} loop stopped")


class AccountPoller(PeriodicPoller[AccountSnapshot]):
    """Publishes the account's aggregate counters."""

    name = "account details"

    def __init__(self, client: UptimeRobotClient, registry: MetricsRegistry, interval_seconds: float = 30) -> None:
        super().__init__(interval_seconds)
        self._client = client
        self._registry = registry
        self._details_labels: Optional[LabelTuple] = None

    def fetch(self) -> AccountSnapshot:
        return self._client.fetch_account()

    def publish(self, account: AccountSnapshot) -> None:
        logger.debug("Updating account details metrics")
        self._registry.set_gauge(UP_MONITORS, (), account.up_monitors)
        self._registry.set_gauge(DOWN_MONITORS, (), account.down_monitors)
        self._registry.set_gauge(PAUSED_MONITORS, (), account.paused_monitors)

        labels = account_details_labels(account)
        if self._details_labels is not None and self._details_labels != labels:
            if not self._registry.delete_gauge(ACCOUNT_DETAILS, self._details_labels):
                logger.warning(f"Previous account details series {self._details_labels} was already gone")
        # The information lives in the labels; the value is a constant marker.
        self._registry.set_gauge(ACCOUNT_DETAILS, labels, 1)
        self._details_labels = labels


class MonitorReconciler(PeriodicPoller[List[MonitorRecord]]):
    """Keeps the per-monitor gauges in step with the account's monitor list.

    Monitors are matched between cycles by ``identity_key``. The default,
    friendly_name, treats two monitors sharing a display name as one entity;
    a warning is logged for every duplicated name.
    """

    name = "monitors"

    def __init__(
        self,
        client: UptimeRobotClient,
        registry: MetricsRegistry,
        interval_seconds: float = 30,
        empty_confirmations: int = 2,
        identity_key: str = "friendly_name",
        response_times_limit: int = 1,
    ) -> None:
        super().__init__(interval_seconds)
        if empty_confirmations < 1:
            raise ValueError("empty_confirmations must be at least 1")
        if identity_key not in IDENTITY_KEYS:
            raise ValueError(f"identity_key must be one of {sorted(IDENTITY_KEYS)}")
        self._client = client
        self._registry = registry
        self._empty_confirmations = empty_confirmations
        self._identity_key = identity_key
        self._identity = IDENTITY_KEYS[identity_key]
        self._response_times_limit = response_times_limit
        self._previous: List[MonitorRecord] = []
        self._empty_streak = 0
        # last latency published per label tuple
        self._latencies: Dict[LabelTuple, float] = {}

    @property
    def previous(self) -> List[MonitorRecord]:
        """Snapshot of the last trusted cycle."""
        return list(self._previous)

    def fetch(self) -> List[MonitorRecord]:
        return self._client.fetch_monitors(include_response_times=True, response_times_limit=self._response_times_limit)

    def publish(self, monitors: List[MonitorRecord]) -> None:
        self.reconcile(monitors)

    def reconcile(self, current: List[MonitorRecord]) -> None:
        """Apply one fetched snapshot to the registry."""
        if not current:
            self._empty_streak += 1
            if not self._previous:
                return
            if self._empty_streak < self._empty_confirmations:
                logger.info(
                    f"Monitor list is empty ({self._empty_streak}/{self._empty_confirmations}), "
                    f"keeping {len(self._previous)} monitor(s) until confirmed"
                )
                return
            logger.info(f"Monitor list confirmed empty, removing {len(self._previous)} monitor(s)")
        else:
            self._empty_streak = 0
            self._warn_duplicates(current)

        carried = self._delete_stale(current)

        for monitor in current:
            logger.debug(f"Updating metrics of monitor {monitor.friendly_name!r}")
            self._registry.set_gauge(MONITORS_STATUS, status_labels(monitor), monitor.status)
            latency = monitor.latest_response_time
            latency_labels = response_time_labels(monitor)
            if latency is None and latency_labels not in self._latencies:
                # Relabelled without a fresh sample: keep the last value.
                latency = carried.pop(self._identity(monitor), None)
            if latency is not None:
                self._registry.set_gauge(RESPONSE_TIME, latency_labels, latency)
                self._latencies[latency_labels] = latency

        self._previous = list(current)

    def _delete_stale(self, current: List[MonitorRecord]) -> Dict[object, float]:
        """Delete series no current monitor publishes.

        Returns the last latency of surviving monitors whose latency series
        was relabelled, keyed by identity.
        """
        present = {self._identity(m) for m in current}
        status_tuples: Set[LabelTuple] = {status_labels(m) for m in current}
        latency_tuples: Set[LabelTuple] = {response_time_labels(m) for m in current}

        deleted: Set[Tuple[str, LabelTuple]] = set()
        carried: Dict[object, float] = {}
        for monitor in self._previous:
            removed = self._identity(monitor) not in present
            for family, labels, live in (
                (MONITORS_STATUS, status_labels(monitor), status_tuples),
                (RESPONSE_TIME, response_time_labels(monitor), latency_tuples),
            ):
                if labels in live or (family, labels) in deleted:
                    continue
                deleted.add((family, labels))
                if family == RESPONSE_TIME:
                    last = self._latencies.pop(labels, None)
                    if last is not None and not removed:
                        carried[self._identity(monitor)] = last
                if self._registry.delete_gauge(family, labels):
                    logger.info(f"Deleted {family}{labels} ({'monitor removed' if removed else 'labels changed'})")
                elif family == MONITORS_STATUS or monitor.latest_response_time is not None:
                    logger.warning(f"No {family} series found for {labels}")
                else:
                    # Latency is only published once a sample has been seen.
                    logger.debug(f"No {family} series found for {labels}")
        return carried

    def _warn_duplicates(self, current: List[MonitorRecord]) -> None:
        if self._identity_key != "friendly_name":
            return
        counts = Counter(m.friendly_name for m in current)
        duplicates = sorted(name for name, count in counts.items() if count > 1)
        if duplicates:
            logger.warning(f"Monitors sharing a friendly name are tracked as one entity: {duplicates}")
