"""
Prometheus metrics owned by the exporter.

The registry is an explicit object rather than the process-wide default
registry, so each poller and each test can be handed its own instance.
"""

import threading
from typing import Dict, Iterable, Sequence, Set, Tuple

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from poller.client import AccountSnapshot, MonitorRecord

LabelTuple = Tuple[str, ...]

ACCOUNT_DETAILS = "uptimerobot_account_details"
UP_MONITORS = "uptimerobot_up_monitors"
DOWN_MONITORS = "uptimerobot_down_monitors"
PAUSED_MONITORS = "uptimerobot_paused_monitors"
MONITORS_STATUS = "uptimerobot_monitors_status"
RESPONSE_TIME = "uptimerobot_response_time"

# family name -> (help, label names)
GAUGE_FAMILIES: Dict[str, Tuple[str, Sequence[str]]] = {
    ACCOUNT_DETAILS: (
        "Details of the Uptime Robot account",
        ["firstname", "email", "monitors_limit", "monitor_interval",
         "up_monitors", "down_monitors", "paused_monitors", "payment_period"],
    ),
    UP_MONITORS: ("Up monitors", []),
    DOWN_MONITORS: ("Down monitors", []),
    PAUSED_MONITORS: ("Paused monitors", []),
    MONITORS_STATUS: ("Status code of each monitor", ["url", "friendly_name", "interval"]),
    RESPONSE_TIME: ("Most recent response time of each monitor, in milliseconds", ["url", "friendly_name", "type"]),
}


def account_details_labels(account: AccountSnapshot) -> LabelTuple:
    return (
        account.firstname,
        account.email,
        str(account.monitor_limit),
        str(account.monitor_interval),
        str(account.up_monitors),
        str(account.down_monitors),
        str(account.paused_monitors),
        "" if account.payment_period is None else str(account.payment_period),
    )


def status_labels(monitor: MonitorRecord) -> LabelTuple:
    return (monitor.url, monitor.friendly_name, str(monitor.interval))


def response_time_labels(monitor: MonitorRecord) -> LabelTuple:
    return (monitor.url, monitor.friendly_name, str(monitor.type))


class MetricsRegistry:
    """Named gauge families keyed by ordered label tuples.

    Every mutation and every render takes the same lock, so a scrape sees
    each series either before or after a set/delete, never in between.
    """

    def __init__(self, families: Dict[str, Tuple[str, Sequence[str]]] = GAUGE_FAMILIES):
        self.registry = CollectorRegistry()
        self._lock = threading.Lock()
        self._gauges: Dict[str, Gauge] = {}
        self._series: Dict[str, Set[LabelTuple]] = {}
        self._labelnames: Dict[str, Tuple[str, ...]] = {}
        for name, (documentation, labelnames) in families.items():
            self._gauges[name] = Gauge(name, documentation, labelnames, registry=self.registry)
            self._series[name] = set()
            self._labelnames[name] = tuple(labelnames)

        self.api_requests = Counter(
            "uptimerobot_api_requests_total",
            "Requests sent to the Uptime Robot API",
            ["endpoint", "status"],
            registry=self.registry,
        )
        self.api_request_duration = Histogram(
            "uptimerobot_api_request_duration_seconds",
            "Duration of Uptime Robot API requests",
            ["endpoint"],
            registry=self.registry,
        )

    def _gauge(self, family: str) -> Gauge:
        try:
            return self._gauges[family]
        except KeyError:
            raise ValueError(f"Unknown gauge family: {family}") from None

    def set_gauge(self, family: str, labels: Iterable[str], value: float) -> None:
        """Create or update the series ``labels`` of ``family``."""
        gauge = self._gauge(family)
        labels = tuple(str(v) for v in labels)
        with self._lock:
            if labels:
                gauge.labels(*labels).set(value)
            else:
                gauge.set(value)
            self._series[family].add(labels)

    def delete_gauge(self, family: str, labels: Iterable[str]) -> bool:
        """Remove one series. Returns False when no such series was present."""
        gauge = self._gauge(family)
        labels = tuple(str(v) for v in labels)
        if not labels:
            raise ValueError(f"{family} has no labels, its series cannot be deleted")
        with self._lock:
            if labels not in self._series[family]:
                return False
            try:
                gauge.remove(*labels)
            except KeyError:
                pass
            self._series[family].discard(labels)
            return True

    def series(self, family: str) -> Set[LabelTuple]:
        """Label tuples currently published for ``family``."""
        self._gauge(family)
        with self._lock:
            return set(self._series[family])

    def value(self, family: str, labels: Iterable[str] = ()) -> float:
        """Current value of one series; KeyError if it is not published."""
        self._gauge(family)
        labels = tuple(str(v) for v in labels)
        with self._lock:
            if labels not in self._series[family]:
                raise KeyError(f"{family}{labels} is not published")
            sample = self.registry.get_sample_value(family, dict(zip(self._labelnames[family], labels)))
        return sample

    def record_request(self, endpoint: str, status: str, duration: float) -> None:
        self.api_requests.labels(endpoint, status).inc()
        self.api_request_duration.labels(endpoint).observe(duration)

    def render(self) -> bytes:
        """Prometheus text exposition of the whole registry."""
        with self._lock:
            return generate_latest(self.registry)
