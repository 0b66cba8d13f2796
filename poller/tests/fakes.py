from typing import Dict, List, Optional, Tuple
from unittest.mock import Mock

import requests

from poller.client import MonitorRecord, ResponseTime


def make_monitor(name: str, url: Optional[str] = None, interval: int = 60, status: int = 2,
                 latency: Optional[List[int]] = None, monitor_id: int = 0, type_: int = 1) -> MonitorRecord:
    return MonitorRecord(
        id=monitor_id,
        friendly_name=name,
        url=url or f"http://{name.lower()}",
        type=type_,
        interval=interval,
        status=status,
        response_times=[ResponseTime(datetime=1700000000 - i, value=v) for i, v in enumerate(latency or [])],
    )


def json_response(payload, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} Error")
    return response


class FakeClient:
    """Returns queued results; an exception in the queue is raised instead."""

    def __init__(self):
        self.monitor_results: List[object] = []
        self.account_results: List[object] = []
        self.calls: List[Tuple[str, Dict]] = []

    def fetch_monitors(self, include_response_times: bool = True, response_times_limit: int = 1):
        self.calls.append(("fetch_monitors", {"include_response_times": include_response_times,
                                              "response_times_limit": response_times_limit}))
        return self._next(self.monitor_results)

    def fetch_account(self):
        self.calls.append(("fetch_account", {}))
        return self._next(self.account_results)

    @staticmethod
    def _next(queue):
        result = queue.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class FakeRegistry:
    """Captures set/delete calls and keeps the resulting series in a dict."""

    def __init__(self):
        self.values: Dict[Tuple[str, Tuple[str, ...]], float] = {}
        self.calls: List[Tuple] = []

    def set_gauge(self, family, labels, value):
        labels = tuple(str(v) for v in labels)
        self.calls.append(("set", family, labels, value))
        self.values[(family, labels)] = value

    def delete_gauge(self, family, labels):
        labels = tuple(str(v) for v in labels)
        existed = self.values.pop((family, labels), None) is not None
        self.calls.append(("delete", family, labels, existed))
        return existed

    def series(self, family):
        return {labels for (f, labels) in self.values if f == family}
