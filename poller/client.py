"""
UptimeRobot API client.

Talks to the v2 API with form-encoded POST requests, authenticated by the
account's API key, and decodes the JSON payloads into typed records.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.uptimerobot.com/v2"
DEFAULT_TIMEOUT = 30.0
# getMonitors returns at most 50 records per page.
MONITORS_PAGE_LIMIT = 50

RequestObserver = Callable[[str, str, float], None]


class UptimeRobotError(Exception):
    """Raised when a call to the UptimeRobot API cannot be completed."""

    def __init__(self, endpoint: str, message: str):
        super().__init__(f"{endpoint}: {message}")
        self.endpoint = endpoint


@dataclass
class AccountSnapshot:
    """Aggregate counters of the account, as returned by getAccountDetails."""

    email: str = ""
    user_id: int = 0
    firstname: str = ""
    sms_credits: int = 0
    payment_processor: Optional[int] = None
    payment_period: Optional[int] = None
    subscription_expiry_date: Optional[str] = None
    monitor_limit: int = 0
    monitor_interval: int = 0
    up_monitors: int = 0
    down_monitors: int = 0
    paused_monitors: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccountSnapshot":
        return cls(
            email=data.get("email") or "",
            user_id=int(data.get("user_id") or 0),
            firstname=data.get("firstname") or "",
            sms_credits=int(data.get("sms_credits") or 0),
            payment_processor=data.get("payment_processor"),
            payment_period=data.get("payment_period"),
            subscription_expiry_date=data.get("subscription_expiry_date"),
            monitor_limit=int(data.get("monitor_limit") or 0),
            monitor_interval=int(data.get("monitor_interval") or 0),
            up_monitors=int(data.get("up_monitors") or 0),
            down_monitors=int(data.get("down_monitors") or 0),
            paused_monitors=int(data.get("paused_monitors") or 0),
        )


@dataclass
class ResponseTime:
    """One latency sample of a monitor."""

    datetime: int
    value: int


@dataclass
class MonitorRecord:
    """A monitored resource and its live status."""

    id: int
    friendly_name: str
    url: str
    type: int = 0
    interval: int = 0
    status: int = 0
    sub_type: str = ""
    port: str = ""
    create_datetime: int = 0
    average_response_time: Optional[str] = None
    response_times: List[ResponseTime] = field(default_factory=list)

    @property
    def latest_response_time(self) -> Optional[int]:
        """Most recent latency sample in milliseconds, if any was returned."""
        if not self.response_times:
            return None
        # The API orders samples newest first.
        return self.response_times[0].value

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MonitorRecord":
        samples = [
            ResponseTime(datetime=int(item.get("datetime") or 0), value=int(item.get("value") or 0))
            for item in data.get("response_times") or []
        ]
        return cls(
            id=int(data.get("id") or 0),
            friendly_name=data.get("friendly_name") or "",
            url=data.get("url") or "",
            type=int(data.get("type") or 0),
            interval=int(data.get("interval") or 0),
            status=int(data.get("status") or 0),
            sub_type=str(data.get("sub_type") or ""),
            port=str(data.get("port") or ""),
            create_datetime=int(data.get("create_datetime") or 0),
            average_response_time=data.get("average_response_time"),
            response_times=samples,
        )


class UptimeRobotClient:
    """Blocking client for the two UptimeRobot endpoints the exporter needs."""

    def __init__(
        self,
        api_key: str,
        base_url: str = API_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        observer: Optional[RequestObserver] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': 'uptimerobot-exporter/1.0.0'
        })
        self._observer = observer

    def _post(self, method: str, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """POST a form to ``method`` and return the decoded, successful payload."""
        url = f"{self.base_url}/{method}"
        data = {"api_key": self.api_key, "format": "json"}
        if extra:
            data.update(extra)

        start = time.monotonic()
        status = "error"
        try:
            try:
                response = self.session.post(url, data=data, timeout=self.timeout)
                response.raise_for_status()
            except requests.RequestException as e:
                raise UptimeRobotError(method, f"request failed: {e}") from e

            try:
                payload = response.json()
            except ValueError as e:
                raise UptimeRobotError(method, f"cannot parse JSON: {e}") from e

            if not isinstance(payload, dict):
                raise UptimeRobotError(method, "unexpected JSON payload")
            if payload.get("stat") != "ok":
                error = payload.get("error") or {}
                message = error.get("message") if isinstance(error, dict) else None
                raise UptimeRobotError(method, f"API returned stat={payload.get('stat')!r}: {message or 'no details'}")

            status = "success"
            return payload
        finally:
            if self._observer is not None:
                self._observer(method, status, time.monotonic() - start)

    def fetch_account(self) -> AccountSnapshot:
        payload = self._post("getAccountDetails")
        account = payload.get("account")
        if not isinstance(account, dict):
            raise UptimeRobotError("getAccountDetails", "response has no account object")
        try:
            return AccountSnapshot.from_dict(account)
        except (TypeError, ValueError, AttributeError) as e:
            raise UptimeRobotError("getAccountDetails", f"malformed payload: {e}") from e

    def fetch_monitors(self, include_response_times: bool = True, response_times_limit: int = 1) -> List[MonitorRecord]:
        """Fetch every monitor of the account, following pagination.

        Any failing page fails the whole fetch: a partial list would look like
        monitors were removed.
        """
        params: Dict[str, Any] = {"limit": MONITORS_PAGE_LIMIT}
        if include_response_times:
            params["response_times"] = "1"
            params["response_times_limit"] = str(response_times_limit)

        monitors: List[MonitorRecord] = []
        offset = 0
        while True:
            payload = self._post("getMonitors", dict(params, offset=offset))
            page = payload.get("monitors") or []
            if not isinstance(page, list):
                raise UptimeRobotError("getMonitors", "monitors is not a list")
            try:
                monitors.extend(MonitorRecord.from_dict(item) for item in page)
                pagination = payload.get("pagination") or {}
                total = int(pagination.get("total") or 0)
            except (TypeError, ValueError, AttributeError) as e:
                raise UptimeRobotError("getMonitors", f"malformed payload: {e}") from e
            offset += len(page)
            if not page or offset >= total:
                break
            logger.debug(f"Fetched {offset}/{total} monitors, requesting next page")

        return monitors
