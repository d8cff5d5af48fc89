"""HTTP client with retry/backoff, request metrics and paid-call budgeting."""
from __future__ import annotations

import json
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import requests

from .errors import BudgetExceededError, UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

REQUEST_KINDS = ("osm", "google")
RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


def _check_kind(kind: str) -> None:
    if kind not in REQUEST_KINDS:
        raise ValueError(f"Unknown request kind: {kind}")


@dataclass
class RequestMetrics:
    network_osm: int = 0
    network_google: int = 0
    failures_osm: int = 0
    failures_google: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def osm_count(self) -> int:
        return self.network_osm

    @property
    def google_count(self) -> int:
        return self.network_google

    def inc_network(self, kind: str) -> None:
        _check_kind(kind)
        with self._lock:
            setattr(self, f"network_{kind}", getattr(self, f"network_{kind}") + 1)

    def inc_failure(self, kind: str) -> None:
        _check_kind(kind)
        with self._lock:
            setattr(self, f"failures_{kind}", getattr(self, f"failures_{kind}") + 1)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return {
                "network_osm": self.network_osm,
                "network_google": self.network_google,
                "failures_osm": self.failures_osm,
                "failures_google": self.failures_google,
            }


class RequestBudget:
    """Caps paid calls within one search.

    OSM calls are free and only counted; Google calls raise
    BudgetExceededError once `max_google` is reached.
    """

    def __init__(
        self,
        max_google: int,
        on_consume: Optional[Callable[[str, int, int], None]] = None,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.max_google = max_google
        self.on_consume = on_consume
        self.metrics = metrics
        self._osm_count = 0
        self._google_count = 0
        self._lock = threading.Lock()

    @property
    def osm_count(self) -> int:
        return self._osm_count

    @property
    def google_count(self) -> int:
        return self._google_count

    @property
    def google_remaining(self) -> int:
        return max(0, self.max_google - self._google_count)

    def consume(self, kind: str) -> None:
        _check_kind(kind)
        with self._lock:
            if kind == "google":
                if self._google_count >= self.max_google:
                    raise BudgetExceededError(
                        f"Google request budget exceeded: {self._google_count} >= {self.max_google}",
                        provider="google",
                    )
                self._google_count += 1
            else:
                self._osm_count += 1
        if self.metrics is not None:
            self.metrics.inc_network(kind)
        if self.on_consume:
            self.on_consume(kind, self._osm_count, self._google_count)


class HttpClient:
    def __init__(
        self,
        timeout: float = 10.0,
        retry_max: int = 2,
        backoff_base: float = 0.5,
        backoff_max: float = 4.0,
        default_headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.timeout = timeout
        self.retry_max = max(1, int(retry_max))
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.default_headers = dict(default_headers or {})
        self.session = requests.Session()

    def post_json(
        self,
        url: str,
        body: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        merged = {"Content-Type": "application/json"}
        merged.update(headers or {})
        return self._request("post", url, data=json.dumps(body), headers=merged)

    def post_text(
        self,
        url: str,
        text: str,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        merged = {"Content-Type": "text/plain"}
        merged.update(headers or {})
        return self._request("post", url, data=text.encode("utf-8"), headers=merged)

    def get_json(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return self._request("get", url, headers=dict(headers or {}), params=params)

    def close(self) -> None:
        self.session.close()

    def _request(self, method: str, url: str, headers: Dict[str, str], **kwargs: Any) -> Dict[str, Any]:
        all_headers = dict(self.default_headers)
        all_headers.update(headers)
        send = getattr(self.session, method)

        for attempt in range(1, self.retry_max + 1):
            try:
                resp = send(url, headers=all_headers, timeout=self.timeout, **kwargs)
            except requests.Timeout as exc:
                if attempt >= self.retry_max:
                    raise UpstreamTimeoutError(f"Request to {url} timed out after {self.timeout}s") from exc
                self._sleep_backoff(attempt)
                continue
            except requests.RequestException as exc:
                if attempt >= self.retry_max:
                    raise UpstreamError(f"Request to {url} failed: {exc}") from exc
                self._sleep_backoff(attempt)
                continue

            status = resp.status_code
            if status == 200:
                try:
                    return resp.json()
                except ValueError as exc:
                    logger.error("Non-JSON response from %s", url)
                    raise UpstreamError(f"Non-JSON response from {url}") from exc

            if status in RETRYABLE_STATUSES:
                logger.warning("HTTP %s from %s (attempt %s)", status, url, attempt)
                if attempt >= self.retry_max:
                    raise UpstreamError(f"HTTP {status} from {url}")
                if not self._sleep_retry_after(resp):
                    self._sleep_backoff(attempt)
                continue

            # Non-retryable
            logger.error("HTTP %s from %s", status, url)
            raise UpstreamError(f"HTTP {status} from {url}")

        raise RuntimeError("Unexpected HTTP retry loop exit")

    def _sleep_backoff(self, attempt: int) -> None:
        base = min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)
        jitter = random.uniform(0, self.backoff_base)
        time.sleep(base + jitter)

    def _sleep_retry_after(self, resp: requests.Response) -> bool:
        retry_after = resp.headers.get("Retry-After")
        if not retry_after:
            return False
        try:
            delay = float(retry_after)
        except ValueError:
            return False
        delay = max(0.0, min(delay, self.backoff_max))
        time.sleep(delay)
        return True
