"""HTTP transport for the Ziit API.

Thin wrapper around :mod:`requests` that sends single and batched heartbeats
and fetches today's usage summary. Every failure is raised as
:class:`ApiError`, which carries the HTTP status code (if any) so callers can
tell an authorization failure from any other failure.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import requests

from ziit_watcher.heartbeat import Heartbeat

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["ApiError", "DailySummary", "SummaryEntry", "ZiitApi", "DEFAULT_BASE_URL"]

DEFAULT_BASE_URL = "https://ziit.app"
DEFAULT_TIMEOUT = 10.0

HEARTBEAT_ENDPOINT = "/api/external/heartbeats"
BATCH_ENDPOINT = "/api/external/batch"
STATS_ENDPOINT = "/api/external/stats"


class ApiError(Exception):
    """A failed request to the Ziit API.

    Attributes:
        status_code (Optional[int]): HTTP status, or None for transport errors.
        message (str): Human-readable description.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def is_auth_failure(self) -> bool:
        """True for HTTP 401 or an explicit invalid-key message."""
        return self.status_code == 401 or "invalid api key" in self.message.lower()

    def __repr__(self) -> str:
        return f"<ApiError status={self.status_code} message={self.message!r}>"


@dataclass
class SummaryEntry:
    date: str
    total_seconds: int
    hourly_data: Optional[List[int]] = None


@dataclass
class DailySummary:
    """Aggregate usage returned by the stats endpoint."""

    summaries: List[SummaryEntry] = field(default_factory=list)
    timezone: str = ""

    @property
    def today_seconds(self) -> Optional[int]:
        if not self.summaries:
            return None
        return self.summaries[0].total_seconds

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DailySummary:
        """Parse the stats response body.

        Raises:
            ValueError: If the body does not have the expected shape.
        """
        if not isinstance(data, dict):
            raise ValueError("Summary response must be a JSON object")
        entries = []
        for raw in data.get("summaries") or []:
            try:
                hourly = raw.get("hourlyData")
                entries.append(
                    SummaryEntry(
                        date=str(raw["date"]),
                        total_seconds=int(raw["totalSeconds"]),
                        hourly_data=[int(h.get("seconds", 0)) for h in hourly] if hourly else None,
                    )
                )
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise ValueError(f"Malformed summary entry: {e}") from e
        return cls(summaries=entries, timezone=str(data.get("timezone", "")))


def _mask_key(api_key: str) -> str:
    return f"{api_key[:8]}..."


class ZiitApi:
    """Request/response contract with the Ziit server.

    Args:
        timeout (float): Per-request timeout in seconds.
        session (Optional[requests.Session]): Session to reuse. A new one is created if omitted.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None) -> None:
        self.timeout = timeout
        self.session = session or requests.Session()

    @staticmethod
    def _url(base_url: str, path: str) -> str:
        return base_url.rstrip("/") + path

    @staticmethod
    def _headers(api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _request(
        self,
        method: str,
        url: str,
        api_key: str,
        json_body: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        logger.debug("%s %s (Authorization: Bearer %s)", method, url, _mask_key(api_key))
        try:
            response = self.session.request(
                method,
                url,
                json=json_body,
                params=params,
                headers=self._headers(api_key),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise ApiError(f"Network error: {e}") from e

        if not response.ok:
            body = (response.text or "")[:500]
            logger.debug("Request failed with status %s: %s", response.status_code, body)
            raise ApiError(f"HTTP {response.status_code}: {body}", status_code=response.status_code)
        return response

    def send_heartbeat(self, base_url: str, api_key: str, heartbeat: Heartbeat) -> None:
        """POST a single heartbeat."""
        self._request("POST", self._url(base_url, HEARTBEAT_ENDPOINT), api_key, json_body=heartbeat.to_dict())
        logger.debug("Heartbeat sent for %s", heartbeat.file)

    def send_batch(self, base_url: str, api_key: str, heartbeats: Sequence[Heartbeat]) -> None:
        """POST a batch of heartbeats in one request."""
        logger.debug("Sending %d heartbeats in batch", len(heartbeats))
        self._request(
            "POST",
            self._url(base_url, BATCH_ENDPOINT),
            api_key,
            json_body=[hb.to_dict() for hb in heartbeats],
        )

    def fetch_summary(self, base_url: str, api_key: str) -> DailySummary:
        """GET today's aggregate usage, with "today" anchored at local midnight."""
        offset = datetime.now().astimezone().utcoffset()
        params = {
            "timeRange": "today",
            "midnightOffsetSeconds": int(offset.total_seconds()) if offset else 0,
            "t": int(time.time() * 1000),
        }
        response = self._request("GET", self._url(base_url, STATS_ENDPOINT), api_key, params=params)
        try:
            return DailySummary.from_dict(response.json())
        except ValueError as e:
            # requests raises a ValueError subclass for undecodable JSON
            raise ApiError(f"Invalid summary response: {e}", status_code=response.status_code) from e

    def close(self) -> None:
        self.session.close()
