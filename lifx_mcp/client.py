"""
LIFX HTTP Client

Thin wrapper over the LIFX HTTP API.

DESIGN RULES:
- The token is sent as a bearer header and nowhere else
- Short timeout (10s)
- HTTP and network failures raise LifxApiError with the API's own message
"""

import json
import logging
import socket
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.lifx.com/v1"


class LifxApiError(Exception):
    """A failed LIFX API call."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status

    @property
    def not_found(self) -> bool:
        return self.status == 404 or "could not find" in self.message.lower()


def _error_detail(body: bytes) -> Optional[str]:
    try:
        data = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if isinstance(data, dict):
        return data.get("error") or data.get("message")
    return None


class LifxClient:
    """Synchronous LIFX API client (one per worker process)."""

    DEFAULT_TIMEOUT = 10.0

    def __init__(self, token: str, base_url: str = DEFAULT_BASE_URL, timeout: float = DEFAULT_TIMEOUT):
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def _url(self, selector: str, suffix: str = "") -> str:
        return f"{self._base_url}/lights/{urllib.parse.quote(selector, safe=':,|')}{suffix}"

    def _request(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = urllib.request.Request(
            url,
            data=data,
            method=method,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )
        logger.debug(f"LIFX {method} {url}")
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as response:
                body = response.read()
        except urllib.error.HTTPError as e:
            detail = _error_detail(e.read()) or str(e.reason)
            raise LifxApiError(detail, status=e.code) from e
        except urllib.error.URLError as e:
            raise LifxApiError(f"LIFX API unreachable: {e.reason}") from e
        except socket.timeout as e:
            raise LifxApiError("LIFX API request timed out") from e

        if not body:
            return {}
        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise LifxApiError(f"Invalid response from LIFX API: {e}") from e

    def list_lights(self, selector: str = "all") -> List[Dict[str, Any]]:
        data = self._request("GET", self._url(selector))
        return data if isinstance(data, list) else []

    def set_state(self, selector: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", self._url(selector, "/state"), payload)

    def toggle(self, selector: str, duration: float = 1.0) -> Dict[str, Any]:
        return self._request("POST", self._url(selector, "/toggle"), {"duration": duration})

    def effect(self, selector: str, kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", self._url(selector, f"/effects/{kind}"), payload)
