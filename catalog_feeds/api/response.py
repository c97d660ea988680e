"""API response wrapper."""

from typing import Any, Dict, Mapping, Optional

import httpx

from catalog_feeds.api.rate_limit import RateLimitedResponseMixin, RateLimitUsage


class ApiResponse(RateLimitedResponseMixin):
    """Decoded JSON body plus headers of one API response."""

    def __init__(self, status_code: int, headers: Mapping[str, Any], body: Any = None):
        self.status_code = status_code
        self.headers = headers
        self.body = body if body is not None else {}
        self.usage = RateLimitUsage.from_headers(headers)

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> "ApiResponse":
        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {"raw": response.text}
        return cls(response.status_code, response.headers, body)

    def get(self, key: str, default: Any = None) -> Any:
        if isinstance(self.body, Mapping):
            return self.body.get(key, default)
        return default

    @property
    def id(self) -> Optional[str]:
        value = self.get("id")
        return str(value) if value is not None else None

    @property
    def error(self) -> Dict[str, Any]:
        error = self.get("error")
        return error if isinstance(error, dict) else {}

    @property
    def has_error(self) -> bool:
        return self.status_code >= 400 or bool(self.error)

    @property
    def error_code(self) -> Optional[int]:
        code = self.error.get("code")
        try:
            return int(code) if code is not None else None
        except (TypeError, ValueError):
            return None

    @property
    def error_message(self) -> str:
        return str(self.error.get("message") or f"HTTP {self.status_code}")
