"""Rate-limit usage parsing from API response headers.

The platform reports quota consumption in one of two JSON headers: the
business-use-case usage header and the app usage header. Header names are
matched case-insensitively and the business-use-case header wins when both
are present.
"""

import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

BUSINESS_USE_CASE_USAGE_HEADER = "X-Business-Use-Case-Usage"
APP_USAGE_HEADER = "X-App-Usage"

USAGE_HEADERS = (BUSINESS_USE_CASE_USAGE_HEADER, APP_USAGE_HEADER)


def _decode_header_value(value: Any) -> Any:
    """Decode a JSON header payload; undecodable text is returned as-is."""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def get_usage_data(headers: Optional[Mapping[str, Any]]) -> Any:
    """
    Find the usage payload in a set of response headers.

    Args:
        headers: Response headers (plain mapping or httpx.Headers)

    Returns:
        The decoded payload of the first usage header found, or an empty dict
    """
    if not headers:
        return {}

    for header_name in USAGE_HEADERS:
        wanted = header_name.lower()
        for name, value in headers.items():
            if str(name).lower() == wanted:
                return _decode_header_value(value)
    return {}


def _coerce_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            try:
                return int(float(text))
            except ValueError:
                return None
    return None


def usage_field(usage: Any, key: str) -> Optional[int]:
    """Integer value of one usage field, None when absent or malformed."""
    if not isinstance(usage, Mapping):
        return None
    return _coerce_int(usage.get(key))


@dataclass(frozen=True)
class RateLimitUsage:
    """Quota consumption reported by the most recent response."""
    call_count: int = 0
    total_time: int = 0
    total_cputime: int = 0
    estimated_time_to_regain_access: Optional[int] = None

    @classmethod
    def from_headers(cls, headers: Optional[Mapping[str, Any]]) -> "RateLimitUsage":
        usage = get_usage_data(headers)
        regain = usage_field(usage, "estimated_time_to_regain_access")
        return cls(
            call_count=usage_field(usage, "call_count") or 0,
            total_time=usage_field(usage, "total_time") or 0,
            total_cputime=usage_field(usage, "total_cputime") or 0,
            estimated_time_to_regain_access=regain or None,
        )

    @property
    def is_throttled(self) -> bool:
        return self.estimated_time_to_regain_access is not None


@runtime_checkable
class RateLimitAware(Protocol):
    """Something that can report rate-limit usage from response headers."""

    def get_rate_limit_usage(self, headers: Mapping[str, Any]) -> int:
        ...

    def get_rate_limit_estimated_time_to_regain_access(self, headers: Mapping[str, Any]) -> Optional[int]:
        ...


class RateLimitedResponseMixin:
    """Header-driven rate-limit accessors shared by response types."""

    def get_usage_data(self, headers: Mapping[str, Any]) -> Any:
        return get_usage_data(headers)

    def get_rate_limit_usage(self, headers: Mapping[str, Any]) -> int:
        return usage_field(get_usage_data(headers), "call_count") or 0

    def get_rate_limit_total_time(self, headers: Mapping[str, Any]) -> int:
        return usage_field(get_usage_data(headers), "total_time") or 0

    def get_rate_limit_total_cpu_time(self, headers: Mapping[str, Any]) -> int:
        return usage_field(get_usage_data(headers), "total_cputime") or 0

    def get_rate_limit_estimated_time_to_regain_access(self, headers: Mapping[str, Any]) -> Optional[int]:
        """
        Seconds until access is regained.

        Returns None both when the field is missing and when it is zero, so
        callers never block on a zero-second estimate.
        """
        return usage_field(get_usage_data(headers), "estimated_time_to_regain_access") or None
