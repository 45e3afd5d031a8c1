"""Circuit-breaking dialers configured from proxy URL query parameters."""

from __future__ import annotations

import re
from decimal import Decimal
from urllib.parse import SplitResult, ParseResult, parse_qs, urlsplit

from .base import (
    PROXY_DIALER_HALF_OPEN_TIMEOUT,
    PROXY_DIALER_OPEN_THRESHOLD,
    PROXY_DIALER_RESET_FAILURES_TIMEOUT,
    Dialer,
)
from .circuit_breaker import CircuitBreakerDialer

_UNIT_NANOSECONDS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}

_COMPONENT = r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)"
_DURATION = re.compile(rf"([+-]?)((?:{_COMPONENT})+)")
_COMPONENT_RE = re.compile(_COMPONENT)
_MAX_NANOSECONDS = 2**63 - 1
_MAX_UINT32 = 2**32 - 1


def parse_duration(text: str) -> float:
    """Parse a duration such as '1h30m' or '250ms' into seconds."""
    match = _DURATION.fullmatch(text)
    if match is None:
        if text.lstrip("+-") == "0" and len(text) - len(text.lstrip("+-")) <= 1:
            return 0.0
        raise ValueError(f"invalid duration {text!r}")

    sign, body = match.group(1), match.group(2)
    total = 0
    for number, unit in _COMPONENT_RE.findall(body):
        total += int(Decimal(number) * _UNIT_NANOSECONDS[unit])
        if total > _MAX_NANOSECONDS:
            raise ValueError(f"invalid duration {text!r}")

    if sign == "-":
        total = -total
    return total / 1_000_000_000


def _query_of(proxy_url: str | SplitResult | ParseResult) -> str:
    if isinstance(proxy_url, str):
        return urlsplit(proxy_url).query
    return proxy_url.query


def _positive_duration(value: str, default: float) -> float:
    try:
        duration = parse_duration(value)
    except ValueError:
        return default
    return duration if duration > 0 else default


def new_proxy_dialer(
    base_dialer: Dialer, proxy_url: str | SplitResult | ParseResult
) -> CircuitBreakerDialer:
    """Build a circuit breaker over ``base_dialer`` tuned by URL parameters.

    Recognised parameters are ``open_threshold``, ``half_open_timeout`` and
    ``reset_failures_timeout``; invalid values fall back to defaults.
    """
    params = {
        name: values[0]
        for name, values in parse_qs(_query_of(proxy_url), keep_blank_values=True).items()
    }

    open_threshold = PROXY_DIALER_OPEN_THRESHOLD
    half_open_timeout = PROXY_DIALER_HALF_OPEN_TIMEOUT
    reset_failures_timeout = PROXY_DIALER_RESET_FAILURES_TIMEOUT

    value = params.get("open_threshold", "")
    if re.fullmatch(r"\d+", value) and int(value) <= _MAX_UINT32:
        open_threshold = int(value)

    value = params.get("half_open_timeout", "")
    if value:
        half_open_timeout = _positive_duration(value, half_open_timeout)

    value = params.get("reset_failures_timeout", "")
    if value:
        reset_failures_timeout = _positive_duration(value, reset_failures_timeout)

    return CircuitBreakerDialer(
        base_dialer, open_threshold, half_open_timeout, reset_failures_timeout
    )