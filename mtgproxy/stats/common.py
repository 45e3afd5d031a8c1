"""Metric names, tag names and per-stream bookkeeping shared by observers."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field

DEFAULT_METRIC_PREFIX = "mtg"
DEFAULT_STATSD_METRIC_PREFIX = DEFAULT_METRIC_PREFIX + "."
DEFAULT_STATSD_TAG_FORMAT = "datadog"

METRIC_CLIENT_CONNECTIONS = "client_connections"
METRIC_TELEGRAM_CONNECTIONS = "telegram_connections"
METRIC_DOMAIN_FRONTING_CONNECTIONS = "domain_fronting_connections"
METRIC_TELEGRAM_TRAFFIC = "telegram_traffic"
METRIC_DOMAIN_FRONTING_TRAFFIC = "domain_fronting_traffic"
METRIC_DOMAIN_FRONTING = "domain_fronting"
METRIC_CONCURRENCY_LIMITED = "concurrency_limited"
METRIC_IP_BLOCKLISTED = "ip_blocklisted"
METRIC_REPLAY_ATTACKS = "replay_attacks"

TAG_IP_FAMILY = "ip_family"
TAG_IP_FAMILY_IPV4 = "ipv4"
TAG_IP_FAMILY_IPV6 = "ipv6"
TAG_TELEGRAM_IP = "telegram_ip"
TAG_DC = "dc"
TAG_DIRECTION = "direction"
TAG_DIRECTION_TO_CLIENT = "to_client"
TAG_DIRECTION_FROM_CLIENT = "from_client"


@dataclass
class StreamInfo:
    """What an observer remembers about one client stream."""

    is_domain_fronted: bool = False
    tags: dict[str, str] = field(default_factory=dict)

    def tag(self, key: str) -> tuple[str, str]:
        """Return the ``(name, value)`` tag for ``key``; missing values are ''."""
        return key, self.tags.get(key, "")

    def reset(self) -> None:
        """Forget everything about the stream."""
        self.is_domain_fronted = False
        self.tags.clear()


def get_direction(is_read: bool) -> str:
    """Return the traffic direction tag value for a read or a write."""
    return TAG_DIRECTION_TO_CLIENT if is_read else TAG_DIRECTION_FROM_CLIENT


def _parse_ip(remote_ip: object) -> ipaddress.IPv4Address | ipaddress.IPv6Address:
    ip = ipaddress.ip_address(str(remote_ip))
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def ip_family(remote_ip: object) -> str:
    """Return the ip_family tag value of an address."""
    if _parse_ip(remote_ip).version == 4:
        return TAG_IP_FAMILY_IPV4
    return TAG_IP_FAMILY_IPV6


def ip_to_string(remote_ip: object) -> str:
    """Return the canonical text form of an address."""
    return str(_parse_ip(remote_ip))