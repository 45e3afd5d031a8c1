"""A caching DNS-over-HTTPS resolver."""

from __future__ import annotations

import ipaddress
import threading
import time
from dataclasses import dataclass

import dns.exception
import dns.message
import dns.rcode
import dns.rdatatype
import httpx

DNS_RESOLVER_KEEP_TIME = 10 * 60.0

_DNS_MESSAGE_TYPE = "application/dns-message"


class _DoHError(Exception):
    pass


@dataclass(frozen=True)
class _CacheEntry:
    ips: tuple[str, ...]
    created_at: float

    def is_fresh(self) -> bool:
        return time.monotonic() - self.created_at < DNS_RESOLVER_KEEP_TIME


class DNSResolver:
    """Resolve A and AAAA records over DNS-over-HTTPS and cache the answers."""

    def __init__(self, hostname: str, http_client: httpx.Client) -> None:
        try:
            is_ipv4 = ipaddress.ip_address(hostname).version == 4
        except ValueError:
            is_ipv4 = False
        host = hostname if is_ipv4 else f"[{hostname}]"

        self.url = f"https://{host}/dns-query"
        self.http_client = http_client
        self._cache: dict[tuple[dns.rdatatype.RdataType, str], _CacheEntry] = {}
        self._lock = threading.Lock()

    def lookup_a(self, hostname: str) -> list[str]:
        """Return the IPv4 addresses of ``hostname``, or [] on failure."""
        return self._lookup(hostname, dns.rdatatype.A)

    def lookup_aaaa(self, hostname: str) -> list[str]:
        """Return the IPv6 addresses of ``hostname``, or [] on failure."""
        return self._lookup(hostname, dns.rdatatype.AAAA)

    def _lookup(self, hostname: str, rdtype: dns.rdatatype.RdataType) -> list[str]:
        key = (rdtype, hostname)
        with self._lock:
            entry = self._cache.get(key)
        if entry is not None and entry.is_fresh():
            return list(entry.ips)

        try:
            ips = self._query(hostname, rdtype)
        except (httpx.HTTPError, dns.exception.DNSException, _DoHError, ValueError):
            return []

        with self._lock:
            self._cache[key] = _CacheEntry(tuple(ips), time.monotonic())
        return ips

    def _query(self, hostname: str, rdtype: dns.rdatatype.RdataType) -> list[str]:
        query = dns.message.make_query(hostname, rdtype)
        query.id = 0
        response = self.http_client.post(
            self.url,
            content=query.to_wire(),
            headers={"Content-Type": _DNS_MESSAGE_TYPE, "Accept": _DNS_MESSAGE_TYPE},
        )
        response.raise_for_status()

        message = dns.message.from_wire(response.content)
        if message.rcode() != dns.rcode.NOERROR:
            raise _DoHError(f"DNS query failed: {dns.rcode.to_text(message.rcode())}")

        return [
            record.address
            for rrset in message.answer
            if rrset.rdtype == rdtype
            for record in rrset
        ]