"""A network that resolves names over DNS-over-HTTPS and dials via a dialer."""

from __future__ import annotations

import http.client
import ipaddress
import random
import socket
import ssl
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

import httpx

from .base import (
    DEFAULT_HTTP_TIMEOUT,
    DNS_TIMEOUT,
    Dialer,
    NetworkError,
)
from .default import _split_host_port
from .dns_resolver import DNSResolver

DialFunc = Callable[[str, str], socket.socket]


def _join_host_port(host: str, port: int | str) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _is_ip(text: str) -> bool:
    try:
        ipaddress.ip_address(text)
    except ValueError:
        return False
    return True


class _DialedHTTPConnection(http.client.HTTPConnection):
    def __init__(
        self,
        host: str,
        port: int,
        dial_func: DialFunc,
        timeout: float,
        tls_context: ssl.SSLContext | None,
    ) -> None:
        super().__init__(host, port, timeout=timeout)
        self._dial_func = dial_func
        self._tls_context = tls_context

    def connect(self) -> None:
        sock = self._dial_func("tcp", _join_host_port(self.host, self.port))
        sock.settimeout(self.timeout)
        if self._tls_context is not None:
            sock = self._tls_context.wrap_socket(sock, server_hostname=self.host)
        self.sock = sock


class _DialingTransport(httpx.BaseTransport):
    """HTTP/1.1 transport that opens connections through a dial function."""

    def __init__(self, user_agent: str, timeout: float, dial_func: DialFunc) -> None:
        self._user_agent = user_agent
        self._timeout = timeout
        self._dial_func = dial_func
        self._tls_context = ssl.create_default_context()

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        request.headers["User-Agent"] = self._user_agent

        url = request.url
        if url.scheme not in ("http", "https"):
            raise httpx.UnsupportedProtocol(
                f"unsupported URL scheme {url.scheme!r}", request=request
            )
        tls = url.scheme == "https"
        port = url.port or (443 if tls else 80)
        conn = _DialedHTTPConnection(
            url.host,
            port,
            self._dial_func,
            self._timeout,
            self._tls_context if tls else None,
        )
        body = request.read()

        try:
            try:
                conn.connect()
            except (OSError, NetworkError) as err:
                raise httpx.ConnectError(str(err), request=request) from err

            try:
                conn.putrequest(
                    request.method,
                    url.raw_path.decode("ascii"),
                    skip_host=True,
                    skip_accept_encoding=True,
                )
                for name, value in request.headers.multi_items():
                    conn.putheader(name, value)
                conn.endheaders(body or None)
                response = conn.getresponse()
                content = response.read()
            except socket.timeout as err:
                raise httpx.ReadTimeout(str(err), request=request) from err
            except http.client.HTTPException as err:
                raise httpx.RemoteProtocolError(str(err), request=request) from err
            except OSError as err:
                raise httpx.ReadError(str(err), request=request) from err
        finally:
            conn.close()

        return httpx.Response(
            response.status,
            headers=response.getheaders(),
            content=content,
            request=request,
        )


def _make_http_client(user_agent: str, timeout: float, dial_func: DialFunc) -> httpx.Client:
    return httpx.Client(
        timeout=timeout,
        transport=_DialingTransport(user_agent, timeout, dial_func),
    )


class Network(Dialer):
    """Dial hostnames by resolving them over DNS-over-HTTPS first."""

    def __init__(
        self,
        dialer: Dialer,
        user_agent: str,
        doh_hostname: str,
        http_timeout: float = 0,
    ) -> None:
        if http_timeout < 0:
            raise ValueError(f"timeout should be positive number {http_timeout}")
        if http_timeout == 0:
            http_timeout = DEFAULT_HTTP_TIMEOUT
        if not _is_ip(doh_hostname):
            raise ValueError(f"hostname {doh_hostname} should be IP address")

        self.dialer = dialer
        self.user_agent = user_agent
        self.http_timeout = http_timeout
        self.dns = DNSResolver(
            doh_hostname, _make_http_client(user_agent, DNS_TIMEOUT, dialer.dial)
        )

    def dial(self, protocol: str, address: str) -> socket.socket:
        try:
            host, port = _split_host_port(address)
        except ValueError:
            host, port = "", ""

        try:
            ips = self._dns_resolve(protocol, host)
        except NetworkError as err:
            raise NetworkError(f"cannot resolve dns names: {err}") from err

        random.shuffle(ips)

        last_error: Exception | None = None
        for ip in ips:
            try:
                return self.dialer.dial(protocol, _join_host_port(ip, port))
            except Exception as err:  # any dialer failure means: try the next IP
                last_error = err

        raise NetworkError(
            f"cannot dial to {protocol}:{address}: {last_error}"
        ) from last_error

    def make_http_client(self, dial_func: DialFunc | None = None) -> httpx.Client:
        """Build an HTTP client that dials through ``dial_func`` or this network."""
        return _make_http_client(self.user_agent, self.http_timeout, dial_func or self.dial)

    def _dns_resolve(self, protocol: str, address: str) -> list[str]:
        if _is_ip(address):
            return [address]

        lookups = []
        if protocol in ("tcp", "tcp4"):
            lookups.append(self.dns.lookup_a)
        if protocol in ("tcp", "tcp6"):
            lookups.append(self.dns.lookup_aaaa)

        ips: list[str] = []
        if lookups:
            with ThreadPoolExecutor(max_workers=len(lookups)) as pool:
                for resolved in pool.map(lambda lookup: lookup(address), lookups):
                    ips.extend(resolved)

        if not ips:
            raise NetworkError(f"cannot find any ips for {protocol}:{address}")
        return ips