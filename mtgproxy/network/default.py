"""A dialer that connects directly, bypassing any proxies."""

from __future__ import annotations

import socket

from .base import DEFAULT_BUFFER_SIZE, DEFAULT_TIMEOUT, Dialer, NetworkError
from .sockopts import set_server_socket_options

_FAMILIES = {
    "tcp": socket.AF_UNSPEC,
    "tcp4": socket.AF_INET,
    "tcp6": socket.AF_INET6,
}


def _split_host_port(address: str) -> tuple[str, str]:
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise ValueError(f"address {address}: missing ']' in address")
        host = address[1:end]
        rest = address[end + 1 :]
        if not rest.startswith(":"):
            raise ValueError(f"address {address}: missing port in address")
        return host, rest[1:]

    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"address {address}: missing port in address")
    if ":" in host:
        raise ValueError(f"address {address}: too many colons in address")
    return host, port


class DefaultDialer(Dialer):
    """Dial TCP connections directly and tune their sockets."""

    def __init__(self, timeout: float = 0, buffer_size: int = 0) -> None:
        if timeout < 0:
            raise ValueError(f"timeout {timeout} should be positive number")
        if buffer_size < 0:
            raise ValueError(f"buffer size {buffer_size} should be positive number")

        self.timeout = timeout or DEFAULT_TIMEOUT
        self.buffer_size = buffer_size or DEFAULT_BUFFER_SIZE

    def dial(self, network: str, address: str) -> socket.socket:
        family = _FAMILIES.get(network)
        if family is None:
            raise NetworkError(f"unsupported network {network}")

        try:
            sock = self._connect(family, address)
        except (OSError, ValueError) as err:
            raise NetworkError(f"cannot dial to {address}: {err}") from err

        try:
            set_server_socket_options(sock, self.buffer_size)
        except NetworkError as err:
            sock.close()
            raise NetworkError(f"cannot set socket options: {err}") from err

        return sock

    def _connect(self, family: int, address: str) -> socket.socket:
        host, port = _split_host_port(address)
        infos = socket.getaddrinfo(host or None, port, family, socket.SOCK_STREAM)
        if not infos:
            raise OSError(f"no addresses found for {address}")

        last_error: OSError | None = None
        for af, socktype, proto, _, sockaddr in infos:
            sock = socket.socket(af, socktype, proto)
            try:
                sock.settimeout(self.timeout)
                sock.connect(sockaddr)
                sock.settimeout(None)
            except OSError as err:
                sock.close()
                last_error = err
                continue
            return sock

        assert last_error is not None
        raise last_error