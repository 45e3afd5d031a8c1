"""Tuning of TCP socket options for client and server connections."""

from __future__ import annotations

import socket
import struct
import sys

from .base import TCP_LINGER_TIMEOUT, NetworkError

_IS_WINDOWS = sys.platform == "win32"


def _ensure_tcp(sock: socket.socket) -> None:
    if sock.type != socket.SOCK_STREAM or sock.family not in (
        socket.AF_INET,
        socket.AF_INET6,
    ):
        raise NetworkError("socket is not a TCP socket")


def _set(sock: socket.socket, level: int, option: int, value, action: str) -> None:
    try:
        sock.setsockopt(level, option, value)
    except OSError as err:
        raise NetworkError(f"cannot {action}: {err}") from err


def set_client_socket_options(sock: socket.socket, buffer_size: int) -> None:
    """Tune a socket that talks to an end user."""
    _ensure_tcp(sock)
    _set(sock, socket.IPPROTO_TCP, socket.TCP_NODELAY, 0, "disable TCP_NODELAY")
    _set_common_socket_options(sock, buffer_size)


def set_server_socket_options(sock: socket.socket, buffer_size: int) -> None:
    """Tune a socket that talks to a remote server such as Telegram."""
    _ensure_tcp(sock)
    _set(sock, socket.IPPROTO_TCP, socket.TCP_NODELAY, 1, "enable TCP_NODELAY")
    _set_common_socket_options(sock, buffer_size)


def _set_common_socket_options(sock: socket.socket, buffer_size: int) -> None:
    _set(sock, socket.SOL_SOCKET, socket.SO_RCVBUF, buffer_size, "set read buffer size")
    _set(sock, socket.SOL_SOCKET, socket.SO_SNDBUF, buffer_size, "set write buffer size")
    _set(sock, socket.SOL_SOCKET, socket.SO_KEEPALIVE, 0, "disable TCP keepalive probes")

    linger_format = "hh" if _IS_WINDOWS else "ii"
    _set(
        sock,
        socket.SOL_SOCKET,
        socket.SO_LINGER,
        struct.pack(linger_format, 1, TCP_LINGER_TIMEOUT),
        "set TCP linger timeout",
    )

    if _IS_WINDOWS:
        return

    _set(sock, socket.SOL_SOCKET, socket.SO_REUSEADDR, 1, "set SO_REUSEADDR")
    if hasattr(socket, "SO_REUSEPORT"):
        _set(sock, socket.SOL_SOCKET, socket.SO_REUSEPORT, 1, "set SO_REUSEPORT")