"""Shared network errors, defaults and the dialer interface."""

from __future__ import annotations

import socket
from abc import ABC, abstractmethod

DEFAULT_TIMEOUT = 10.0
DEFAULT_HTTP_TIMEOUT = 10.0
DEFAULT_BUFFER_SIZE = 16 * 1024

PROXY_DIALER_OPEN_THRESHOLD = 5
PROXY_DIALER_HALF_OPEN_TIMEOUT = 60.0
PROXY_DIALER_RESET_FAILURES_TIMEOUT = 10.0

DEFAULT_DOH_HOSTNAME = "9.9.9.9"
DNS_TIMEOUT = 5.0

TCP_LINGER_TIMEOUT = 1


class NetworkError(Exception):
    """Base class of network errors."""


class CircuitBreakerOpenedError(NetworkError):
    """Raised when a proxy is accessed while its circuit breaker is open."""

    def __init__(self, message: str = "circuit breaker is opened") -> None:
        super().__init__(message)


class CannotDialWithAllProxiesError(NetworkError):
    """Raised when every proxy of a load-balanced dialer has failed."""

    def __init__(self, message: str = "cannot dial with all proxies") -> None:
        super().__init__(message)


class Dialer(ABC):
    """Something that opens TCP connections."""

    @abstractmethod
    def dial(self, network: str, address: str) -> socket.socket:
        """Connect to ``address`` over ``network`` and return the socket."""