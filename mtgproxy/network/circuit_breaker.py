"""A dialer wrapper that stops dialing after repeated failures."""

from __future__ import annotations

import socket
import threading
from enum import Enum
from typing import Callable

from .base import CircuitBreakerOpenedError, Dialer


class CircuitState(Enum):
    """States of a circuit breaker."""

    CLOSED = "closed"
    HALF_OPENED = "half_opened"
    OPENED = "opened"


class CircuitBreakerDialer(Dialer):
    """Wrap a dialer with a three-state circuit breaker.

    While CLOSED every dial goes through; after ``open_threshold`` failures
    the breaker OPENS and rejects all dials. After ``half_open_timeout``
    seconds it becomes HALF_OPENED and lets a single dial through: success
    closes it, failure opens it again. While closed, the failure counter is
    cleared every ``reset_failures_timeout`` seconds.
    """

    def __init__(
        self,
        base_dialer: Dialer,
        open_threshold: int,
        half_open_timeout: float,
        reset_failures_timeout: float,
    ) -> None:
        self.base_dialer = base_dialer
        self.open_threshold = open_threshold
        self.half_open_timeout = half_open_timeout
        self.reset_failures_timeout = reset_failures_timeout

        self._lock = threading.Lock()
        self._half_open_timer: threading.Timer | None = None
        self._failures_cleanup_timer: threading.Timer | None = None
        self._failures_count = 0
        self._half_open_attempted = False
        self._state = CircuitState.CLOSED
        self._closed = False

        with self._lock:
            self._switch_state(CircuitState.CLOSED)

    @property
    def state(self) -> CircuitState:
        """The current state of the breaker."""
        return self._state

    def dial(self, network: str, address: str) -> socket.socket:
        state = self._state
        if state is CircuitState.CLOSED:
            return self._dial_closed(network, address)
        if state is CircuitState.HALF_OPENED:
            return self._dial_half_opened(network, address)
        raise CircuitBreakerOpenedError()

    def close(self) -> None:
        """Stop all background timers."""
        with self._lock:
            self._closed = True
            self._half_open_timer = _cancel(self._half_open_timer)
            self._failures_cleanup_timer = _cancel(self._failures_cleanup_timer)

    def __enter__(self) -> "CircuitBreakerDialer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _dial_closed(self, network: str, address: str) -> socket.socket:
        try:
            conn = self.base_dialer.dial(network, address)
        except Exception:
            with self._lock:
                self._failures_count += 1
                if (
                    self._state is CircuitState.CLOSED
                    and self._failures_count >= self.open_threshold
                ):
                    self._switch_state(CircuitState.OPENED)
            raise

        with self._lock:
            self._switch_state(CircuitState.CLOSED)
        return conn

    def _dial_half_opened(self, network: str, address: str) -> socket.socket:
        with self._lock:
            if self._half_open_attempted:
                raise CircuitBreakerOpenedError()
            self._half_open_attempted = True

        try:
            conn = self.base_dialer.dial(network, address)
        except Exception:
            with self._lock:
                if self._state is CircuitState.HALF_OPENED:
                    self._switch_state(CircuitState.OPENED)
            raise

        with self._lock:
            if self._state is CircuitState.HALF_OPENED:
                self._switch_state(CircuitState.CLOSED)
        return conn

    def _switch_state(self, state: CircuitState) -> None:
        if state is CircuitState.CLOSED:
            self._half_open_timer = _cancel(self._half_open_timer)
            self._failures_cleanup_timer = self._ensure_timer(
                self._failures_cleanup_timer,
                self.reset_failures_timeout,
                self._reset_failures,
            )
        elif state is CircuitState.HALF_OPENED:
            self._failures_cleanup_timer = _cancel(self._failures_cleanup_timer)
            self._half_open_timer = _cancel(self._half_open_timer)
        else:
            self._failures_cleanup_timer = _cancel(self._failures_cleanup_timer)
            self._half_open_timer = self._ensure_timer(
                self._half_open_timer, self.half_open_timeout, self._try_half_open
            )

        self._failures_count = 0
        self._half_open_attempted = False
        self._state = state

    def _reset_failures(self) -> None:
        with self._lock:
            self._failures_cleanup_timer = _cancel(self._failures_cleanup_timer)
            if self._state is CircuitState.CLOSED:
                self._switch_state(CircuitState.CLOSED)

    def _try_half_open(self) -> None:
        with self._lock:
            if self._state is CircuitState.OPENED:
                self._switch_state(CircuitState.HALF_OPENED)

    def _ensure_timer(
        self,
        timer: threading.Timer | None,
        timeout: float,
        callback: Callable[[], None],
    ) -> threading.Timer | None:
        if timer is not None or self._closed:
            return timer
        timer = threading.Timer(timeout, callback)
        timer.daemon = True
        timer.start()
        return timer


def _cancel(timer: threading.Timer | None) -> None:
    if timer is not None:
        timer.cancel()
    return None