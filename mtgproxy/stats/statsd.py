"""An observer that reports proxy events to statsd over UDP."""

from __future__ import annotations

import logging
import socket
import threading
from enum import Enum

from .common import (
    METRIC_CLIENT_CONNECTIONS,
    METRIC_CONCURRENCY_LIMITED,
    METRIC_DOMAIN_FRONTING,
    METRIC_DOMAIN_FRONTING_CONNECTIONS,
    METRIC_DOMAIN_FRONTING_TRAFFIC,
    METRIC_IP_BLOCKLISTED,
    METRIC_REPLAY_ATTACKS,
    METRIC_TELEGRAM_CONNECTIONS,
    METRIC_TELEGRAM_TRAFFIC,
    TAG_DC,
    TAG_DIRECTION,
    TAG_IP_FAMILY,
    TAG_TELEGRAM_IP,
    StreamInfo,
    get_direction,
    ip_family,
    ip_to_string,
)

log = logging.getLogger(__name__)

Tag = tuple[str, str]


class TagFormat(Enum):
    """Ways of attaching tags to statsd metrics."""

    DATADOG = "datadog"
    INFLUXDB = "influxdb"
    GRAPHITE = "graphite"

    @classmethod
    def parse(cls, text: "str | TagFormat") -> "TagFormat":
        if isinstance(text, TagFormat):
            return text
        try:
            return cls(text.lower())
        except ValueError:
            raise ValueError(f"unknown tag format {text}") from None


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"address {address}: missing port in address")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host or "127.0.0.1", int(port)


class StatsdClient:
    """A small UDP statsd client with a metric prefix and a tag style."""

    def __init__(
        self,
        address: str,
        metric_prefix: str = "",
        tag_format: "str | TagFormat" = TagFormat.DATADOG,
    ) -> None:
        self.metric_prefix = metric_prefix
        self.tag_format = TagFormat.parse(tag_format)

        host, port = _split_address(address)
        family, socktype, proto, _, sockaddr = socket.getaddrinfo(
            host, port, 0, socket.SOCK_DGRAM
        )[0]
        self._sock = socket.socket(family, socktype, proto)
        self._sock.connect(sockaddr)
        self._lock = threading.Lock()
        self._closed = False

    def incr(self, name: str, value: int, *args: Tag) -> None:
        """Increment a counter by ``value``."""
        self._send(name, str(value), "c", args)

    def gauge_delta(self, name: str, delta: int, *args: Tag) -> None:
        """Change a gauge by ``delta``."""
        sign = "-" if delta < 0 else "+"
        self._send(name, f"{sign}{abs(delta)}", "g", args)

    def close(self) -> None:
        """Stop sending metrics and release the socket."""
        with self._lock:
            if not self._closed:
                self._closed = True
                self._sock.close()

    def _format(self, name: str, value: str, kind: str, tags: tuple[Tag, ...]) -> str:
        name = self.metric_prefix + name
        if self.tag_format is TagFormat.INFLUXDB:
            suffix = "".join(f",{key}={val}" for key, val in tags)
            return f"{name}{suffix}:{value}|{kind}"
        if self.tag_format is TagFormat.GRAPHITE:
            suffix = "".join(f";{key}={val}" for key, val in tags)
            return f"{name}{suffix}:{value}|{kind}"
        line = f"{name}:{value}|{kind}"
        if tags:
            line += "|#" + ",".join(f"{key}:{val}" for key, val in tags)
        return line

    def _send(self, name: str, value: str, kind: str, tags: tuple[Tag, ...]) -> None:
        payload = (self._format(name, value, kind, tags) + "\n").encode("utf-8")
        with self._lock:
            if self._closed:
                return
            try:
                self._sock.send(payload)
            except OSError as err:
                log.warning("cannot send metric to statsd: %s", err)


class StatsdProcessor:
    """Turn proxy events of one event stream into statsd metrics."""

    def __init__(self, client: StatsdClient) -> None:
        self.client = client
        self._streams: dict[str, StreamInfo] = {}

    def event_start(self, stream_id: str, remote_ip: object) -> None:
        info = StreamInfo()
        info.tags[TAG_IP_FAMILY] = ip_family(remote_ip)
        self._streams[stream_id] = info

        self.client.gauge_delta(METRIC_CLIENT_CONNECTIONS, 1, info.tag(TAG_IP_FAMILY))

    def event_connected_to_dc(self, stream_id: str, remote_ip: object, dc: int) -> None:
        info = self._streams.get(stream_id)
        if info is None:
            return

        info.tags[TAG_TELEGRAM_IP] = ip_to_string(remote_ip)
        info.tags[TAG_DC] = str(dc)

        self.client.gauge_delta(
            METRIC_TELEGRAM_CONNECTIONS, 1, info.tag(TAG_TELEGRAM_IP), info.tag(TAG_DC)
        )

    def event_domain_fronting(self, stream_id: str) -> None:
        info = self._streams.get(stream_id)
        if info is None:
            return

        info.is_domain_fronted = True

        self.client.incr(METRIC_DOMAIN_FRONTING, 1)
        self.client.gauge_delta(
            METRIC_DOMAIN_FRONTING_CONNECTIONS, 1, info.tag(TAG_IP_FAMILY)
        )

    def event_traffic(self, stream_id: str, traffic: int, is_read: bool) -> None:
        info = self._streams.get(stream_id)
        if info is None:
            return

        direction = (TAG_DIRECTION, get_direction(is_read))

        if info.is_domain_fronted:
            self.client.incr(METRIC_DOMAIN_FRONTING_TRAFFIC, traffic, direction)
        else:
            self.client.incr(
                METRIC_TELEGRAM_TRAFFIC,
                traffic,
                info.tag(TAG_TELEGRAM_IP),
                info.tag(TAG_DC),
                direction,
            )

    def event_finish(self, stream_id: str) -> None:
        info = self._streams.pop(stream_id, None)
        if info is None:
            return

        self.client.gauge_delta(METRIC_CLIENT_CONNECTIONS, -1, info.tag(TAG_IP_FAMILY))

        if info.is_domain_fronted:
            self.client.gauge_delta(
                METRIC_DOMAIN_FRONTING_CONNECTIONS, -1, info.tag(TAG_IP_FAMILY)
            )
        elif TAG_TELEGRAM_IP in info.tags:
            self.client.gauge_delta(
                METRIC_TELEGRAM_CONNECTIONS,
                -1,
                info.tag(TAG_TELEGRAM_IP),
                info.tag(TAG_DC),
            )

    def event_concurrency_limited(self) -> None:
        self.client.incr(METRIC_CONCURRENCY_LIMITED, 1)

    def event_ip_blocklisted(self, remote_ip: object) -> None:
        self.client.incr(METRIC_IP_BLOCKLISTED, 1)

    def event_replay_attack(self, stream_id: str) -> None:
        self.client.incr(METRIC_REPLAY_ATTACKS, 1)

    def shutdown(self) -> None:
        """Finish every stream that is still open."""
        for stream_id in list(self._streams):
            self.event_finish(stream_id)


class StatsdFactory:
    """Build statsd observers that share one client.

    Only UDP endpoints are supported. Valid tag formats are 'datadog',
    'influxdb' and 'graphite'.
    """

    def __init__(
        self,
        address: str,
        metric_prefix: str = "",
        tag_format: "str | TagFormat" = TagFormat.DATADOG,
    ) -> None:
        self.client = StatsdClient(address, metric_prefix, TagFormat.parse(tag_format))

    def make(self) -> StatsdProcessor:
        """Build a new observer."""
        return StatsdProcessor(self.client)

    def close(self) -> None:
        """Stop sending metrics."""
        self.client.close()

    def __enter__(self) -> "StatsdFactory":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()