"""An observer that exposes proxy events as Prometheus metrics over HTTP."""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Mapping, Sequence
from decimal import Decimal
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlsplit

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

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

_KINDS = ("counter", "gauge")


def _format_value(value: float) -> str:
    """Format a sample value the way the Prometheus text format does."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "0"

    sign, digit_tuple, exponent = Decimal(repr(float(value))).normalize().as_tuple()
    digits = "".join(map(str, digit_tuple))
    prefix = "-" if sign else ""
    count = len(digits)
    point = count + exponent
    exp = point - 1

    if exp < -4 or exp >= 6:
        mantissa = digits[0] + ("." + digits[1:] if count > 1 else "")
        exp_sign = "-" if exp < 0 else "+"
        return f"{prefix}{mantissa}e{exp_sign}{abs(exp):02d}"
    if point <= 0:
        return f"{prefix}0.{'0' * -point}{digits}"
    if point >= count:
        return f"{prefix}{digits}{'0' * (point - count)}"
    return f"{prefix}{digits[:point]}.{digits[point:]}"


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _escape_help(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n")


class MetricVec:
    """A counter or gauge family, optionally partitioned by labels."""

    def __init__(
        self,
        kind: str,
        name: str,
        help_text: str,
        label_names: Sequence[str] = (),
    ) -> None:
        if kind not in _KINDS:
            raise ValueError(f"unknown metric kind {kind}")
        self.kind = kind
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(label_names)
        self._lock = threading.Lock()
        self._values: dict[tuple[str, ...], float] = {}
        if not self.label_names:
            self._values[()] = 0.0

    def _key(self, labels: Sequence[str] | Mapping[str, str]) -> tuple[str, ...]:
        if isinstance(labels, Mapping):
            if set(labels) != set(self.label_names):
                raise ValueError(
                    f"labels {sorted(labels)} do not match {list(self.label_names)}"
                )
            return tuple(str(labels[name]) for name in self.label_names)

        values = tuple(str(value) for value in labels)
        if len(values) != len(self.label_names):
            raise ValueError(
                f"expected {len(self.label_names)} label values, got {len(values)}"
            )
        return values

    def add(self, labels: Sequence[str] | Mapping[str, str], value: float) -> None:
        """Add ``value`` to the child selected by ``labels``."""
        if self.kind == "counter" and value < 0:
            raise ValueError("counter cannot decrease in value")
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value

    def get(self, labels: Sequence[str] | Mapping[str, str] = ()) -> float:
        """Return the current value of the child selected by ``labels``."""
        key = self._key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def render(self) -> str:
        """Return the family in the Prometheus text exposition format."""
        with self._lock:
            samples = dict(self._values)
        if not samples:
            return ""

        order = sorted(range(len(self.label_names)), key=lambda i: self.label_names[i])
        rows = []
        for key, value in samples.items():
            pairs = [(self.label_names[i], key[i]) for i in order]
            rows.append((tuple(v for _, v in pairs), pairs, value))
        rows.sort(key=lambda row: row[0])

        lines = [
            f"# HELP {self.name} {_escape_help(self.help_text)}",
            f"# TYPE {self.name} {self.kind}",
        ]
        for _, pairs, value in rows:
            label_text = ""
            if pairs:
                label_text = (
                    "{"
                    + ",".join(f'{name}="{_escape_label(val)}"' for name, val in pairs)
                    + "}"
                )
            lines.append(f"{self.name}{label_text} {_format_value(value)}")
        return "\n".join(lines) + "\n"


class PrometheusProcessor:
    """Turn proxy events of one event stream into Prometheus metrics."""

    def __init__(self, factory: "PrometheusFactory") -> None:
        self.factory = factory
        self._streams: dict[str, StreamInfo] = {}

    def event_start(self, stream_id: str, remote_ip: object) -> None:
        info = StreamInfo()
        info.tags[TAG_IP_FAMILY] = ip_family(remote_ip)
        self._streams[stream_id] = info

        self.factory.client_connections.add([info.tags[TAG_IP_FAMILY]], 1)

    def event_connected_to_dc(self, stream_id: str, remote_ip: object, dc: int) -> None:
        info = self._streams.get(stream_id)
        if info is None:
            return

        info.tags[TAG_TELEGRAM_IP] = ip_to_string(remote_ip)
        info.tags[TAG_DC] = str(dc)

        self.factory.telegram_connections.add(
            [info.tags[TAG_TELEGRAM_IP], info.tags[TAG_DC]], 1
        )

    def event_domain_fronting(self, stream_id: str) -> None:
        info = self._streams.get(stream_id)
        if info is None:
            return

        info.is_domain_fronted = True

        self.factory.domain_fronting.add((), 1)
        self.factory.domain_fronting_connections.add([info.tag(TAG_IP_FAMILY)[1]], 1)

    def event_traffic(self, stream_id: str, traffic: int, is_read: bool) -> None:
        info = self._streams.get(stream_id)
        if info is None:
            return

        direction = get_direction(is_read)

        if info.is_domain_fronted:
            self.factory.domain_fronting_traffic.add([direction], traffic)
        else:
            self.factory.telegram_traffic.add(
                [info.tag(TAG_TELEGRAM_IP)[1], info.tag(TAG_DC)[1], direction],
                traffic,
            )

    def event_finish(self, stream_id: str) -> None:
        info = self._streams.pop(stream_id, None)
        if info is None:
            return

        family = info.tag(TAG_IP_FAMILY)[1]
        self.factory.client_connections.add([family], -1)

        if info.is_domain_fronted:
            self.factory.domain_fronting_connections.add([family], -1)
        elif TAG_TELEGRAM_IP in info.tags:
            self.factory.telegram_connections.add(
                [info.tags[TAG_TELEGRAM_IP], info.tag(TAG_DC)[1]], -1
            )

    def event_concurrency_limited(self) -> None:
        self.factory.concurrency_limited.add((), 1)

    def event_ip_blocklisted(self, remote_ip: object) -> None:
        self.factory.ip_blocklisted.add((), 1)

    def event_replay_attack(self, stream_id: str) -> None:
        self.factory.replay_attacks.add((), 1)

    def shutdown(self) -> None:
        """Forget every stream without touching the metrics."""
        self._streams.clear()


class PrometheusFactory:
    """Build Prometheus observers and serve their scrape output over HTTP."""

    def __init__(self, metric_prefix: str, http_path: str = "/") -> None:
        self.metric_prefix = metric_prefix
        self.http_path = http_path
        self.address: tuple[str, int] | None = None

        def metric(kind: str, name: str, help_text: str, labels=()) -> MetricVec:
            full_name = f"{metric_prefix}_{name}" if metric_prefix else name
            return MetricVec(kind, full_name, help_text, labels)

        self.client_connections = metric(
            "gauge",
            METRIC_CLIENT_CONNECTIONS,
            "A number of actively processing client connections.",
            [TAG_IP_FAMILY],
        )
        self.telegram_connections = metric(
            "gauge",
            METRIC_TELEGRAM_CONNECTIONS,
            "A number of connections to Telegram servers.",
            [TAG_TELEGRAM_IP, TAG_DC],
        )
        self.domain_fronting_connections = metric(
            "gauge",
            METRIC_DOMAIN_FRONTING_CONNECTIONS,
            "A number of connections which talk to front domain.",
            [TAG_IP_FAMILY],
        )
        self.telegram_traffic = metric(
            "counter",
            METRIC_TELEGRAM_TRAFFIC,
            "Traffic which is generated talking with Telegram servers.",
            [TAG_TELEGRAM_IP, TAG_DC, TAG_DIRECTION],
        )
        self.domain_fronting_traffic = metric(
            "counter",
            METRIC_DOMAIN_FRONTING_TRAFFIC,
            "Traffic which is generated talking with front domain.",
            [TAG_DIRECTION],
        )
        self.domain_fronting = metric(
            "counter", METRIC_DOMAIN_FRONTING, "A number of routings to front domain."
        )
        self.concurrency_limited = metric(
            "counter",
            METRIC_CONCURRENCY_LIMITED,
            "A number of sessions that were rejected by concurrency limiter.",
        )
        self.ip_blocklisted = metric(
            "counter",
            METRIC_IP_BLOCKLISTED,
            "A number of rejected sessions due to ip blocklisting.",
        )
        self.replay_attacks = metric(
            "counter", METRIC_REPLAY_ATTACKS, "A number of detected replay attacks."
        )

        self._metrics = [
            self.client_connections,
            self.telegram_connections,
            self.domain_fronting_connections,
            self.telegram_traffic,
            self.domain_fronting_traffic,
            self.domain_fronting,
            self.concurrency_limited,
            self.ip_blocklisted,
            self.replay_attacks,
        ]

        self._lock = threading.Lock()
        self._server: ThreadingHTTPServer | None = None
        self._serving = threading.Event()
        self._closed = False

    def make(self) -> PrometheusProcessor:
        """Build a new observer."""
        return PrometheusProcessor(self)

    def render(self) -> str:
        """Return all metrics in the Prometheus text exposition format."""
        return "".join(
            metric.render() for metric in sorted(self._metrics, key=lambda m: m.name)
        )

    def _matches(self, path: str) -> bool:
        if self.http_path.endswith("/"):
            return path.startswith(self.http_path)
        return path == self.http_path

    def serve(self, server_address: tuple[str, int]) -> None:
        """Serve the scrape endpoint on ``server_address`` until closed."""
        factory = self

        class _Handler(BaseHTTPRequestHandler):
            def _respond(self, with_body: bool) -> None:
                if not factory._matches(urlsplit(self.path).path):
                    body = b"404 page not found\n"
                    status = 404
                    content_type = "text/plain; charset=utf-8"
                else:
                    body = factory.render().encode("utf-8")
                    status = 200
                    content_type = CONTENT_TYPE
                self.send_response(status)
                self.send_header("Content-Type", content_type)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                if with_body:
                    self.wfile.write(body)

            def do_GET(self) -> None:  # noqa: N802
                self._respond(True)

            def do_HEAD(self) -> None:  # noqa: N802
                self._respond(False)

            def log_message(self, format: str, *args) -> None:  # noqa: A002
                log.debug("prometheus http: " + format, *args)

        with self._lock:
            if self._closed:
                raise RuntimeError("prometheus factory is closed")
            server = ThreadingHTTPServer(server_address, _Handler)
            server.daemon_threads = True
            self._server = server
            self.address = server.server_address[:2]
        self._serving.set()

        try:
            server.serve_forever()
        finally:
            server.server_close()

    def wait_until_serving(self, timeout: float | None = None) -> tuple[str, int]:
        """Block until the HTTP server is bound and return its address."""
        if not self._serving.wait(timeout) or self.address is None:
            raise TimeoutError("prometheus server has not started")
        return self.address

    def close(self) -> None:
        """Stop the HTTP server if it runs."""
        with self._lock:
            self._closed = True
            server = self._server
            self._server = None
        if server is not None:
            server.shutdown()

    def __enter__(self) -> "PrometheusFactory":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()