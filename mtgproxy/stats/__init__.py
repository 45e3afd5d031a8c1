"""Observers that turn proxy events into statsd and Prometheus metrics."""

__all__ = ["common", "prometheus", "statsd"]