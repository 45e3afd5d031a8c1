"""Secrets, dialers and metrics for an MTPROTO proxy with FakeTLS fronting."""

__version__ = "2.0.0"

__all__ = ["network", "secret", "stats"]