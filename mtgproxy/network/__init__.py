"""TCP dialers, socket tuning, a circuit breaker and DNS-over-HTTPS resolution."""

__all__ = ["base", "circuit_breaker", "default", "dns_resolver", "network", "proxy_dialer", "sockopts"]