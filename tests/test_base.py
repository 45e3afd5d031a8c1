import pytest

from mtgproxy.network.base import (
    CannotDialWithAllProxiesError,
    CircuitBreakerOpenedError,
    Dialer,
    NetworkError,
)


def test_circuit_breaker_message():
    assert str(CircuitBreakerOpenedError()) == "circuit breaker is opened"


def test_cannot_dial_message():
    assert str(CannotDialWithAllProxiesError()) == "cannot dial with all proxies"


def test_errors_caught_as_network_error():
    opened = CircuitBreakerOpenedError()
    exhausted = CannotDialWithAllProxiesError()
    assert issubclass(CircuitBreakerOpenedError, NetworkError)
    assert issubclass(CannotDialWithAllProxiesError, NetworkError)
    assert str(opened) == "circuit breaker is opened"
    assert str(exhausted) == "cannot dial with all proxies"


def test_dialer_declares_dial_abstract():
    refusal = CircuitBreakerOpenedError()

    class RefusingDialer(Dialer):
        def dial(self, network, address):
            raise refusal

    dialer = RefusingDialer()
    assert isinstance(dialer, Dialer)
    with pytest.raises(NetworkError) as excinfo:
        dialer.dial("tcp", "127.0.0.1:80")
    assert excinfo.value is refusal
    assert str(excinfo.value) == "circuit breaker is opened"


def test_dialer_subclass_without_dial_is_abstract():
    class IncompleteDialer(Dialer):
        pass

    with pytest.raises(TypeError):
        IncompleteDialer()
    with pytest.raises(TypeError):
        Dialer()
    assert str(CannotDialWithAllProxiesError()) == "cannot dial with all proxies"