import threading
import urllib.error
import urllib.request

import pytest

from mtgproxy.stats.prometheus import MetricVec, PrometheusFactory


@pytest.fixture
def factory():
    return PrometheusFactory("mtg", "/")


@pytest.fixture
def processor(factory):
    proc = factory.make()
    yield proc
    proc.shutdown()


@pytest.fixture
def served():
    fac = PrometheusFactory("mtg", "/metrics")
    thread = threading.Thread(target=fac.serve, args=(("127.0.0.1", 0),), daemon=True)
    thread.start()
    host, port = fac.wait_until_serving(5)
    yield fac, f"http://{host}:{port}"
    fac.close()
    thread.join(5)


def test_telegram_path(factory, processor):
    processor.event_start("connID", "10.0.0.10")
    assert 'mtg_client_connections{ip_family="ipv4"} 1' in factory.render()

    processor.event_connected_to_dc("connID", "10.0.0.1", 4)
    assert 'mtg_telegram_connections{dc="4",telegram_ip="10.0.0.1"} 1' in factory.render()

    processor.event_traffic("connID", 200, True)
    assert (
        'mtg_telegram_traffic{dc="4",direction="to_client",telegram_ip="10.0.0.1"} 200'
        in factory.render()
    )

    processor.event_traffic("connID", 100, False)
    assert (
        'mtg_telegram_traffic{dc="4",direction="from_client",telegram_ip="10.0.0.1"} 100'
        in factory.render()
    )

    processor.event_finish("connID")
    data = factory.render()
    assert 'mtg_client_connections{ip_family="ipv4"} 0' in data
    assert 'mtg_telegram_connections{dc="4",telegram_ip="10.0.0.1"} 0' in data


def test_domain_fronting_path(factory, processor):
    processor.event_start("connID", "10.0.0.10")
    assert 'mtg_client_connections{ip_family="ipv4"} 1' in factory.render()

    processor.event_domain_fronting("connID")
    data = factory.render()
    assert "mtg_domain_fronting 1" in data
    assert 'mtg_domain_fronting_connections{ip_family="ipv4"} 1' in data

    processor.event_traffic("connID", 200, True)
    assert 'mtg_domain_fronting_traffic{direction="to_client"} 200' in factory.render()

    processor.event_traffic("connID", 100, False)
    assert 'mtg_domain_fronting_traffic{direction="from_client"} 100' in factory.render()

    processor.event_finish("connID")
    data = factory.render()
    assert 'mtg_client_connections{ip_family="ipv4"} 0' in data
    assert 'mtg_domain_fronting_connections{ip_family="ipv4"} 0' in data
    assert "mtg_telegram_traffic{" not in data


def test_event_concurrency_limited(factory, processor):
    processor.event_concurrency_limited()
    assert "mtg_concurrency_limited 1" in factory.render()


def test_event_ip_blocklisted(factory, processor):
    processor.event_ip_blocklisted("2001:db8::68")
    assert "mtg_ip_blocklisted 1" in factory.render()


def test_event_replay_attack(factory, processor):
    processor.event_replay_attack("connID")
    assert "mtg_replay_attacks 1" in factory.render()


def test_ipv6_client_family(factory, processor):
    processor.event_start("connID", "2001:db8::68")
    assert 'mtg_client_connections{ip_family="ipv6"} 1' in factory.render()


def test_unknown_stream_is_ignored(factory, processor):
    processor.event_traffic("missing", 50, True)
    processor.event_domain_fronting("missing")
    processor.event_finish("missing")
    data = factory.render()
    assert "mtg_domain_fronting 0" in data
    assert "traffic{" not in data


def test_counters_start_at_zero(factory):
    data = factory.render()
    assert "mtg_replay_attacks 0" in data
    assert "# TYPE mtg_replay_attacks counter" in data
    assert "mtg_client_connections" not in data


def test_shutdown_forgets_streams(factory, processor):
    processor.event_start("connID", "10.0.0.10")
    processor.shutdown()
    processor.event_finish("connID")
    assert 'mtg_client_connections{ip_family="ipv4"} 1' in factory.render()


def test_metric_vec_render_format():
    vec = MetricVec("gauge", "x_metric", "Some help.", ["b", "a"])
    vec.add(["2", "1"], 3)
    assert vec.render() == (
        "# HELP x_metric Some help.\n"
        "# TYPE x_metric gauge\n"
        'x_metric{a="1",b="2"} 3\n'
    )


def test_metric_vec_escapes_label_values():
    vec = MetricVec("gauge", "x", "h", ["l"])
    vec.add({"l": 'a"b'}, 1)
    assert 'x{l="a\\"b"} 1' in vec.render()


@pytest.mark.parametrize(
    ("value", "expected"),
    [(1, "1"), (200, "200"), (0.5, "0.5"), (1_000_000, "1e+06"), (1_234_567, "1.234567e+06")],
)
def test_metric_vec_value_format(value, expected):
    vec = MetricVec("counter", "c", "h")
    vec.add((), value)
    assert vec.render().splitlines()[-1] == f"c {expected}"


def test_counter_cannot_decrease():
    vec = MetricVec("counter", "c", "h")
    with pytest.raises(ValueError):
        vec.add((), -1)


def test_label_count_mismatch():
    vec = MetricVec("gauge", "g", "h", ["a", "b"])
    with pytest.raises(ValueError):
        vec.add(["only-one"], 1)


def test_unknown_kind():
    with pytest.raises(ValueError):
        MetricVec("histogram", "h", "h")


def test_http_scrape(served):
    fac, base = served
    fac.make().event_replay_attack("connID")
    with urllib.request.urlopen(base + "/metrics", timeout=5) as resp:
        body = resp.read().decode("utf-8")
        assert resp.status == 200
    assert "mtg_replay_attacks 1" in body


def test_http_other_path_is_not_found(served):
    _, base = served
    with pytest.raises(urllib.error.HTTPError) as info:
        urllib.request.urlopen(base + "/other", timeout=5)
    assert info.value.code == 404


def test_serve_after_close_raises():
    fac = PrometheusFactory("mtg", "/")
    fac.close()
    with pytest.raises(RuntimeError):
        fac.serve(("127.0.0.1", 0))