import pytest

from dhcpd.services.dhcp.stats import LATENCY_MAX_SAMPLES, DHCPStats, measure_latency_decorator


def test_dhcp_stats() -> None:
    DHCPStats.clear()
    assert DHCPStats.get("received_discover") == 0

    DHCPStats.increment("received_discover")
    DHCPStats.increment("received_discover")
    DHCPStats.increment("sent_offer", value=3)
    assert DHCPStats.get("received_discover") == 2
    assert DHCPStats.get("sent_offer") == 3

    snapshot = DHCPStats.snapshot()
    assert snapshot["received_discover"] == 2
    assert snapshot["start_time"] <= snapshot["last_updated"]

    # Snapshot is detached
    snapshot["sent_offer"] = 100
    assert DHCPStats.get("sent_offer") == 3

    DHCPStats.clear()
    assert DHCPStats.get("sent_offer") == 0


def test_latency_samples() -> None:
    DHCPStats.clear()
    assert DHCPStats.get_latency_stats() == {50: 0.0, 95: 0.0, 99: 0.0}

    for duration in [4.0, 1.0, 3.0, 2.0]:
        DHCPStats.add_sample(duration)
    assert DHCPStats.get_sample_count() == 4
    assert DHCPStats.get_latency_stats([0, 50, 100]) == {0: 1.0, 50: 2.0, 100: 4.0}
    assert DHCPStats.snapshot()["latency_ms"][99] == 4.0

    with pytest.raises(ValueError):
        DHCPStats.get_latency_stats([101])

    # Bounded
    for _ in range(LATENCY_MAX_SAMPLES + 10):
        DHCPStats.add_sample(1.0)
    assert DHCPStats.get_sample_count() == LATENCY_MAX_SAMPLES

    DHCPStats.clear()
    assert DHCPStats.get_sample_count() == 0


def test_measure_latency_decorator() -> None:
    DHCPStats.clear()

    @measure_latency_decorator(metrics=DHCPStats)
    def work(value: int) -> int:
        return value * 2

    @measure_latency_decorator(metrics=DHCPStats)
    def fail() -> None:
        raise RuntimeError("boom")

    assert work(21) == 42
    assert work.__name__ == "work"
    with pytest.raises(RuntimeError):
        fail()
    assert DHCPStats.get_sample_count() == 2
