from pathlib import Path

import pytest

from bottleneck_sim.config import load_scenario
from bottleneck_sim.core.enums import DropReason
from bottleneck_sim.core.errors import ConfigurationError
from bottleneck_sim.scenarios import (
    SCENARIOS,
    build_simulator,
    duration_from_config,
    get_scenario,
    run_scenario,
)

CONFIGS = Path(__file__).parent / "configs"


@pytest.mark.parametrize("name", sorted(SCENARIOS))
def test_yaml_configs_match_builders(name):
    assert load_scenario(str(CONFIGS / f"{name}.yaml")) == get_scenario(name)


def test_unknown_scenario():
    with pytest.raises(ConfigurationError):
        get_scenario("wifi")


def test_point_to_point_delay():
    report = run_scenario(get_scenario("point_to_point"))

    (flow,) = report.flows
    assert (flow.tx_packets, flow.rx_packets, flow.lost_packets) == (1, 1, 0)
    assert flow.mean_delay == pytest.approx(1052 * 8 / 10e6 + 0.010)


def test_multihop_delay():
    report = run_scenario(get_scenario("multihop"))

    (flow,) = report.flows
    assert flow.rx_packets == 1
    assert flow.mean_delay == pytest.approx(
        1052 * 8 / 10e6 + 0.005 + 1052 * 8 / 5e6 + 0.010
    )


def test_bulk_over_bottleneck_is_capped_and_lossy():
    report = run_scenario(get_scenario("tcp_drops"))

    assert set(report.tx_packets) == {"client1", "client2"}
    assert report.drops
    assert {record.reason for record in report.drops} == {DropReason.TAIL}
    assert {record.location for record in report.drops} == {"router/2"}
    assert report.total_lost_packets >= len(report.drops)

    received_bits = sum(flow.rx_bytes * 8 for flow in report.flows)
    first_tx = min(flow.first_tx_time for flow in report.flows)
    last_rx = max(flow.last_rx_time for flow in report.flows)
    assert received_bits <= 5e6 * (last_rx - first_tx)
    for flow in report.flows:
        assert flow.throughput <= 5e6


def test_udp_drops_counts_and_losses():
    report = run_scenario(get_scenario("udp_drops"))

    for name in ("client1", "client2"):
        assert 1698 <= report.tx_packets[name] <= 1700
    assert report.drop_counts().get("tail", 0) > 0
    for flow in report.flows:
        assert flow.lost_packets == flow.tx_packets - flow.rx_packets
        assert flow.lost_packets > 0


def test_red_bottleneck_drops_early():
    report = run_scenario(get_scenario("aqm_red"), duration=1.5)

    reasons = {record.reason for record in report.drops}
    assert any(reason.is_aqm for reason in reasons)
    assert {record.location for record in report.drops} == {"router/2"}
    assert report.queues["router/2"]["peak_occupancy"] <= 20


def test_identical_runs_are_identical():
    first = run_scenario(get_scenario("tcp_drops", seed=9)).to_dict()
    second = run_scenario(get_scenario("tcp_drops", seed=9)).to_dict()
    assert first == second


def test_red_runs_are_reproducible():
    first = run_scenario(get_scenario("aqm_red", seed=4), duration=1.2).to_dict()
    second = run_scenario(get_scenario("aqm_red", seed=4), duration=1.2).to_dict()
    assert first == second


def test_build_simulator_wires_sinks_and_filters():
    simulator = build_simulator(get_scenario("ip_spoofing"))
    router = simulator.node("router")

    assert router.ingress_filter is not None
    assert router.interfaces[0].ingress_filtered
    assert not router.interfaces[1].ingress_filtered
    assert simulator.sinks == []

    simulator = build_simulator(get_scenario("aqm_red"))
    assert len(simulator.sinks) == 1
    assert len(simulator.sources) == 2


def test_duration_from_config():
    import numpy as np

    rng = np.random.default_rng(1)
    assert duration_from_config(0.5, rng) == 0.5
    assert duration_from_config({"distribution": "constant", "value": 2}, rng)() == 2.0
    sample = duration_from_config({"distribution": "uniform", "low": 1, "high": 2}, rng)()
    assert 1.0 <= sample <= 2.0
    with pytest.raises(ConfigurationError):
        duration_from_config({"distribution": "exponential"}, rng)
    with pytest.raises(ConfigurationError):
        duration_from_config({"distribution": "lognormal", "mean": 1}, rng)
