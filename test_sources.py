from ipaddress import IPv4Address

import pytest

from bottleneck_sim.core.enums import Protocol, TrafficKind
from bottleneck_sim.core.errors import ConfigurationError
from bottleneck_sim.traffic.generators import (
    as_duration,
    constant_duration,
    exponential_duration,
    pareto_duration,
    uniform_duration,
)
from bottleneck_sim.traffic.sources import (
    BulkSendSource,
    OnOffSource,
    PacketSink,
    ScheduledPacketSource,
    source_factory,
)

SERVER = IPv4Address("10.1.1.2")


def tx_times(source):
    times = []
    source.tx_hooks.append(lambda packet: times.append(source.scheduler.now()))
    return times


def test_on_off_constant_rate(two_hosts):
    sink = two_hosts.add_sink(1, 7)
    source = two_hosts.add_source(
        TrafficKind.ON_OFF, 0, "cbr", SERVER, 7, 0.0, 0.1,
        packet_size=1000, data_rate=1e6, on_time=10.0,
    )
    times = tx_times(source)
    two_hosts.run(1.0)

    assert source.packets_sent == 13
    assert times == pytest.approx([0.008 * i for i in range(13)])
    assert sink.packets_received == 13
    assert sink.bytes_received == 13 * 1028
    assert two_hosts.context.tx_packets["cbr"] == 13


def test_on_off_is_silent_during_off_periods(two_hosts):
    source = two_hosts.add_source(
        TrafficKind.ON_OFF, 0, "gated", SERVER, 7, 0.0, 0.16,
        packet_size=600, data_rate=400e3, on_time=0.05, off_time=0.05,
    )
    times = tx_times(source)
    two_hosts.run(1.0)

    expected = [0.0, 0.012, 0.024, 0.036, 0.048, 0.11, 0.122, 0.134, 0.146]
    assert times == pytest.approx(expected)
    assert not any(0.05 <= time < 0.1 for time in times)


def test_on_off_respects_byte_budget(two_hosts):
    source = two_hosts.add_source(
        TrafficKind.ON_OFF, 0, "one", SERVER, 7, 1.0, 5.0,
        packet_size=1024, data_rate=10e6, max_bytes=1024,
    )
    two_hosts.run(5.0)
    assert source.packets_sent == 1


def test_bulk_budget_is_delivered(two_hosts):
    sink = two_hosts.add_sink(1, 9000, Protocol.TCP)
    source = two_hosts.add_source(
        TrafficKind.BULK, 0, "bulk", SERVER, 9000, 0.0, None,
        segment_size=536, max_bytes=5360,
    )
    two_hosts.run(1.0)

    assert source.packets_sent == 10
    assert source.payload_bytes_sent == 5360
    assert sink.packets_received == 10
    assert two_hosts.context.drops == []


def test_bulk_is_paced_by_its_link(two_hosts):
    source = two_hosts.add_source(TrafficKind.BULK, 0, "bulk", SERVER, 9000, 0.0, 1.0)
    two_hosts.run(1.0)

    # 576 byte packets on an 8 Mbps link: 1736 fit in one second.
    capacity = int(8e6 / (576 * 8))
    assert capacity <= source.packets_sent <= capacity + 4
    assert two_hosts.context.drops == []


def test_bulk_stops_at_stop_time(two_hosts):
    source = two_hosts.add_source(TrafficKind.BULK, 0, "bulk", SERVER, 9000, 0.0, 0.1)
    two_hosts.run(0.2)
    sent = source.packets_sent
    two_hosts.run(0.5)

    assert not source.running
    assert source.packets_sent == sent > 0


def test_scheduled_source_uses_given_sources(two_hosts):
    source = two_hosts.add_source(
        TrafficKind.SCHEDULED, 0, "raw", SERVER, 9, 0.0, 0.35,
        schedule=[(0.3, "10.9.9.9"), (0.1, "10.1.1.10"), (0.5, "10.1.1.11")],
    )
    packets = []
    source.tx_hooks.append(packets.append)
    two_hosts.run(1.0)

    assert [str(packet.peek_ip_header().source) for packet in packets] == ["10.1.1.10", "10.9.9.9"]
    assert source.packets_sent == 2


def test_stop_before_start_cancels_start(two_hosts):
    source = two_hosts.add_source(TrafficKind.BULK, 0, "never", SERVER, 9000, 0.5)
    two_hosts.scheduler.schedule_at(0.2, source.stop)
    two_hosts.run(1.0)

    assert source.packets_sent == 0
    assert not source.running


def test_install_rejects_stop_before_start(two_hosts):
    with pytest.raises(ConfigurationError):
        two_hosts.add_source(TrafficKind.BULK, 0, "bad", SERVER, 9000, 2.0, 1.0)


def test_source_factory(two_hosts):
    context, node = two_hosts.context, two_hosts.nodes[0]
    assert isinstance(source_factory(TrafficKind.BULK, context, node, "b", SERVER, 1), BulkSendSource)
    assert isinstance(source_factory(TrafficKind.ON_OFF, context, node, "o", SERVER, 1), OnOffSource)
    scheduled = source_factory(
        TrafficKind.SCHEDULED, context, node, "s", SERVER, 1, schedule=[(1.0, "10.0.0.1")]
    )
    assert isinstance(scheduled, ScheduledPacketSource)
    with pytest.raises(ConfigurationError):
        source_factory("bogus", context, node, "x", SERVER, 1)


def test_sources_get_distinct_ephemeral_ports(two_hosts):
    context, node = two_hosts.context, two_hosts.nodes[0]
    first = BulkSendSource(context, node, "one", SERVER, 9000)
    second = BulkSendSource(context, node, "two", SERVER, 9000)
    assert first.source_port != second.source_port


def test_sink_binding_is_exclusive(two_hosts):
    PacketSink(two_hosts.context, two_hosts.nodes[1], 7)
    with pytest.raises(ConfigurationError):
        PacketSink(two_hosts.context, two_hosts.nodes[1], 7)


def test_duration_generators():
    import numpy as np

    rng = np.random.default_rng(0)
    assert constant_duration(2.0)() == 2.0
    assert as_duration(0.5)() == 0.5
    assert all(1.0 <= uniform_duration(1.0, 2.0, rng)() <= 2.0 for _ in range(50))
    assert exponential_duration(1.0, rng)() >= 0
    assert pareto_duration(1.0, rng)() >= 1.0 / 3
    with pytest.raises(ValueError):
        constant_duration(-1)
    with pytest.raises(ValueError):
        pareto_duration(1.0, rng, alpha=1.0)


def test_on_off_rejects_zero_length_cycle(two_hosts):
    with pytest.raises(ConfigurationError):
        two_hosts.add_source(
            TrafficKind.ON_OFF, 0, "spin", SERVER, 7, 1.0, 2.0, on_time=0.0, off_time=0.0
        )


def test_on_off_rejects_negative_period(two_hosts):
    with pytest.raises(ConfigurationError):
        two_hosts.add_source(TrafficKind.ON_OFF, 0, "neg", SERVER, 7, on_time=-1.0)


def test_on_off_ends_on_zero_length_random_cycle(two_hosts):
    source = two_hosts.add_source(
        TrafficKind.ON_OFF, 0, "spin", SERVER, 7, 1.0, 2.0,
        on_time=lambda: 0.0, off_time=lambda: 0.0,
    )
    report = two_hosts.run(2.0)

    assert report.end_time == 2.0
    assert source.packets_sent == 0
