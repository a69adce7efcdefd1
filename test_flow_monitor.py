from ipaddress import IPv4Address

import pytest

from bottleneck_sim.core.enums import DropReason
from bottleneck_sim.core.flow_monitor import FiveTuple, classify
from bottleneck_sim.core.packet import Ipv4Header, Packet


def at(context, time, action, *args):
    context.scheduler.schedule_at(time, action, *args)


def test_classify_uses_addresses_ports_and_protocol(make_packet):
    packet = make_packet(source="10.1.1.1", destination="10.1.3.2", source_port=49153, destination_port=5000)

    assert classify(packet) == FiveTuple(
        IPv4Address("10.1.1.1"), IPv4Address("10.1.3.2"), 49153, 5000, 17
    )


def test_classify_without_transport_header():
    packet = Packet(1, 100)
    packet.add_header(Ipv4Header(IPv4Address("10.0.0.1"), IPv4Address("10.0.0.2")))

    assert classify(packet).source_port == 0
    assert classify(packet).destination_port == 0


def test_loss_delay_and_throughput(context, make_packet):
    monitor = context.flow_monitor
    packets = [make_packet(send_time=0.0) for _ in range(3)]
    for packet in packets:
        monitor.on_tx(packet)
    at(context, 0.5, monitor.on_rx, packets[0])
    at(context, 1.0, monitor.on_rx, packets[1])
    context.scheduler.run_until(2.0)

    (record,) = monitor.snapshot().values()
    assert record.flow_id == 1
    assert record.tx_packets == 3
    assert record.rx_packets == 2
    assert record.lost_packets == 1
    assert record.tx_bytes == 3000
    assert record.rx_bytes == 2000
    assert record.mean_delay == pytest.approx(0.75)
    assert record.jitter_sum == pytest.approx(0.5)
    assert record.throughput == pytest.approx(2000 * 8 / 1.0)


def test_nothing_received_has_no_throughput(context, make_packet):
    monitor = context.flow_monitor
    monitor.on_tx(make_packet())

    (record,) = monitor.snapshot().values()
    assert record.rx_packets == 0
    assert record.throughput is None
    assert record.mean_delay is None
    assert record.lost_packets == 1


def test_receive_without_transmit(context, make_packet):
    monitor = context.flow_monitor
    monitor.on_rx(make_packet())

    (record,) = monitor.snapshot().values()
    assert record.tx_packets == 0
    assert record.lost_packets == 0
    assert record.throughput == 0.0


def test_flows_are_separated_by_five_tuple(context, make_packet):
    monitor = context.flow_monitor
    monitor.on_tx(make_packet(source_port=1))
    monitor.on_tx(make_packet(source_port=2))
    monitor.on_tx(make_packet(source_port=1))

    flows = list(monitor.snapshot().values())
    assert [flow.flow_id for flow in flows] == [1, 2]
    assert [flow.tx_packets for flow in flows] == [2, 1]
    assert len(monitor) == 2


def test_drops_are_counted_per_reason(context, make_packet):
    packet = make_packet()
    context.flow_monitor.on_tx(packet)
    context.record_drop(packet, DropReason.TAIL, "q")
    context.record_drop(make_packet(), DropReason.TAIL, "q")
    context.record_drop(Packet(99, 10), DropReason.PARSE, "n")

    (record,) = context.flow_monitor.snapshot().values()
    assert record.drops == {"tail": 2}
    assert context.drop_counts() == {"parse": 1, "tail": 2}
    assert context.drops[-1].flow is None


def test_snapshot_is_a_copy(context, make_packet):
    monitor = context.flow_monitor
    packet = make_packet()
    monitor.on_tx(packet)
    context.record_drop(packet, DropReason.TAIL, "q")

    snapshot = monitor.snapshot()
    record = next(iter(snapshot.values()))
    record.tx_packets = 100
    record.drops["tail"] = 100

    fresh = next(iter(monitor.snapshot().values()))
    assert fresh.tx_packets == 1
    assert fresh.drops == {"tail": 1}


def test_to_dict_is_plain(context, make_packet):
    context.flow_monitor.on_tx(make_packet())
    data = next(iter(context.flow_monitor.snapshot().values())).to_dict()

    assert data["source"] == "10.1.1.1"
    assert data["protocol"] == 17
    assert data["throughput"] is None
