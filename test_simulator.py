from ipaddress import IPv4Address, IPv4Network

import pytest

from bottleneck_sim.config import QueueConfig
from bottleneck_sim.core.enums import DropReason, Protocol
from bottleneck_sim.core.errors import ConfigurationError
from bottleneck_sim.core.packet import Packet
from bottleneck_sim.core.queue_disc import RedQueueDisc
from bottleneck_sim.core.simulator import NetworkSimulator


@pytest.fixture
def chain():
    """a - r - b with 10 Mbps / 5 ms and 5 Mbps / 10 ms links."""
    sim = NetworkSimulator(seed=5)
    a, r, b = sim.add_node("a"), sim.add_node("r"), sim.add_node("b")
    first = sim.add_link(a, r, 10e6, 0.005)
    second = sim.add_link(r, b, 5e6, 0.010)
    sim.assign_network(first, "10.1.1.0/24")
    sim.assign_network(second, "10.1.2.0/24")
    sim.populate_routing_tables()
    return sim


def test_assign_network_gives_first_two_hosts(chain):
    a, r = chain.nodes[0], chain.nodes[1]
    assert a.addresses == [IPv4Address("10.1.1.1")]
    assert r.addresses == [IPv4Address("10.1.1.2"), IPv4Address("10.1.2.1")]
    assert str(a.interfaces[0].address) == "10.1.1.1/24"


def test_assign_network_rejects_bad_networks(chain):
    with pytest.raises(ConfigurationError):
        chain.assign_network(0, "10.1.1.300/24")
    with pytest.raises(ConfigurationError):
        chain.assign_network(0, "10.1.1.1/32")
    with pytest.raises(ConfigurationError):
        chain.assign_network(7, "10.1.1.0/24")


def test_duplicate_node_names_rejected(chain):
    with pytest.raises(ConfigurationError):
        chain.add_node("a")


def test_routing_tables(chain):
    a, r, b = chain.nodes
    assert a.lookup(IPv4Address("10.1.2.2")).index == 0
    assert r.lookup(IPv4Address("10.1.2.2")).index == 1
    assert r.lookup(IPv4Address("10.1.1.1")).index == 0
    assert b.lookup(IPv4Address("10.1.1.1")).index == 0
    assert a.lookup(IPv4Address("192.168.0.1")) is None
    assert {network for network, _ in r.routing_table} == {
        IPv4Network("10.1.1.0/24"),
        IPv4Network("10.1.2.0/24"),
    }


def send_at(sim, time, node, packet):
    sim.scheduler.schedule_at(time, sim.nodes[node].send, packet)


def test_multihop_delay_accumulates(chain, make_packet):
    sink = chain.add_sink(2, 7)
    packet = make_packet(payload=1024, source="10.1.1.1", destination="10.1.2.2", destination_port=7, send_time=1.0)
    send_at(chain, 1.0, 0, packet)
    report = chain.run(2.0)

    assert sink.packets_received == 1
    expected = 1052 * 8 / 10e6 + 0.005 + 1052 * 8 / 5e6 + 0.010
    assert report.flows[0].mean_delay == pytest.approx(expected)
    assert chain.nodes[1].packets_forwarded == 1
    assert chain.nodes[2].packets_delivered == 1


def test_ttl_expiry_drops_at_router(chain, make_packet):
    send_at(chain, 0.0, 0, make_packet(destination="10.1.2.2", ttl=1))
    report = chain.run(1.0)

    assert [(record.reason, record.location) for record in report.drops] == [
        (DropReason.TTL, "r")
    ]


def test_unroutable_destination_is_dropped(chain, make_packet):
    assert not chain.nodes[0].send(make_packet(destination="172.16.0.1"))
    assert chain.context.drops[0].reason is DropReason.NO_ROUTE


def test_unparseable_packet_is_dropped_and_counted(chain):
    chain.nodes[1].receive(Packet(1, 100), 0)
    assert chain.context.drops[0].reason is DropReason.PARSE
    assert chain.nodes[1].packets_received == 1


def test_packet_without_sink_is_unclaimed(chain, make_packet):
    send_at(chain, 0.0, 0, make_packet(destination="10.1.2.2", destination_port=4444))
    chain.run(1.0)
    assert chain.nodes[2].packets_unclaimed == 1
    assert chain.nodes[2].packets_delivered == 0


def test_capacity_one_queue_with_simultaneous_packets(two_hosts, make_packet):
    two_hosts.install_queue_disc(0, 0, QueueConfig(kind="fifo", capacity="1p"))
    sink = two_hosts.add_sink(1, 7)
    for _ in range(2):
        packet = make_packet(source="10.1.1.1", destination="10.1.1.2", destination_port=7, send_time=0.0)
        two_hosts.context.flow_monitor.on_tx(packet)
        send_at(two_hosts, 0.0, 0, packet)
    report = two_hosts.run(1.0)

    assert sink.packets_received == 1
    assert [record.reason for record in report.drops] == [DropReason.TAIL]
    (flow,) = report.flows
    assert (flow.tx_packets, flow.rx_packets, flow.lost_packets) == (2, 1, 1)
    assert flow.drops == {"tail": 1}


def test_install_red_queue_uses_link_parameters(chain):
    queue = chain.install_queue_disc(
        1, 1, QueueConfig(kind="red", capacity="20p", min_th=2, max_th=5, mean_packet_size=1500)
    )
    assert isinstance(queue, RedQueueDisc)
    assert queue.packet_rate == pytest.approx(5e6 / (8 * 1500))
    assert chain.nodes[1].interfaces[1].queue_disc is queue
    assert chain.links[2].ready_hooks == [queue.run]


def test_ingress_filter_needs_an_address():
    sim = NetworkSimulator()
    a, b = sim.add_node(), sim.add_node()
    sim.add_link(a, b, 1e6, 0.001)
    with pytest.raises(ConfigurationError):
        sim.enable_ingress_filter(b, 0)


def test_hooks_and_report(chain, make_packet):
    events = []
    chain.register_hook("sim_start", lambda sim: events.append("start"))
    chain.register_hook("sim_end", lambda report: events.append(report.end_time))
    with pytest.raises(ValueError):
        chain.register_hook("packet_hop", lambda: None)

    report = chain.run(0.5)

    assert events == ["start", 0.5]
    data = report.to_dict()
    assert data["end_time"] == 0.5
    assert set(data["queues"]) == {"a/0", "r/0", "r/1", "b/0"}
    assert data["totals"]["dropped_packets"] == 0


def test_run_can_be_continued(chain, make_packet):
    chain.add_sink(2, 7)
    send_at(chain, 1.5, 0, make_packet(destination="10.1.2.2", destination_port=7))
    first = chain.run(1.0)
    second = chain.run(2.0)

    assert first.total_rx_packets == 0
    assert second.total_rx_packets == 1
    assert second.end_time == 2.0


def test_tcp_and_udp_sinks_share_a_port(two_hosts):
    two_hosts.add_sink(1, 5000, Protocol.TCP)
    two_hosts.add_sink(1, 5000, Protocol.UDP)
    assert len(two_hosts.nodes[1].sinks) == 2
