from ipaddress import IPv4Address

import pytest

from bottleneck_sim.core.context import SimulationContext
from bottleneck_sim.core.enums import Protocol
from bottleneck_sim.core.packet import Ipv4Header, Packet, UdpHeader
from bottleneck_sim.core.simulator import NetworkSimulator


@pytest.fixture
def context():
    return SimulationContext(seed=7)


@pytest.fixture
def make_packet(context):
    """Build UDP packets; the default payload gives a 1000 byte packet."""

    def _make(
        payload=972,
        source="10.1.1.1",
        destination="10.1.2.2",
        source_port=1000,
        destination_port=9,
        protocol=Protocol.UDP,
        send_time=None,
        ttl=64,
    ):
        packet = Packet(context.next_packet_id(), payload, send_time=send_time)
        packet.add_header(UdpHeader(source_port, destination_port))
        packet.add_header(
            Ipv4Header(
                IPv4Address(source),
                IPv4Address(destination),
                protocol,
                ttl=ttl,
                payload_size=payload + UdpHeader.SIZE,
            )
        )
        return packet

    return _make


@pytest.fixture
def two_hosts():
    """Two hosts on one 8 Mbps / 2 ms link, routes populated."""
    sim = NetworkSimulator(seed=3)
    a = sim.add_node("a")
    b = sim.add_node("b")
    link = sim.add_link(a, b, 8e6, 0.002)
    sim.assign_network(link, "10.1.1.0/24")
    sim.populate_routing_tables()
    return sim
