"""Node class for network simulation.

This module defines the Node class, which represents a host or router in the
simulated network, and the Interface records that attach it to links. Nodes
forward IPv4 packets using a static routing table and deliver packets
addressed to them to the sink bound on the destination port.
"""

import logging
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv4Interface, IPv4Network
from typing import Callable, Dict, List, Optional, Tuple

from bottleneck_sim.core.context import SimulationContext
from bottleneck_sim.core.enums import DropReason
from bottleneck_sim.core.errors import ConfigurationError, HeaderParseError
from bottleneck_sim.core.ingress_filter import IngressFilter
from bottleneck_sim.core.link import Link
from bottleneck_sim.core.packet import Packet
from bottleneck_sim.core.queue_disc import QueueDisc

logger = logging.getLogger(__name__)


@dataclass
class Interface:
    """A node's attachment to one link.

    Attributes:
        index: Position in the node's interface list.
        link: Outgoing direction of the attached connection.
        address: Address and subnet mask, once assigned.
        queue_disc: Queueing discipline feeding the outgoing link.
        ingress_filtered: Whether arriving packets go through the ingress filter.
        peer: (node, interface) handle of the far end.
    """

    index: int
    link: Link
    address: Optional[IPv4Interface] = None
    queue_disc: Optional[QueueDisc] = None
    ingress_filtered: bool = False
    peer: Optional[Tuple[int, int]] = None

    @property
    def network(self) -> Optional[IPv4Network]:
        return self.address.network if self.address is not None else None


class Node:
    """Represents a network node (host or router).

    Attributes:
        context: Simulation context of the run.
        id: Arena index of the node.
        name: Human readable name.
        interfaces: Interfaces in the order they were added.
        routing_table: (network, interface index) entries.
        ingress_filter: Filter applied on ingress-filtered interfaces.
        packets_received: Packets that arrived from a link.
        packets_forwarded: Packets sent on towards another node.
        packets_delivered: Packets handed to a local sink.
        packets_unclaimed: Local packets with no sink bound on their port.
    """

    def __init__(self, context: SimulationContext, node_id: int, name: str) -> None:
        self.context = context
        self.id = node_id
        self.name = name
        self.interfaces: List[Interface] = []
        self.routing_table: List[Tuple[IPv4Network, int]] = []
        self.ingress_filter: Optional[IngressFilter] = None
        self.sinks: Dict[Tuple[int, int], Callable[[Packet], None]] = {}
        self.packets_received = 0
        self.packets_forwarded = 0
        self.packets_delivered = 0
        self.packets_unclaimed = 0
        self._next_port = 49153

    def add_interface(self, link: Link) -> Interface:
        """Attach an outgoing link and return the new interface."""
        if link.source != self.id:
            raise ConfigurationError(
                f"Link source {link.source} does not match node {self.id}"
            )
        interface = Interface(len(self.interfaces), link)
        self.interfaces.append(interface)
        return interface

    @property
    def addresses(self) -> List[IPv4Address]:
        return [
            interface.address.ip
            for interface in self.interfaces
            if interface.address is not None
        ]

    def owns(self, address: IPv4Address) -> bool:
        return address in self.addresses

    def allocate_port(self) -> int:
        """Return an unused ephemeral port."""
        port = self._next_port
        self._next_port += 1
        return port

    def set_routing_table(self, routing_table: List[Tuple[IPv4Network, int]]) -> None:
        """Set the routing table, most specific prefixes first.

        Args:
            routing_table: (destination network, interface index) entries.
        """
        self.routing_table = sorted(
            routing_table, key=lambda entry: entry[0].prefixlen, reverse=True
        )

    def lookup(self, destination: IPv4Address) -> Optional[Interface]:
        """Longest-prefix match of a destination address."""
        for network, index in self.routing_table:
            if destination in network:
                return self.interfaces[index]
        return None

    def bind(self, protocol: int, port: int, receiver: Callable[[Packet], None]) -> None:
        """Deliver local packets of a protocol and port to a receiver."""
        key = (int(protocol), port)
        if key in self.sinks:
            raise ConfigurationError(f"{self.name} already has a sink on {key}")
        self.sinks[key] = receiver

    def send(self, packet: Packet) -> bool:
        """Send a locally originated packet.

        Args:
            packet: Packet with an IPv4 header.

        Returns:
            True if the egress queue admitted the packet.
        """
        ip = packet.peek_ip_header()
        if self.owns(ip.destination):
            self._deliver(packet)
            return True
        return self._route(packet, ip.destination)

    def receive(self, packet: Packet, interface_index: int) -> None:
        """Handle a packet arriving on one of the node's interfaces.

        Args:
            packet: The arriving packet.
            interface_index: Interface the packet arrived on.
        """
        self.packets_received += 1
        try:
            ip = packet.peek_ip_header()
        except HeaderParseError:
            self.context.record_drop(packet, DropReason.PARSE, self.name)
            return

        interface = self.interfaces[interface_index]
        if interface.ingress_filtered and self.ingress_filter is not None:
            self.ingress_filter.inspect(packet, interface.address, interface_index)

        if self.owns(ip.destination):
            self._deliver(packet)
            return

        ip.ttl -= 1
        if ip.ttl <= 0:
            self.context.record_drop(packet, DropReason.TTL, self.name)
            return
        if self._route(packet, ip.destination):
            self.packets_forwarded += 1

    def egress_queue(self, destination: IPv4Address) -> Optional[QueueDisc]:
        """Queue disc a packet to the destination would be offered to."""
        interface = self.lookup(destination)
        return interface.queue_disc if interface is not None else None

    def _route(self, packet: Packet, destination: IPv4Address) -> bool:
        interface = self.lookup(destination)
        if interface is None:
            self.context.record_drop(packet, DropReason.NO_ROUTE, self.name)
            return False
        if interface.queue_disc is None:
            return interface.link.send(packet)
        return interface.queue_disc.enqueue(packet)

    def _deliver(self, packet: Packet) -> None:
        transport = packet.transport_header()
        port = transport.destination_port if transport is not None else 0
        protocol = int(packet.peek_ip_header().protocol)
        receiver = self.sinks.get((protocol, port))
        if receiver is None:
            self.packets_unclaimed += 1
            logger.debug("%s: no sink for protocol %d port %d", self.name, protocol, port)
            return
        self.packets_delivered += 1
        receiver(packet)

    def __repr__(self) -> str:
        """Return string representation of the node.

        Returns:
            String representation of the node.
        """
        return f"Node({self.id}, {self.name})"
