"""Ingress source-address validation for network simulation.

This module defines the IngressFilter class. The filter checks that a packet
arriving on an attacker-facing interface carries a source address from that
interface's own subnet. It only detects: a flagged packet is forwarded exactly
as a clean one would be.
"""

import logging
from ipaddress import IPv4Address, IPv4Interface
from typing import Callable, Iterable, List, Set

from bottleneck_sim.core.context import FlaggedRecord, SimulationContext
from bottleneck_sim.core.enums import Protocol, Verdict
from bottleneck_sim.core.errors import HeaderParseError
from bottleneck_sim.core.packet import Packet

logger = logging.getLogger(__name__)


class IngressFilter:
    """Flags packets whose source address does not belong to the ingress subnet.

    Attributes:
        context: Simulation context of the run.
        node_name: Name of the router the filter runs on.
        protocol: Only packets of this IP protocol are inspected.
        router_addresses: Addresses assigned to the router; always clean.
        inspected: Number of packets inspected.
        hooks: Called with each FlaggedRecord.
    """

    def __init__(
        self,
        context: SimulationContext,
        node_name: str,
        router_addresses: Iterable[IPv4Address] = (),
        protocol: int = Protocol.UDP,
    ) -> None:
        self.context = context
        self.node_name = node_name
        self.protocol = protocol
        self.router_addresses: Set[IPv4Address] = set(router_addresses)
        self.inspected = 0
        self.hooks: List[Callable[[FlaggedRecord], None]] = []

    def inspect(
        self, packet: Packet, interface: IPv4Interface, interface_index: int
    ) -> Verdict:
        """Check a packet received on a filtered interface.

        Args:
            packet: The received packet.
            interface: Address and mask of the ingress interface.
            interface_index: Index of the ingress interface on the router.

        Returns:
            Verdict.FLAGGED if the masked source differs from the interface
            subnet, Verdict.CLEAN otherwise.
        """
        try:
            ip = packet.peek_ip_header()
        except HeaderParseError:
            return Verdict.CLEAN
        if ip.protocol != self.protocol:
            return Verdict.CLEAN
        if ip.source in self.router_addresses:
            return Verdict.CLEAN

        self.inspected += 1
        if ip.source in interface.network:
            return Verdict.CLEAN

        record = FlaggedRecord(
            self.context.now(), ip.source, self.node_name, interface_index
        )
        self.context.record_flag(record)
        logger.warning(
            "%.6fs INGRESS FILTER: detected spoofed packet from %s on %s interface %d",
            record.time,
            ip.source,
            self.node_name,
            interface_index,
        )
        for hook in self.hooks:
            hook(record)
        return Verdict.FLAGGED
