"""Flow statistics for network simulation.

This module defines the FlowMonitor class, which classifies packets by their
five-tuple and keeps per-flow transmit, receive, delay and drop statistics.
The monitor is purely observational: it never alters a packet.
"""

import logging
from dataclasses import dataclass, field, replace
from ipaddress import IPv4Address
from typing import Any, Dict, NamedTuple, Optional

from bottleneck_sim.core.enums import DropReason
from bottleneck_sim.core.errors import HeaderParseError
from bottleneck_sim.core.packet import Packet
from bottleneck_sim.core.scheduler import EventScheduler

logger = logging.getLogger(__name__)


class FiveTuple(NamedTuple):
    """Flow identity: addresses, ports and protocol."""

    source: IPv4Address
    destination: IPv4Address
    source_port: int
    destination_port: int
    protocol: int

    def __str__(self) -> str:
        return (
            f"{self.source}:{self.source_port} -> "
            f"{self.destination}:{self.destination_port} ({self.protocol})"
        )


def classify(packet: Packet) -> FiveTuple:
    """Extract the five-tuple of a packet.

    Packets without a transport header are classified with ports 0.

    Args:
        packet: Packet to classify.

    Returns:
        The packet's five-tuple.

    Raises:
        HeaderParseError: If the packet has no IPv4 header.
    """
    ip = packet.peek_ip_header()
    transport = packet.transport_header()
    if transport is None:
        return FiveTuple(ip.source, ip.destination, 0, 0, int(ip.protocol))
    return FiveTuple(
        ip.source,
        ip.destination,
        transport.source_port,
        transport.destination_port,
        int(ip.protocol),
    )


@dataclass
class FlowRecord:
    """Statistics of one flow.

    Attributes:
        flow_id: Sequential identifier in order of first observation.
        five_tuple: The flow's five-tuple.
        tx_packets: Packets handed to the network by the sender.
        rx_packets: Packets delivered to the receiver.
        tx_bytes: Bytes transmitted, IP headers included.
        rx_bytes: Bytes received, IP headers included.
        first_tx_time: Time of the first transmission.
        last_tx_time: Time of the latest transmission.
        first_rx_time: Time of the first reception.
        last_rx_time: Time of the latest reception.
        delay_sum: Sum of one-way delays of timestamped received packets.
        jitter_sum: Sum of absolute differences between consecutive delays.
        drops: Dropped packets keyed by drop reason value.
    """

    flow_id: int
    five_tuple: FiveTuple
    tx_packets: int = 0
    rx_packets: int = 0
    tx_bytes: int = 0
    rx_bytes: int = 0
    first_tx_time: Optional[float] = None
    last_tx_time: Optional[float] = None
    first_rx_time: Optional[float] = None
    last_rx_time: Optional[float] = None
    delay_sum: float = 0.0
    jitter_sum: float = 0.0
    drops: Dict[str, int] = field(default_factory=dict)
    last_delay: Optional[float] = field(default=None, repr=False)

    @property
    def lost_packets(self) -> int:
        """Packets transmitted but not received, derived on every read."""
        return max(self.tx_packets - self.rx_packets, 0)

    @property
    def mean_delay(self) -> Optional[float]:
        if self.rx_packets == 0:
            return None
        return self.delay_sum / self.rx_packets

    @property
    def throughput(self) -> Optional[float]:
        """Received bits per second between first transmission and last reception.

        Returns:
            Throughput in bit/s, or None when nothing was received.
        """
        if self.rx_packets == 0:
            return None
        start = self.first_tx_time if self.first_tx_time is not None else self.first_rx_time
        duration = self.last_rx_time - start
        if duration <= 0:
            return 0.0
        return self.rx_bytes * 8 / duration

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flow_id": self.flow_id,
            "source": str(self.five_tuple.source),
            "destination": str(self.five_tuple.destination),
            "source_port": self.five_tuple.source_port,
            "destination_port": self.five_tuple.destination_port,
            "protocol": self.five_tuple.protocol,
            "tx_packets": self.tx_packets,
            "rx_packets": self.rx_packets,
            "tx_bytes": self.tx_bytes,
            "rx_bytes": self.rx_bytes,
            "lost_packets": self.lost_packets,
            "first_tx_time": self.first_tx_time,
            "last_rx_time": self.last_rx_time,
            "mean_delay": self.mean_delay,
            "jitter_sum": self.jitter_sum,
            "throughput": self.throughput,
            "drops": dict(sorted(self.drops.items())),
        }


class FlowMonitor:
    """Collects per-flow statistics keyed by five-tuple.

    Attributes:
        scheduler: Provides the current virtual time.
    """

    def __init__(self, scheduler: EventScheduler) -> None:
        self.scheduler = scheduler
        self._flows: Dict[FiveTuple, FlowRecord] = {}

    def _record(self, five_tuple: FiveTuple) -> FlowRecord:
        record = self._flows.get(five_tuple)
        if record is None:
            record = FlowRecord(flow_id=len(self._flows) + 1, five_tuple=five_tuple)
            self._flows[five_tuple] = record
            logger.debug("New flow %d: %s", record.flow_id, five_tuple)
        return record

    def on_tx(self, packet: Packet) -> None:
        """Account a packet handed to the network by its sender.

        Args:
            packet: Packet carrying an IPv4 header.
        """
        now = self.scheduler.now()
        record = self._record(classify(packet))
        record.tx_packets += 1
        record.tx_bytes += packet.size
        if record.first_tx_time is None:
            record.first_tx_time = now
        record.last_tx_time = now

    def on_rx(self, packet: Packet) -> None:
        """Account a packet delivered to its receiver.

        A packet of a flow that was never seen transmitting creates a record
        with zero transmissions.

        Args:
            packet: Packet carrying an IPv4 header.
        """
        now = self.scheduler.now()
        record = self._record(classify(packet))
        record.rx_packets += 1
        record.rx_bytes += packet.size
        if record.first_rx_time is None:
            record.first_rx_time = now
        record.last_rx_time = now
        if packet.send_time is not None:
            delay = now - packet.send_time
            record.delay_sum += delay
            if record.last_delay is not None:
                record.jitter_sum += abs(delay - record.last_delay)
            record.last_delay = delay

    def on_drop(self, packet: Packet, reason: DropReason) -> None:
        """Account a drop against the packet's flow, if it can be classified."""
        try:
            five_tuple = classify(packet)
        except HeaderParseError:
            return
        record = self._record(five_tuple)
        record.drops[reason.value] = record.drops.get(reason.value, 0) + 1

    def snapshot(self) -> Dict[FiveTuple, FlowRecord]:
        """Return copies of all flow records in order of first observation."""
        return {
            five_tuple: replace(record, drops=dict(record.drops))
            for five_tuple, record in self._flows.items()
        }

    def __len__(self) -> int:
        return len(self._flows)
