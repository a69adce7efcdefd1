"""Per-run simulation context.

This module defines the SimulationContext class. Everything that is mutable and
shared across components of one run lives here: the scheduler, the random
streams, the flow monitor, drop and detection records and the transmit
counters. Components receive the context at construction, so independent runs
never see each other's state.
"""

import itertools
import logging
from collections import Counter
from dataclasses import dataclass
from ipaddress import IPv4Address
from typing import Any, Callable, Dict, List, Optional

from bottleneck_sim.core.enums import DropReason
from bottleneck_sim.core.errors import HeaderParseError
from bottleneck_sim.core.flow_monitor import FiveTuple, FlowMonitor, classify
from bottleneck_sim.core.packet import Packet
from bottleneck_sim.core.scheduler import EventScheduler
from bottleneck_sim.utils.rng import RandomStreams

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DropRecord:
    """A packet that was dropped.

    Attributes:
        time: Virtual time of the drop.
        size: Packet size in bytes.
        reason: Why the packet was dropped.
        location: Name of the component that dropped it.
        flow: Five-tuple of the packet, or None if it could not be parsed.
    """

    time: float
    size: int
    reason: DropReason
    location: str
    flow: Optional[FiveTuple] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "size": self.size,
            "reason": self.reason.value,
            "location": self.location,
            "flow": str(self.flow) if self.flow is not None else None,
        }


@dataclass(frozen=True)
class FlaggedRecord:
    """A packet whose source address failed ingress validation.

    Attributes:
        time: Virtual time of the inspection.
        source: Offending source address.
        node: Name of the inspecting node.
        interface: Index of the ingress interface on that node.
    """

    time: float
    source: IPv4Address
    node: str
    interface: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "source": str(self.source),
            "node": self.node,
            "interface": self.interface,
        }


class SimulationContext:
    """Owns the mutable state of a single simulation run.

    Attributes:
        seed: Run seed.
        scheduler: Event scheduler driving the run.
        streams: Named random streams derived from the seed.
        flow_monitor: Per-flow statistics collector.
        drops: Every drop, in the order it happened.
        flagged: Every ingress filter detection, in order.
        tx_packets: Packets emitted per traffic source name.
        drop_hooks: Callables invoked with each DropRecord.
    """

    def __init__(self, seed: int = 42, scheduler: Optional[EventScheduler] = None):
        self.seed = seed
        self.scheduler = scheduler if scheduler is not None else EventScheduler()
        self.streams = RandomStreams(seed)
        self.flow_monitor = FlowMonitor(self.scheduler)
        self.drops: List[DropRecord] = []
        self.flagged: List[FlaggedRecord] = []
        self.tx_packets: Counter = Counter()
        self.drop_hooks: List[Callable[[DropRecord], None]] = []
        self._packet_ids = itertools.count(1)

    def now(self) -> float:
        return self.scheduler.now()

    def next_packet_id(self) -> int:
        return next(self._packet_ids)

    def record_drop(self, packet: Packet, reason: DropReason, location: str) -> DropRecord:
        """Record a dropped packet and notify listeners.

        Args:
            packet: The dropped packet.
            reason: Why it was dropped.
            location: Name of the dropping component.

        Returns:
            The stored record.
        """
        try:
            flow: Optional[FiveTuple] = classify(packet)
        except HeaderParseError:
            flow = None
        record = DropRecord(self.now(), packet.size, reason, location, flow)
        self.drops.append(record)
        self.flow_monitor.on_drop(packet, reason)
        logger.debug(
            "[DROP] t=%.6fs size=%dB reason=%s at %s",
            record.time,
            record.size,
            reason.value,
            location,
        )
        for hook in self.drop_hooks:
            hook(record)
        return record

    def record_flag(self, record: FlaggedRecord) -> None:
        self.flagged.append(record)

    def drop_counts(self) -> Dict[str, int]:
        """Number of drops keyed by reason value."""
        counts = Counter(record.reason.value for record in self.drops)
        return dict(sorted(counts.items()))
