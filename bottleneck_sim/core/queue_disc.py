"""Queueing disciplines for network simulation.

This module defines the QueueDisc base class and its two admission policies:
FIFO tail-drop and Random Early Detection (RED). A queue disc buffers packets
in front of a Link and hands them over whenever the link's device can accept
another packet. Admission is a synchronous decision taken at enqueue time.
"""

import logging
import math
from abc import ABC, abstractmethod
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional

from bottleneck_sim.core.context import SimulationContext
from bottleneck_sim.core.enums import DropReason, QueueSizeUnit
from bottleneck_sim.core.errors import ConfigurationError
from bottleneck_sim.core.link import Link
from bottleneck_sim.core.packet import Packet
from bottleneck_sim.core.scheduler import EventHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueSize:
    """Queue capacity with its unit.

    Attributes:
        value: Capacity in packets or bytes.
        unit: Unit of the capacity.
    """

    value: int
    unit: QueueSizeUnit = QueueSizeUnit.PACKETS

    def __post_init__(self):
        if self.value <= 0:
            raise ConfigurationError(f"Queue capacity must be positive, got {self.value}")

    @classmethod
    def parse(cls, text: str) -> "QueueSize":
        """Parse an ns-3 style size such as "20p" or "30000B"."""
        text = str(text).strip()
        for unit in QueueSizeUnit:
            if text.endswith(unit.value):
                number = text[: -len(unit.value)]
                if number.isdigit():
                    return cls(int(number), unit)
        raise ConfigurationError(f"Malformed queue size: {text!r}")

    def __str__(self) -> str:
        return f"{self.value}{self.unit.value}"


@dataclass
class QueueDiscStats:
    """Counters kept by every queue disc."""

    enqueued_packets: int = 0
    enqueued_bytes: int = 0
    dequeued_packets: int = 0
    dequeued_bytes: int = 0
    dropped_packets: int = 0
    dropped_bytes: int = 0
    peak_occupancy: int = 0
    drops_by_reason: Counter = field(default_factory=Counter)

    def to_dict(self) -> Dict[str, object]:
        return {
            "enqueued_packets": self.enqueued_packets,
            "enqueued_bytes": self.enqueued_bytes,
            "dequeued_packets": self.dequeued_packets,
            "dequeued_bytes": self.dequeued_bytes,
            "dropped_packets": self.dropped_packets,
            "dropped_bytes": self.dropped_bytes,
            "peak_occupancy": self.peak_occupancy,
            "drops_by_reason": {
                reason.value: count
                for reason, count in sorted(
                    self.drops_by_reason.items(), key=lambda item: item[0].value
                )
            },
        }


class QueueDisc(ABC):
    """Abstract base class for queueing disciplines.

    Attributes:
        context: Simulation context of the run.
        name: Label used in logs and drop records.
        capacity: Physical capacity of the queue.
        queue: Admitted packets waiting for the link.
        link: Link the queue feeds, once attached.
        stats: Enqueue, dequeue and drop counters.
        enqueue_hooks: Called with each admitted packet.
        dequeue_hooks: Called with each packet handed to the link.
        drop_hooks: Called with each dropped packet and its reason.
    """

    def __init__(self, context: SimulationContext, capacity: QueueSize, name: str):
        self.context = context
        self.scheduler = context.scheduler
        self.capacity = capacity
        self.name = name
        self.queue: Deque[Packet] = deque()
        self.link: Optional[Link] = None
        self.stats = QueueDiscStats()
        self.enqueue_hooks: List[Callable[[Packet], None]] = []
        self.dequeue_hooks: List[Callable[[Packet], None]] = []
        self.drop_hooks: List[Callable[[Packet, DropReason], None]] = []
        self._bytes = 0
        self._run_handle: Optional[EventHandle] = None

    @property
    def occupancy(self) -> int:
        """Current occupancy in the capacity's unit."""
        if self.capacity.unit is QueueSizeUnit.BYTES:
            return self._bytes
        return len(self.queue)

    def is_full_for(self, packet: Packet) -> bool:
        """Check whether admitting the packet would exceed capacity."""
        if self.capacity.unit is QueueSizeUnit.BYTES:
            return self._bytes + packet.size > self.capacity.value
        return len(self.queue) >= self.capacity.value

    def attach(self, link: Link) -> None:
        """Feed a link and resume sending whenever its device has room."""
        self.link = link
        link.ready_hooks.append(self.run)

    def enqueue(self, packet: Packet) -> bool:
        """Offer a packet to the queue.

        Args:
            packet: Packet to admit.

        Returns:
            True if the packet was admitted, False if it was dropped.
        """
        reason = self.admission(packet)
        if reason is not None:
            self.drop(packet, reason)
            return False

        self.queue.append(packet)
        self._bytes += packet.size
        self.stats.enqueued_packets += 1
        self.stats.enqueued_bytes += packet.size
        self.stats.peak_occupancy = max(self.stats.peak_occupancy, self.occupancy)
        for hook in self.enqueue_hooks:
            hook(packet)

        if self.link is not None and self._run_handle is None:
            self._run_handle = self.scheduler.schedule(0, self._scheduled_run)
        return True

    @abstractmethod
    def admission(self, packet: Packet) -> Optional[DropReason]:
        """Decide whether to admit a packet.

        Args:
            packet: Packet offered to the queue.

        Returns:
            None to admit, or the reason the packet must be dropped.
        """
        pass

    def dequeue(self) -> Optional[Packet]:
        """Remove the packet at the head of the queue."""
        if not self.queue:
            return None
        packet = self.queue.popleft()
        self._bytes -= packet.size
        self.stats.dequeued_packets += 1
        self.stats.dequeued_bytes += packet.size
        self.on_dequeue(packet)
        for hook in self.dequeue_hooks:
            hook(packet)
        return packet

    def on_dequeue(self, packet: Packet) -> None:
        """Subclass hook run after a packet leaves the queue."""

    def drop(self, packet: Packet, reason: DropReason) -> None:
        self.stats.dropped_packets += 1
        self.stats.dropped_bytes += packet.size
        self.stats.drops_by_reason[reason] += 1
        self.context.record_drop(packet, reason, self.name)
        for hook in self.drop_hooks:
            hook(packet, reason)

    def run(self) -> None:
        """Hand packets to the link while its device accepts them."""
        if self.link is None:
            return
        while self.queue and self.link.can_accept():
            packet = self.dequeue()
            self.link.send(packet)

    def _scheduled_run(self) -> None:
        self._run_handle = None
        self.run()

    def __len__(self) -> int:
        return len(self.queue)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name}, {len(self.queue)}/{self.capacity})"


class FifoQueueDisc(QueueDisc):
    """First-in first-out queue with tail-drop admission."""

    def admission(self, packet: Packet) -> Optional[DropReason]:
        if self.is_full_for(packet):
            return DropReason.TAIL
        return None


class RedQueueDisc(QueueDisc):
    """Random Early Detection queue.

    The average occupancy is an exponentially weighted moving average updated
    on every enqueue attempt. When the queue has been idle, the average is
    decayed as if `m` small packets had been dequeued during the idle period,
    where `m` is the idle time multiplied by the link's packet rate.

    Attributes:
        min_th: Lower average threshold, in packets.
        max_th: Upper average threshold, in packets.
        max_p: Drop probability reached at max_th.
        mean_packet_size: Expected packet size in bytes.
        gentle: Ramp probability from max_p to 1 between max_th and 2 * max_th.
        wait: Space drops out evenly instead of allowing back-to-back drops.
        hard_drop: Drop unconditionally when the average exceeds the hard
            threshold. When False only the capacity backstop applies there.
        queue_weight: EWMA weight of the instantaneous occupancy.
        packet_rate: Link packets per second used for idle compensation.
        average: Current average occupancy.
        count: Packets admitted since the last drop, or -1 below min_th.
        idle: Whether the queue has been empty since the last dequeue.
        idle_since: Time the queue last became empty.
    """

    def __init__(
        self,
        context: SimulationContext,
        capacity: QueueSize,
        name: str,
        min_th: float = 5,
        max_th: float = 15,
        link_bandwidth: float = 1.5e6,
        mean_packet_size: int = 500,
        l_interm: float = 50,
        queue_weight: Optional[float] = 0.002,
        gentle: bool = True,
        wait: bool = True,
        hard_drop: bool = True,
    ):
        """Initialize a RED queue.

        Args:
            context: Simulation context of the run.
            capacity: Physical capacity of the queue.
            name: Label used in logs, drop records and the random stream.
            min_th: Lower average threshold in packets.
            max_th: Upper average threshold in packets.
            link_bandwidth: Bandwidth of the fed link in bits per second.
            mean_packet_size: Expected packet size in bytes.
            l_interm: Inverse of the drop probability at max_th.
            queue_weight: EWMA weight, or None to derive it from the link.
            gentle: Enable gentle mode.
            wait: Enable even spacing between drops.
            hard_drop: Drop when the average exceeds the hard threshold.

        Raises:
            ConfigurationError: If the thresholds or link parameters are invalid.
        """
        super().__init__(context, capacity, name)
        if min_th < 0 or min_th >= max_th:
            raise ConfigurationError(
                f"RED thresholds must satisfy 0 <= MinTh < MaxTh, got {min_th} and {max_th}"
            )
        if link_bandwidth <= 0 or mean_packet_size <= 0:
            raise ConfigurationError("RED needs a positive link bandwidth and mean packet size")
        if l_interm < 1:
            raise ConfigurationError(f"RED LInterm must be at least 1, got {l_interm}")

        scale = mean_packet_size if capacity.unit is QueueSizeUnit.BYTES else 1
        self.min_th = min_th * scale
        self.max_th = max_th * scale
        self.max_p = 1.0 / l_interm
        self.mean_packet_size = mean_packet_size
        self.gentle = gentle
        self.wait = wait
        self.hard_drop = hard_drop
        self.packet_rate = link_bandwidth / (8.0 * mean_packet_size)
        if queue_weight is None:
            queue_weight = 1.0 - math.exp(-1.0 / self.packet_rate)
        if not 0 <= queue_weight <= 1:
            raise ConfigurationError(f"RED queue weight must lie in [0, 1], got {queue_weight}")
        self.queue_weight = queue_weight

        self.average = 0.0
        self.count = 0
        self.count_bytes = 0
        self.idle = True
        self.idle_since = context.now()
        self._above_min = False
        self.rng = context.streams.stream(f"red:{name}")

        # Linear ramps: max_p * (avg - min_th) / (max_th - min_th) below max_th,
        # max_p -> 1 between max_th and 2 * max_th in gentle mode.
        self._a = 1.0 / (self.max_th - self.min_th)
        self._b = -self.min_th / (self.max_th - self.min_th)
        self._c = (1.0 - self.max_p) / self.max_th
        self._d = 2.0 * self.max_p - 1.0

    def drop_probability(self, average: float) -> float:
        """Base drop probability for an average occupancy.

        Args:
            average: Average occupancy in the capacity's unit.

        Returns:
            Probability in [0, 1], before the count-based adjustment.
        """
        if average < self.min_th:
            return 0.0
        if average >= self.max_th:
            if not self.gentle:
                return 1.0
            return min(self._c * average + self._d, 1.0)
        return min((self._a * average + self._b) * self.max_p, 1.0)

    def _adjusted_probability(self, probability: float, packet: Packet) -> float:
        count = float(self.count)
        if self.capacity.unit is QueueSizeUnit.BYTES:
            count = self.count_bytes / self.mean_packet_size
        if self.wait:
            if count * probability < 1.0:
                probability = 0.0
            elif count * probability < 2.0:
                probability /= 2.0 - count * probability
            else:
                probability = 1.0
        else:
            if count * probability < 1.0:
                probability /= 1.0 - count * probability
            else:
                probability = 1.0
        if self.capacity.unit is QueueSizeUnit.BYTES and probability < 1.0:
            probability = probability * packet.size / self.mean_packet_size
        return min(probability, 1.0)

    def update_average(self) -> float:
        """Fold the current occupancy into the moving average."""
        m = 0.0
        if self.idle:
            m = self.packet_rate * (self.context.now() - self.idle_since)
            self.idle = False
        self.average = (
            self.average * (1.0 - self.queue_weight) ** (m + 1)
            + self.queue_weight * self.occupancy
        )
        return self.average

    def admission(self, packet: Packet) -> Optional[DropReason]:
        occupancy = self.occupancy
        self.update_average()
        self.count += 1
        self.count_bytes += packet.size

        reason: Optional[DropReason] = None
        if self.average >= self.min_th and occupancy > 1:
            hard_threshold = 2 * self.max_th if self.gentle else self.max_th
            if self.average >= hard_threshold:
                if self.hard_drop:
                    reason = DropReason.AQM_FORCED
            elif not self._above_min:
                # First packet after crossing min_th restarts the count.
                self.count = 1
                self.count_bytes = packet.size
                self._above_min = True
            else:
                probability = self._adjusted_probability(
                    self.drop_probability(self.average), packet
                )
                if self.rng.random() < probability:
                    reason = DropReason.AQM_EARLY
        else:
            self._above_min = False

        if reason is None and self.is_full_for(packet):
            reason = DropReason.TAIL

        if reason is not None:
            self.count = 0
            self.count_bytes = 0
        return reason

    def on_dequeue(self, packet: Packet) -> None:
        if not self.queue:
            self.idle = True
            self.idle_since = self.context.now()
