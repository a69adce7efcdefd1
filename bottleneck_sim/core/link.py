"""Link class for network simulation.

This module defines the Link class, which represents one direction of a
point-to-point connection between two nodes. A packet is first serialized onto
the wire at the link's data rate and then propagates for a fixed delay; only
one packet is serialized at a time.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional

from bottleneck_sim.core.context import SimulationContext
from bottleneck_sim.core.enums import DropReason
from bottleneck_sim.core.errors import ConfigurationError, LinkBusyError
from bottleneck_sim.core.packet import Packet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransmissionRecord:
    """Timing of one packet on a link.

    Attributes:
        packet_id: Identifier of the transmitted packet.
        size: Packet size in bytes.
        start: Time serialization started.
        end: Time the last bit left the sender.
        arrival: Time the last bit reaches the far end.
    """

    packet_id: int
    size: int
    start: float
    end: float
    arrival: float


class Link:
    """Represents one direction of a network link between nodes.

    Attributes:
        context: Simulation context of the run.
        source: Arena index of the sending node.
        target: Arena index of the receiving node.
        data_rate: Link capacity in bits per second.
        propagation_delay: Propagation delay in seconds.
        device_queue_capacity: Packets the device holds while the wire is busy.
        busy: Whether the link is currently serializing a packet.
        device_queue: Packets waiting in the device for the wire.
        packets_sent: Number of packets fully serialized.
        bytes_sent: Number of bytes fully serialized.
        busy_time: Total time spent serializing.
        transmit_hooks: Called with a TransmissionRecord when serialization starts.
        complete_hooks: Called with a TransmissionRecord when serialization ends.
        arrival_hooks: Called with the packet copy delivered at the far end.
        ready_hooks: Called when the device can take another packet.
    """

    def __init__(
        self,
        context: SimulationContext,
        source: int,
        target: int,
        data_rate: float,
        propagation_delay: float,
        device_queue_capacity: int = 1,
        name: Optional[str] = None,
    ):
        """Initialize a network link.

        Args:
            context: Simulation context of the run.
            source: Arena index of the sending node.
            target: Arena index of the receiving node.
            data_rate: Link capacity in bits per second.
            propagation_delay: Propagation delay in seconds.
            device_queue_capacity: Device transmit queue size in packets.
            name: Label used in logs and drop records.

        Raises:
            ConfigurationError: If the rate is not positive, the delay is
                negative or the device queue capacity is negative.
        """
        if not data_rate > 0:
            raise ConfigurationError(f"Link data rate must be positive, got {data_rate}")
        if not propagation_delay >= 0:
            raise ConfigurationError(
                f"Propagation delay cannot be negative, got {propagation_delay}"
            )
        if device_queue_capacity < 0:
            raise ConfigurationError("Device queue capacity cannot be negative")

        self.context = context
        self.scheduler = context.scheduler
        self.source = source
        self.target = target
        self.data_rate = data_rate
        self.propagation_delay = propagation_delay
        self.device_queue_capacity = device_queue_capacity
        self.name = name or f"link:{source}->{target}"
        self.busy = False
        self.device_queue: Deque[Packet] = deque()
        self.packets_sent = 0
        self.bytes_sent = 0
        self.busy_time = 0.0
        self.transmit_hooks: List[Callable[[TransmissionRecord], None]] = []
        self.complete_hooks: List[Callable[[TransmissionRecord], None]] = []
        self.arrival_hooks: List[Callable[[Packet], None]] = []
        self.ready_hooks: List[Callable[[], None]] = []

    def calculate_transmission_delay(self, packet_size: int) -> float:
        """Calculate transmission delay based on packet size and link capacity.

        Args:
            packet_size: Size of the packet in bytes.

        Returns:
            Transmission delay in seconds.
        """
        return (packet_size * 8) / self.data_rate

    def get_total_delay(self, packet: Packet) -> float:
        """Calculate total delay for a packet (transmission + propagation).

        Args:
            packet: The packet to calculate delay for.

        Returns:
            Total delay in seconds.
        """
        transmission_delay = self.calculate_transmission_delay(packet.size)
        return transmission_delay + self.propagation_delay

    def can_accept(self) -> bool:
        """Check whether send() would take a packet without dropping it."""
        return not self.busy or len(self.device_queue) < self.device_queue_capacity

    def send(self, packet: Packet) -> bool:
        """Hand a packet to the device.

        The packet is serialized immediately when the wire is idle, held in the
        device queue when there is room, and dropped otherwise.

        Args:
            packet: The packet to send.

        Returns:
            True if the device took the packet, False if it was dropped.
        """
        if not self.busy:
            self.transmit(packet)
            return True
        if len(self.device_queue) < self.device_queue_capacity:
            self.device_queue.append(packet)
            return True
        self.context.record_drop(packet, DropReason.DEVICE, self.name)
        return False

    def transmit(
        self, packet: Packet, on_complete: Optional[Callable[[Packet], None]] = None
    ) -> TransmissionRecord:
        """Start serializing a packet onto the wire.

        Args:
            packet: The packet to transmit.
            on_complete: Called with the packet when its last bit has left.

        Returns:
            The timing of the transmission.

        Raises:
            LinkBusyError: If another packet is still being serialized.
        """
        if self.busy:
            raise LinkBusyError(f"{self.name} is already transmitting")

        now = self.scheduler.now()
        transmission_delay = self.calculate_transmission_delay(packet.size)
        record = TransmissionRecord(
            packet.id,
            packet.size,
            now,
            now + transmission_delay,
            now + self.get_total_delay(packet),
        )
        self.busy = True
        for hook in self.transmit_hooks:
            hook(record)
        self.scheduler.schedule(
            transmission_delay, self._transmit_complete, packet, record, on_complete
        )
        return record

    def _transmit_complete(
        self,
        packet: Packet,
        record: TransmissionRecord,
        on_complete: Optional[Callable[[Packet], None]],
    ) -> None:
        self.busy = False
        self.packets_sent += 1
        self.bytes_sent += packet.size
        self.busy_time += record.end - record.start
        for hook in self.complete_hooks:
            hook(record)
        if on_complete is not None:
            on_complete(packet)

        self.scheduler.schedule(self.propagation_delay, self._arrive, packet.copy())

        if self.device_queue:
            self.transmit(self.device_queue.popleft())
        if self.can_accept():
            for hook in self.ready_hooks:
                hook()

    def _arrive(self, packet: Packet) -> None:
        for hook in self.arrival_hooks:
            hook(packet)

    def utilization(self, duration: float) -> float:
        """Fraction of a time window spent serializing."""
        if duration <= 0:
            return 0.0
        return self.busy_time / duration

    def __repr__(self) -> str:
        """Return string representation of the link.

        Returns:
            String representation of the link.
        """
        return f"Link({self.source}->{self.target}, {self.data_rate/1000000:.1f}Mbps, {self.propagation_delay*1000:.1f}ms)"
