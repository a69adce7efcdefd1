"""Traffic sources and sinks for network simulation.

This module defines the TrafficSource base class and its variants:

- BulkSendSource offers maximum-size segments as fast as its node's egress
  queue drains them.
- OnOffSource sends fixed-size packets at a fixed rate during on periods and
  stays silent during off periods.
- ScheduledPacketSource sends single packets at listed times with explicit,
  possibly spoofed, source addresses.

PacketSink receives packets on a node port and reports them to the flow
monitor. Sources are open-loop: there is no congestion control.
"""

import logging
from abc import ABC, abstractmethod
from ipaddress import IPv4Address
from typing import Any, Callable, Generator, List, Optional, Sequence, Tuple

import simpy

from bottleneck_sim.core.context import SimulationContext
from bottleneck_sim.core.enums import Protocol, TrafficKind
from bottleneck_sim.core.errors import ConfigurationError
from bottleneck_sim.core.node import Node
from bottleneck_sim.core.packet import Ipv4Header, Packet, TcpHeader, UdpHeader
from bottleneck_sim.core.scheduler import EventHandle
from bottleneck_sim.traffic.generators import DurationLike, as_duration

logger = logging.getLogger(__name__)


class TrafficSource(ABC):
    """Abstract base class for traffic sources.

    Attributes:
        context: Simulation context of the run.
        node: Node the source sends from.
        name: Label used for tx counters and logs.
        destination: Destination address.
        destination_port: Destination transport port.
        source_port: Source transport port.
        protocol: IP protocol number of emitted packets.
        running: Whether the source is between start and stop.
        packets_sent: Packets handed to the node.
        payload_bytes_sent: Payload bytes handed to the node.
        tx_hooks: Called with every emitted packet.
    """

    kind: TrafficKind

    def __init__(
        self,
        context: SimulationContext,
        node: Node,
        name: str,
        destination: IPv4Address,
        destination_port: int,
        protocol: int,
        source_port: Optional[int] = None,
    ):
        self.context = context
        self.scheduler = context.scheduler
        self.node = node
        self.name = name
        self.destination = IPv4Address(destination)
        self.destination_port = destination_port
        self.source_port = source_port if source_port is not None else node.allocate_port()
        self.protocol = protocol
        self.running = False
        self.packets_sent = 0
        self.payload_bytes_sent = 0
        self.tx_hooks: List[Callable[[Packet], None]] = []
        self._start_handle: Optional[EventHandle] = None
        self._stop_handle: Optional[EventHandle] = None

    def install(self, start_time: float, stop_time: Optional[float] = None) -> None:
        """Schedule the source to start and, optionally, to stop.

        Args:
            start_time: Absolute start time in seconds.
            stop_time: Absolute stop time in seconds, or None to run forever.

        Raises:
            ConfigurationError: If the stop time precedes the start time.
        """
        if stop_time is not None and stop_time < start_time:
            raise ConfigurationError(
                f"{self.name}: stop time {stop_time} precedes start time {start_time}"
            )
        self._start_handle = self.scheduler.schedule_at(start_time, self.start)
        if stop_time is not None:
            self._stop_handle = self.scheduler.schedule_at(stop_time, self.stop)

    def start(self) -> None:
        if self.running:
            return
        self.running = True
        logger.debug("%s started at t=%.6f", self.name, self.scheduler.now())
        self.on_start()

    def stop(self) -> None:
        if self._start_handle is not None:
            self.scheduler.cancel(self._start_handle)
        if not self.running:
            return
        self.running = False
        logger.debug(
            "%s stopped at t=%.6f after %d packets",
            self.name,
            self.scheduler.now(),
            self.packets_sent,
        )
        self.on_stop()

    @abstractmethod
    def on_start(self) -> None:
        pass

    @abstractmethod
    def on_stop(self) -> None:
        pass

    def create_packet(
        self, payload_size: int, source: Optional[IPv4Address] = None
    ) -> Packet:
        """Build a timestamped packet with transport and IPv4 headers.

        Args:
            payload_size: Application payload in bytes.
            source: Source address; defaults to the node's first address.

        Returns:
            The new packet.
        """
        if source is None:
            if not self.node.addresses:
                raise ConfigurationError(f"{self.node.name} has no address to send from")
            source = self.node.addresses[0]
        packet = Packet(
            self.context.next_packet_id(), payload_size, send_time=self.scheduler.now()
        )
        if self.protocol == Protocol.TCP:
            transport = TcpHeader(
                self.source_port, self.destination_port, self.payload_bytes_sent
            )
        else:
            transport = UdpHeader(self.source_port, self.destination_port)
        packet.add_header(transport)
        packet.add_header(
            Ipv4Header(
                source,
                self.destination,
                self.protocol,
                payload_size=payload_size + transport.SIZE,
            )
        )
        return packet

    def emit(self, packet: Packet) -> bool:
        """Hand a packet to the node and account it as transmitted.

        Returns:
            True if the node's egress queue admitted the packet.
        """
        self.packets_sent += 1
        self.payload_bytes_sent += packet.payload_size
        self.context.tx_packets[self.name] += 1
        self.context.flow_monitor.on_tx(packet)
        for hook in self.tx_hooks:
            hook(packet)
        return self.node.send(packet)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name} -> {self.destination}:{self.destination_port})"


class BulkSendSource(TrafficSource):
    """Saturating sender paced only by its node's egress queue.

    After each packet the source waits until the egress queue has handed that
    packet to the link. If its own queue dropped the packet, it waits for the
    next packet of any sender to leave the queue instead.

    Attributes:
        segment_size: Payload bytes per packet.
        max_bytes: Payload budget; 0 means unlimited.
    """

    kind = TrafficKind.BULK

    def __init__(
        self,
        context: SimulationContext,
        node: Node,
        name: str,
        destination: IPv4Address,
        destination_port: int,
        segment_size: int = 536,
        max_bytes: int = 0,
        protocol: int = Protocol.TCP,
        source_port: Optional[int] = None,
    ):
        super().__init__(
            context, node, name, destination, destination_port, protocol, source_port
        )
        if segment_size <= 0:
            raise ConfigurationError(f"Segment size must be positive, got {segment_size}")
        if max_bytes < 0:
            raise ConfigurationError(f"Byte budget cannot be negative, got {max_bytes}")
        self.segment_size = segment_size
        self.max_bytes = max_bytes
        self._process: Optional[simpy.Process] = None
        self._wakeup: Optional[simpy.Event] = None
        self._awaited: Optional[int] = None
        self._watched = None

    @property
    def budget_met(self) -> bool:
        return self.max_bytes > 0 and self.payload_bytes_sent >= self.max_bytes

    def on_start(self) -> None:
        queue = self.node.egress_queue(self.destination)
        if queue is None:
            logger.warning("%s: no route or queue towards %s", self.name, self.destination)
            return
        if queue is not self._watched:
            queue.dequeue_hooks.append(self._on_dequeue)
            self._watched = queue
        self._process = self.scheduler.process(self._send_loop())

    def on_stop(self) -> None:
        if self._process is not None and self._process.is_alive:
            self._process.interrupt("stop")

    def _send_loop(self) -> Generator[simpy.Event, Any, None]:
        try:
            while self.running and not self.budget_met:
                size = self.segment_size
                if self.max_bytes > 0:
                    size = min(size, self.max_bytes - self.payload_bytes_sent)
                packet = self.create_packet(size)
                self._wakeup = self.scheduler.event()
                self._awaited = packet.id
                if not self.emit(packet):
                    self._awaited = None
                yield self._wakeup
        except simpy.Interrupt:
            pass
        finally:
            self._wakeup = None
        if self.budget_met:
            logger.info(
                "%s finished its %d byte budget at t=%.6f",
                self.name,
                self.max_bytes,
                self.scheduler.now(),
            )

    def _on_dequeue(self, packet: Packet) -> None:
        if self._wakeup is None or self._wakeup.triggered:
            return
        if self._awaited is None or packet.id == self._awaited:
            self._wakeup.succeed()


class OnOffSource(TrafficSource):
    """Constant bit rate sender gated by alternating on and off periods.

    Time owed to the next packet when an on period ends is carried into the
    next on period, so the long-run rate during on periods equals data_rate.

    Attributes:
        packet_size: Payload bytes per packet.
        data_rate: Sending rate during on periods, in bits per second.
        max_bytes: Payload budget; 0 means unlimited.
    """

    kind = TrafficKind.ON_OFF

    def __init__(
        self,
        context: SimulationContext,
        node: Node,
        name: str,
        destination: IPv4Address,
        destination_port: int,
        packet_size: int = 512,
        data_rate: float = 500e3,
        on_time: DurationLike = 1.0,
        off_time: DurationLike = 1.0,
        max_bytes: int = 0,
        protocol: int = Protocol.UDP,
        source_port: Optional[int] = None,
    ):
        super().__init__(
            context, node, name, destination, destination_port, protocol, source_port
        )
        if packet_size <= 0:
            raise ConfigurationError(f"Packet size must be positive, got {packet_size}")
        if not data_rate > 0:
            raise ConfigurationError(f"Data rate must be positive, got {data_rate}")
        if not callable(on_time) and not callable(off_time) and on_time == 0 and off_time == 0:
            raise ConfigurationError(f"{name}: on and off periods cannot both be zero")
        self.packet_size = packet_size
        self.data_rate = data_rate
        self.max_bytes = max_bytes
        try:
            self.on_time = as_duration(on_time)
            self.off_time = as_duration(off_time)
        except ValueError as e:
            raise ConfigurationError(f"{name}: {e}") from e
        self.interval = packet_size * 8 / data_rate
        self._process: Optional[simpy.Process] = None

    def on_start(self) -> None:
        self._process = self.scheduler.process(self._cycle())

    def on_stop(self) -> None:
        if self._process is not None and self._process.is_alive:
            self._process.interrupt("stop")

    def _budget_left(self) -> bool:
        return self.max_bytes == 0 or self.payload_bytes_sent < self.max_bytes

    def _cycle(self) -> Generator[simpy.Event, Any, None]:
        owed = 0.0
        try:
            while self.running and self._budget_left():
                on_period = on_left = self.on_time()
                while on_left > 0 and self._budget_left():
                    if owed >= on_left:
                        owed -= on_left
                        yield self.scheduler.env.timeout(on_left)
                        break
                    if owed > 0:
                        yield self.scheduler.env.timeout(owed)
                        on_left -= owed
                    self.emit(self.create_packet(self.packet_size))
                    owed = self.interval
                off = self.off_time()
                if off > 0:
                    yield self.scheduler.env.timeout(off)
                elif on_period <= 0:
                    logger.warning(
                        "%s: zero-length on/off cycle at t=%.6f, stopping",
                        self.name,
                        self.scheduler.now(),
                    )
                    break
        except simpy.Interrupt:
            pass


class ScheduledPacketSource(TrafficSource):
    """Sends one packet per scheduled (time, source address) entry.

    Entries scheduled after the source stops are cancelled.

    Attributes:
        schedule: (absolute time, source address) entries.
        packet_size: Payload bytes per packet.
    """

    kind = TrafficKind.SCHEDULED

    def __init__(
        self,
        context: SimulationContext,
        node: Node,
        name: str,
        destination: IPv4Address,
        destination_port: int,
        schedule: Sequence[Tuple[float, IPv4Address]],
        packet_size: int = 512,
        protocol: int = Protocol.UDP,
        source_port: Optional[int] = None,
    ):
        super().__init__(
            context, node, name, destination, destination_port, protocol, source_port
        )
        self.schedule = sorted((float(t), IPv4Address(s)) for t, s in schedule)
        self.packet_size = packet_size
        self._handles: List[EventHandle] = []

    def on_start(self) -> None:
        now = self.scheduler.now()
        for time, source in self.schedule:
            if time >= now:
                self._handles.append(self.scheduler.schedule_at(time, self._send, source))

    def on_stop(self) -> None:
        for handle in self._handles:
            self.scheduler.cancel(handle)
        self._handles = []

    def _send(self, source: IPv4Address) -> None:
        self.emit(self.create_packet(self.packet_size, source=source))


class PacketSink:
    """Receives packets on a node port and discards them.

    Attributes:
        context: Simulation context of the run.
        node: Node the sink is bound on.
        name: Label used in logs.
        port: Bound transport port.
        protocol: Bound IP protocol.
        packets_received: Packets received.
        bytes_received: Bytes received, IP headers included.
        rx_hooks: Called with every received packet.
    """

    def __init__(
        self,
        context: SimulationContext,
        node: Node,
        port: int,
        protocol: int = Protocol.UDP,
        name: Optional[str] = None,
    ):
        self.context = context
        self.node = node
        self.port = port
        self.protocol = protocol
        self.name = name or f"sink:{node.name}:{port}"
        self.packets_received = 0
        self.bytes_received = 0
        self.rx_hooks: List[Callable[[Packet], None]] = []
        node.bind(protocol, port, self.receive)

    def receive(self, packet: Packet) -> None:
        self.packets_received += 1
        self.bytes_received += packet.size
        self.context.flow_monitor.on_rx(packet)
        for hook in self.rx_hooks:
            hook(packet)

    def __repr__(self) -> str:
        return f"PacketSink({self.name})"


def source_factory(
    kind: TrafficKind,
    context: SimulationContext,
    node: Node,
    name: str,
    destination: IPv4Address,
    destination_port: int,
    **kwargs,
) -> TrafficSource:
    """
    Factory function to create the appropriate traffic source.

    Args:
        kind: Which source variant to build.
        context: Simulation context of the run.
        node: Node the source sends from.
        name: Source name.
        destination: Destination address.
        destination_port: Destination port.
        **kwargs: Additional arguments for the specific source type.

    Returns:
        An instance of the selected source variant.
    """
    if kind is TrafficKind.BULK:
        return BulkSendSource(context, node, name, destination, destination_port, **kwargs)
    elif kind is TrafficKind.ON_OFF:
        return OnOffSource(context, node, name, destination, destination_port, **kwargs)
    elif kind is TrafficKind.SCHEDULED:
        return ScheduledPacketSource(
            context, node, name, destination, destination_port, **kwargs
        )
    raise ConfigurationError(f"Unknown traffic source kind: {kind}")
