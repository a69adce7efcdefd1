"""Network simulator class for network simulation.

This module defines the NetworkSimulator class, which assembles nodes, links,
queue discs, ingress filters and traffic into one run, and the
SimulationReport it returns at the end of a run.
"""

import logging
from dataclasses import dataclass, field
from functools import partial
from ipaddress import IPv4Address, IPv4Interface, IPv4Network
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import networkx as nx

from bottleneck_sim.core.context import DropRecord, FlaggedRecord, SimulationContext
from bottleneck_sim.core.enums import Protocol, TrafficKind
from bottleneck_sim.core.errors import ConfigurationError
from bottleneck_sim.core.flow_monitor import FlowRecord
from bottleneck_sim.core.ingress_filter import IngressFilter
from bottleneck_sim.core.link import Link
from bottleneck_sim.core.node import Interface, Node
from bottleneck_sim.core.queue_disc import (
    FifoQueueDisc,
    QueueDisc,
    QueueSize,
    RedQueueDisc,
)
from bottleneck_sim.traffic.sources import PacketSink, TrafficSource, source_factory

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = QueueSize(1000)


@dataclass
class Connection:
    """Both directions of a point-to-point connection.

    Attributes:
        a: Arena index of the first endpoint.
        b: Arena index of the second endpoint.
        forward: Link from a to b.
        backward: Link from b to a.
        interface_a: Index of the interface on a.
        interface_b: Index of the interface on b.
        network: Subnet shared by both ends, once assigned.
    """

    a: int
    b: int
    forward: Link
    backward: Link
    interface_a: int
    interface_b: int
    network: Optional[IPv4Network] = None


@dataclass
class SimulationReport:
    """Everything observed during a run.

    Attributes:
        end_time: Virtual time the run stopped at.
        seed: Run seed.
        flows: Per-flow statistics in order of first observation.
        drops: Drop records in the order they happened.
        flagged: Ingress filter detections in order.
        tx_packets: Packets emitted per source name.
        queues: Queue disc counters keyed by queue name.
        links: Link counters keyed by link name.
        events_fired: Number of scheduler actions executed.
    """

    end_time: float
    seed: int
    flows: List[FlowRecord] = field(default_factory=list)
    drops: List[DropRecord] = field(default_factory=list)
    flagged: List[FlaggedRecord] = field(default_factory=list)
    tx_packets: Dict[str, int] = field(default_factory=dict)
    queues: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    links: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    events_fired: int = 0

    @property
    def total_tx_packets(self) -> int:
        return sum(self.tx_packets.values())

    @property
    def total_rx_packets(self) -> int:
        return sum(flow.rx_packets for flow in self.flows)

    @property
    def total_lost_packets(self) -> int:
        return sum(flow.lost_packets for flow in self.flows)

    def drop_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for record in self.drops:
            counts[record.reason.value] = counts.get(record.reason.value, 0) + 1
        return dict(sorted(counts.items()))

    def totals(self) -> Dict[str, Any]:
        return {
            "tx_packets": self.total_tx_packets,
            "rx_packets": self.total_rx_packets,
            "lost_packets": self.total_lost_packets,
            "dropped_packets": len(self.drops),
            "flagged_packets": len(self.flagged),
            "drops_by_reason": self.drop_counts(),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert the report into JSON-serializable builtins."""
        return {
            "end_time": self.end_time,
            "seed": self.seed,
            "events_fired": self.events_fired,
            "totals": self.totals(),
            "tx_packets": dict(self.tx_packets),
            "flows": [flow.to_dict() for flow in self.flows],
            "queues": self.queues,
            "links": self.links,
            "drops": [record.to_dict() for record in self.drops],
            "flagged": [record.to_dict() for record in self.flagged],
        }


class NetworkSimulator:
    """Network simulation environment.

    Nodes and links live in arena lists and are addressed by integer handles.

    Attributes:
        context: Per-run state shared by all components.
        scheduler: Event scheduler of the context.
        graph: NetworkX graph of nodes, used for route computation.
        nodes: Nodes by arena index.
        links: Links by arena index, two per connection.
        connections: Connections by handle.
        sources: Installed traffic sources.
        sinks: Installed packet sinks.
        hooks: Callbacks for "sim_start" and "sim_end".
    """

    def __init__(self, seed: int = 42, context: Optional[SimulationContext] = None):
        """Initialize the network simulator.

        Args:
            seed: Random seed for reproducibility.
            context: Existing context to build on; a fresh one is created
                from the seed when omitted.
        """
        self.context = context if context is not None else SimulationContext(seed)
        self.scheduler = self.context.scheduler
        self.graph = nx.Graph()
        self.nodes: List[Node] = []
        self.links: List[Link] = []
        self.connections: List[Connection] = []
        self.sources: List[TrafficSource] = []
        self.sinks: List[PacketSink] = []
        self._names: Dict[str, int] = {}

        self.hooks: Dict[str, List[Callable[..., Any]]] = {
            "sim_start": [],  # the run is about to start
            "sim_end": [],  # the run ended, called with the report
        }

    def add_node(self, name: Optional[str] = None) -> int:
        """Add a node to the network.

        Args:
            name: Unique node name; defaults to "n<index>".

        Returns:
            Arena index of the new node.
        """
        node_id = len(self.nodes)
        name = name or f"n{node_id}"
        if name in self._names:
            raise ConfigurationError(f"Node name {name!r} is already taken")
        self.nodes.append(Node(self.context, node_id, name))
        self._names[name] = node_id
        self.graph.add_node(node_id)
        return node_id

    def has_node(self, name: str) -> bool:
        return name in self._names

    def node_id(self, name: str) -> int:
        try:
            return self._names[name]
        except KeyError:
            raise ConfigurationError(f"Unknown node {name!r}") from None

    def node(self, node: Union[int, str]) -> Node:
        if isinstance(node, str):
            return self.nodes[self.node_id(node)]
        if not 0 <= node < len(self.nodes):
            raise ConfigurationError(f"Unknown node index {node}")
        return self.nodes[node]

    def add_link(
        self,
        a: int,
        b: int,
        data_rate: float,
        delay: float,
        device_queue_capacity: int = 1,
    ) -> int:
        """Add a BIDIRECTIONAL link between nodes.

        Each direction gets its own Link and a default FIFO queue disc.

        Args:
            a: First endpoint.
            b: Second endpoint.
            data_rate: Link capacity in bits per second.
            delay: Propagation delay in seconds.
            device_queue_capacity: Device transmit queue size in packets.

        Returns:
            Connection handle.
        """
        node_a, node_b = self.node(a), self.node(b)
        if node_a is node_b:
            raise ConfigurationError(f"Cannot link {node_a.name} to itself")

        forward = Link(
            self.context, node_a.id, node_b.id, data_rate, delay,
            device_queue_capacity, name=f"{node_a.name}->{node_b.name}",
        )
        backward = Link(
            self.context, node_b.id, node_a.id, data_rate, delay,
            device_queue_capacity, name=f"{node_b.name}->{node_a.name}",
        )
        interface_a = node_a.add_interface(forward)
        interface_b = node_b.add_interface(backward)
        interface_a.peer = (node_b.id, interface_b.index)
        interface_b.peer = (node_a.id, interface_a.index)
        forward.arrival_hooks.append(
            partial(node_b.receive, interface_index=interface_b.index)
        )
        backward.arrival_hooks.append(
            partial(node_a.receive, interface_index=interface_a.index)
        )
        self.links.extend([forward, backward])

        for node, interface in ((node_a, interface_a), (node_b, interface_b)):
            queue_disc = FifoQueueDisc(
                self.context, DEFAULT_QUEUE_SIZE, self._queue_name(node, interface)
            )
            self._attach_queue_disc(node, interface, queue_disc)

        connection_id = len(self.connections)
        self.connections.append(
            Connection(
                node_a.id, node_b.id, forward, backward, interface_a.index, interface_b.index
            )
        )
        existing = self.graph.get_edge_data(node_a.id, node_b.id)
        if existing is None or delay < existing["delay"]:
            self.graph.add_edge(
                node_a.id,
                node_b.id,
                data_rate=data_rate,
                delay=delay,
                connection=connection_id,
            )
        return connection_id

    def assign_network(self, connection_id: int, network: str) -> Tuple[IPv4Address, IPv4Address]:
        """Give both ends of a connection an address from a subnet.

        The first host address goes to endpoint a, the second to endpoint b.

        Args:
            connection_id: Handle returned by add_link().
            network: Subnet in CIDR notation, e.g. "10.1.1.0/24".

        Returns:
            The addresses of a and b.
        """
        connection = self._connection(connection_id)
        try:
            subnet = IPv4Network(network)
        except ValueError as e:
            raise ConfigurationError(f"Invalid network {network!r}: {e}") from e
        hosts = iter(subnet.hosts())
        try:
            address_a, address_b = next(hosts), next(hosts)
        except StopIteration:
            raise ConfigurationError(f"Network {network} has fewer than two host addresses") from None

        self.nodes[connection.a].interfaces[connection.interface_a].address = IPv4Interface(
            f"{address_a}/{subnet.prefixlen}"
        )
        self.nodes[connection.b].interfaces[connection.interface_b].address = IPv4Interface(
            f"{address_b}/{subnet.prefixlen}"
        )
        connection.network = subnet
        return address_a, address_b

    def install_queue_disc(self, node: int, interface_index: int, config: Any) -> QueueDisc:
        """Replace the queue disc feeding one of a node's links.

        Args:
            node: Node handle.
            interface_index: Interface whose outgoing link the queue feeds.
            config: A QueueConfig describing the discipline.

        Returns:
            The installed queue disc.
        """
        owner = self.node(node)
        interface = self._interface(owner, interface_index)
        name = self._queue_name(owner, interface)
        if config.kind == "fifo":
            queue_disc: QueueDisc = FifoQueueDisc(self.context, config.capacity, name)
        elif config.kind == "red":
            queue_disc = RedQueueDisc(
                self.context,
                config.capacity,
                name,
                min_th=config.min_th,
                max_th=config.max_th,
                link_bandwidth=interface.link.data_rate,
                mean_packet_size=config.mean_packet_size,
                l_interm=config.l_interm,
                queue_weight=config.queue_weight,
                gentle=config.gentle,
                wait=config.wait,
                hard_drop=config.hard_drop,
            )
        else:
            raise ConfigurationError(f"Unknown queue disc kind: {config.kind!r}")
        self._attach_queue_disc(owner, interface, queue_disc)
        logger.debug("Installed %r on %s", queue_disc, interface.link.name)
        return queue_disc

    def enable_ingress_filter(
        self, node: int, interface_index: int, protocol: int = Protocol.UDP
    ) -> IngressFilter:
        """Inspect packets arriving on an interface for spoofed sources."""
        owner = self.node(node)
        interface = self._interface(owner, interface_index)
        if interface.address is None:
            raise ConfigurationError(
                f"{owner.name} interface {interface_index} needs an address before filtering"
            )
        if owner.ingress_filter is None:
            owner.ingress_filter = IngressFilter(
                self.context, owner.name, owner.addresses, protocol
            )
        interface.ingress_filtered = True
        return owner.ingress_filter

    def populate_routing_tables(self) -> None:
        """Compute shortest paths and set routing tables for all nodes.

        Paths are weighted by propagation delay. Every addressed subnet is
        routed towards the nearest node attached to it.
        """
        shortest = dict(nx.all_pairs_dijkstra(self.graph, weight="delay"))

        for source in self.nodes:
            distances, paths = shortest.get(source.id, ({}, {}))
            routes: Dict[IPv4Network, int] = {}
            best: Dict[IPv4Network, float] = {}
            for interface in source.interfaces:
                if interface.network is not None:
                    routes[interface.network] = interface.index
                    best[interface.network] = -1.0

            for connection in self.connections:
                if connection.network is None:
                    continue
                for endpoint in (connection.a, connection.b):
                    if endpoint == source.id or endpoint not in distances:
                        continue
                    distance = distances[endpoint]
                    if distance >= best.get(connection.network, float("inf")):
                        continue
                    next_hop = paths[endpoint][1]
                    routes[connection.network] = self._interface_towards(source.id, next_hop)
                    best[connection.network] = distance

            source.set_routing_table(list(routes.items()))
            logger.debug("%s routing table: %s", source.name, source.routing_table)

    def add_sink(
        self, node: int, port: int, protocol: int = Protocol.UDP, name: Optional[str] = None
    ) -> PacketSink:
        sink = PacketSink(self.context, self.node(node), port, protocol, name)
        self.sinks.append(sink)
        return sink

    def add_source(
        self,
        kind: TrafficKind,
        node: int,
        name: str,
        destination: Union[str, IPv4Address],
        destination_port: int,
        start_time: float = 0.0,
        stop_time: Optional[float] = None,
        **kwargs,
    ) -> TrafficSource:
        """Create a traffic source and schedule its start and stop.

        Args:
            kind: Source variant.
            node: Sending node handle.
            name: Unique source name.
            destination: Destination address.
            destination_port: Destination port.
            start_time: Absolute start time in seconds.
            stop_time: Absolute stop time in seconds, or None.
            **kwargs: Additional arguments for the specific source type.

        Returns:
            The installed source.
        """
        if any(source.name == name for source in self.sources):
            raise ConfigurationError(f"Source name {name!r} is already taken")
        try:
            address = IPv4Address(destination)
        except ValueError as e:
            raise ConfigurationError(f"Invalid destination {destination!r}: {e}") from e
        source = source_factory(
            kind, self.context, self.node(node), name, address, destination_port, **kwargs
        )
        source.install(start_time, stop_time)
        self.sources.append(source)
        return source

    def register_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        """Register a callback function for a specific event type.

        Args:
            event_type: The type of event to register for.
            callback: The function to call when the event occurs.
        """
        if event_type not in self.hooks:
            raise ValueError(f"Unknown hook type: {event_type}")
        self.hooks[event_type].append(callback)

    def call_hooks(self, event_type: str, *args: Any, **kwargs: Any) -> None:
        if event_type in self.hooks:
            for callback in self.hooks[event_type]:
                callback(*args, **kwargs)

    def run(self, duration: float) -> SimulationReport:
        """Run the simulation until the given virtual time.

        Events scheduled exactly at the stop time do not fire. Calling run()
        again with a later time continues the same run.

        Args:
            duration: Absolute virtual stop time in seconds.

        Returns:
            Report of everything observed so far.
        """
        for node in self.nodes:
            if node.ingress_filter is not None:
                node.ingress_filter.router_addresses = set(node.addresses)

        logger.info(
            "Starting simulation: %d nodes, %d links, %d sources, until t=%.3fs",
            len(self.nodes),
            len(self.links),
            len(self.sources),
            duration,
        )
        self.call_hooks("sim_start", self)
        self.scheduler.run_until(duration)

        report = self.report()
        logger.info(
            "Simulation finished at t=%.3fs: %d events, %d tx, %d rx, %d drops, %d flagged",
            report.end_time,
            report.events_fired,
            report.total_tx_packets,
            report.total_rx_packets,
            len(report.drops),
            len(report.flagged),
        )
        self.call_hooks("sim_end", report)
        return report

    def report(self) -> SimulationReport:
        """Snapshot the current statistics without advancing time."""
        now = self.scheduler.now()
        queues = {}
        for node in self.nodes:
            for interface in node.interfaces:
                if interface.queue_disc is not None:
                    queues[interface.queue_disc.name] = interface.queue_disc.stats.to_dict()
        links = {
            link.name: {
                "packets_sent": link.packets_sent,
                "bytes_sent": link.bytes_sent,
                "utilization": link.utilization(now),
            }
            for link in self.links
        }
        return SimulationReport(
            end_time=now,
            seed=self.context.seed,
            flows=list(self.context.flow_monitor.snapshot().values()),
            drops=list(self.context.drops),
            flagged=list(self.context.flagged),
            tx_packets=dict(self.context.tx_packets),
            queues=queues,
            links=links,
            events_fired=self.scheduler.events_fired,
        )

    def _connection(self, connection_id: int) -> Connection:
        if not 0 <= connection_id < len(self.connections):
            raise ConfigurationError(f"Unknown connection {connection_id}")
        return self.connections[connection_id]

    def _interface(self, node: Node, interface_index: int) -> Interface:
        if not 0 <= interface_index < len(node.interfaces):
            raise ConfigurationError(f"{node.name} has no interface {interface_index}")
        return node.interfaces[interface_index]

    def _interface_towards(self, node_id: int, neighbour: int) -> int:
        connection = self.connections[self.graph.edges[node_id, neighbour]["connection"]]
        return connection.interface_a if connection.a == node_id else connection.interface_b

    def _queue_name(self, node: Node, interface: Interface) -> str:
        return f"{node.name}/{interface.index}"

    def _attach_queue_disc(self, node: Node, interface: Interface, queue_disc: QueueDisc) -> None:
        previous = interface.queue_disc
        if previous is not None:
            if len(previous):
                raise ConfigurationError(f"Cannot replace non-empty queue {previous.name}")
            interface.link.ready_hooks.remove(previous.run)
        queue_disc.attach(interface.link)
        interface.queue_disc = queue_disc

    def __repr__(self) -> str:
        return f"NetworkSimulator(nodes={len(self.nodes)}, connections={len(self.connections)})"
