"""Reference scenarios for network simulation.

This module builds NetworkSimulator instances from ScenarioConfig objects and
provides the reference topologies: a RED bottleneck, bulk and on/off drop
studies, a TCP vs UDP contest, single-packet delay measurements and an
ingress filtering demonstration.
"""

import logging
from typing import Any, Callable, Dict, Optional

import numpy as np

from bottleneck_sim.config import ScenarioConfig, TrafficConfig
from bottleneck_sim.core.enums import TrafficKind
from bottleneck_sim.core.errors import ConfigurationError
from bottleneck_sim.core.simulator import NetworkSimulator, SimulationReport
from bottleneck_sim.traffic.generators import (
    DurationLike,
    constant_duration,
    exponential_duration,
    pareto_duration,
    uniform_duration,
)

logger = logging.getLogger(__name__)


def duration_from_config(value: Any, rng: np.random.Generator) -> DurationLike:
    """Turn an on/off period setting into a duration generator.

    Args:
        value: Seconds, or a mapping such as {"distribution": "exponential",
            "mean": 0.5}.
        rng: Generator used by random distributions.

    Returns:
        A number or a zero-argument callable.
    """
    if not isinstance(value, dict):
        return float(value)
    settings = dict(value)
    distribution = settings.pop("distribution", "constant")
    try:
        if distribution == "constant":
            return constant_duration(float(settings["value"]))
        elif distribution == "uniform":
            return uniform_duration(float(settings["low"]), float(settings["high"]), rng)
        elif distribution == "exponential":
            return exponential_duration(float(settings["mean"]), rng)
        elif distribution == "pareto":
            return pareto_duration(
                float(settings["mean"]), rng, float(settings.get("alpha", 1.5))
            )
    except KeyError as e:
        raise ConfigurationError(f"{distribution} duration needs {e.args[0]!r}") from None
    except ValueError as e:
        raise ConfigurationError(str(e)) from e
    raise ConfigurationError(f"Unknown duration distribution: {distribution!r}")


def _source_arguments(
    simulator: NetworkSimulator, traffic: TrafficConfig
) -> Dict[str, Any]:
    arguments: Dict[str, Any] = {"protocol": traffic.protocol}
    if traffic.kind is TrafficKind.BULK:
        arguments.update(segment_size=traffic.segment_size, max_bytes=traffic.max_bytes)
    elif traffic.kind is TrafficKind.ON_OFF:
        rng = simulator.context.streams.stream(f"onoff:{traffic.name}")
        arguments.update(
            packet_size=traffic.packet_size,
            data_rate=traffic.data_rate,
            on_time=duration_from_config(traffic.on_time, rng),
            off_time=duration_from_config(traffic.off_time, rng),
            max_bytes=traffic.max_bytes,
        )
    else:
        arguments.update(packet_size=traffic.packet_size, schedule=traffic.schedule)
    return arguments


def build_simulator(config: ScenarioConfig) -> NetworkSimulator:
    """Assemble a simulator from a scenario configuration.

    Args:
        config: The scenario to build.

    Returns:
        A simulator with routes computed and traffic installed, ready to run.
    """
    simulator = NetworkSimulator(seed=config.seed)
    for name in config.nodes:
        simulator.add_node(name)

    for link in config.links:
        a, b = simulator.node_id(link.a), simulator.node_id(link.b)
        connection_id = simulator.add_link(a, b, link.data_rate, link.delay, link.device_queue)
        if link.network is not None:
            simulator.assign_network(connection_id, link.network)
        if link.queue is not None:
            connection = simulator.connections[connection_id]
            simulator.install_queue_disc(a, connection.interface_a, link.queue)

    simulator.populate_routing_tables()

    for entry in config.ingress_filters:
        connection = simulator.connections[entry.link]
        node = simulator.node_id(entry.node)
        interface = connection.interface_a if connection.a == node else connection.interface_b
        simulator.enable_ingress_filter(node, interface, entry.protocol)

    for traffic in config.traffic:
        destination = _resolve_destination(simulator, traffic.destination)
        if traffic.sink and simulator.has_node(traffic.destination):
            receiver = simulator.node(traffic.destination)
            if (int(traffic.protocol), traffic.port) not in receiver.sinks:
                simulator.add_sink(receiver.id, traffic.port, traffic.protocol)
        simulator.add_source(
            traffic.kind,
            simulator.node_id(traffic.node),
            traffic.name,
            destination,
            traffic.port,
            traffic.start,
            traffic.stop,
            **_source_arguments(simulator, traffic),
        )

    logger.info("Built scenario %s: %r", config.name, simulator)
    return simulator


def _resolve_destination(simulator: NetworkSimulator, destination: str) -> str:
    if simulator.has_node(destination):
        addresses = simulator.node(destination).addresses
        if not addresses:
            raise ConfigurationError(f"Destination {destination!r} has no address")
        return str(addresses[0])
    return destination


def run_scenario(config: ScenarioConfig, duration: Optional[float] = None) -> SimulationReport:
    """Build and run a scenario.

    Args:
        config: The scenario to run.
        duration: Overrides the configured stop time.

    Returns:
        The run's report.
    """
    simulator = build_simulator(config)
    return simulator.run(config.duration if duration is None else duration)


def _dumbbell(
    name: str,
    duration: float,
    access_rate: str,
    bottleneck_device_queue: int,
    queue: Optional[Dict[str, Any]],
    traffic: list,
    description: str,
    seed: int = 42,
) -> ScenarioConfig:
    bottleneck: Dict[str, Any] = {
        "a": "router",
        "b": "server",
        "data_rate": "5Mbps",
        "delay": "10ms",
        "device_queue": bottleneck_device_queue,
        "network": "10.1.3.0/24",
    }
    if queue is not None:
        bottleneck["queue"] = queue
    return ScenarioConfig.from_dict(
        {
            "name": name,
            "description": description,
            "duration": duration,
            "seed": seed,
            "nodes": ["client1", "client2", "router", "server"],
            "links": [
                {"a": "client1", "b": "router", "data_rate": access_rate, "delay": "2ms", "network": "10.1.1.0/24"},
                {"a": "client2", "b": "router", "data_rate": access_rate, "delay": "2ms", "network": "10.1.2.0/24"},
                bottleneck,
            ],
            "traffic": traffic,
        }
    )


def aqm_red(seed: int = 42) -> ScenarioConfig:
    """Two bulk senders sharing a 5 Mbps bottleneck managed by RED."""
    return _dumbbell(
        "aqm_red",
        20.0,
        "100Mbps",
        1,
        {
            "kind": "red",
            "capacity": "20p",
            "min_th": 2,
            "max_th": 5,
            "mean_packet_size": 1500,
            "gentle": True,
        },
        [
            {"name": f"client{i}", "kind": "bulk", "node": f"client{i}", "destination": "server",
             "port": 50000, "start": 1.0, "stop": 20.0}
            for i in (1, 2)
        ],
        "RED gentle on a 5 Mbps / 10 ms bottleneck fed by two bulk senders",
        seed,
    )


def tcp_drops(seed: int = 42) -> ScenarioConfig:
    """Two bulk senders overflowing a 5 packet FIFO for one second."""
    return _dumbbell(
        "tcp_drops",
        3.0,
        "10Mbps",
        1,
        {"kind": "fifo", "capacity": "5p"},
        [
            {"name": f"client{i}", "kind": "bulk", "node": f"client{i}", "destination": "server",
             "port": 4999 + i, "start": 1.0, "stop": 2.0}
            for i in (1, 2)
        ],
        "Bulk senders overflowing a 5 packet FIFO in front of a 5 Mbps bottleneck",
        seed,
    )


def udp_drops(seed: int = 42) -> ScenarioConfig:
    """Two 20 Mbps on/off senders overflowing a 5 packet FIFO."""
    return _dumbbell(
        "udp_drops",
        3.0,
        "10Mbps",
        1,
        {"kind": "fifo", "capacity": "5p"},
        [
            {"name": f"client{i}", "kind": "on-off", "node": f"client{i}", "destination": "server",
             "port": 4999 + i, "start": 1.0, "stop": 2.0, "data_rate": "20Mbps",
             "packet_size": 1472, "on_time": 1.0, "off_time": 0.0}
            for i in (1, 2)
        ],
        "On/off UDP senders overflowing a 5 packet FIFO in front of a 5 Mbps bottleneck",
        seed,
    )


def tcp_vs_udp(seed: int = 42) -> ScenarioConfig:
    """A bulk sender competing with a 20 Mbps on/off sender."""
    return _dumbbell(
        "tcp_vs_udp",
        10.0,
        "100Mbps",
        5,
        None,
        [
            {"name": "tcp", "kind": "bulk", "node": "client1", "destination": "server",
             "port": 9000, "start": 1.0, "stop": 10.0},
            {"name": "udp", "kind": "on-off", "node": "client2", "destination": "server",
             "port": 8000, "start": 1.0, "stop": 10.0, "data_rate": "20Mbps",
             "packet_size": 1472, "on_time": 1.0, "off_time": 0.0},
        ],
        "Open-loop bulk and 20 Mbps UDP sharing a 5 Mbps bottleneck",
        seed,
    )


def point_to_point(seed: int = 42) -> ScenarioConfig:
    """A single 1024 byte UDP packet over one 10 Mbps / 10 ms link."""
    return ScenarioConfig.from_dict(
        {
            "name": "point_to_point",
            "description": "One 1024 B UDP packet over a 10 Mbps / 10 ms link",
            "duration": 5.0,
            "seed": seed,
            "nodes": ["a", "b"],
            "links": [{"a": "a", "b": "b", "data_rate": "10Mbps", "delay": "10ms", "network": "10.1.1.0/24"}],
            "traffic": [
                {"name": "echo", "kind": "on-off", "node": "a", "destination": "b", "port": 7,
                 "start": 1.0, "stop": 5.0, "packet_size": 1024, "data_rate": "10Mbps",
                 "max_bytes": 1024},
            ],
        }
    )


def multihop(seed: int = 42) -> ScenarioConfig:
    """A single packet crossing a router between links of different speed."""
    return ScenarioConfig.from_dict(
        {
            "name": "multihop",
            "description": "One 1024 B UDP packet over A-R 10 Mbps / 5 ms and R-B 5 Mbps / 10 ms",
            "duration": 5.0,
            "seed": seed,
            "nodes": ["a", "r", "b"],
            "links": [
                {"a": "a", "b": "r", "data_rate": "10Mbps", "delay": "5ms", "network": "10.1.1.0/24"},
                {"a": "r", "b": "b", "data_rate": "5Mbps", "delay": "10ms", "network": "10.1.2.0/24"},
            ],
            "traffic": [
                {"name": "echo", "kind": "on-off", "node": "a", "destination": "b", "port": 7,
                 "start": 1.0, "stop": 5.0, "packet_size": 1024, "data_rate": "10Mbps",
                 "max_bytes": 1024},
            ],
        }
    )


def ip_spoofing(seed: int = 42) -> ScenarioConfig:
    """An attacker sending spoofed UDP packets through a filtering router.

    Packets claiming an address from the attacker's own subnet pass the
    filter; packets claiming the victim's subnet are flagged.
    """
    schedule = []
    for i in range(6):
        time = round(1.0 + 0.2 * i, 6)
        schedule.append((time, "10.1.1.10"))
        schedule.append((round(time + 0.1, 6), "10.1.2.10"))
    return ScenarioConfig.from_dict(
        {
            "name": "ip_spoofing",
            "description": "Spoofed UDP through a router with ingress filtering on the attacker side",
            "duration": 3.0,
            "seed": seed,
            "nodes": ["attacker", "router", "victim"],
            "links": [
                {"a": "attacker", "b": "router", "data_rate": "10Mbps", "delay": "2ms", "network": "10.1.1.0/24"},
                {"a": "router", "b": "victim", "data_rate": "10Mbps", "delay": "2ms", "network": "10.1.2.0/24"},
            ],
            "ingress_filters": [{"node": "router", "link": 0, "protocol": "udp"}],
            "traffic": [
                {"name": "attacker", "kind": "scheduled", "node": "attacker", "destination": "victim",
                 "port": 9, "start": 0.0, "packet_size": 512, "sink": False, "schedule": schedule},
            ],
        }
    )


SCENARIOS: Dict[str, Callable[..., ScenarioConfig]] = {
    "aqm_red": aqm_red,
    "tcp_drops": tcp_drops,
    "udp_drops": udp_drops,
    "tcp_vs_udp": tcp_vs_udp,
    "point_to_point": point_to_point,
    "multihop": multihop,
    "ip_spoofing": ip_spoofing,
}


def get_scenario(name: str, seed: int = 42) -> ScenarioConfig:
    """Look up a reference scenario by name."""
    try:
        builder = SCENARIOS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown scenario {name!r}; choose from {', '.join(SCENARIOS)}"
        ) from None
    return builder(seed)
