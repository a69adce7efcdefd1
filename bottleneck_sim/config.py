"""Scenario configuration for network simulation.

This module defines the dataclasses describing a simulated scenario (links,
queue discs, filtered interfaces and traffic), helpers that parse ns-3 style
quantities such as "5Mbps" or "10ms", and YAML loading through PyYAML.
"""

import logging
import re
from dataclasses import dataclass, field
from ipaddress import IPv4Network
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from bottleneck_sim.core.enums import Protocol, TrafficKind
from bottleneck_sim.core.errors import ConfigurationError
from bottleneck_sim.core.queue_disc import QueueSize

logger = logging.getLogger(__name__)

Number = Union[int, float]

_QUANTITY = re.compile(r"^\s*([0-9]*\.?[0-9]+(?:[eE][-+]?[0-9]+)?)\s*([A-Za-z/]*)\s*$")

# Divisors keep the conversion exact for round values ("10ms" == 10 / 1000).
_RATE_UNITS = {
    "": (1, 1),
    "bps": (1, 1),
    "b/s": (1, 1),
    "kbps": (1000, 1),
    "Kbps": (1000, 1),
    "kb/s": (1000, 1),
    "Mbps": (1000**2, 1),
    "Mb/s": (1000**2, 1),
    "Gbps": (1000**3, 1),
    "Gb/s": (1000**3, 1),
    "Bps": (8, 1),
    "KBps": (8 * 1000, 1),
    "MBps": (8 * 1000**2, 1),
    "GBps": (8 * 1000**3, 1),
}
_TIME_UNITS = {
    "": (1, 1),
    "s": (1, 1),
    "ms": (1, 1000),
    "us": (1, 1000**2),
    "ns": (1, 1000**3),
    "min": (60, 1),
}
_SIZE_UNITS = {
    "": 1,
    "B": 1,
    "KB": 1000,
    "MB": 1000**2,
    "KiB": 1024,
    "MiB": 1024**2,
}


def _split_quantity(value: Any, what: str) -> Tuple[float, str]:
    match = _QUANTITY.match(str(value))
    if match is None:
        raise ConfigurationError(f"Malformed {what}: {value!r}")
    return float(match.group(1)), match.group(2)


def parse_data_rate(value: Union[str, Number]) -> float:
    """Parse a data rate into bits per second.

    Args:
        value: A number of bits per second or a string such as "5Mbps",
            "100Kbps" or "1MBps" (bytes per second).

    Returns:
        Rate in bits per second.

    Raises:
        ConfigurationError: If the value is malformed or not positive.
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Malformed data rate: {value!r}")
    if isinstance(value, (int, float)):
        rate = float(value)
    else:
        number, unit = _split_quantity(value, "data rate")
        if unit not in _RATE_UNITS:
            raise ConfigurationError(f"Unknown data rate unit {unit!r} in {value!r}")
        multiplier, divisor = _RATE_UNITS[unit]
        rate = number * multiplier / divisor
    if not rate > 0:
        raise ConfigurationError(f"Data rate must be positive, got {value!r}")
    return rate


def parse_time(value: Union[str, Number]) -> float:
    """Parse a duration or instant into seconds.

    Args:
        value: A number of seconds or a string such as "10ms", "2s" or "500us".

    Returns:
        Time in seconds.

    Raises:
        ConfigurationError: If the value is malformed or negative.
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Malformed time: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        number, unit = _split_quantity(value, "time")
        if unit not in _TIME_UNITS:
            raise ConfigurationError(f"Unknown time unit {unit!r} in {value!r}")
        multiplier, divisor = _TIME_UNITS[unit]
        seconds = number * multiplier / divisor
    if not seconds >= 0:
        raise ConfigurationError(f"Time cannot be negative, got {value!r}")
    return seconds


def parse_size(value: Union[str, int]) -> int:
    """Parse a byte count such as 1472, "1500B" or "64KiB"."""
    if isinstance(value, bool):
        raise ConfigurationError(f"Malformed size: {value!r}")
    if isinstance(value, int):
        size = value
    else:
        number, unit = _split_quantity(value, "size")
        if unit not in _SIZE_UNITS:
            raise ConfigurationError(f"Unknown size unit {unit!r} in {value!r}")
        size = int(number * _SIZE_UNITS[unit])
    if size < 0:
        raise ConfigurationError(f"Size cannot be negative, got {value!r}")
    return size


def parse_protocol(value: Union[str, int]) -> Protocol:
    if isinstance(value, str):
        try:
            return Protocol[value.upper()]
        except KeyError:
            raise ConfigurationError(f"Unknown protocol: {value!r}") from None
    try:
        return Protocol(value)
    except ValueError:
        raise ConfigurationError(f"Unknown protocol number: {value!r}") from None


@dataclass
class QueueConfig:
    """Queue disc installed on the sending side of a link.

    Attributes:
        kind: "fifo" or "red".
        capacity: Physical capacity, e.g. "20p" or "30000B".
        min_th: RED lower threshold in packets.
        max_th: RED upper threshold in packets.
        mean_packet_size: RED expected packet size in bytes.
        l_interm: RED inverse of the drop probability at max_th.
        queue_weight: RED EWMA weight; None derives it from the link.
        gentle: RED gentle mode.
        wait: RED even spacing of drops.
        hard_drop: RED unconditional drop above the hard threshold.
    """

    kind: str = "fifo"
    capacity: Union[str, QueueSize] = "1000p"
    min_th: float = 5
    max_th: float = 15
    mean_packet_size: int = 500
    l_interm: float = 50
    queue_weight: Optional[float] = 0.002
    gentle: bool = True
    wait: bool = True
    hard_drop: bool = True

    def __post_init__(self):
        self.kind = str(self.kind).lower()
        if self.kind not in ("fifo", "red"):
            raise ConfigurationError(f"Unknown queue disc kind: {self.kind!r}")
        if not isinstance(self.capacity, QueueSize):
            self.capacity = QueueSize.parse(self.capacity)
        if self.kind == "red" and not 0 <= self.min_th < self.max_th:
            raise ConfigurationError(
                f"RED thresholds must satisfy 0 <= MinTh < MaxTh, got {self.min_th} and {self.max_th}"
            )


@dataclass
class LinkConfig:
    """A bidirectional point-to-point connection.

    Attributes:
        a: Name of the first endpoint; gets the first host address.
        b: Name of the second endpoint; gets the second host address.
        data_rate: Rate of both directions in bits per second.
        delay: Propagation delay of both directions in seconds.
        device_queue: Device transmit queue size in packets.
        network: Subnet assigned to the connection, e.g. "10.1.1.0/24".
        queue: Queue disc on a's side, feeding the a -> b direction.
    """

    a: str
    b: str
    data_rate: Union[str, float] = "5Mbps"
    delay: Union[str, float] = "2ms"
    device_queue: int = 1
    network: Optional[str] = None
    queue: Optional[QueueConfig] = None

    def __post_init__(self):
        if self.a == self.b:
            raise ConfigurationError(f"Link endpoints must differ, got {self.a!r} twice")
        self.data_rate = parse_data_rate(self.data_rate)
        self.delay = parse_time(self.delay)
        if self.device_queue < 0:
            raise ConfigurationError("Device queue size cannot be negative")
        if self.network is not None:
            try:
                IPv4Network(self.network)
            except ValueError as e:
                raise ConfigurationError(f"Invalid network {self.network!r}: {e}") from e
        if isinstance(self.queue, dict):
            self.queue = QueueConfig(**self.queue)


@dataclass
class InterfaceConfig:
    """Ingress filtering on one node's end of a link.

    Attributes:
        node: Name of the filtering node.
        link: Index of the link in the scenario's link list.
        protocol: Only packets of this protocol are inspected.
    """

    node: str
    link: int
    protocol: Union[str, int] = "udp"

    def __post_init__(self):
        self.protocol = parse_protocol(self.protocol)


@dataclass
class TrafficConfig:
    """One traffic source and, optionally, the sink it sends to.

    Attributes:
        name: Source name, used for tx counters.
        kind: Source variant.
        node: Name of the sending node.
        destination: Name of the receiving node or a literal address.
        port: Destination port.
        protocol: Defaults to TCP for bulk sources and UDP otherwise.
        start: Start time in seconds.
        stop: Stop time in seconds, or None to run until the end.
        sink: Bind a sink on the destination port.
        segment_size: Bulk payload per packet.
        packet_size: On/Off and scheduled payload per packet.
        data_rate: On/Off rate during on periods.
        on_time: On period, seconds or a distribution mapping.
        off_time: Off period, seconds or a distribution mapping.
        max_bytes: Payload budget; 0 means unlimited.
        schedule: (time, source address) pairs for scheduled sources.
    """

    name: str
    kind: Union[str, TrafficKind]
    node: str
    destination: str
    port: int
    protocol: Optional[Union[str, int]] = None
    start: Union[str, float] = 0.0
    stop: Optional[Union[str, float]] = None
    sink: bool = True
    segment_size: int = 536
    packet_size: int = 512
    data_rate: Union[str, float] = "500Kbps"
    on_time: Any = 1.0
    off_time: Any = 1.0
    max_bytes: int = 0
    schedule: List[Tuple[float, str]] = field(default_factory=list)

    def __post_init__(self):
        try:
            self.kind = TrafficKind(self.kind)
        except ValueError:
            raise ConfigurationError(f"Unknown traffic kind: {self.kind!r}") from None
        if self.protocol is None:
            self.protocol = Protocol.TCP if self.kind is TrafficKind.BULK else Protocol.UDP
        else:
            self.protocol = parse_protocol(self.protocol)
        self.start = parse_time(self.start)
        if self.stop is not None:
            self.stop = parse_time(self.stop)
            if self.stop < self.start:
                raise ConfigurationError(
                    f"{self.name}: stop time {self.stop} precedes start time {self.start}"
                )
        self.segment_size = parse_size(self.segment_size)
        self.packet_size = parse_size(self.packet_size)
        self.data_rate = parse_data_rate(self.data_rate)
        self.max_bytes = parse_size(self.max_bytes)
        if not isinstance(self.on_time, dict):
            self.on_time = parse_time(self.on_time)
        if not isinstance(self.off_time, dict):
            self.off_time = parse_time(self.off_time)
        if self.on_time == 0 and self.off_time == 0:
            raise ConfigurationError(f"{self.name}: on and off periods cannot both be zero")
        self.schedule = [(parse_time(time), str(source)) for time, source in self.schedule]
        if self.kind is TrafficKind.SCHEDULED and not self.schedule:
            raise ConfigurationError(f"{self.name}: scheduled source needs a schedule")


@dataclass
class ScenarioConfig:
    """A complete scenario.

    Attributes:
        name: Scenario name.
        duration: Virtual time at which the run stops.
        seed: Run seed.
        nodes: Node names in creation order.
        links: Connections between nodes.
        ingress_filters: Filtered interfaces.
        traffic: Traffic sources.
        description: Free text shown by the CLI.
    """

    name: str
    duration: Union[str, float]
    nodes: List[str]
    links: List[LinkConfig]
    traffic: List[TrafficConfig] = field(default_factory=list)
    ingress_filters: List[InterfaceConfig] = field(default_factory=list)
    seed: int = 42
    description: str = ""

    def __post_init__(self):
        self.duration = parse_time(self.duration)
        if len(set(self.nodes)) != len(self.nodes):
            raise ConfigurationError(f"{self.name}: duplicate node names")
        self.links = [
            LinkConfig(**link) if isinstance(link, dict) else link for link in self.links
        ]
        self.traffic = [
            TrafficConfig(**source) if isinstance(source, dict) else source
            for source in self.traffic
        ]
        self.ingress_filters = [
            InterfaceConfig(**entry) if isinstance(entry, dict) else entry
            for entry in self.ingress_filters
        ]
        known = set(self.nodes)
        for link in self.links:
            for endpoint in (link.a, link.b):
                if endpoint not in known:
                    raise ConfigurationError(f"{self.name}: unknown node {endpoint!r}")
        for source in self.traffic:
            if source.node not in known:
                raise ConfigurationError(f"{self.name}: unknown node {source.node!r}")
        for entry in self.ingress_filters:
            if not 0 <= entry.link < len(self.links):
                raise ConfigurationError(f"{self.name}: no link with index {entry.link}")
            link = self.links[entry.link]
            if entry.node not in (link.a, link.b):
                raise ConfigurationError(
                    f"{self.name}: {entry.node!r} is not an endpoint of link {entry.link}"
                )
        if self.seed < 0:
            raise ConfigurationError("Seed must be a non-negative integer")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScenarioConfig":
        """Build a scenario from a plain mapping, e.g. parsed YAML."""
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid scenario configuration: {e}") from e


def load_config(config_path: str) -> dict:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary
    """
    with open(config_path, "r") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} does not contain a mapping")
    return data


def merge_configs(base_config: dict, override_config: dict) -> dict:
    """Merge two configuration dictionaries.

    Args:
        base_config: Base configuration
        override_config: Override configuration

    Returns:
        Merged configuration
    """
    merged = base_config.copy()
    for key, value in override_config.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_scenario(
    config_path: str, overrides: Optional[Dict[str, Any]] = None
) -> ScenarioConfig:
    """Load a scenario from YAML, applying optional top-level overrides."""
    data = load_config(config_path)
    if overrides:
        data = merge_configs(data, overrides)
    logger.info("Loaded scenario %s from %s", data.get("name", "?"), config_path)
    return ScenarioConfig.from_dict(data)
