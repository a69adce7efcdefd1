"""Packet class for network simulation.

This module defines the Packet class and the headers it carries. A packet has a
fixed payload size and a stack of headers, outermost first, the way they would
appear on the wire.
"""

from dataclasses import dataclass, field, replace
from ipaddress import IPv4Address
from typing import ClassVar, List, Optional, Union

from bottleneck_sim.core.enums import Protocol
from bottleneck_sim.core.errors import HeaderParseError


@dataclass
class Ipv4Header:
    """IPv4 header fields used by forwarding, filtering and classification.

    Attributes:
        source: Source address.
        destination: Destination address.
        protocol: IP protocol number.
        ttl: Remaining hop count.
        payload_size: Size of everything carried after this header, in bytes.
    """

    source: IPv4Address
    destination: IPv4Address
    protocol: int = Protocol.UDP
    ttl: int = 64
    payload_size: int = 0

    SIZE: ClassVar[int] = 20


@dataclass
class UdpHeader:
    source_port: int
    destination_port: int

    SIZE: ClassVar[int] = 8


@dataclass
class TcpHeader:
    source_port: int
    destination_port: int
    sequence: int = 0

    SIZE: ClassVar[int] = 20


Header = Union[Ipv4Header, UdpHeader, TcpHeader]


@dataclass(frozen=True)
class Packet:
    """Represents a network packet.

    The payload size never changes. Headers are pushed and popped in place;
    a packet crossing a link is copied so that hops never share header state.

    Attributes:
        id: Identifier unique within one simulation run.
        payload_size: Application payload in bytes.
        headers: Header stack, outermost header first.
        send_time: Time the sending application handed the packet down, or
            None for packets that are not timestamped.
    """

    id: int
    payload_size: int
    headers: List[Header] = field(default_factory=list)
    send_time: Optional[float] = None

    @property
    def size(self) -> int:
        """Total size in bytes, headers included."""
        return self.payload_size + sum(header.SIZE for header in self.headers)

    def add_header(self, header: Header) -> None:
        """Push a header in front of the existing ones."""
        self.headers.insert(0, header)

    def peek_ip_header(self) -> Ipv4Header:
        """Return the outermost header if it is an IPv4 header.

        Raises:
            HeaderParseError: If the packet does not start with an IPv4 header.
        """
        if self.headers and isinstance(self.headers[0], Ipv4Header):
            return self.headers[0]
        raise HeaderParseError(f"Packet {self.id} has no IPv4 header")

    def transport_header(self) -> Optional[Union[UdpHeader, TcpHeader]]:
        """Return the first UDP or TCP header, if any."""
        for header in self.headers:
            if isinstance(header, (UdpHeader, TcpHeader)):
                return header
        return None

    def copy(self) -> "Packet":
        """Return a deep copy with its own header objects."""
        return replace(self, headers=[replace(header) for header in self.headers])

    def __repr__(self) -> str:
        try:
            ip = self.peek_ip_header()
            route = f"{ip.source}->{ip.destination}"
        except HeaderParseError:
            route = "raw"
        return f"Packet({self.id}, {route}, {self.size}B)"
