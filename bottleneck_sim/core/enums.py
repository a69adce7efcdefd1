"""Enumerations for network simulation.

This module defines enumerations used throughout the network simulator.
"""

from enum import Enum, IntEnum


class Protocol(IntEnum):
    """IP protocol numbers understood by the simulator."""

    ICMP = 1
    TCP = 6
    UDP = 17


class QueueSizeUnit(Enum):
    """Unit a queue capacity is measured in.

    Attributes:
        PACKETS: Capacity counts packets.
        BYTES: Capacity counts bytes.
    """

    PACKETS = "p"
    BYTES = "B"


class DropReason(Enum):
    """Why a packet left the simulation before reaching its sink.

    Attributes:
        TAIL: Queue was at its physical capacity.
        AQM_EARLY: RED dropped the packet probabilistically.
        AQM_FORCED: RED average exceeded the hard threshold.
        DEVICE: The link's device transmit queue was full.
        PARSE: The IPv4 header could not be read.
        TTL: Time to live reached zero while forwarding.
        NO_ROUTE: No routing table entry matched the destination.
    """

    TAIL = "tail"
    AQM_EARLY = "aqm-early"
    AQM_FORCED = "aqm-forced"
    DEVICE = "device"
    PARSE = "parse"
    TTL = "ttl"
    NO_ROUTE = "no-route"

    @property
    def is_aqm(self) -> bool:
        return self in (DropReason.AQM_EARLY, DropReason.AQM_FORCED)


class Verdict(Enum):
    """Outcome of an ingress filter inspection."""

    CLEAN = "clean"
    FLAGGED = "flagged"


class TrafficKind(Enum):
    """Traffic source variants.

    Attributes:
        BULK: Saturating sender limited only by back-pressure.
        ON_OFF: Constant bit rate during on periods, silent during off periods.
        SCHEDULED: Individual packets at listed times, source address may be spoofed.
    """

    BULK = "bulk"
    ON_OFF = "on-off"
    SCHEDULED = "scheduled"
