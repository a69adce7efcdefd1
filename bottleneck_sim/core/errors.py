"""Exceptions for network simulation.

Configuration problems are raised while a scenario is being assembled and stop
the run before it starts. Drops are never exceptions; they are counted.
"""


class ConfigurationError(ValueError):
    """Invalid link, queue, address or traffic configuration."""


class SchedulingError(ValueError):
    """An event was scheduled in the past."""


class LinkBusyError(RuntimeError):
    """A transmission was started while the link was still serializing."""


class HeaderParseError(Exception):
    """A packet does not carry the header a layer expected to read."""
