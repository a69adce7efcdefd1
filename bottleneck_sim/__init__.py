"""Discrete-event simulation of IP networks with bottleneck queues.

This package models point-to-point links, FIFO and RED queue disciplines,
ingress source-address filtering, open-loop traffic sources and per-flow
statistics on top of a SimPy event loop.
"""

__version__ = "0.1.0"
