"""Utilities for network simulation: random streams and report metrics."""
