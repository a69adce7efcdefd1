"""Core components for network simulation.

This module contains the fundamental classes for network simulation, including
the EventScheduler, Packet, Link, QueueDisc, IngressFilter, FlowMonitor, Node
and NetworkSimulator classes.
"""
