"""Traffic generation for network simulation.

This module provides the traffic sources (bulk, on/off and scheduled), the
packet sink and the duration generators used for on/off periods.
"""
