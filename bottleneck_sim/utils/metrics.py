"""Metrics utilities for network simulation.

This module provides functions for saving and summarizing simulation reports,
including per-flow throughput, delay, loss and Jain's fairness index.
"""

import csv
import json
import os
from typing import Any, Dict, List, Optional

from bottleneck_sim.core.simulator import SimulationReport


def save_metrics_to_json(
    report: SimulationReport, filename: str = "results/metrics.json"
) -> None:
    """Save a report to a JSON file.

    Args:
        report: Report of a finished run.
        filename: Output filename.
    """
    directory = os.path.dirname(filename)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(filename, "w") as f:
        json.dump(report.to_dict(), f, indent=2)


def save_flows_to_csv(
    report: SimulationReport, filename: str = "results/flows.csv"
) -> None:
    """Save per-flow statistics to a CSV file, one row per flow.

    Args:
        report: Report of a finished run.
        filename: Output filename.
    """
    directory = os.path.dirname(filename)
    if directory:
        os.makedirs(directory, exist_ok=True)

    columns = [
        "flow_id",
        "source",
        "destination",
        "source_port",
        "destination_port",
        "protocol",
        "tx_packets",
        "rx_packets",
        "lost_packets",
        "tx_bytes",
        "rx_bytes",
        "mean_delay",
        "throughput",
    ]
    with open(filename, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=columns, extrasaction="ignore")
        writer.writeheader()
        for flow in report.flows:
            writer.writerow(flow.to_dict())


def calculate_fairness_index(
    report: Optional[SimulationReport] = None,
    flow_throughputs: Optional[Dict[Any, float]] = None,
) -> float:
    """Calculate Jain's fairness index for flow throughputs.

    Args:
        report: Report whose receiving flows are compared.
        flow_throughputs: Dictionary mapping flow IDs to throughputs.
            If None, taken from the report.

    Returns:
        Fairness index between 0 and 1 (1 is perfectly fair).
    """
    if flow_throughputs is None:
        if report is None:
            raise ValueError("Either a report or flow throughputs are required")
        flow_throughputs = {
            flow.flow_id: flow.throughput
            for flow in report.flows
            if flow.throughput is not None
        }

    if not flow_throughputs:
        return 0.0

    throughputs = list(flow_throughputs.values())
    n = len(throughputs)

    sum_throughput = sum(throughputs)
    sum_squared = sum(x**2 for x in throughputs)

    if sum_squared == 0:
        return 0.0

    return (sum_throughput**2) / (n * sum_squared)


def format_report(report: SimulationReport, name: str = "") -> List[str]:
    """Render a report as human readable lines.

    Args:
        report: Report of a finished run.
        name: Scenario name for the heading.

    Returns:
        Lines without trailing newlines.
    """
    lines = [f"=== {name or 'SIMULATION'} SUMMARY (t={report.end_time:.3f}s) ==="]
    for source, count in report.tx_packets.items():
        lines.append(f"{source} TX packets: {count}")
    lines.append(f"Total TX packets   : {report.total_tx_packets}")
    drops = report.drop_counts()
    lines.append(f"Total drops        : {len(report.drops)}")
    for reason, count in drops.items():
        lines.append(f"  {reason}: {count}")
    if report.flagged:
        lines.append(f"Spoofed packets flagged: {len(report.flagged)}")

    for flow in report.flows:
        five_tuple = flow.five_tuple
        lines.append(f"Flow {flow.flow_id} ({five_tuple.source} -> {five_tuple.destination})")
        lines.append(f"  Tx packets: {flow.tx_packets}  Rx packets: {flow.rx_packets}")
        lines.append(f"  Lost packets: {flow.lost_packets}")
        if flow.mean_delay is not None:
            lines.append(f"  Mean delay: {flow.mean_delay:.6f} s")
        if flow.throughput is not None:
            lines.append(f"  Throughput: {flow.throughput / 1e6:.4f} Mbps")

    receiving = [flow for flow in report.flows if flow.throughput is not None]
    if len(receiving) > 1:
        lines.append(f"Jain's fairness index: {calculate_fairness_index(report):.4f}")
    return lines
