#!/usr/bin/env python3
"""Example network simulation using the bottleneck_sim package.

This script builds a dumbbell topology by hand, once with a FIFO and once with
a RED queue in front of the bottleneck, and compares drops, delay and
fairness of two bulk senders.
"""

import logging
from typing import Any, Dict

from bottleneck_sim.config import QueueConfig
from bottleneck_sim.core.context import DropRecord
from bottleneck_sim.core.enums import Protocol, TrafficKind
from bottleneck_sim.core.simulator import NetworkSimulator
from bottleneck_sim.utils.metrics import calculate_fairness_index, format_report


def build_dumbbell(queue: QueueConfig, seed: int = 42) -> NetworkSimulator:
    """Create two clients sharing a 5 Mbps bottleneck towards one server.

    Args:
        queue: Queue disc installed in front of the bottleneck.
        seed: Random seed for reproducibility.

    Returns:
        A simulator ready to run.
    """
    simulator = NetworkSimulator(seed=seed)
    client1 = simulator.add_node("client1")
    client2 = simulator.add_node("client2")
    router = simulator.add_node("router")
    server = simulator.add_node("server")

    access1 = simulator.add_link(client1, router, 100e6, 0.002)
    access2 = simulator.add_link(client2, router, 100e6, 0.002)
    bottleneck = simulator.add_link(router, server, 5e6, 0.010, device_queue_capacity=1)
    simulator.assign_network(access1, "10.1.1.0/24")
    simulator.assign_network(access2, "10.1.2.0/24")
    _, server_address = simulator.assign_network(bottleneck, "10.1.3.0/24")
    simulator.install_queue_disc(
        router, simulator.connections[bottleneck].interface_a, queue
    )
    simulator.populate_routing_tables()

    simulator.add_sink(server, 50000, Protocol.TCP)
    for client in (client1, client2):
        simulator.add_source(
            TrafficKind.BULK,
            client,
            simulator.nodes[client].name,
            server_address,
            50000,
            start_time=1.0,
            stop_time=10.0,
        )
    return simulator


def run_comparison(duration: float = 10.0) -> Dict[str, Any]:
    """Run the dumbbell with FIFO and RED and collect headline numbers."""
    queues = {
        "FIFO": QueueConfig(kind="fifo", capacity="20p"),
        "RED": QueueConfig(
            kind="red", capacity="20p", min_th=2, max_th=5, mean_packet_size=1500
        ),
    }
    results = {}
    for name, queue in queues.items():
        simulator = build_dumbbell(queue)
        first_drops = []

        def on_drop(record: DropRecord) -> None:
            if len(first_drops) < 5:
                first_drops.append(record)

        simulator.context.drop_hooks.append(on_drop)
        report = simulator.run(duration)

        print(f"\n=== {name} ===")
        for line in format_report(report, name):
            print(line)
        for record in first_drops:
            print(
                f"[QUEUE DROP] Time = {record.time:.6f} s, "
                f"Packet Size = {record.size} bytes ({record.reason.value})"
            )

        results[name] = {
            "drops": len(report.drops),
            "fairness": calculate_fairness_index(report),
            "delays": [flow.mean_delay for flow in report.flows],
        }
    return results


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_comparison()
