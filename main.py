import argparse
import logging
import sys

from bottleneck_sim.config import load_scenario
from bottleneck_sim.core.errors import ConfigurationError
from bottleneck_sim.scenarios import SCENARIOS, get_scenario, run_scenario
from bottleneck_sim.utils.metrics import format_report, save_metrics_to_json

logger = logging.getLogger("bottleneck_sim")


def list_scenarios():
    """Print the reference scenarios with their descriptions"""
    for name in SCENARIOS:
        config = get_scenario(name)
        print(f"{name:<16} {config.description}")


def run(args):
    """Run the selected scenario and report its results

    Args:
        args: Parsed command line arguments
    """
    if args.config:
        overrides = {"seed": args.seed} if args.seed is not None else None
        config = load_scenario(args.config, overrides)
    else:
        config = get_scenario(args.scenario, 42 if args.seed is None else args.seed)

    print(f"\n=== Running {config.name} ===")
    report = run_scenario(config, args.duration)
    for line in format_report(report, config.name.upper()):
        print(line)

    if args.output:
        save_metrics_to_json(report, args.output)
        print(f"\nReport saved to {args.output}")
    return report


def main():
    """Main function to run simulations"""
    parser = argparse.ArgumentParser(description="Bottleneck Network Simulator")
    parser.add_argument(
        "--scenario",
        choices=sorted(SCENARIOS),
        default="aqm_red",
        help="Reference scenario to run",
    )
    parser.add_argument("--config", help="YAML scenario file, overrides --scenario")
    parser.add_argument("--seed", type=int, default=None, help="Run seed")
    parser.add_argument(
        "--duration", type=float, default=None, help="Stop time in seconds"
    )
    parser.add_argument("--output", help="Save the report as JSON, e.g. results/x.json")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    parser.add_argument("--list", action="store_true", help="List scenarios and exit")

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.list:
        list_scenarios()
        return 0

    try:
        run(args)
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
