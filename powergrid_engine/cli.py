"""
Command-line interface for the faction power-grid engine.

Usage:
    python -m powergrid_engine.cli [command] [options]

Commands:
    run         Run a scenario and print summary statistics.
    validate    Run a scenario, checking grid invariants after every tick.
    info        Print default grid parameters.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from .analysis.metrics import summary_statistics
from .analysis.recorder import GridRecorder
from .analysis.validation import validate_grid
from .core.grid_params import GridParams
from .scenario_loader import build_scenario, load_scenario


def _build_subparsers(parser: argparse.ArgumentParser) -> None:
    """Register all sub-commands on the root parser."""
    sub = parser.add_subparsers(dest="command", required=True)

    # ------------------------------------------------------------------ run --
    run_p = sub.add_parser("run", help="Run a grid scenario")
    run_p.add_argument("scenario", help="Path to a scenario YAML file")
    run_p.add_argument(
        "--ticks", type=int, default=None, metavar="N",
        help="Number of ticks (default: scenario's 'ticks', else 100)"
    )
    run_p.add_argument(
        "--json", action="store_true",
        help="Output summary statistics as JSON"
    )
    run_p.add_argument(
        "--output", type=str, default=None, metavar="PATH",
        help="Write per-tick records (JSON) to PATH"
    )

    # -------------------------------------------------------------- validate --
    val_p = sub.add_parser("validate", help="Check grid invariants over a scenario run")
    val_p.add_argument("scenario", help="Path to a scenario YAML file")
    val_p.add_argument(
        "--ticks", type=int, default=None, metavar="N",
        help="Number of ticks (default: scenario's 'ticks', else 100)"
    )

    # ---------------------------------------------------------------- info --
    sub.add_parser("info", help="Print default grid parameters")


def _cmd_run(args: argparse.Namespace) -> None:
    """Execute the run sub-command."""
    scenario = build_scenario(load_scenario(args.scenario))
    recorder = GridRecorder()
    scenario.coordinator.register_post_tick_hook(recorder.record)
    scenario.run(args.ticks)

    stats = summary_statistics(recorder.records())
    if args.output:
        with open(args.output, "w") as f:
            json.dump(recorder.to_dicts(), f, indent=2)

    if args.json:
        print(json.dumps(stats, indent=2))
        return

    print(f"Scenario '{scenario.name}' completed: {stats['n_ticks']} ticks "
          f"({stats['final_time']:.1f}s simulated)")
    print(f"  Cascades started:  {stats['cascades_started']}")
    print(f"  Peak open cascades: {stats['peak_cascades']}")
    for faction, fs in stats["factions"].items():
        print(f"  Faction {faction}:")
        print(f"    Mean stability:  {fs['mean_stability']:.4f}")
        print(f"    Min stability:   {fs['min_stability']:.4f}")
        print(f"    Worst risk:      {fs['worst_risk']}")
        print(f"    Blackout share:  {fs['blackout_share']:.4f}")
        print(f"    Final balance:   {fs['final_generation'] - fs['final_demand']:+.1f}")


def _cmd_validate(args: argparse.Namespace) -> int:
    """Execute the validate sub-command.  Returns the process exit code."""
    scenario = build_scenario(load_scenario(args.scenario))
    n = scenario.ticks if args.ticks is None else args.ticks
    failures = 0
    for tick in range(n):
        scenario.apply_events(tick)
        scenario.coordinator.tick()
        for violation in validate_grid(scenario.coordinator.grid):
            failures += 1
            print(f"tick {tick}: {violation}")
    if failures:
        print(f"{failures} invariant violation(s) in scenario '{scenario.name}'.")
        return 1
    print(f"All grid invariants held over {n} ticks of '{scenario.name}'.")
    return 0


def _cmd_info(_args: argparse.Namespace) -> None:
    """Execute the info sub-command."""
    params = GridParams()
    print("Faction Power-Grid Engine")
    print("Default GridParams:")
    for name, value in params.to_dict().items():
        print(f"  {name}: {value}")


def main() -> None:
    """Entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="powergrid_engine",
        description="Faction power-grid simulation CLI",
    )
    parser.add_argument(
        "--log-level", default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: WARNING)"
    )
    _build_subparsers(parser)
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.command == "run":
        _cmd_run(args)
    elif args.command == "validate":
        sys.exit(_cmd_validate(args))
    elif args.command == "info":
        _cmd_info(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
