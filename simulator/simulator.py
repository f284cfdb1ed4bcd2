"""Simulation runner for the tiered cell deliberation engine."""

import argparse
import random
import time
from typing import List

from rich.console import Console
from rich.table import Table

from chant import ChantEngine
from config import engine_config, get_config_with_args
from controller import Controller
from primer import Primer
from simlog import (
    setup_logging,
    generate_sim_id,
    log_event,
    logger,
    LogEntry,
    EventType,
    PhaseType,
    LogLevel,
)


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Tiered Cell Deliberation Simulation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--sim-id",
        type=str,
        help="Custom simulation ID (default: auto-generated yymmddHH-N)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v for INFO, -vv for DEBUG, etc.)",
    )

    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Quiet mode: suppress verbose logging, show only summary",
    )

    parser.add_argument(
        "--config",
        type=str,
        default="config.yaml",
        help="Configuration file path (default: config.yaml)",
    )

    parser.add_argument(
        "--num-participants",
        type=int,
        default=None,
        help="Number of participants (default: from config file)",
    )

    parser.add_argument(
        "--variant",
        choices=["batch", "delegation"],
        default=None,
        help="Tier advancement variant (default: from config file)",
    )

    parser.add_argument(
        "--run-seed",
        type=int,
        default=None,
        help="Seed for population and voting (default: from config file)",
    )

    parser.add_argument(
        "--dropout",
        type=float,
        default=None,
        help="Share of voters who miss their cell's deadline (default: from config file)",
    )

    parser.add_argument(
        "--challenge-rounds",
        type=int,
        default=None,
        help="Challenge rounds to run after the first champion (default: from config file)",
    )

    return parser.parse_args(argv)


def run_scenario(config: dict, scenario_seed: int) -> dict:
    """Build a population, run one deliberation on it and return its summary."""
    simulation = config["simulation"]
    primer = Primer(config.get("voters"))
    run_config = primer.generate_run_config(
        seed=scenario_seed, num_participants=simulation["num_participants"]
    )

    engine = ChantEngine(
        config=engine_config(config),
        rng=random.Random(scenario_seed),
    )
    controller = Controller(
        engine,
        run_config,
        dropout=simulation.get("dropout", 0.0),
        challenge_rounds=simulation.get("challenge_rounds", 0),
        primer=primer,
        snapshots=config.get("logging", {}).get("snapshots", False),
    )
    return controller.run()


def print_summary(console: Console, sim_id: str, results: List[dict], durations: List[float]):
    table = Table(title=f"Simulation {sim_id}")
    table.add_column("Scenario", justify="right")
    table.add_column("Participants", justify="right")
    table.add_column("Tiers", justify="right")
    table.add_column("Winner")
    table.add_column("Quality", justify="right")
    table.add_column("Best won")
    table.add_column("Auto votes", justify="right")
    table.add_column("Rounds", justify="right")
    table.add_column("Time", justify="right")

    for index, (result, duration) in enumerate(zip(results, durations), start=1):
        table.add_row(
            str(index),
            str(result["participants"]),
            str(len(result["tiers"])),
            result["winner_id"],
            f"{result['winner_quality']:.2f}",
            "yes" if result["best_idea_won"] else "no",
            str(result["auto_votes"]),
            str(result["challenge_rounds"]),
            f"{duration:.3f}s",
        )
    console.print(table)

    if results:
        hits = sum(1 for r in results if r["best_idea_won"])
        console.print(f"Best idea won {hits}/{len(results)} scenarios")


def main(argv=None):
    """Main simulation runner."""
    args = parse_arguments(argv)

    config = get_config_with_args(args.config, args)

    sim_id = args.sim_id if args.sim_id else generate_sim_id()

    # Initialize logging - adjust verbosity for quiet mode
    effective_verbosity = -1 if args.quiet else args.verbose
    sim_logger = setup_logging(sim_id, effective_verbosity)
    console = Console()

    try:
        simulation = config["simulation"]
        run_seed = simulation.get("run_seed", 42)
        max_scenarios = simulation.get("max_scenarios", 1)

        log_event(
            LogEntry(
                phase=PhaseType.SUBMISSION,
                event_type=EventType.SIMULATION_START,
                payload={
                    "sim_id": sim_id,
                    "run_seed": run_seed,
                    "max_scenarios": max_scenarios,
                    "num_participants": simulation.get("num_participants"),
                    "engine": config.get("engine"),
                    "config_file": args.config,
                },
                message="Simulation parameters configured",
            )
        )

        results: List[dict] = []
        durations: List[float] = []
        for i in range(max_scenarios):
            scenario_seed = run_seed + i
            logger.info(f"Running scenario {i + 1} of {max_scenarios} with seed {scenario_seed}")
            log_event(
                LogEntry(
                    phase=PhaseType.SUBMISSION,
                    event_type=EventType.SCENARIO_START,
                    payload={"scenario": i + 1, "scenario_seed": scenario_seed},
                    message=f"Starting scenario {i + 1}",
                )
            )

            start = time.time()
            results.append(run_scenario(config, scenario_seed))
            durations.append(time.time() - start)

        if durations:
            log_event(
                LogEntry(
                    event_type=EventType.TIMING_STATS,
                    payload={
                        "sim_id": sim_id,
                        "total_rounds": len(durations),
                        "min_duration_ms": round(min(durations) * 1000, 2),
                        "max_duration_ms": round(max(durations) * 1000, 2),
                        "avg_duration_ms": round(sum(durations) / len(durations) * 1000, 2),
                    },
                    message="Timing statistics calculated",
                )
            )

        print_summary(console, sim_id, results, durations)

        log_event(
            LogEntry(
                event_type=EventType.SIMULATION_COMPLETE,
                payload={"sim_id": sim_id, "scenarios_completed": len(results)},
                message="Simulation completed successfully",
            )
        )

    except Exception as exc:
        log_event(
            LogEntry(
                event_type=EventType.SIMULATION_ERROR,
                payload={"sim_id": sim_id, "error": str(exc)},
                message=f"Simulation failed: {exc}",
                level=LogLevel.ERROR,
            )
        )
        raise
    finally:
        sim_logger.close()


if __name__ == "__main__":
    main()
