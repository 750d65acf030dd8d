"""Command-line interface for scanning jet pairings on event inputs."""

from __future__ import annotations

import argparse
import importlib.util
import logging
from pathlib import Path
from typing import Any

from .io import load_events_json, write_results_table
from .models import FitTolerances, JetErrorModel, PermutationResult
from .scan import PairingScanner

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Define and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="kinfit-pairings",
        description="Enumerate jet-to-hypothesis assignments and record per-permutation kinematics.",
    )
    parser.add_argument("--events", required=True, help="Input JSON with key 'events'.")
    parser.add_argument(
        "--pairing",
        default="four-jet",
        choices=["four-jet", "two-b-four-j"],
        help="Jet pairing hypothesis.",
    )
    parser.add_argument(
        "--energy-resolution",
        type=float,
        default=1.0,
        help="Default jet energy error as fraction of sqrt(E) (GeV^0.5).",
    )
    parser.add_argument("--theta-error", type=float, default=0.01, help="Default polar-angle error (rad).")
    parser.add_argument("--phi-error", type=float, default=0.01, help="Default azimuth error (rad).")
    parser.add_argument(
        "--eps2",
        type=float,
        default=FitTolerances.eps2,
        help="Significant-move threshold, relative to each parameter variance.",
    )
    parser.add_argument(
        "--mass-epsilon",
        type=float,
        default=FitTolerances.mass_epsilon,
        help="Relative energy floor above the jet mass during fitting.",
    )
    parser.add_argument(
        "--best-only",
        action="store_true",
        help="Keep only the preferred permutation of each event.",
    )
    parser.add_argument(
        "--out",
        required=True,
        help="Output table file for permutations (.parquet, .csv, .pkl).",
    )
    parser.add_argument(
        "--custom-script",
        default=None,
        help="Path to Python file with process(results, context) function.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint: load events, scan pairings, write table, optional custom hook."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")
    errors = JetErrorModel(
        energy_resolution=args.energy_resolution,
        theta_error=args.theta_error,
        phi_error=args.phi_error,
    )
    tolerances = FitTolerances(eps2=args.eps2, mass_epsilon=args.mass_epsilon)
    events = load_events_json(args.events, errors=errors)

    scanner = PairingScanner(pairing=args.pairing, tolerances=tolerances)
    results = scanner.scan_events(events)
    if args.best_only:
        results = scanner.best_per_event(results)
    write_results_table(args.out, results)

    if args.custom_script:
        run_custom_script(
            script_path=args.custom_script,
            results=results,
            context={
                "events_path": args.events,
                "pairing": args.pairing,
                "errors": errors,
                "tolerances": tolerances,
                "output_path": args.out,
            },
        )
    return 0


def run_custom_script(
    script_path: str, results: list[PermutationResult], context: dict[str, Any]
) -> None:
    """Load a user file and call its `process(results, context)` on the scan output."""
    path = Path(script_path)
    if not path.is_file():
        raise ValueError(f"Custom script not found: {script_path}")
    spec = importlib.util.spec_from_file_location(f"kinfit_custom_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise ValueError(f"Custom script {script_path} is not an importable Python file.")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    process = getattr(module, "process", None)
    if not callable(process):
        raise ValueError(
            f"Custom script {script_path} must define callable process(results, context)."
        )
    logger.info("running custom script %s on %d permutations", path.name, len(results))
    process(results, context)


if __name__ == "__main__":
    raise SystemExit(main())
