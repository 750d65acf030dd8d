"""Multi-event API example: scan all four-jet pairings without a fitter.

Run from repository root without installation:
    PYTHONPATH=src python examples/multi_event_api.py
"""

from __future__ import annotations

from pathlib import Path

from kinfit import JetErrorModel, PairingScanner
from kinfit.io import load_events_json, write_results_table


def main() -> int:
    """Load events, record start dijet masses per pairing, and write a table."""
    events = load_events_json("examples/events.json", errors=JetErrorModel(energy_resolution=0.6))
    scanner = PairingScanner(pairing="four-jet")
    results = scanner.scan_events(events)
    out_path = Path("examples/multi_event_output.parquet")
    write_results_table(out_path, results)
    print(f"Wrote {len(results)} permutations to {out_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
