"""Example custom callback: keep the preferred permutation of each event."""

from __future__ import annotations

import json
from pathlib import Path

from kinfit import PairingScanner


def process(results, context):
    """Write the preferred jet assignment per event next to the output table."""
    best = PairingScanner.best_per_event(results)
    payload = {
        "pairing": context["pairing"],
        "n_permutations": len(results),
        "best": [
            {
                "event_id": r.event_id,
                "permutation": r.permutation_index,
                "jet_ids": list(r.jet_ids),
                "start_masses": list(r.start_masses),
                "mass_spread": max(r.start_masses) - min(r.start_masses),
            }
            for r in best
        ],
    }
    out = Path(context["output_path"]).with_name("best_permutations.json")
    out.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    print(f"Wrote {out}")
