"""Input/output helpers for JSON jet inputs and tabular result export."""

from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any

from .models import EventInput, JetErrorModel, JetMeasurement, PermutationResult
from .physics import energy_theta_phi


def load_jets_json(path: str | Path, errors: JetErrorModel | None = None) -> list[JetMeasurement]:
    """Load a single-event JSON `{"jets": [...]}` into `JetMeasurement` objects."""
    data = _load_json(path)
    jets_data = data.get("jets")
    if not isinstance(jets_data, list):
        raise ValueError("Input JSON must contain a list under key 'jets'.")
    errors = errors or JetErrorModel()
    return [
        _parse_jet_item(item=item, idx=idx, context=f"{path}", errors=errors)
        for idx, item in enumerate(jets_data)
    ]


def load_events_json(path: str | Path, errors: JetErrorModel | None = None) -> list[EventInput]:
    """Load multi-event input JSON into `EventInput` objects.

    Expected shape:
    {
      "events": [
        {"event_id": "...", "jets": [...]},
        ...
      ]
    }

    Each jet is either `{"energy", "theta", "phi"}` or a four-vector
    `{"px", "py", "pz", "e"}`, with optional `sigma_energy`, `sigma_theta`,
    `sigma_phi` and `mass`. Missing errors come from `errors`.
    """
    data = _load_json(path)
    events_data = data.get("events")
    if not isinstance(events_data, list):
        raise ValueError("Events JSON must contain a list under key 'events'.")
    errors = errors or JetErrorModel()
    out: list[EventInput] = []
    for idx, event in enumerate(events_data):
        if not isinstance(event, dict):
            raise ValueError(f"Event entry at index {idx} must be an object.")
        event_id = str(event.get("event_id", f"evt{idx}"))
        jets_data = event.get("jets")
        if not isinstance(jets_data, list):
            raise ValueError(f"Event '{event_id}' must contain a list under key 'jets'.")
        jets = tuple(
            _parse_jet_item(item=jet_item, idx=jidx, context=f"event '{event_id}'", errors=errors)
            for jidx, jet_item in enumerate(jets_data)
        )
        out.append(EventInput(event_id=event_id, jets=jets))
    return out


_TABLE_WRITERS = {
    ".parquet": lambda df, out: df.to_parquet(out, index=False),
    ".csv": lambda df, out: df.to_csv(out, index=False),
    ".pkl": lambda df, out: df.to_pickle(out),
    ".pickle": lambda df, out: df.to_pickle(out),
}


def write_results_table(path: str | Path, results: list[PermutationResult]) -> None:
    """Write one row per permutation; the format follows the file suffix."""
    out = Path(path)
    writer = _TABLE_WRITERS.get(out.suffix.lower())
    if writer is None:
        supported = ", ".join(sorted(_TABLE_WRITERS))
        raise ValueError(f"Cannot write results to '{out.name}': suffix must be one of {supported}.")
    pd = _require_pandas()
    writer(pd.DataFrame(_result_rows(results)), out)


def _result_rows(results: list[PermutationResult]) -> list[dict[str, Any]]:
    """Flatten permutation results into DataFrame-ready row dictionaries."""
    rows: list[dict[str, Any]] = []
    for res in results:
        row: dict[str, Any] = {
            "event_id": res.event_id,
            "pairing": res.pairing,
            "permutation": res.permutation_index,
            "jet_ids": ",".join(res.jet_ids),
            "jets_chi2": res.jets_chi2,
        }
        for idx, mass in enumerate(res.start_masses, start=1):
            row[f"start_mass{idx}"] = mass
        if res.fitted_masses is not None:
            for idx, mass in enumerate(res.fitted_masses, start=1):
                row[f"fit_mass{idx}"] = mass
        if res.fitted_jets is not None:
            for idx, p4 in enumerate(res.fitted_jets, start=1):
                row[f"jet{idx}_e"] = p4.e
                row[f"jet{idx}_px"] = p4.px
                row[f"jet{idx}_py"] = p4.py
                row[f"jet{idx}_pz"] = p4.pz
        if res.outcome is not None:
            row["fit_prob"] = res.outcome.probability
            row["fit_chi2"] = res.outcome.chi2
            row["fit_iterations"] = res.outcome.iterations
            row["fit_error"] = res.outcome.error_code
        rows.append(row)
    return rows


def _require_pandas():
    """pandas is optional; import it only when a table is written."""
    try:
        import pandas as pd  # type: ignore
    except ModuleNotFoundError as exc:
        raise ModuleNotFoundError(
            "Writing result tables needs pandas (and pyarrow for .parquet): "
            "pip install 'kinfit[tables]'"
        ) from exc
    return pd


def _parse_jet_item(item: Any, idx: int, context: str, errors: JetErrorModel) -> JetMeasurement:
    """Parse one jet dictionary into a `JetMeasurement`."""
    if not isinstance(item, dict):
        raise ValueError(f"Jet entry at index {idx} in {context} must be an object.")
    jet_id = str(item.get("jet_id", f"j{idx}"))
    if all(key in item for key in ("energy", "theta", "phi")):
        energy = float(item["energy"])
        theta = float(item["theta"])
        phi = float(item["phi"])
    elif all(key in item for key in ("px", "py", "pz", "e")):
        energy, theta, phi = energy_theta_phi(
            float(item["px"]), float(item["py"]), float(item["pz"]), float(item["e"])
        )
    else:
        raise ValueError(
            f"Jet '{jet_id}' in {context} must define energy/theta/phi or px/py/pz/e."
        )
    mass = float(item.get("mass", 0.0))
    values = (energy, theta, phi, mass)
    if not all(math.isfinite(v) for v in values):
        raise ValueError(f"Jet '{jet_id}' in {context} has non-finite kinematics {values!r}.")
    return JetMeasurement(
        jet_id=jet_id,
        energy=energy,
        theta=theta,
        phi=phi,
        sigma_energy=float(item.get("sigma_energy", errors.sigma_energy(energy))),
        sigma_theta=float(item.get("sigma_theta", errors.theta_error)),
        sigma_phi=float(item.get("sigma_phi", errors.phi_error)),
        mass=mass,
    )


def _load_json(path: str | Path) -> dict[str, Any]:
    """Read and validate a JSON object document from disk."""
    raw = Path(path).read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"JSON document at {path} must be an object.")
    return data
