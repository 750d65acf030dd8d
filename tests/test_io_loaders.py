"""Unit tests for JSON input loader helpers and result export."""

from __future__ import annotations

import importlib.util
import json
import math
import tempfile
import unittest
from pathlib import Path

from kinfit import JetErrorModel
from kinfit.cli import main, run_custom_script
from kinfit.io import load_events_json, load_jets_json, write_results_table

HAS_PANDAS = importlib.util.find_spec("pandas") is not None


def _write(tmpdir: str, name: str, payload: dict) -> Path:
    path = Path(tmpdir) / name
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def _four_jet_event(event_id: str) -> dict:
    return {
        "event_id": event_id,
        "jets": [
            {"jet_id": "a", "energy": 45.0, "theta": 1.4, "phi": 0.1},
            {"jet_id": "b", "energy": 38.0, "theta": 1.9, "phi": 2.9},
            {"jet_id": "c", "energy": 30.0, "theta": 0.6, "phi": -1.5},
            {"jet_id": "d", "px": 3.0, "py": 4.0, "pz": 0.0, "e": 5.0},
        ],
    }


class TestIOLoaders(unittest.TestCase):
    """Validate parsing for single-event and event-batch JSON inputs."""

    def test_load_jets_json_supports_both_parametrizations(self) -> None:
        """Jets may be given as (energy, theta, phi) or as a four-vector."""
        payload = {
            "jets": [
                {"jet_id": "j0", "energy": 40.0, "theta": 1.0, "phi": 0.5, "sigma_energy": 3.0},
                {"px": 3.0, "py": 4.0, "pz": 0.0, "e": 5.0, "mass": 0.0},
            ]
        }
        with tempfile.TemporaryDirectory() as tmpdir:
            jets = load_jets_json(_write(tmpdir, "jets.json", payload))
        self.assertEqual(len(jets), 2)
        self.assertEqual(jets[0].jet_id, "j0")
        self.assertEqual(jets[0].sigma_energy, 3.0)
        self.assertEqual(jets[1].jet_id, "j1")
        self.assertAlmostEqual(jets[1].energy, 5.0, places=12)
        self.assertAlmostEqual(jets[1].theta, math.pi / 2, places=12)
        self.assertAlmostEqual(jets[1].phi, math.atan2(4.0, 3.0), places=12)

    def test_missing_errors_come_from_error_model(self) -> None:
        """Unset resolutions use the error model defaults."""
        payload = {"jets": [{"energy": 25.0, "theta": 1.0, "phi": 0.0}]}
        errors = JetErrorModel(energy_resolution=0.6, theta_error=0.02, phi_error=0.03)
        with tempfile.TemporaryDirectory() as tmpdir:
            [jet] = load_jets_json(_write(tmpdir, "jets.json", payload), errors=errors)
        self.assertAlmostEqual(jet.sigma_energy, 3.0, places=12)
        self.assertEqual(jet.sigma_theta, 0.02)
        self.assertEqual(jet.sigma_phi, 0.03)
        self.assertEqual(jet.mass, 0.0)

    def test_malformed_inputs_are_rejected(self) -> None:
        """Missing keys and incomplete jets raise ValueError."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(ValueError):
                load_jets_json(_write(tmpdir, "a.json", {"events": []}))
            with self.assertRaises(ValueError):
                load_jets_json(_write(tmpdir, "b.json", {"jets": [{"energy": 1.0, "theta": 0.5}]}))
            with self.assertRaises(ValueError):
                load_events_json(_write(tmpdir, "c.json", {"jets": []}))

    def test_load_events_json_parses_event_payload(self) -> None:
        """Event loader should parse per-event jet containers."""
        payload = {"events": [_four_jet_event("evt42"), {"jets": []}]}
        with tempfile.TemporaryDirectory() as tmpdir:
            first, second = load_events_json(_write(tmpdir, "events.json", payload))
        self.assertEqual(first.event_id, "evt42")
        self.assertEqual([j.jet_id for j in first.jets], ["a", "b", "c", "d"])
        self.assertEqual(second.event_id, "evt1")
        self.assertEqual(second.jets, ())

    def test_unsupported_table_suffix_is_rejected(self) -> None:
        """The output format is checked before pandas is needed."""
        with self.assertRaisesRegex(ValueError, r"\.parquet"):
            write_results_table("results.xlsx", [])

    def test_custom_script_must_exist_and_define_process(self) -> None:
        """Missing files and files without process() are rejected."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(ValueError):
                run_custom_script(str(Path(tmpdir) / "missing.py"), [], {})
            script = Path(tmpdir) / "empty_hook.py"
            script.write_text("VALUE = 1\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                run_custom_script(str(script), [], {})


@unittest.skipUnless(HAS_PANDAS, "pandas is required for table output")
class TestCommandLine(unittest.TestCase):
    """Run the pairing CLI end to end on a small event file."""

    def test_cli_writes_csv_and_runs_custom_script(self) -> None:
        """All permutations land in the table and the hook sees the results."""
        import pandas as pd

        payload = {"events": [_four_jet_event("e1"), _four_jet_event("e2")]}
        with tempfile.TemporaryDirectory() as tmpdir:
            events = _write(tmpdir, "events.json", payload)
            out = Path(tmpdir) / "perms.csv"
            marker = Path(tmpdir) / "seen.txt"
            script = Path(tmpdir) / "hook.py"
            script.write_text(
                "from pathlib import Path\n"
                "def process(results, context):\n"
                f"    Path({str(marker)!r}).write_text(str(len(results)))\n",
                encoding="utf-8",
            )
            code = main(
                ["--events", str(events), "--out", str(out), "--custom-script", str(script)]
            )
            self.assertEqual(code, 0)
            df = pd.read_csv(out)
            self.assertEqual(len(df), 6)
            self.assertEqual(sorted(set(df["event_id"])), ["e1", "e2"])
            self.assertIn("start_mass1", df.columns)
            self.assertEqual(marker.read_text(), "6")

            best_out = Path(tmpdir) / "best.csv"
            main(["--events", str(events), "--out", str(best_out), "--best-only"])
            self.assertEqual(len(pd.read_csv(best_out)), 2)


if __name__ == "__main__":
    unittest.main()
