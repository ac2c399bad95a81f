"""Smoke tests for the multilateration comparison script.

Runs the script in a subprocess with the Agg backend and checks the
summary.json contract.
"""

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path


class TestCompareMultilaterationMethods(unittest.TestCase):
    """The comparison script should run and write a usable summary."""

    def setUp(self):
        self.workspace_root = Path(__file__).parent.parent.parent
        self.script_path = self.workspace_root / "scripts" / "compare_multilateration_methods.py"
        self.assertTrue(self.script_path.exists(), f"Script not found: {self.script_path}")

        self.env = os.environ.copy()
        self.env.update({
            "MPLBACKEND": "Agg",
            "PYTHONPATH": str(self.workspace_root),
        })

    def _run(self, *args):
        return subprocess.run(
            [sys.executable, str(self.script_path), *args],
            cwd=self.workspace_root,
            capture_output=True,
            text=True,
            timeout=120,
            env=self.env,
        )

    def test_noisy_outliers_preset(self):
        with tempfile.TemporaryDirectory() as tmp:
            result = self._run("--preset", "noisy_outliers", "--num-runs", "50", "--output", tmp, "--plot")

            self.assertEqual(result.returncode, 0, f"Script failed with stderr:\n{result.stderr}")
            self.assertIn("Comparison complete!", result.stdout)
            self.assertIn("Mean Error:", result.stdout)

            with open(Path(tmp) / "summary.json") as f:
                summary = json.load(f)

            self.assertEqual(summary["scenario"]["num_runs"], 50)
            self.assertEqual(summary["scenario"]["outlier_ratio"], 0.1)
            self.assertIn("Robust LM (Cauchy)", summary["methods"])
            for method in summary["methods"].values():
                self.assertEqual(method["n_failures"], 0)
                self.assertEqual(len(method["mean_abs_error"]), 3)

            self.assertTrue((Path(tmp) / "error_hist.png").exists())
            self.assertTrue((Path(tmp) / "geometry.png").exists())

    def test_coplanar_preset_reports_failures(self):
        with tempfile.TemporaryDirectory() as tmp:
            result = self._run("--preset", "coplanar", "--num-runs", "10", "--output", tmp)

            self.assertEqual(result.returncode, 0, f"Script failed with stderr:\n{result.stderr}")
            self.assertIn("All solves failed", result.stdout)

            with open(Path(tmp) / "summary.json") as f:
                summary = json.load(f)

            self.assertFalse(summary["scenario"]["geometry_ok"])
            self.assertEqual(summary["methods"]["OLS (normal eq)"]["n_failures"], 10)

    def test_yaml_config_overrides_preset(self):
        with tempfile.TemporaryDirectory() as tmp:
            config_path = Path(tmp) / "scenario.yaml"
            config_path.write_text(
                "geometry: tetrahedron\n"
                "true_position: [1.0, 1.0, 2.0]\n"
                "range_noise_std: 0.05\n"
                "num_runs: 15\n"
            )

            result = self._run("--config", str(config_path), "--output", tmp)

            self.assertEqual(result.returncode, 0, f"Script failed with stderr:\n{result.stderr}")
            with open(Path(tmp) / "summary.json") as f:
                summary = json.load(f)

            self.assertEqual(summary["scenario"]["geometry"], "tetrahedron")
            self.assertEqual(summary["scenario"]["num_runs"], 15)
            self.assertEqual(len(summary["scenario"]["anchors"]), 4)

    def test_unknown_config_key_rejected(self):
        with tempfile.TemporaryDirectory() as tmp:
            config_path = Path(tmp) / "bad.yaml"
            config_path.write_text("nlos_bias: 0.5\n")

            result = self._run("--config", str(config_path), "--output", tmp)

            self.assertNotEqual(result.returncode, 0)
            self.assertIn("unknown keys", result.stderr)


if __name__ == "__main__":
    unittest.main()
