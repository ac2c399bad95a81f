"""Compare multilateration methods by Monte-Carlo simulation.

Runs every solver on the same sequence of synthetic measurement sets and
reports per-axis mean/max absolute error and the error covariance:
    - Linearized OLS (normal equations) and SVD minimum norm
    - LLS-I, LLS-II-2 and TS-WLLS-I linearizations
    - Levenberg-Marquardt refinement
    - Cauchy IRLS (around LM and around LLS-I)

Saves to: <output>/summary.json (plus figures with --plot)

Usage:
    python scripts/compare_multilateration_methods.py --preset noisy_outliers
    python scripts/compare_multilateration_methods.py --config my_scenario.yaml
"""

import argparse
import json
import sys
import warnings
from functools import partial
from pathlib import Path
from typing import Callable, Dict

import numpy as np
import yaml

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from multilateration.errors import DegenerateGeometryWarning
from multilateration.eval import (
    format_results,
    plot_anchor_geometry_3d,
    plot_error_cdf,
    plot_error_hist,
    run_monte_carlo,
    save_figure,
)
from multilateration.rf import (
    solve_direct_linearization,
    solve_linear_normal_eq,
    solve_linear_svd,
    solve_nonlinear,
    solve_reference_differencing,
    solve_robust,
    solve_robust_direct_linearization,
    solve_two_step_weighted,
)
from multilateration.sim import MeasurementConfig
from multilateration.utils import check_anchor_geometry


# ============================================================================
# PRESET CONFIGURATIONS
# ============================================================================

PRESETS = {
    "baseline": {
        "description": "Cube anchors, Gaussian range noise only",
        "geometry": "cube",
        "true_position": [0.0, 0.0, 5.0],
        "range_noise_std": 0.25,
        "outlier_ratio": 0.0,
        "outlier_magnitude": 0.0,
        "anchor_noise_std": 0.0,
        "loss_scale": 2.0,
    },
    "noisy_outliers": {
        "description": "Cube anchors, 10% of ranges replaced by U(0, 100) outliers",
        "geometry": "cube",
        "true_position": [0.0, 0.0, 5.0],
        "range_noise_std": 0.25,
        "outlier_ratio": 0.1,
        "outlier_magnitude": 100.0,
        "anchor_noise_std": 0.0,
        "loss_scale": 2.0,
    },
    "coplanar": {
        "description": "All anchors on z = 0, height unobservable for linear methods",
        "geometry": "coplanar",
        "true_position": [1.0, 2.0, 3.0],
        "range_noise_std": 0.1,
        "outlier_ratio": 0.0,
        "outlier_magnitude": 0.0,
        "anchor_noise_std": 0.0,
        "loss_scale": 2.0,
    },
    "anchor_noise": {
        "description": "Cube anchors with surveyed positions off by 0.1 m per axis",
        "geometry": "cube",
        "true_position": [0.0, 0.0, 5.0],
        "range_noise_std": 0.25,
        "outlier_ratio": 0.0,
        "outlier_magnitude": 0.0,
        "anchor_noise_std": 0.1,
        "loss_scale": 2.0,
    },
}

GEOMETRIES = ["cube", "coplanar", "tetrahedron"]


# ============================================================================
# SCENARIO SETUP
# ============================================================================

def create_anchor_geometry(geometry: str, half_width: float = 5.0) -> np.ndarray:
    """
    Create an anchor layout.

    Args:
        geometry: 'cube' (8 corners, x,y ∈ ±w, z ∈ {0, 2w}), 'coplanar'
            (6 anchors on z = 0) or 'tetrahedron' (4 anchors, minimal set).
        half_width: Half of the horizontal extent in meters.

    Returns:
        Anchor positions, shape (N, 3).
    """
    w = half_width
    if geometry == "cube":
        return np.array(
            [[x, y, z] for x in (-w, w) for y in (-w, w) for z in (0.0, 2 * w)]
        )
    elif geometry == "coplanar":
        return np.array(
            [
                [-w, -w, 0.0],
                [w, -w, 0.0],
                [w, w, 0.0],
                [-w, w, 0.0],
                [0.0, -w, 0.0],
                [w, 0.0, 0.0],
            ]
        )
    elif geometry == "tetrahedron":
        return np.array(
            [
                [-w, -w, 0.0],
                [w, -w, 0.0],
                [0.0, w, 0.0],
                [0.0, 0.0, 2 * w],
            ]
        )
    raise ValueError(f"Unknown geometry: {geometry}")


def build_solvers(range_std: float, loss_scale: float) -> Dict[str, Callable]:
    """Map method label -> solver(anchors, ranges)."""
    # Weighted and robust methods need σ > 0 even for noise-free scenarios
    sigma = max(range_std, 1e-3)
    return {
        "OLS (normal eq)": solve_linear_normal_eq,
        "LLS (SVD)": solve_linear_svd,
        "LLS-I": solve_direct_linearization,
        "LLS-II-2": solve_reference_differencing,
        "TS-WLLS-I": partial(solve_two_step_weighted, range_stds=sigma),
        "LM": solve_nonlinear,
        "Robust LM (Cauchy)": partial(solve_robust, range_std=sigma, loss_scale=loss_scale),
        "Robust LLS-I (Cauchy)": partial(
            solve_robust_direct_linearization, range_std=sigma, loss_scale=loss_scale
        ),
    }


# ============================================================================
# MAIN COMPARISON
# ============================================================================

def run_comparison(
    output_dir: str,
    geometry: str = "cube",
    true_position=(0.0, 0.0, 5.0),
    range_noise_std: float = 0.25,
    outlier_ratio: float = 0.0,
    outlier_magnitude: float = 0.0,
    anchor_noise_std: float = 0.0,
    loss_scale: float = 2.0,
    num_runs: int = 1000,
    seed: int = 42,
    plot: bool = False,
) -> Dict:
    """
    Run all methods on the same measurement sequence and save a summary.

    Every method gets a fresh generator with the same seed, so all of them
    see identical measurements.

    Returns:
        Summary dictionary (also written to summary.json).
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    anchors = create_anchor_geometry(geometry)
    true_position = np.asarray(true_position, dtype=float)
    config = MeasurementConfig(
        range_noise_std=range_noise_std,
        outlier_ratio=outlier_ratio,
        outlier_magnitude=outlier_magnitude,
        anchor_noise_std=anchor_noise_std,
    )

    print("\n" + "=" * 70)
    print(f"Multilateration Method Comparison: {output_path.name}")
    print("=" * 70)

    print("\nStep 1: Scenario")
    print(f"  Geometry: {geometry} ({len(anchors)} anchors)")
    print(f"  True position: {true_position.tolist()}")
    print(f"  Range noise σ: {range_noise_std} m")
    print(f"  Outliers: {outlier_ratio * 100:.0f}% up to {outlier_magnitude} m")
    print(f"  Anchor noise σ: {anchor_noise_std} m")
    print(f"  Runs: {num_runs}, seed: {seed}")

    is_good, message = check_anchor_geometry(anchors, warn_degenerate=False)
    print(f"  Geometry check: {message or 'OK'}")

    print("\nStep 2: Running Monte-Carlo trials...")
    solvers = build_solvers(range_noise_std, loss_scale)
    results = {}
    with warnings.catch_warnings():
        # Each degenerate-geometry message is reported once
        warnings.simplefilter("once", DegenerateGeometryWarning)
        for name, solver in solvers.items():
            results[name] = run_monte_carlo(
                solver,
                true_position,
                anchors,
                config,
                n_runs=num_runs,
                seed=seed,
                skip_failures=True,
                progress=True,
                desc=f"  {name:<22s}",
            )

    print("\nStep 3: Results")
    for name, result in results.items():
        print("\n" + "-" * 70)
        print(f"{name}  ({result.elapsed_s * 1e3 / num_runs:.3f} ms/solve)")
        print("-" * 70)
        if result.n_failures == num_runs:
            print("  All solves failed (singular system)")
            continue
        if result.n_failures:
            print(f"  Failed solves: {result.n_failures}/{num_runs}")
        print(format_results(result.errors))

    summary = {
        "scenario": {
            "geometry": geometry,
            "anchors": anchors.tolist(),
            "geometry_ok": bool(is_good),
            "geometry_message": message,
            "true_position": true_position.tolist(),
            "range_noise_std": range_noise_std,
            "outlier_ratio": outlier_ratio,
            "outlier_magnitude": outlier_magnitude,
            "anchor_noise_std": anchor_noise_std,
            "loss_scale": loss_scale,
            "num_runs": num_runs,
            "seed": seed,
        },
        "methods": {name: result.summary() for name, result in results.items()},
    }

    with open(output_path / "summary.json", "w") as f:
        json.dump(summary, f, indent=2)
    print(f"\n  Saved: {output_path / 'summary.json'}")

    if plot:
        errors = {
            name: result.errors
            for name, result in results.items()
            if len(result.errors) > 0
        }
        fig = plot_anchor_geometry_3d(
            anchors,
            true_position=true_position,
            estimates=results["LM"].estimates,
            title=f"Anchor Geometry ({geometry})",
        )
        save_figure(fig, output_path, "geometry")
        save_figure(plot_error_hist(errors), output_path, "error_hist")
        save_figure(plot_error_cdf(errors), output_path, "error_cdf")
        print(f"  Saved figures to: {output_path}")

    print("\n" + "=" * 70)
    print("Comparison complete!")
    print("=" * 70)

    return summary


def load_config(path: str) -> Dict:
    """Read a YAML file of scenario overrides."""
    with open(path, "r") as f:
        config = yaml.safe_load(f) or {}
    if not isinstance(config, dict):
        raise ValueError(f"{path}: expected a mapping of scenario parameters")
    unknown = set(config) - set(PRESETS["baseline"]) - {"num_runs", "seed"}
    if unknown:
        raise ValueError(f"{path}: unknown keys {sorted(unknown)}")
    return config


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Compare multilateration methods by Monte-Carlo simulation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Cube anchors with outliers (robust vs non-robust)
  python %(prog)s --preset noisy_outliers

  # Coplanar anchors: normal equations fail, SVD returns minimum norm
  python %(prog)s --preset coplanar --num-runs 200

  # Scenario from a YAML file (keys override the preset)
  python %(prog)s --preset baseline --config scenario.yaml --plot

Available presets: """ + ", ".join(PRESETS.keys()),
    )

    parser.add_argument(
        "--preset",
        type=str,
        choices=PRESETS.keys(),
        default="baseline",
        help="Preset configuration (default: baseline)",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="YAML file whose keys override the preset",
    )
    parser.add_argument(
        "--output",
        type=str,
        default="results/multilateration",
        help="Output directory (default: results/multilateration)",
    )
    parser.add_argument(
        "--seed", type=int, default=42, help="Random seed for reproducibility (default: 42)"
    )
    parser.add_argument(
        "--num-runs", type=int, default=1000, help="Monte-Carlo trials (default: 1000)"
    )

    scenario_group = parser.add_argument_group("Scenario Parameters")
    scenario_group.add_argument(
        "--geometry",
        type=str,
        choices=GEOMETRIES,
        help="Anchor layout (default: from preset)",
    )
    scenario_group.add_argument(
        "--range-noise", type=float, help="Range noise std dev in meters"
    )
    scenario_group.add_argument(
        "--outlier-ratio", type=float, help="Probability of an outlier range"
    )
    scenario_group.add_argument(
        "--outlier-magnitude", type=float, help="Outliers are drawn from U(0, magnitude)"
    )
    scenario_group.add_argument(
        "--anchor-noise", type=float, help="Anchor position noise std dev in meters"
    )

    robust_group = parser.add_argument_group("Robust Estimation Parameters")
    robust_group.add_argument(
        "--loss-scale", type=float, help="Cauchy loss scale in units of σ"
    )

    parser.add_argument("--plot", action="store_true", help="Save geometry and error figures")

    args = parser.parse_args()

    preset_config = dict(PRESETS[args.preset])
    print(f"\nUsing preset: '{args.preset}'")
    print(f"Description: {preset_config.pop('description')}")

    scenario = dict(preset_config, num_runs=args.num_runs, seed=args.seed)
    if args.config:
        try:
            scenario.update(load_config(args.config))
        except (OSError, ValueError, yaml.YAMLError) as e:
            parser.error(str(e))

    overrides = {
        "geometry": args.geometry,
        "range_noise_std": args.range_noise,
        "outlier_ratio": args.outlier_ratio,
        "outlier_magnitude": args.outlier_magnitude,
        "anchor_noise_std": args.anchor_noise,
        "loss_scale": args.loss_scale,
    }
    scenario.update({key: value for key, value in overrides.items() if value is not None})

    if scenario["num_runs"] < 1:
        parser.error("--num-runs must be positive")
    if scenario["geometry"] not in GEOMETRIES:
        parser.error(f"geometry must be one of {GEOMETRIES}")

    run_comparison(output_dir=args.output, plot=args.plot, **scenario)


if __name__ == "__main__":
    main()
