"""
Visualization Utilities for multilateration.

This module provides plotting functions for anchor geometry and for the
error distributions of Monte-Carlo runs.

All functions return matplotlib Figure objects for flexible display/saving.
"""

from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np

COLORS = ["blue", "red", "green", "orange", "purple", "brown", "gray"]


def _error_magnitudes(errors: np.ndarray) -> np.ndarray:
    errors = np.asarray(errors)
    if errors.ndim > 1:
        return np.linalg.norm(errors, axis=1)
    return np.abs(errors)


def plot_anchor_geometry_3d(
    anchors: np.ndarray,
    true_position: Optional[np.ndarray] = None,
    estimates: Optional[np.ndarray] = None,
    title: str = "Anchor Geometry",
) -> plt.Figure:
    """
    Plot anchors, the true position and an optional cloud of estimates in 3D.

    Args:
        anchors: Anchor positions, shape (N, 3)
        true_position: True position, shape (3,) (optional)
        estimates: Estimated positions, shape (M, 3) (optional)
        title: Plot title

    Returns:
        fig: Matplotlib figure
    """
    anchors = np.asarray(anchors, dtype=float)

    fig = plt.figure(figsize=(10, 8))
    ax = fig.add_subplot(111, projection="3d")

    ax.scatter(
        anchors[:, 0],
        anchors[:, 1],
        anchors[:, 2],
        marker="s",
        color="blue",
        s=80,
        label="Anchors",
    )
    for i, anchor in enumerate(anchors):
        ax.text(anchor[0], anchor[1], anchor[2] + 0.3, f"A{i}", color="blue")

    if estimates is not None:
        estimates = np.asarray(estimates, dtype=float)
        ax.scatter(
            estimates[:, 0],
            estimates[:, 1],
            estimates[:, 2],
            color="gray",
            s=4,
            alpha=0.4,
            label="Estimates",
        )

    if true_position is not None:
        true_position = np.asarray(true_position, dtype=float)
        ax.scatter(
            [true_position[0]],
            [true_position[1]],
            [true_position[2]],
            marker="*",
            color="red",
            s=200,
            label="True Position",
        )

    ax.set_xlabel("X (m)", fontsize=12)
    ax.set_ylabel("Y (m)", fontsize=12)
    ax.set_zlabel("Z (m)", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.legend(fontsize=10)

    plt.tight_layout()
    return fig


def plot_error_hist(
    errors_dict: Dict[str, np.ndarray],
    bins: int = 30,
    title: str = "Error Distribution",
) -> plt.Figure:
    """
    Plot histogram of position error magnitudes.

    Args:
        errors_dict: Dictionary of error arrays {method: errors}
        bins: Number of histogram bins
        title: Plot title

    Returns:
        fig: Matplotlib figure
    """
    fig, ax = plt.subplots(figsize=(10, 6))

    for i, (name, errors) in enumerate(errors_dict.items()):
        ax.hist(
            _error_magnitudes(errors),
            bins=bins,
            alpha=0.6,
            label=name,
            color=COLORS[i % len(COLORS)],
            edgecolor="black",
        )

    ax.set_xlabel("Position Error (m)", fontsize=12)
    ax.set_ylabel("Frequency", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3, axis="y")

    plt.tight_layout()
    return fig


def plot_error_cdf(
    errors_dict: Dict[str, np.ndarray], title: str = "Error CDF"
) -> plt.Figure:
    """
    Plot the empirical CDF of position error magnitudes, one curve per method.
    """
    fig, ax = plt.subplots(figsize=(10, 6))

    linestyles = ["-", "--", "-.", ":"]

    for i, (name, errors) in enumerate(errors_dict.items()):
        sorted_errors = np.sort(_error_magnitudes(errors))
        cdf = np.arange(1, len(sorted_errors) + 1) / len(sorted_errors)

        ax.plot(
            sorted_errors,
            cdf,
            label=name,
            color=COLORS[i % len(COLORS)],
            linestyle=linestyles[i % len(linestyles)],
            linewidth=2,
        )

    ax.set_xscale("log")
    ax.set_xlabel("Position Error (m)", fontsize=12)
    ax.set_ylabel("CDF", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3, which="both")
    ax.set_ylim([0, 1.05])

    plt.tight_layout()
    return fig


def save_figure(
    fig: plt.Figure,
    out_dir: Union[str, Path],
    name: str,
    formats: Tuple[str, ...] = ("png", "svg"),
) -> List[Path]:
    """
    Save figure in multiple formats.

    Args:
        fig: Matplotlib figure to save
        out_dir: Output directory (created if missing)
        name: Base filename (without extension)
        formats: Tuple of format extensions

    Returns:
        paths: List of saved file paths
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    paths = []
    for fmt in formats:
        filepath = out_dir / f"{name}.{fmt}"
        fig.savefig(filepath, dpi=150, bbox_inches="tight")
        paths.append(filepath)

    return paths
