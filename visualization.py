"""
Visualization module.
Plots the per-step history of a benchmark run.
"""

import logging

import matplotlib.pyplot as plt
import numpy as np

from reporting import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)


def plot_run_history(
    history: list,
    save_path: str = None,
    title: str = "Gravity Benchmark: Energy and Throughput"
):
    """
    Plot kinetic energy and achieved GFLOPS per step.

    Args:
        history: List of StepRecord from a run
        save_path: Optional path to save figure
        title: Plot title
    """
    steps = np.array([r.step for r in history])
    energy = np.array([r.kinetic_energy for r in history])
    gflops = np.array([r.gflops for r in history])
    sampled = np.array([r.sampled for r in history], dtype=bool)

    fig, axes = plt.subplots(1, 2, figsize=(14, 5))

    # Left plot: kinetic energy
    ax1 = axes[0]
    ax1.plot(steps, energy, '-o', color='tab:blue', linewidth=2, markersize=4)
    ax1.set_xlabel("Step", fontsize=12)
    ax1.set_ylabel("Kinetic Energy", fontsize=12)
    ax1.set_title("Kinetic Energy Per Step", fontsize=12)
    ax1.grid(True, alpha=0.3)

    # Right plot: throughput, warm-up/unsampled steps greyed out
    ax2 = axes[1]
    ax2.plot(steps, gflops, '-', color='lightgray', linewidth=1)
    if sampled.any():
        ax2.plot(steps[sampled], gflops[sampled], 'o', color='tab:green', label="sampled")
        ax2.axhline(y=gflops[sampled].mean(), color='red', linestyle='--', alpha=0.5,
                    label="mean (sampled)")
        ax2.legend()
    ax2.set_xlabel("Step", fontsize=12)
    ax2.set_ylabel("GFLOPS", fontsize=12)
    ax2.set_title("Achieved Throughput", fontsize=12)
    ax2.grid(True, alpha=0.3)

    plt.suptitle(title, fontsize=14, y=1.02)
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Saved run history to {save_path}")

    return fig
