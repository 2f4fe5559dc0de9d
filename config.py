"""
Configuration module.
Run parameters, physical constants and the degenerate-axis policy.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import torch


# =============================================================================
# PHYSICAL / BENCHMARK CONSTANTS
# =============================================================================

G = 6.67259e-11              # Gravitational constant
SOFTENING_SQUARED = 1e-14    # Added to r^2 so close pairs don't blow up
WARMUP_SAMPLES = 2           # Reported samples discarded before statistics
DEFAULT_OUTPUT_FILE = "exec_fpga_info.txt"

PRECISIONS = {
    "float32": torch.float32,
    "float64": torch.float64,
}


class ConfigurationError(ValueError):
    """Raised when a run is configured with invalid parameters."""


class DegeneracyPolicy(Enum):
    """What to do when a pair has exactly zero displacement on one axis."""
    RESET = "reset"   # Zero the axis accumulator (default)
    SKIP = "skip"     # Leave the accumulator alone


def get_policy_from_string(s: str) -> DegeneracyPolicy:
    """Convert string to DegeneracyPolicy."""
    mapping = {
        "reset": DegeneracyPolicy.RESET,
        "literal": DegeneracyPolicy.RESET,
        "skip": DegeneracyPolicy.SKIP,
    }
    key = s.lower().strip()
    if key not in mapping:
        raise ConfigurationError(
            f"Unknown degeneracy policy: {s}. Choose from: {sorted(mapping)}"
        )
    return mapping[key]


def describe_policy(policy: DegeneracyPolicy) -> str:
    """Get human-readable description of a degeneracy policy."""
    descriptions = {
        DegeneracyPolicy.RESET: "Zero-displacement axis resets the accumulated acceleration",
        DegeneracyPolicy.SKIP: "Zero-displacement axis contributes nothing, prior sum kept",
    }
    return descriptions.get(policy, "Unknown policy")


def flops_per_step(n_particles: int) -> float:
    """
    Analytical GFLOP count for one step.

    29 flops per pair in the force loop plus 19 per particle for the
    velocity/position/energy updates.
    """
    n = float(n_particles)
    return 1e-9 * ((11.0 + 18.0) * n * n + n * 19.0)


def _default_workers() -> int:
    return max(1, min(4, os.cpu_count() or 1))


@dataclass
class SimulationConfig:
    """Parameters of one benchmark run."""
    n_particles: int = 16000
    n_steps: int = 10
    dt: float = 0.1
    sample_freq: int = 1
    seed: int = 42
    work_group_size: int = 128
    num_workers: int = field(default_factory=_default_workers)
    policy: DegeneracyPolicy = DegeneracyPolicy.RESET
    precision: str = "float32"
    device: Optional[str] = None
    input_file: Optional[str] = None
    output_file: Optional[str] = DEFAULT_OUTPUT_FILE
    channel_capacity: Optional[int] = None

    def validate(self) -> "SimulationConfig":
        """
        Reject unusable parameters before a run starts.

        Returns:
            self, so calls can be chained

        Raises:
            ConfigurationError: on the first invalid field
        """
        positive = {
            "n_particles": self.n_particles,
            "n_steps": self.n_steps,
            "sample_freq": self.sample_freq,
            "work_group_size": self.work_group_size,
            "num_workers": self.num_workers,
        }
        for name, value in positive.items():
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")

        if not (self.dt > 0):
            raise ConfigurationError(f"dt must be positive, got {self.dt!r}")

        if self.precision not in PRECISIONS:
            raise ConfigurationError(
                f"Unknown precision: {self.precision}. Choose from: {sorted(PRECISIONS)}"
            )

        if not isinstance(self.policy, DegeneracyPolicy):
            raise ConfigurationError(f"policy must be a DegeneracyPolicy, got {self.policy!r}")

        if self.device:
            try:
                device = torch.device(self.device)
            except RuntimeError as e:
                raise ConfigurationError(f"Unknown device: {self.device!r}") from e
            if device.type == "cuda" and not torch.cuda.is_available():
                raise ConfigurationError(f"Device {self.device!r} requested but CUDA is not available")

        if self.channel_capacity is not None and self.channel_capacity < self.n_particles:
            raise ConfigurationError(
                f"channel_capacity ({self.channel_capacity}) must hold one step of "
                f"telemetry ({self.n_particles} items)"
            )

        return self

    @property
    def dtype(self) -> torch.dtype:
        return PRECISIONS[self.precision]

    @property
    def capacity(self) -> int:
        """Telemetry channel capacity (one step's worth unless overridden)."""
        return self.channel_capacity or self.n_particles

    def resolve_device(self) -> torch.device:
        if self.device:
            return torch.device(self.device)
        return torch.device("cuda" if torch.cuda.is_available() else "cpu")
