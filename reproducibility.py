"""
REPRODUCIBILITY MANIFEST
========================

Captures software versions, seeds, run parameters and state hashes so a
benchmark result can be matched to the exact run that produced it.
"""

import hashlib
import json
import os
import platform
import sys
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import numpy as np
import torch

from config import SimulationConfig


@dataclass
class SoftwareManifest:
    """Captures software versions."""
    python_version: str
    pytorch_version: str
    numpy_version: str
    os_name: str
    os_version: str
    platform: str


@dataclass
class HardwareManifest:
    """Captures the compute device the run used."""
    device: str
    device_name: str
    cpu_cores: int
    num_threads: int


@dataclass
class RunManifest:
    """Complete reproducibility record of one run."""
    timestamp: str
    run_id: str
    software: SoftwareManifest
    hardware: HardwareManifest
    config: dict
    initial_state_hash: str  # SHA256 prefix of initial positions/velocities
    final_state_hash: str
    max_acceleration: Optional[float]
    mean_gflops: Optional[float]
    std_gflops: Optional[float]


def get_software_manifest() -> SoftwareManifest:
    """Collect software versions."""
    return SoftwareManifest(
        python_version=sys.version.split()[0],
        pytorch_version=torch.__version__,
        numpy_version=np.__version__,
        os_name=platform.system(),
        os_version=platform.release(),
        platform=platform.platform()
    )


def get_hardware_manifest(device: torch.device) -> HardwareManifest:
    if device.type == "cuda" and torch.cuda.is_available():
        device_name = torch.cuda.get_device_name(device)
    else:
        device_name = platform.processor() or "Unknown"

    return HardwareManifest(
        device=str(device),
        device_name=device_name,
        cpu_cores=os.cpu_count() or 0,
        num_threads=torch.get_num_threads(),
    )


def hash_tensor_state(positions: torch.Tensor, velocities: torch.Tensor) -> str:
    """Create SHA256 hash of simulation state for verification."""
    pos_bytes = positions.detach().cpu().contiguous().numpy().tobytes()
    vel_bytes = velocities.detach().cpu().contiguous().numpy().tobytes()
    combined = pos_bytes + vel_bytes
    return hashlib.sha256(combined).hexdigest()[:16]


def hash_particle_state(particles) -> str:
    return hash_tensor_state(particles.pos, particles.vel)


def set_all_seeds(seed: int):
    """Set all random seeds for reproducibility."""
    np.random.seed(seed)
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed(seed)
        torch.cuda.manual_seed_all(seed)
        # Ensure deterministic algorithms
        torch.backends.cudnn.deterministic = True
        torch.backends.cudnn.benchmark = False


def config_to_dict(config: SimulationConfig) -> dict:
    data = asdict(config)
    data["policy"] = config.policy.value
    return data


def create_manifest(
    config: SimulationConfig,
    initial_hash: str,
    final_hash: str = "N/A",
    summary=None,
    device: torch.device = None
) -> RunManifest:
    """Create complete reproducibility manifest."""
    device = device or config.resolve_device()
    run_id = (
        f"{config.policy.value}_{config.n_particles}_{config.seed}_"
        f"{datetime.now().strftime('%H%M%S')}"
    )

    return RunManifest(
        timestamp=datetime.now().isoformat(),
        run_id=run_id,
        software=get_software_manifest(),
        hardware=get_hardware_manifest(device),
        config=config_to_dict(config),
        initial_state_hash=initial_hash,
        final_state_hash=final_hash,
        max_acceleration=summary.max_acceleration if summary else None,
        mean_gflops=summary.mean_gflops if summary else None,
        std_gflops=summary.std_gflops if summary else None,
    )


def save_manifest(manifest: RunManifest, filepath: str):
    """Save manifest to JSON file."""
    path = Path(filepath)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(asdict(manifest), f, indent=2)
