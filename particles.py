"""
Particle initialization module.
Owns the particle state tensors and their seeded initial conditions.
"""

import logging
from pathlib import Path
from typing import Optional

import torch

from reporting import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)


def read_seed_file(path: str, max_values: int) -> list[float]:
    """
    Read whitespace-separated floats from a seed file.

    Values are consumed greedily until the first token that is not a number
    or until max_values have been read. A missing or unreadable file is not
    an error: it just yields no values.

    Args:
        path: Seed file path
        max_values: Upper bound on values to read (3 per particle)

    Returns:
        List of parsed values, possibly empty
    """
    try:
        text = Path(path).read_text()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not open the input file {path}: {e}")
        return []

    values = []
    for token in text.split():
        if len(values) >= max_values:
            break
        try:
            values.append(float(token))
        except ValueError:
            logger.warning(f"Seed file {path}: stopped at non-numeric token {token!r}")
            break

    return values


class ParticleStore:
    """
    Struct-of-arrays particle state.

    pos, vel, acc are (N, 3) tensors and mass is (N,). Every initializer
    draws from its own torch.Generator seeded with the same fixed seed, so
    the values for particle i depend on how far the stream has advanced,
    not on i itself.
    """

    def __init__(
        self,
        n_particles: int,
        seed: int = 42,
        dtype: torch.dtype = torch.float32,
        device: torch.device = None
    ):
        self.n = n_particles
        self.seed = seed
        self.dtype = dtype
        self.device = device or torch.device("cpu")

        self.pos = torch.zeros((self.n, 3), dtype=dtype, device=self.device)
        self.vel = torch.zeros((self.n, 3), dtype=dtype, device=self.device)
        self.acc = torch.zeros((self.n, 3), dtype=dtype, device=self.device)
        self.mass = torch.zeros(self.n, dtype=dtype, device=self.device)

    def _generator(self) -> torch.Generator:
        # Draws happen on CPU so the stream is the same on every device
        return torch.Generator().manual_seed(self.seed)

    def _to_device(self, t: torch.Tensor) -> torch.Tensor:
        return t.to(dtype=self.dtype, device=self.device)

    def initialize_positions(self, source: Optional[str] = None):
        """
        Uniform [0, 1) positions, optionally overridden per axis from a file.

        Args:
            source: Optional seed file of whitespace-separated floats,
                read as x0 y0 z0 x1 y1 z1 ...
        """
        pos = torch.rand((self.n, 3), generator=self._generator(), dtype=torch.float64)

        if source is not None:
            values = read_seed_file(source, max_values=3 * self.n)
            if values:
                flat = pos.view(-1)
                flat[:len(values)] = torch.tensor(values, dtype=torch.float64)
                logger.debug(f"Seed file {source}: overrode {len(values)} coordinates")

        self.pos = self._to_device(pos)

    def initialize_velocities(self):
        """Uniform [-1, 1) velocities scaled by 1e-3."""
        unif = torch.rand((self.n, 3), generator=self._generator(), dtype=torch.float64)
        self.vel = self._to_device((unif * 2.0 - 1.0) * 1.0e-3)

    def initialize_accelerations(self):
        self.acc = torch.zeros((self.n, 3), dtype=self.dtype, device=self.device)

    def initialize_masses(self):
        """Uniform [0, 1) masses scaled by the particle count."""
        unif = torch.rand(self.n, generator=self._generator(), dtype=torch.float64)
        self.mass = self._to_device(unif * float(self.n))

    def initialize(self, source: Optional[str] = None) -> "ParticleStore":
        self.initialize_positions(source)
        self.initialize_velocities()
        self.initialize_accelerations()
        self.initialize_masses()
        return self

    @classmethod
    def from_arrays(
        cls,
        positions,
        velocities,
        masses,
        dtype: torch.dtype = torch.float32,
        device: torch.device = None
    ) -> "ParticleStore":
        """
        Build a store from explicit values instead of random draws.

        Args:
            positions: (N, 3) array-like
            velocities: (N, 3) array-like
            masses: (N,) array-like
        """
        pos = torch.as_tensor(positions, dtype=dtype)
        vel = torch.as_tensor(velocities, dtype=dtype)
        mass = torch.as_tensor(masses, dtype=dtype)

        if pos.dim() != 2 or pos.shape[1] != 3:
            raise ValueError(f"positions must be (N, 3), got {tuple(pos.shape)}")
        if vel.shape != pos.shape:
            raise ValueError(f"velocities must be {tuple(pos.shape)}, got {tuple(vel.shape)}")
        if mass.shape != (pos.shape[0],):
            raise ValueError(f"masses must be ({pos.shape[0]},), got {tuple(mass.shape)}")

        store = cls(pos.shape[0], dtype=dtype, device=device)
        store.pos = pos.to(store.device).clone()
        store.vel = vel.to(store.device).clone()
        store.mass = mass.to(store.device).clone()
        return store

    def clone(self) -> "ParticleStore":
        other = ParticleStore(self.n, seed=self.seed, dtype=self.dtype, device=self.device)
        other.pos = self.pos.clone()
        other.vel = self.vel.clone()
        other.acc = self.acc.clone()
        other.mass = self.mass.clone()
        return other

    def is_finite(self) -> bool:
        """True when no component of any particle is NaN/Inf."""
        return bool(
            torch.isfinite(self.pos).all()
            and torch.isfinite(self.vel).all()
            and torch.isfinite(self.acc).all()
            and torch.isfinite(self.mass).all()
        )
