"""
Step kernels.

Phase A: pairwise gravity -> acceleration, velocity kick, telemetry.
Phase B: position drift and kinetic energy reduction.

Each kernel works on one work-group block [start, stop) of particles and is
dispatched over all blocks by a KernelQueue. Blocks only write their own rows.
"""

import threading

import torch

from config import G, SOFTENING_SQUARED, DegeneracyPolicy
from dispatch import KernelQueue
from particles import ParticleStore
from telemetry import TelemetryChannel

# Sources per vectorised chunk in Phase A
SOURCE_CHUNK_SIZE = 1024


class EnergyAccumulator:
    """Shared many-to-one sum for Phase B. Lock-protected, no lost updates."""

    def __init__(self):
        self._value = 0.0
        self._lock = threading.Lock()

    def add(self, amount: float):
        with self._lock:
            self._value += amount

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def reset(self):
        with self._lock:
            self._value = 0.0


def segmented_cumsum(values: torch.Tensor, starts: torch.Tensor):
    """
    Inclusive cumulative sum along dim 1 that restarts wherever starts is True.

    Hillis-Steele scan: each position only ever adds terms of its own segment,
    so a large term before a restart cannot cancel terms after it.

    Returns:
        (sums, seen): seen marks positions with a restart at or before them
    """
    sums = values.clone()
    seen = starts.clone()
    length = values.shape[1]
    k = 1
    while k < length:
        sums[:, k:] = torch.where(seen[:, k:], sums[:, k:], sums[:, k:] + sums[:, :-k])
        seen[:, k:] = seen[:, k:] | seen[:, :-k]
        k *= 2
    return sums, seen


def accumulate_accelerations(
    pos_i: torch.Tensor,
    pos: torch.Tensor,
    mass: torch.Tensor,
    policy: DegeneracyPolicy = DegeneracyPolicy.RESET,
    chunk_size: int = SOURCE_CHUNK_SIZE
):
    """
    Acceleration of rows i, plus the extremes their accumulators reach.

    Equivalent to the sequential loop

        for j in range(N):
            d = pos[j] - pos[i]
            inv = 1 / sqrt(|d|^2 + eps)
            acc[axis] = 0 if d[axis] == 0 and RESET else acc[axis] + d[axis] * G * m[j] * inv^3
            acc_max, acc_min = max(acc_max, *acc), min(acc_min, *acc)

    with sources j taken chunk_size at a time. Scratch memory is
    O(B * chunk_size); the accumulators and extremes carry across chunks.

    Args:
        pos_i: (B, 3) positions of the particles being updated
        pos: (N, 3) positions of all particles
        mass: (N,) masses
        policy: Degenerate-axis policy
        chunk_size: Sources per vectorised chunk

    Returns:
        (acc, acc_max, acc_min): (B, 3), (B,), (B,) float64 tensors
    """
    b = pos_i.shape[0]
    acc = torch.zeros(b, 3, dtype=torch.float64, device=pos.device)
    acc_max = torch.zeros(b, dtype=torch.float64, device=pos.device)
    acc_min = torch.zeros(b, dtype=torch.float64, device=pos.device)

    for start in range(0, pos.shape[0], chunk_size):
        stop = min(start + chunk_size, pos.shape[0])

        # diff[b, j] = pos[j] - pos[i_b]
        diff = pos[start:stop].unsqueeze(0) - pos_i.unsqueeze(1)  # (B, C, 3)
        dist_sq = (diff ** 2).sum(dim=-1) + SOFTENING_SQUARED  # (B, C)
        dist_inv = torch.rsqrt(dist_sq)
        strength = G * mass[start:stop].unsqueeze(0) * dist_inv * dist_inv * dist_inv
        contrib = (diff * strength.unsqueeze(-1)).double()

        if policy is DegeneracyPolicy.RESET:
            sums, seen = segmented_cumsum(contrib, diff == 0)
            running = torch.where(seen, sums, acc.unsqueeze(1) + sums)
        else:
            running = acc.unsqueeze(1) + torch.cumsum(contrib, dim=1)

        acc = running[:, -1, :]
        acc_max = torch.maximum(acc_max, running.amax(dim=(1, 2)))
        acc_min = torch.minimum(acc_min, running.amin(dim=(1, 2)))

    return acc, acc_max, acc_min


def compute_accelerations_block(
    start: int,
    stop: int,
    store: ParticleStore,
    dt: float,
    policy: DegeneracyPolicy,
    channel: TelemetryChannel
):
    """
    Phase A for particles [start, stop).

    Writes acc, kicks vel by acc * dt and emits one telemetry value per
    particle: the largest magnitude any acceleration accumulator reached.
    """
    acc, acc_max, acc_min = accumulate_accelerations(
        store.pos[start:stop], store.pos, store.mass, policy
    )
    acc = acc.to(store.dtype)
    telemetry = torch.maximum(acc_max, -acc_min)

    store.acc[start:stop] = acc
    store.vel[start:stop] += acc * dt

    channel.write_many(telemetry, flag=True)


def integrate_block(
    start: int,
    stop: int,
    store: ParticleStore,
    dt: float,
    energy: EnergyAccumulator
):
    """Phase B for particles [start, stop): drift positions, add m*v^2."""
    vel = store.vel[start:stop]
    store.pos[start:stop] += vel * dt

    v_sq = (vel.double() ** 2).sum(dim=-1)
    energy.add((store.mass[start:stop].double() * v_sq).sum().item())


class StepKernel:
    """
    Two-phase step over a particle store.

    force_step() must complete for every particle before integrate_step()
    starts; KernelQueue.parallel_for blocks until all work-groups finish, so
    calling them in order is enough.
    """

    def __init__(
        self,
        store: ParticleStore,
        queue: KernelQueue,
        channel: TelemetryChannel,
        dt: float,
        policy: DegeneracyPolicy = DegeneracyPolicy.RESET
    ):
        self.store = store
        self.queue = queue
        self.channel = channel
        self.dt = dt
        self.policy = policy
        self.energy = EnergyAccumulator()

    def force_step(self):
        self.queue.parallel_for(
            self.store.n, compute_accelerations_block,
            self.store, self.dt, self.policy, self.channel
        )

    def integrate_step(self) -> float:
        """Run Phase B and return the accumulated sum of m * v^2."""
        self.queue.parallel_for(
            self.store.n, integrate_block,
            self.store, self.dt, self.energy
        )
        return self.energy.value

    def kinetic_energy(self) -> float:
        """0.5 * sum(m v^2) for the step just integrated, then reset."""
        ke = 0.5 * self.energy.value
        self.energy.reset()
        return ke
