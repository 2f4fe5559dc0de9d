"""
N-body gravity benchmark loop.

Drives S steps of the two-phase kernel, drains the telemetry channel after
every step, tracks the worst-case acceleration and feeds throughput samples
into the statistics accumulator.

    Init -> (ForceStep -> IntegrateStep -> DrainTelemetry -> MaybeSample) x S -> Finalize
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from config import SimulationConfig, flops_per_step
from dispatch import KernelQueue
from kernels import StepKernel
from particles import ParticleStore
from reporting import LOGGER_NAME, format_row, print_header, print_summary
from telemetry import ExtremumTracker, TelemetryChannel, TelemetryError
from throughput import ThroughputStats

logger = logging.getLogger(LOGGER_NAME)


@dataclass
class StepRecord:
    """What one step produced."""
    step: int
    sim_time: float
    kinetic_energy: float
    elapsed: float
    gflops: float
    sampled: bool
    peak_telemetry: float


@dataclass
class SimulationState:
    """Everything the loop owns for the duration of a run."""
    particles: ParticleStore
    kinetic_energy: float = 0.0
    total_time: float = 0.0
    total_flops: float = 0.0
    extrema: ExtremumTracker = field(default_factory=ExtremumTracker)
    history: list[StepRecord] = field(default_factory=list)


@dataclass
class RunSummary:
    """Final report of a run."""
    n_particles: int
    n_steps: int
    total_time: float
    total_flops: float
    mean_gflops: float
    std_gflops: float
    n_samples: int
    confidence_interval: Optional[tuple[float, float]]
    max_acceleration: float
    history: list[StepRecord]


def write_telemetry_file(path: str, value: float):
    """Two identical lines with the worst-case acceleration magnitude."""
    path = Path(path)
    if path.parent != Path("."):
        path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"{value:g}\n{value:g}\n")


class GravitySimulation:
    """
    Direct-summation gravity benchmark.

    The particle store belongs to the simulation for the whole run. The
    kernel queue and telemetry channel are created when the run starts and
    torn down when it ends.

    Usage:
        sim = GravitySimulation(SimulationConfig(n_particles=1000, n_steps=10))
        summary = sim.run()
    """

    def __init__(
        self,
        config: SimulationConfig,
        particles: ParticleStore = None,
        report: bool = True
    ):
        self.config = config.validate()
        self.device = config.resolve_device()
        self.report = report

        if particles is None:
            particles = ParticleStore(
                config.n_particles,
                seed=config.seed,
                dtype=config.dtype,
                device=self.device
            ).initialize(config.input_file)
        elif particles.n != config.n_particles:
            raise ValueError(
                f"particle store holds {particles.n} particles, config says {config.n_particles}"
            )

        self.state = SimulationState(particles=particles)
        self.stats = ThroughputStats()
        self.flops_per_step = flops_per_step(config.n_particles)

        self.queue: Optional[KernelQueue] = None
        self.channel: Optional[TelemetryChannel] = None
        self.kernel: Optional[StepKernel] = None

        self.tick = 0

    @property
    def particles(self) -> ParticleStore:
        return self.state.particles

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    def open(self):
        if self.kernel is not None:
            return
        self.queue = KernelQueue(self.config.num_workers, self.config.work_group_size)
        self.channel = TelemetryChannel(self.config.capacity)
        self.kernel = StepKernel(
            self.particles, self.queue, self.channel,
            self.config.dt, self.config.policy
        )

    def close(self, check: bool = True):
        """Destroy the channel and the queue."""
        if self.kernel is None:
            return
        channel, queue = self.channel, self.queue
        self.kernel = self.channel = self.queue = None
        try:
            if check:
                channel.close()
        finally:
            queue.shutdown()

    def __enter__(self) -> "GravitySimulation":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close(check=exc_type is None)
        return False

    # -------------------------------------------------------------------------
    # One step
    # -------------------------------------------------------------------------

    def step(self) -> StepRecord:
        """
        Perform one step: Phase A, Phase B, drain telemetry, maybe sample.
        """
        self.open()
        n = self.config.n_particles

        ts0 = time.perf_counter()
        self.kernel.force_step()
        self.kernel.integrate_step()
        kinetic_energy = self.kernel.kinetic_energy()
        elapsed = time.perf_counter() - ts0

        self.tick += 1
        self.state.kinetic_energy = kinetic_energy
        self.state.total_time += elapsed
        self.state.total_flops += self.flops_per_step

        peak = self._drain_telemetry(n)

        gflops = self.flops_per_step / max(elapsed, 1e-12)
        sampled = self.tick % self.config.sample_freq == 0
        if sampled:
            if self.report:
                logger.info(format_row(
                    self.tick, self.tick * self.config.dt,
                    kinetic_energy, elapsed, gflops
                ))
            self.stats.offer(gflops)

        record = StepRecord(
            step=self.tick,
            sim_time=self.tick * self.config.dt,
            kinetic_energy=kinetic_energy,
            elapsed=elapsed,
            gflops=gflops,
            sampled=sampled,
            peak_telemetry=peak,
        )
        self.state.history.append(record)
        return record

    def _drain_telemetry(self, n: int) -> float:
        """Read one step of telemetry and fold the step into the extrema."""
        items = self.channel.drain(n)

        invalid = sum(1 for _, flag in items if not flag)
        if invalid:
            raise TelemetryError(f"{invalid} telemetry items carried an invalid flag")

        extrema = self.state.extrema
        extrema.update(self.particles.acc)
        extrema.promote()

        logger.debug(
            f"step {self.tick}: drained {len(items)} items, "
            f"running max |a| = {extrema.max:g}"
        )
        return max((value for value, _ in items), default=0.0)

    # -------------------------------------------------------------------------
    # Full run
    # -------------------------------------------------------------------------

    def run(self, callback: Callable = None, callback_interval: int = 1) -> RunSummary:
        """
        Run all configured steps and finalize.

        Args:
            callback: Optional function called at intervals with (sim, record)
            callback_interval: How often to call the callback

        Returns:
            RunSummary of the whole run
        """
        cfg = self.config
        if self.report:
            print_header(cfg.n_particles, cfg.n_steps, cfg.dt)

        t0 = time.perf_counter()
        with self:
            for _ in range(cfg.n_steps):
                record = self.step()
                if callback and record.step % callback_interval == 0:
                    callback(self, record)
        total_time = time.perf_counter() - t0

        return self.finalize(total_time)

    def finalize(self, total_time: float) -> RunSummary:
        cfg = self.config
        summary = RunSummary(
            n_particles=cfg.n_particles,
            n_steps=self.tick,
            total_time=total_time,
            total_flops=self.flops_per_step * self.tick,
            mean_gflops=self.stats.mean,
            std_gflops=self.stats.std,
            n_samples=self.stats.count,
            confidence_interval=self.stats.confidence_interval(),
            max_acceleration=self.state.extrema.max,
            history=list(self.state.history),
        )

        if self.report:
            print_summary(summary)

        if cfg.output_file:
            write_telemetry_file(cfg.output_file, summary.max_acceleration)
            logger.info(f"Telemetry written to {cfg.output_file}")

        return summary

