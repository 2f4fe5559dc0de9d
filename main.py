"""
Gravity Simulation Benchmark - Main Entry Point

Direct-summation N-body benchmark: runs a fixed number of steps and reports
kinetic energy, per-step time and achieved GFLOPS.

Usage:
    python main.py --particles 16000 --steps 10
    python main.py -n 2000 -s 20 --policy skip --plot history.png
"""

import argparse
import logging
import sys

from config import (
    DEFAULT_OUTPUT_FILE, PRECISIONS, ConfigurationError, SimulationConfig,
    describe_policy, get_policy_from_string
)
from dispatch import ComputeError
from reporting import setup_logging
from reproducibility import create_manifest, hash_particle_state, save_manifest, set_all_seeds
from simulation import GravitySimulation
from visualization import plot_run_history


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Gravity Simulation: direct-summation N-body benchmark",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --particles 16000 --steps 10
  python main.py -n 2000 -s 20 --sample-freq 2 --input positions.txt
  python main.py -n 500 --policy skip --precision float64

Degeneracy policies:
  reset  - zero displacement on an axis resets that axis' sum (default)
  skip   - zero displacement on an axis adds nothing
        """
    )

    parser.add_argument(
        "--particles", "-n",
        type=int,
        default=16000,
        help="Number of particles (default: 16000)"
    )

    parser.add_argument(
        "--steps", "-s",
        type=int,
        default=10,
        help="Number of integration steps (default: 10)"
    )

    parser.add_argument(
        "--dt",
        type=float,
        default=0.1,
        help="Time step (default: 0.1)"
    )

    parser.add_argument(
        "--sample-freq", "-f",
        type=int,
        default=1,
        help="Report and sample every N-th step (default: 1)"
    )

    parser.add_argument(
        "--input", "-i",
        type=str,
        default=None,
        help="Optional file of whitespace-separated initial positions"
    )

    parser.add_argument(
        "--output", "-o",
        type=str,
        default=DEFAULT_OUTPUT_FILE,
        help=f"Telemetry output file (default: {DEFAULT_OUTPUT_FILE})"
    )

    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed for initial conditions (default: 42)"
    )

    parser.add_argument(
        "--work-group-size",
        type=int,
        default=128,
        help="Particles per parallel work-group (default: 128)"
    )

    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker threads (default: min(4, cpu count))"
    )

    parser.add_argument(
        "--policy",
        type=str,
        default="reset",
        help="Zero-displacement policy: reset or skip (default: reset)"
    )

    parser.add_argument(
        "--precision",
        type=str,
        choices=sorted(PRECISIONS),
        default="float32",
        help="Particle state precision (default: float32)"
    )

    parser.add_argument(
        "--device",
        type=str,
        default=None,
        help="Torch device (default: cuda if available, else cpu)"
    )

    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Also write the log to this file"
    )

    parser.add_argument(
        "--manifest",
        type=str,
        default=None,
        help="Write a JSON reproducibility manifest to this path"
    )

    parser.add_argument(
        "--plot",
        type=str,
        default=None,
        help="Save a PNG of energy/throughput per step to this path"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only log warnings and errors"
    )

    return parser, parser.parse_args(argv)


def build_config(args) -> SimulationConfig:
    config = SimulationConfig(
        n_particles=args.particles,
        n_steps=args.steps,
        dt=args.dt,
        sample_freq=args.sample_freq,
        seed=args.seed,
        work_group_size=args.work_group_size,
        policy=get_policy_from_string(args.policy),
        precision=args.precision,
        device=args.device,
        input_file=args.input,
        output_file=args.output,
    )
    if args.workers is not None:
        config.num_workers = args.workers
    return config.validate()


def main(argv=None) -> int:
    parser, args = parse_args(argv)

    logger = setup_logging(args.log_file, logging.WARNING if args.quiet else logging.INFO)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        parser.error(str(e))

    set_all_seeds(config.seed)

    device = config.resolve_device()
    logger.info(f"Device: {device}")
    logger.info(f"Policy: {config.policy.value} - {describe_policy(config.policy)}")

    sim = GravitySimulation(config)
    initial_hash = hash_particle_state(sim.particles)

    try:
        summary = sim.run()
    except ComputeError as e:
        logger.error(f"Run aborted: {e}")
        return 1

    if args.manifest:
        manifest = create_manifest(
            config,
            initial_hash,
            final_hash=hash_particle_state(sim.particles),
            summary=summary,
            device=device
        )
        save_manifest(manifest, args.manifest)
        logger.info(f"Manifest written to {args.manifest}")

    if args.plot:
        plot_run_history(summary.history, save_path=args.plot)

    return 0


if __name__ == "__main__":
    sys.exit(main())
