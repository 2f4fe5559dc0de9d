"""
Console report and logging setup.

The report layout follows the classic gravity benchmark table:

     s       dt      kenergy     time (s)    GFLOPS
"""

import logging
from pathlib import Path

LOGGER_NAME = "GravitySim"

SEPARATOR = "------------------------------------------------"
BANNER = "==============================="


def setup_logging(log_file: str = None, level: int = logging.INFO) -> logging.Logger:
    """
    Setup logging for the simulation.
    Logs to both console and file.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()

    # Format
    formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(message)s',
        datefmt='%H:%M:%S'
    )

    # Console handler
    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    logger.addHandler(console)

    # File handler (if specified)
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode='w')
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        logger.addHandler(file_handler)
        logger.info(f"Logging to file: {log_file}")

    return logger


logger = logging.getLogger(LOGGER_NAME)


def format_header(n_particles: int, n_steps: int, dt: float) -> list[str]:
    """Header lines: configuration, then column titles."""
    columns = (
        f" {'s':<8}{'dt':<8}{'kenergy':<12}{'time (s)':<12}{'GFLOPS':<12}"
    )
    return [
        f" nPart = {n_particles}; nSteps = {n_steps}; dt = {dt}",
        SEPARATOR,
        columns.rstrip(),
        SEPARATOR,
    ]


def format_row(step: int, sim_time: float, kinetic_energy: float,
               elapsed: float, gflops: float) -> str:
    """One table row for a reported step."""
    return (
        f" {step:<8}{sim_time:<8.5g}{kinetic_energy:<12.5g}"
        f"{elapsed:<12.5g}{gflops:<12.5g}"
    ).rstrip()


def format_summary(total_time: float, mean: float, std: float) -> list[str]:
    return [
        "",
        f"# Total Time (s)     : {total_time:.6g}",
        f"# Average Performance : {mean:.6g} +- {std:.6g}",
        BANNER,
    ]


def print_header(n_particles: int, n_steps: int, dt: float):
    logger.info(BANNER)
    logger.info(" Initialize Gravity Simulation")
    for line in format_header(n_particles, n_steps, dt):
        logger.info(line)


def print_summary(summary):
    """Log the trailing summary of a RunSummary."""
    for line in format_summary(summary.total_time, summary.mean_gflops, summary.std_gflops):
        logger.info(line)

    if summary.confidence_interval is not None:
        low, high = summary.confidence_interval
        logger.info(
            f"# 95% CI (GFLOPS)     : [{low:.6g}, {high:.6g}] (n={summary.n_samples})"
        )
    logger.info(f"# Max |acceleration|  : {summary.max_acceleration:g}")
