"""
Throughput statistics.
Running mean and standard deviation of GFLOPS samples with a warm-up window.
"""

import math
from typing import Optional

import numpy as np

from config import WARMUP_SAMPLES


class ThroughputStats:
    """
    Streaming accumulator of per-step GFLOPS samples.

    Every reported step calls offer(). The first `warmup` offers are counted
    but discarded (cold caches, thread-pool start-up); the rest go into the
    running sum and sum of squares.
    """

    def __init__(self, warmup: int = WARMUP_SAMPLES):
        self.warmup = warmup
        self.offered = 0
        self.count = 0
        self.total = 0.0
        self.total_sq = 0.0
        self.samples: list[float] = []

    def offer(self, value: float) -> bool:
        """
        Offer one sample.

        Returns:
            True if the sample was accepted into the statistics
        """
        self.offered += 1
        if self.offered <= self.warmup:
            return False

        self.count += 1
        self.total += value
        self.total_sq += value * value
        self.samples.append(value)
        return True

    @property
    def mean(self) -> float:
        if self.count == 0:
            return 0.0
        return self.total / self.count

    @property
    def std(self) -> float:
        """Population standard deviation, 0.0 with no accepted samples."""
        if self.count == 0:
            return 0.0
        mean = self.mean
        variance = self.total_sq / self.count - mean * mean
        # Rounding can leave a tiny negative variance for identical samples
        return math.sqrt(max(variance, 0.0))

    def confidence_interval(self, level: float = 0.95) -> Optional[tuple[float, float]]:
        """
        Student-t confidence interval of the mean.

        Returns:
            (low, high), or None with fewer than 2 accepted samples
        """
        if self.count < 2:
            return None

        from scipy import stats

        values = np.array(self.samples)
        std = np.std(values, ddof=1)  # Sample std
        t_critical = stats.t.ppf(0.5 + level / 2, df=self.count - 1)
        margin = t_critical * std / np.sqrt(self.count)
        mean = float(np.mean(values))
        return mean - float(margin), mean + float(margin)
