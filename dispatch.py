"""
Data-parallel kernel dispatch.

A KernelQueue runs a kernel over N work-items split into work-group blocks on
a thread pool, then waits for every block (full barrier) before returning.
Torch releases the GIL inside its ops, so blocks really do overlap.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable

from reporting import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)


class ComputeError(RuntimeError):
    """Fatal failure while dispatching or synchronising a kernel."""


def work_groups(n: int, group_size: int) -> list[tuple[int, int]]:
    """Split range(n) into [start, stop) blocks of at most group_size."""
    return [(start, min(start + group_size, n)) for start in range(0, n, group_size)]


class KernelQueue:
    """
    Single in-order queue of data-parallel kernels.

    Usage:
        with KernelQueue(num_workers=4, work_group_size=128) as q:
            q.parallel_for(n, kernel, arg1, arg2)   # kernel(start, stop, arg1, arg2)
    """

    def __init__(self, num_workers: int = 4, work_group_size: int = 128):
        self.num_workers = num_workers
        self.work_group_size = work_group_size
        self.executor = ThreadPoolExecutor(
            max_workers=num_workers, thread_name_prefix="kernel"
        )

    def parallel_for(self, n: int, kernel: Callable, *args) -> list:
        """
        Run kernel(start, stop, *args) for every work-group of range(n) and
        block until all of them are done.

        Returns:
            Per-block return values, in block order

        Raises:
            ComputeError: if any block failed (raised after the barrier)
        """
        name = getattr(kernel, "__name__", repr(kernel))
        try:
            futures = [
                self.executor.submit(kernel, start, stop, *args)
                for start, stop in work_groups(n, self.work_group_size)
            ]
        except RuntimeError as e:
            raise ComputeError(f"failed to submit {name}: {e}") from e

        # Barrier: every block finishes before anyone looks at results
        wait(futures)

        results = []
        for future in futures:
            error = future.exception()
            if error is not None:
                if isinstance(error, ComputeError):
                    raise error
                raise ComputeError(f"{name} failed: {error}") from error
            results.append(future.result())

        logger.debug(f"{name}: {len(futures)} work-groups done")
        return results

    def shutdown(self):
        """Cleanup executor."""
        self.executor.shutdown(wait=True)

    def __enter__(self) -> "KernelQueue":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
        return False
