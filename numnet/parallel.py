"""Fork-join harness for embarrassingly parallel loops.

A call splits ``range(count)`` into contiguous partitions, one per worker,
and blocks until all of them join. Each partition owns a disjoint set of
indices, so no locking is needed. If any unit fails the whole call raises
a single :class:`ParallelExecutionError` and nothing computed by the call
is handed back to the caller.
"""
import logging
import typing as t
from concurrent.futures import ThreadPoolExecutor, as_completed

import numpy as np

from . import config
from .exceptions import ParallelExecutionError


logger = logging.getLogger(__name__)

T = t.TypeVar("T")


def split_range(count: int, num_partitions: int) -> t.List[range]:
    """Split ``range(count)`` into at most ``num_partitions`` contiguous ranges."""
    assert int(count) >= 0
    assert int(num_partitions) > 0

    num_partitions = min(int(num_partitions), int(count))

    if num_partitions == 0:
        return []

    bounds = np.linspace(0, count, num_partitions + 1).astype(int)

    return [range(start, end) for start, end in zip(bounds[:-1], bounds[1:]) if end > start]


class ParallelExecutor:
    def __init__(self, max_workers: t.Optional[int] = None):
        self.max_workers = config.get_settings().resolve_workers(max_workers)

        if self.max_workers <= 0:
            raise ValueError(
                "'max_workers' must be positive (got {}).".format(self.max_workers)
            )

    @staticmethod
    def _run_partition(fn, indices: range):
        results = []

        for i in indices:
            try:
                results.append(fn(i))

            except Exception as err:
                return results, (i, err)

        return results, None

    def map(self, fn: t.Callable[[int], T], count: int) -> t.List[T]:
        """Evaluate ``fn(i)`` for every ``i`` in ``range(count)``.

        Returns
        -------
        list
            Results ordered by index.

        Raises
        ------
        ParallelExecutionError
            If any call to ``fn`` raised.
        """
        partitions = split_range(count, self.max_workers)

        if len(partitions) <= 1:
            outputs = [self._run_partition(fn, part) for part in partitions]

        else:
            outputs = [None] * len(partitions)

            with ThreadPoolExecutor(max_workers=len(partitions)) as executor:
                futures = {
                    executor.submit(self._run_partition, fn, part): k
                    for k, part in enumerate(partitions)
                }

                for future in as_completed(futures):
                    outputs[futures[future]] = future.result()

        errors = [err for _, err in outputs if err is not None]

        if errors:
            logger.debug(
                "Parallel loop over %d unit(s) failed in %d partition(s).",
                count,
                len(errors),
            )
            raise ParallelExecutionError(errors)

        results = []

        for part_results, _ in outputs:
            results.extend(part_results)

        return results

    def fill(self, out: np.ndarray, fn: t.Callable[[int], t.Any]) -> np.ndarray:
        """Write ``fn(i)`` into ``out[i]`` for every leading index of ``out``.

        Every unit writes into a private staging buffer; ``out`` is only
        touched after all partitions joined successfully.
        """
        staging = np.empty_like(out)

        def unit(i):
            staging[i] = fn(i)

        self.map(unit, out.shape[0])
        np.copyto(out, staging)

        return out

    def __repr__(self):
        return "ParallelExecutor(max_workers={})".format(self.max_workers)


def parallel_for(
    count: int,
    fn: t.Callable[[int], T],
    executor: t.Optional[ParallelExecutor] = None,
) -> t.List[T]:
    if executor is None:
        executor = ParallelExecutor()

    return executor.map(fn, count)
