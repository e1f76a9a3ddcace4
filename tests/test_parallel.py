import threading

import numpy as np
import pytest

from numnet import config
from numnet.exceptions import ParallelExecutionError
from numnet.parallel import ParallelExecutor, parallel_for, split_range


@pytest.mark.unit
class TestSplitRange:
    def test_partitions_cover_range_once(self):
        parts = split_range(10, 3)

        assert len(parts) == 3
        assert [i for part in parts for i in part] == list(range(10))

    def test_never_more_partitions_than_units(self):
        assert len(split_range(2, 8)) == 2
        assert split_range(0, 4) == []


@pytest.mark.unit
class TestParallelExecutor:
    def test_results_in_index_order(self, executor):
        assert executor.map(lambda i: i * i, 20) == [i * i for i in range(20)]

    def test_runs_on_several_threads(self, executor):
        barrier = threading.Barrier(4, timeout=10)
        thread_ids = set()

        def unit(i):
            if i % 5 == 0:
                barrier.wait()

            thread_ids.add(threading.get_ident())

        executor.map(unit, 20)

        assert len(thread_ids) == 4

    def test_failure_is_aggregated(self, executor):
        def unit(i):
            if i in (3, 17):
                raise ValueError("unit {} failed".format(i))

            return i

        with pytest.raises(ParallelExecutionError) as excinfo:
            executor.map(unit, 20)

        assert excinfo.value.indices == [3, 17]
        assert all(isinstance(err, ValueError) for _, err in excinfo.value.errors)

    def test_failed_call_commits_nothing(self, executor):
        committed = {"count": 0}

        def unit(i):
            if i == 7:
                raise RuntimeError("boom")

            return 1

        with pytest.raises(ParallelExecutionError):
            committed["count"] += sum(executor.map(unit, 10))

        assert committed["count"] == 0

    def test_fill_is_all_or_nothing(self, executor):
        out = np.zeros((8, 3))

        def row(i):
            if i == 5:
                raise ArithmeticError("bad row")

            return np.full(3, i)

        with pytest.raises(ParallelExecutionError):
            executor.fill(out, row)

        np.testing.assert_array_equal(out, np.zeros((8, 3)))

        executor.fill(out, lambda i: np.full(3, i))
        np.testing.assert_array_equal(out[:, 0], np.arange(8))

    def test_max_workers_from_environment(self, monkeypatch):
        monkeypatch.setenv("NUMNET_MAX_WORKERS", "3")

        assert ParallelExecutor().max_workers == 3
        assert ParallelExecutor(max_workers=2).max_workers == 2

    def test_invalid_environment_value(self, monkeypatch):
        monkeypatch.setenv("NUMNET_MAX_WORKERS", "many")

        with pytest.raises(ValueError):
            config.get_settings()


@pytest.mark.unit
def test_parallel_for(executor):
    assert parallel_for(5, lambda i: -i, executor) == [0, -1, -2, -3, -4]
