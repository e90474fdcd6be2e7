"""
Unit Test: Chunked execution of the shared-memory histogram kernels

Runs on the numba CUDA simulator with a tiny hardware descriptor so that
kernels stay small; the same tests run unchanged on a real GPU.
"""

import numpy as np
import pytest
from numba import cuda

from gpuhisto.cuda_kernels.histo_kernels import KERNEL_CACHE_SIZE, build_local_memory_kernel
from gpuhisto.errors import IndexOutOfRangeError
from gpuhisto.executor import ChunkedExecutor, compute_histogram
from gpuhisto.operators import histogram_problem, modulo_count_map, modulo_quotient_map
from gpuhisto.sizing import size_plan
from gpuhisto.types import HardwareDescriptor
from gpuhisto.validation import gold_seq_histo


def identity_index(x):
    return x, 1


def shifted_index(x):
    return x - 2, 1


def half_weight(x):
    return x % 4, 0.5


def random_input(n, high=1000, seed=0):
    rng = np.random.default_rng(seed)
    return rng.integers(0, high, size=n, dtype=np.int32)


def run_histogram(hw, data, h, map_fn, combine, atomic, beta_dtype=np.int32, words=None):
    problem = histogram_problem(map_fn, combine, atomic, beta_dtype)
    plan = size_plan(h, len(data), atomic, hw, beta_dtype, locmem_words_per_thread=words)
    return plan, problem, ChunkedExecutor(problem).run(plan, data)


class TestCountingHistograms:
    """index = x % H, value = 1 with every primitive."""

    @pytest.mark.parametrize("atomic", ["inc", "add", "cas", "xcg"])
    def test_tiny_input(self, small_hw, atomic):
        """H=4 over [0..7] puts two elements in every bin."""
        data = np.arange(8, dtype=np.int32)

        _, _, histo = run_histogram(small_hw, data, 4, modulo_count_map(4), "add", atomic)

        np.testing.assert_array_equal(histo, [2, 2, 2, 2])

    @pytest.mark.parametrize("atomic", ["inc", "add", "cas", "xcg"])
    def test_matches_sequential_reference(self, small_hw, atomic):
        data = random_input(2048)
        plan, problem, histo = run_histogram(small_hw, data, 8, modulo_count_map(8), "add", atomic)

        np.testing.assert_array_equal(histo, gold_seq_histo(problem, data, 8))
        assert histo.sum() == len(data)
        assert plan.m > 1

    def test_increment_ignores_value(self, small_hw):
        data = random_input(512)
        _, problem, histo = run_histogram(small_hw, data, 8, modulo_quotient_map(8), "add", "inc")

        assert histo.sum() == len(data)
        np.testing.assert_array_equal(histo, gold_seq_histo(problem, data, 8))

    def test_sum_of_values(self, small_hw):
        data = random_input(2048)
        _, problem, histo = run_histogram(small_hw, data, 8, modulo_quotient_map(8), "add", "add", np.int64)

        assert histo.dtype == np.int64
        np.testing.assert_array_equal(histo, gold_seq_histo(problem, data, 8))


class TestGeneralCombine:
    """Non-additive operators through the CAS loop and the exchange lock."""

    @pytest.mark.parametrize("atomic", ["cas", "xcg"])
    @pytest.mark.parametrize("combine", ["min", "max"])
    def test_min_max(self, small_hw, atomic, combine):
        data = random_input(1024)
        _, problem, histo = run_histogram(small_hw, data, 16, modulo_quotient_map(16), combine, atomic)

        np.testing.assert_array_equal(histo, gold_seq_histo(problem, data, 16))

    def test_empty_bins_keep_identity(self, small_hw):
        """Only even values, so odd bins never receive a contribution."""
        data = (random_input(256) * 2).astype(np.int32)
        _, _, histo = run_histogram(small_hw, data, 4, modulo_quotient_map(4), "max", "cas")

        assert histo[1] == np.iinfo(np.int32).min
        assert histo[3] == np.iinfo(np.int32).min

    def test_lock_variant_with_floats(self, small_hw):
        data = random_input(1024)
        _, problem, histo = run_histogram(small_hw, data, 16, modulo_quotient_map(16), "max", "xcg", np.float32)

        assert histo.dtype == np.float32
        np.testing.assert_array_equal(histo, gold_seq_histo(problem, data, 16))


class TestChunking:
    """Histograms larger than one shared-memory chunk."""

    @pytest.mark.parametrize("atomic", ["add", "xcg"])
    def test_multiple_chunks(self, small_hw, atomic):
        data = random_input(4000, high=100_000)
        plan, problem, histo = run_histogram(small_hw, data, 200, modulo_count_map(200), "add", atomic, words=1)

        assert plan.num_chunks > 1
        assert histo.sum() == len(data)
        np.testing.assert_array_equal(histo, gold_seq_histo(problem, data, 200))

    def test_result_independent_of_replication(self):
        """Different hardware descriptors give different M but the same histogram."""
        data = random_input(2048, high=100_000)
        results = []
        degrees = set()
        for hw, words in [
            (HardwareDescriptor(32, 64, 48 * 1024), None),
            (HardwareDescriptor(32, 64, 48 * 1024), 1),
            (HardwareDescriptor(16, 16, 64), None),
            (HardwareDescriptor(32, 64, 16), None),
        ]:
            plan, _, histo = run_histogram(hw, data, 8, modulo_count_map(8), "add", "add", words=words)
            degrees.add((plan.m, plan.num_chunks))
            results.append(histo)

        assert len(degrees) == 4
        for histo in results[1:]:
            np.testing.assert_array_equal(histo, results[0])


class TestExecutorErrors:
    """Error reporting and argument checks."""

    def test_index_out_of_range(self, small_hw):
        data = np.array([0, 1, 2, 9, 3, 7, 1, 0], dtype=np.int32)
        problem = histogram_problem(identity_index, "add", "add")
        plan = size_plan(4, len(data), "add", small_hw)

        with pytest.raises(IndexOutOfRangeError) as exc_info:
            ChunkedExecutor(problem).run(plan, data)

        assert exc_info.value.count == 2
        assert exc_info.value.first_position == 3

    def test_negative_index(self, small_hw):
        """An element mapped below zero is reported like one mapped past H."""
        data = np.array([2, 3, 1, 4, 5, 2, 3, 4], dtype=np.int32)
        problem = histogram_problem(shifted_index, "add", "add")
        plan = size_plan(4, len(data), "add", small_hw)

        with pytest.raises(IndexOutOfRangeError) as exc_info:
            ChunkedExecutor(problem).run(plan, data)

        assert exc_info.value.count == 1
        assert exc_info.value.first_position == 2

    def test_plan_for_other_bin_type(self, small_hw):
        """Same footprint, different dtype: float32 plan with int32 bins."""
        data = np.arange(8, dtype=np.int32)
        problem = histogram_problem(modulo_count_map(4), "add", "add", np.int32)
        plan = size_plan(4, len(data), "add", small_hw, beta_dtype=np.float32)

        with pytest.raises(ValueError):
            ChunkedExecutor(problem).run(plan, data)

    def test_plan_for_other_primitive(self, small_hw):
        data = np.arange(8, dtype=np.int32)
        problem = histogram_problem(modulo_count_map(4), "add", "cas")
        plan = size_plan(4, len(data), "xcg", small_hw)

        with pytest.raises(ValueError):
            ChunkedExecutor(problem).run(plan, data)

    def test_plan_for_other_input_size(self, small_hw):
        problem = histogram_problem(modulo_count_map(4), "add", "add")
        plan = size_plan(4, 16, "add", small_hw)

        with pytest.raises(ValueError):
            ChunkedExecutor(problem).run(plan, np.arange(8, dtype=np.int32))

    def test_two_dimensional_input(self, small_hw):
        problem = histogram_problem(modulo_count_map(4), "add", "add")
        plan = size_plan(4, 8, "add", small_hw)

        with pytest.raises(ValueError):
            ChunkedExecutor(problem).run(plan, np.zeros((2, 4), dtype=np.int32))

    def test_empty_input_returns_identity(self, small_hw):
        problem = histogram_problem(modulo_quotient_map(4), "min", "cas")
        plan = size_plan(4, 8, "cas", small_hw)

        histo = ChunkedExecutor(problem).run(plan, np.array([], dtype=np.int32))

        np.testing.assert_array_equal(histo, np.full(4, np.iinfo(np.int32).max, dtype=np.int32))


class TestComputeHistogram:
    """Module-level entry point."""

    def test_device_input(self, small_hw):
        data = np.arange(64, dtype=np.int32)
        plan = size_plan(4, len(data), "add", small_hw)

        histo = compute_histogram(plan, cuda.to_device(data), modulo_count_map(4))

        np.testing.assert_array_equal(histo, [16, 16, 16, 16])

    def test_defaults_follow_plan(self, small_hw):
        data = np.arange(8, dtype=np.int32)
        plan = size_plan(4, len(data), "xcg", small_hw, beta_dtype=np.int64)

        histo = compute_histogram(plan, data, modulo_quotient_map(4), combine="max")

        assert histo.dtype == np.int64
        np.testing.assert_array_equal(histo, [1, 1, 1, 1])

    def test_bin_type_taken_from_plan(self, small_hw):
        data = np.arange(8, dtype=np.int32)
        plan = size_plan(4, len(data), "add", small_hw, beta_dtype=np.float32)

        histo = compute_histogram(plan, data, half_weight)

        assert histo.dtype == np.float32
        np.testing.assert_array_equal(histo, [1.0, 1.0, 1.0, 1.0])

    def test_repeated_calls_reuse_kernel(self, small_hw):
        data = np.arange(16, dtype=np.int32)
        plan = size_plan(4, len(data), "add", small_hw)
        assert modulo_count_map(4) is modulo_count_map(4)

        compute_histogram(plan, data, modulo_count_map(4))
        before = build_local_memory_kernel.cache_info()
        histo = compute_histogram(plan, data, modulo_count_map(4))
        after = build_local_memory_kernel.cache_info()

        np.testing.assert_array_equal(histo, [4, 4, 4, 4])
        assert after.hits == before.hits + 1
        assert after.misses == before.misses
        assert after.maxsize == KERNEL_CACHE_SIZE

    def test_verbose_prints_chunks(self, small_hw, capsys):
        data = np.arange(8, dtype=np.int32)
        problem = histogram_problem(modulo_count_map(4), "add", "inc")
        plan = size_plan(4, len(data), "inc", small_hw)

        ChunkedExecutor(problem, verbose=True).run(plan, data)

        assert "[chunk 1/1] bins [0, 4)" in capsys.readouterr().out
