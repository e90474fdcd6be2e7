"""
Unit Test: Sequential reference histogram and result comparison
"""

import numpy as np
import pytest

from gpuhisto.errors import IndexOutOfRangeError
from gpuhisto.operators import histogram_problem, modulo_count_map, modulo_quotient_map
from gpuhisto.validation import first_mismatch, gold_seq_histo, validate


def shifted_index(x):
    return x - 2, 1


class TestGoldSeqHisto:
    """CPU reference implementation."""

    def test_counts(self):
        problem = histogram_problem(modulo_count_map(4), "add", "add")

        histo = gold_seq_histo(problem, np.arange(10, dtype=np.int32), 4)

        np.testing.assert_array_equal(histo, [3, 3, 2, 2])
        assert histo.dtype == np.int32

    def test_increment_counts_ones(self):
        problem = histogram_problem(modulo_quotient_map(4), "add", "inc")

        histo = gold_seq_histo(problem, np.arange(10, dtype=np.int32), 4)

        np.testing.assert_array_equal(histo, [3, 3, 2, 2])

    def test_max_of_quotients(self):
        problem = histogram_problem(modulo_quotient_map(4), "max", "cas")

        histo = gold_seq_histo(problem, np.array([1, 5, 13, 2], dtype=np.int32), 4)

        np.testing.assert_array_equal(histo, [np.iinfo(np.int32).min, 3, 0, np.iinfo(np.int32).min])

    def test_empty_input(self):
        problem = histogram_problem(modulo_quotient_map(3), "min", "xcg", np.float64)

        histo = gold_seq_histo(problem, np.array([], dtype=np.int32), 3)

        assert np.all(np.isinf(histo))

    def test_out_of_range(self):
        problem = histogram_problem(shifted_index, "add", "add")

        with pytest.raises(IndexOutOfRangeError) as exc_info:
            gold_seq_histo(problem, np.array([2, 3, 0, 1, 9], dtype=np.int32), 4)

        assert exc_info.value.count == 3
        assert exc_info.value.first_position == 2


class TestComparison:
    """first_mismatch and validate."""

    def test_equal_integers(self):
        assert first_mismatch(np.array([1, 2, 3]), np.array([1, 2, 3])) is None

    def test_integer_mismatch(self):
        assert first_mismatch(np.array([1, 2, 3]), np.array([1, 2, 4])) == 2

    def test_float_tolerance(self):
        a = np.array([1.0, 2.0])

        assert first_mismatch(a, a + 1e-9) is None
        assert first_mismatch(a, a + np.array([0.0, 1e-3])) == 1

    def test_infinities(self):
        a = np.array([np.inf, -np.inf, 0.0])

        assert first_mismatch(a, a.copy()) is None
        assert first_mismatch(a, np.array([np.inf, 1.0, 0.0])) == 1

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            first_mismatch(np.zeros(3), np.zeros(4))

    def test_validate_reports_first_difference(self, capsys):
        assert validate([1, 2, 3], [1, 2, 3])
        assert not validate([1, 2, 3], [1, 0, 3])

        out = capsys.readouterr().out
        assert "INVALID RESULT, index: 1" in out
