"""
Tests for src/beliefs/updates.py - Normalization, log-space math, Bayes and Jeffrey updates.
"""

import math

import numpy as np
import pytest

from src.beliefs.errors import ShapeError
from src.beliefs.updates import (
    DEGENERACY_ALL_ZERO,
    DEGENERACY_NON_FINITE,
    bayes_update,
    bayes_update_detailed,
    combine_likelihoods,
    jeffrey_update,
    jeffrey_update_detailed,
    log_sum_exp,
    normalize_probs,
    predicted_marginals,
    repeated_update,
    safe_log,
    uniform,
)


def _numpy_jeffrey(current, matrix, weights):
    """Direct (non log-space) Jeffrey rule used as a reference."""
    p = np.asarray(current, dtype=float)
    p = p / p.sum()
    L = np.asarray(matrix, dtype=float)
    L = L / L.sum(axis=1, keepdims=True)
    q = np.asarray(weights, dtype=float)
    q = q / q.sum()
    joint = p[:, None] * L
    cond = joint / joint.sum(axis=0, keepdims=True)
    return cond @ q


class TestNormalizeProbs:
    """Tests for normalize_probs function."""

    def test_sums_to_one(self):
        """Test that output sums to 1."""
        result = normalize_probs([2, 3, 5])
        assert sum(result) == pytest.approx(1.0)
        assert result == pytest.approx([0.2, 0.3, 0.5])

    def test_all_zero_gives_uniform(self):
        """Test that all-zero weights fall back to uniform."""
        assert normalize_probs([0, 0, 0]) == pytest.approx([1 / 3, 1 / 3, 1 / 3])

    def test_invalid_entries_treated_as_zero(self):
        """Test that negative, NaN and infinite entries are ignored."""
        result = normalize_probs([1, -1, float("nan"), float("inf"), 3])
        assert result == pytest.approx([0.25, 0.0, 0.0, 0.0, 0.75])

    def test_non_numeric_entries_treated_as_zero(self):
        """Test that non-numeric entries are ignored."""
        assert normalize_probs(["x", None, 1]) == pytest.approx([0.0, 0.0, 1.0])

    def test_sum_overflow_is_rescaled(self):
        """Test that finite entries whose sum overflows still normalize."""
        result = normalize_probs([1e308, 1e308])
        assert result == pytest.approx([0.5, 0.5])

    def test_empty_raises(self):
        """Test that an empty sequence is rejected."""
        with pytest.raises(ShapeError, match="non-empty"):
            normalize_probs([])

    def test_uniform_requires_entries(self):
        """Test that uniform(0) is rejected."""
        with pytest.raises(ShapeError):
            uniform(0)


class TestLogHelpers:
    """Tests for safe_log and log_sum_exp."""

    def test_safe_log_positive(self):
        """Test safe_log of a positive value."""
        assert safe_log(math.e) == pytest.approx(1.0)

    def test_safe_log_degenerate_inputs(self):
        """Test that zero, negative and non-finite values map to -inf."""
        for value in (0, -1, float("inf"), float("nan"), "abc", None):
            assert safe_log(value) == float("-inf")

    def test_log_sum_exp_basic(self):
        """Test log_sum_exp against a direct computation."""
        values = [-1.0, 0.5, 2.0]
        expected = float(np.log(np.sum(np.exp(values))))
        assert log_sum_exp(values) == pytest.approx(expected, rel=1e-12)

    def test_log_sum_exp_large_values(self):
        """Test that large log values do not overflow."""
        assert log_sum_exp([1000.0, 1000.0]) == pytest.approx(1000.0 + math.log(2))

    def test_log_sum_exp_skips_negligible_terms(self):
        """Test that terms far below the maximum do not contribute."""
        assert log_sum_exp([0.0, -800.0]) == 0.0

    def test_log_sum_exp_nothing_finite(self):
        """Test that empty or all -inf input gives -inf."""
        assert log_sum_exp([]) == float("-inf")
        assert log_sum_exp([float("-inf"), float("-inf")]) == float("-inf")


class TestBayesUpdate:
    """Tests for bayes_update and bayes_update_detailed."""

    def test_known_posterior(self):
        """Test a hand-computed posterior."""
        result = bayes_update([0.6, 0.4], [0.1, 0.7])
        assert result == pytest.approx([0.06 / 0.34, 0.28 / 0.34], abs=1e-12)

    def test_matches_numpy_reference(self):
        """Test against a direct numpy computation."""
        prior = [0.1, 0.2, 0.3, 0.4]
        likelihoods = [0.9, 0.05, 0.5, 0.2]
        p = np.asarray(prior) * np.asarray(likelihoods)
        expected = p / p.sum()
        assert bayes_update(prior, likelihoods) == pytest.approx(expected.tolist(), abs=1e-12)

    def test_unnormalized_prior(self):
        """Test that the prior is normalized before use."""
        assert bayes_update([3, 2], [0.1, 0.7]) == pytest.approx(bayes_update([0.6, 0.4], [0.1, 0.7]))

    def test_all_zero_likelihoods_keep_prior(self):
        """Test that all-zero likelihoods return the normalized prior and a flag."""
        result = bayes_update_detailed([3, 1], [0, 0])
        assert result.posterior == pytest.approx([0.75, 0.25])
        assert result.degeneracy == DEGENERACY_ALL_ZERO
        assert result.degenerate

    def test_disjoint_support_falls_back_to_uniform(self):
        """Test that an impossible observation yields uniform with a flag."""
        result = bayes_update_detailed([1.0, 0.0], [0.0, 1.0])
        assert result.posterior == pytest.approx([0.5, 0.5])
        assert result.degeneracy == DEGENERACY_NON_FINITE

    def test_regular_update_not_degenerate(self):
        """Test that a normal update carries no degeneracy."""
        result = bayes_update_detailed([0.5, 0.5], [0.2, 0.4])
        assert result.degeneracy is None
        assert not result.degenerate

    def test_invalid_likelihoods_sanitized(self):
        """Test that NaN likelihoods count as zero."""
        assert bayes_update([0.5, 0.5], [float("nan"), 0.5]) == pytest.approx([0.0, 1.0])

    def test_tiny_values_stay_finite(self):
        """Test that values near 1e-300 never produce NaN."""
        result = bayes_update([1e-300, 1e-300], [1e-300, 1e-300])
        assert all(math.isfinite(v) for v in result)
        assert result == pytest.approx([0.5, 0.5])

        skewed = bayes_update([1e-300, 1.0], [1.0, 1e-300])
        assert all(math.isfinite(v) for v in skewed)
        assert sum(skewed) == pytest.approx(1.0)

    def test_length_mismatch_raises(self):
        """Test that mismatched lengths raise ShapeError."""
        with pytest.raises(ShapeError, match="Length mismatch"):
            bayes_update([0.5, 0.5], [0.1, 0.2, 0.3])

    def test_empty_prior_raises(self):
        """Test that an empty prior raises ShapeError."""
        with pytest.raises(ShapeError):
            bayes_update([], [])

    def test_shape_error_is_value_error(self):
        """Test that ShapeError can be caught as ValueError."""
        with pytest.raises(ValueError):
            bayes_update([0.5, 0.5], [0.1])


class TestRepeatedEvidence:
    """Tests for sequential updates versus combined likelihoods."""

    def test_sequential_matches_combined(self):
        """Test that two sequential updates equal one combined update."""
        prior = [0.2, 0.3, 0.5]
        l1 = [0.9, 0.4, 0.1]
        l2 = [0.3, 0.6, 0.2]

        sequential = bayes_update(bayes_update(prior, l1), l2)
        combined = repeated_update(prior, combine_likelihoods(l1, l2))

        assert sequential == pytest.approx(combined, abs=1e-10)

    def test_many_steps_match_combined(self):
        """Test the equivalence over a long chain of evidence."""
        prior = [0.25, 0.25, 0.5]
        rows = [[0.1 + 0.01 * k, 0.5, 0.9 - 0.01 * k] for k in range(40)]

        belief = prior
        for row in rows:
            belief = bayes_update(belief, row)

        combined = bayes_update(prior, combine_likelihoods(*rows))
        assert belief == pytest.approx(combined, abs=1e-10)

    def test_combined_tiny_likelihoods_do_not_collapse(self):
        """Test that products far below the float range keep their ratio."""
        rows = [[1e-10, 2e-10]] * 50
        combined = combine_likelihoods(*rows)

        assert combined[1] == 1.0
        assert combined[0] == pytest.approx(0.5 ** 50, rel=1e-9)

    def test_combine_requires_rows(self):
        """Test that combine_likelihoods needs at least one row of equal length."""
        with pytest.raises(ShapeError):
            combine_likelihoods()
        with pytest.raises(ShapeError):
            combine_likelihoods([0.1, 0.2], [0.3])


class TestJeffreyUpdate:
    """Tests for jeffrey_update and predicted_marginals."""

    def test_identity_when_targets_match_prediction(self):
        """Test that predicted marginals as targets leave beliefs unchanged."""
        current = [0.6, 0.4]
        matrix = [[0.1, 0.9], [0.7, 0.3]]
        q = predicted_marginals(current, matrix)

        assert q == pytest.approx([0.34, 0.66])
        assert jeffrey_update(current, matrix, q) == pytest.approx(current, abs=1e-10)

    def test_identity_three_categories(self):
        """Test the identity property on a larger matrix."""
        current = [0.5, 0.3, 0.2]
        matrix = [[0.2, 0.5, 0.3], [0.6, 0.1, 0.3], [0.1, 0.1, 0.8]]
        q = predicted_marginals(current, matrix)

        assert jeffrey_update(current, matrix, q) == pytest.approx(current, abs=1e-10)

    def test_identity_with_unnormalized_rows(self):
        """Test that rows are renormalized consistently for the identity."""
        current = [0.7, 0.3]
        matrix = [[2.0, 2.0], [1.0, 3.0]]
        q = predicted_marginals(current, matrix)

        assert jeffrey_update(current, matrix, q) == pytest.approx(current, abs=1e-10)

    def test_matches_numpy_reference(self):
        """Test against a direct numpy computation."""
        current = [0.7, 0.3]
        matrix = [[0.9, 0.1], [0.2, 0.8]]
        q = [0.6, 0.4]
        expected = _numpy_jeffrey(current, matrix, q)
        assert jeffrey_update(current, matrix, q) == pytest.approx(expected.tolist(), abs=1e-12)

    def test_rows_are_renormalized(self):
        """Test that row scale does not affect the result."""
        a = jeffrey_update([0.5, 0.5], [[2, 2], [1, 3]], [0.3, 0.7])
        b = jeffrey_update([0.5, 0.5], [[0.5, 0.5], [0.25, 0.75]], [0.3, 0.7])
        assert a == pytest.approx(b, abs=1e-12)

    def test_certain_category_equals_bayes(self):
        """Test that a one-hot target reduces to a Bayes update on that column."""
        current = [0.6, 0.4]
        matrix = [[0.1, 0.9], [0.7, 0.3]]
        result = jeffrey_update(current, matrix, [1.0, 0.0])
        assert result == pytest.approx(bayes_update(current, [0.1, 0.7]), abs=1e-12)

    def test_all_zero_row_rules_hypothesis_out(self):
        """Test that a hypothesis with an all-zero row ends at 0, not uniform."""
        result = jeffrey_update_detailed([0.5, 0.5], [[0, 0], [0.3, 0.7]], [0.5, 0.5])
        assert result.posterior == pytest.approx([0.0, 1.0])
        assert result.degeneracy is None

    def test_all_zero_row_one_hot_equals_bayes(self):
        """Test that a one-hot target with a zero row matches the Bayes update."""
        result = jeffrey_update([0.5, 0.5], [[0, 0], [0.3, 0.7]], [1.0, 0.0])
        assert result == pytest.approx(bayes_update([0.5, 0.5], [0, 0.3]), abs=1e-12)
        assert result == pytest.approx([0.0, 1.0])

    def test_all_zero_row_predicted_marginals(self):
        """Test that a zero row adds nothing to the predicted marginals."""
        q = predicted_marginals([0.5, 0.5], [[0, 0], [0.3, 0.7]])
        assert q == pytest.approx([0.15, 0.35])

    def test_impossible_category_is_flagged(self):
        """Test that a category impossible under current beliefs spreads uniformly."""
        result = jeffrey_update_detailed([1.0, 0.0], [[1.0, 0.0], [0.0, 1.0]], [0.5, 0.5])
        assert result.posterior == pytest.approx([0.75, 0.25])
        assert result.degeneracy == DEGENERACY_NON_FINITE

    def test_zero_weight_impossible_category_not_flagged(self):
        """Test that an impossible category with zero weight is harmless."""
        result = jeffrey_update_detailed([1.0, 0.0], [[1.0, 0.0], [0.0, 1.0]], [1.0, 0.0])
        assert result.posterior == pytest.approx([1.0, 0.0])
        assert result.degeneracy is None

    def test_tiny_values_stay_finite(self):
        """Test that values near 1e-300 never produce NaN."""
        result = jeffrey_update([1e-300, 1.0], [[1e-300, 1.0], [1.0, 1e-300]], [0.5, 0.5])
        assert all(math.isfinite(v) for v in result)
        assert sum(result) == pytest.approx(1.0)

    def test_predicted_marginals_sum_to_one(self):
        """Test that predicted marginals form a distribution."""
        q = predicted_marginals([1, 2, 3], [[1, 2], [3, 1], [0, 5]])
        assert sum(q) == pytest.approx(1.0)

    def test_row_count_mismatch_raises(self):
        """Test that a matrix with the wrong number of rows is rejected."""
        with pytest.raises(ShapeError, match="rows"):
            jeffrey_update([0.5, 0.5], [[0.5, 0.5]], [0.5, 0.5])

    def test_row_length_mismatch_raises(self):
        """Test that rows must match the number of target weights."""
        with pytest.raises(ShapeError, match="row 1"):
            jeffrey_update([0.5, 0.5], [[0.5, 0.5], [0.5]], [0.5, 0.5])

    def test_empty_targets_raise(self):
        """Test that at least one category is required."""
        with pytest.raises(ShapeError, match="category"):
            jeffrey_update([0.5, 0.5], [[], []], [])
