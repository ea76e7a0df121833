"""
Numerically stable belief update algorithms.

Provides normalization, log-space arithmetic, Bayesian updates for
certain evidence and Jeffrey conditionalization for uncertain evidence.
All combination of probabilities happens in log space so that values as
small as 1e-300 never underflow to NaN.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from .errors import ShapeError

logger = logging.getLogger(__name__)

# exp() of anything at or below this is smaller than the smallest subnormal double
UNDERFLOW_EXPONENT = -745.0

# Degeneracy reasons reported alongside an update result
DEGENERACY_ALL_ZERO = "all_zero_likelihoods"
DEGENERACY_NON_FINITE = "non_finite_normalizer"


@dataclass(frozen=True)
class UpdateResult:
    """Posterior plus an optional advisory degeneracy reason."""
    posterior: List[float]
    degeneracy: Optional[str] = None

    @property
    def degenerate(self) -> bool:
        return self.degeneracy is not None


def _sanitize(value: Any) -> float:
    """Coerce a probability-like value to a finite non-negative float (else 0)."""
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(v) or v < 0:
        return 0.0
    return v


def _stable_exp(diff: float) -> float:
    if diff <= UNDERFLOW_EXPONENT:
        return 0.0
    return math.exp(diff)


def uniform(n: int) -> List[float]:
    """Return the uniform distribution over n entries."""
    if n <= 0:
        raise ShapeError("Uniform distribution needs at least one entry")
    return [1.0 / n] * n


def normalize_probs(values: Sequence[Any]) -> List[float]:
    """
    Sanitize and rescale weights into a probability distribution.

    Non-finite and negative entries are treated as 0. If nothing positive
    remains the uniform distribution is returned.

    Args:
        values: Non-negative weights

    Returns:
        List of floats summing to 1

    Raises:
        ShapeError: If values is empty
    """
    sanitized = [_sanitize(v) for v in values]
    if not sanitized:
        raise ShapeError("Expected a non-empty sequence of probabilities")

    total = sum(sanitized)
    if total == 0:
        return uniform(len(sanitized))

    if not math.isfinite(total):
        # Individually finite entries can still overflow when summed
        top = max(sanitized)
        sanitized = [v / top for v in sanitized]
        total = sum(sanitized)

    return [v / total for v in sanitized]


def safe_log(x: Any) -> float:
    """Natural log, or -inf for non-positive and non-finite input."""
    try:
        v = float(x)
    except (TypeError, ValueError):
        return float("-inf")
    if v <= 0 or not math.isfinite(v):
        return float("-inf")
    return math.log(v)


def log_sum_exp(values: Sequence[float]) -> float:
    """
    Compute log(sum(exp(v))) without overflow or underflow.

    Non-finite entries are dropped. Terms more than 745 below the maximum
    cannot contribute to a double and are skipped.

    Args:
        values: Log-space values

    Returns:
        The log of the summed exponentials, or -inf if nothing contributes
    """
    finite = [v for v in values if math.isfinite(v)]
    if not finite:
        return float("-inf")

    max_log = max(finite)
    total = 0.0
    for v in finite:
        diff = v - max_log
        if diff <= UNDERFLOW_EXPONENT:
            continue
        total += math.exp(diff)

    if total == 0:
        return float("-inf")
    return max_log + math.log(total)


def check_likelihoods_shape(n: int, likelihoods: Sequence[Any]) -> None:
    """Raise ShapeError unless likelihoods has exactly n >= 1 entries."""
    if n < 1:
        raise ShapeError("At least one hypothesis is required")
    if len(likelihoods) != n:
        raise ShapeError(
            f"Length mismatch: expected {n} likelihoods, got {len(likelihoods)}"
        )


def check_matrix_shape(
    n: int,
    likelihood_matrix: Sequence[Sequence[Any]],
    target_weights: Sequence[Any]
) -> None:
    """Raise ShapeError unless the matrix is n x m with m == len(target_weights) >= 1."""
    if n < 1:
        raise ShapeError("At least one hypothesis is required")
    if len(likelihood_matrix) != n:
        raise ShapeError(
            f"Likelihood matrix has {len(likelihood_matrix)} rows, expected {n}"
        )
    m = len(target_weights)
    if m < 1:
        raise ShapeError("At least one evidence category is required")
    for i, row in enumerate(likelihood_matrix):
        if len(row) != m:
            raise ShapeError(
                f"Likelihood matrix row {i} has {len(row)} entries, expected {m}"
            )


def bayes_update_detailed(
    prior: Sequence[Any],
    likelihoods: Sequence[Any]
) -> UpdateResult:
    """
    Bayesian update for certain evidence, reporting degeneracies.

    Degenerate cases are handled by fallback, never raised:
    - every likelihood is 0: the evidence is uninformative, the
      normalized prior is returned unchanged
    - the normalizing constant is not finite: uniform distribution

    Args:
        prior: P(H_i) for each hypothesis
        likelihoods: P(E | H_i) for each hypothesis

    Returns:
        UpdateResult with the posterior and degeneracy reason (or None)

    Raises:
        ShapeError: If lengths differ or are zero
    """
    check_likelihoods_shape(len(prior), likelihoods)

    prior_s = [_sanitize(p) for p in prior]
    like_s = [_sanitize(v) for v in likelihoods]

    if all(v == 0.0 for v in like_s):
        logger.warning("All likelihoods are zero; evidence skipped, prior kept")
        return UpdateResult(normalize_probs(prior_s), DEGENERACY_ALL_ZERO)

    log_post = [safe_log(p) + safe_log(v) for p, v in zip(prior_s, like_s)]
    lz = log_sum_exp(log_post)
    if not math.isfinite(lz):
        logger.warning("Posterior normalizer is not finite; falling back to uniform")
        return UpdateResult(uniform(len(prior_s)), DEGENERACY_NON_FINITE)

    posterior = [_stable_exp(v - lz) for v in log_post]
    return UpdateResult(normalize_probs(posterior))


def bayes_update(prior: Sequence[Any], likelihoods: Sequence[Any]) -> List[float]:
    """Bayesian update for certain evidence. See bayes_update_detailed."""
    return bayes_update_detailed(prior, likelihoods).posterior


# Sequential application equals one update with the summed log-likelihoods
repeated_update = bayes_update


def combine_likelihoods(*rows: Sequence[Any]) -> List[float]:
    """
    Combine independent likelihood vectors into one.

    The elementwise product is formed as a sum of logs and rescaled by its
    maximum, so long chains of tiny likelihoods never collapse to zero.
    The scale is irrelevant to a Bayesian update.

    Args:
        *rows: Likelihood vectors of equal length

    Returns:
        Combined likelihood vector

    Raises:
        ShapeError: If no rows are given or lengths differ
    """
    if not rows:
        raise ShapeError("At least one likelihood vector is required")
    n = len(rows[0])
    for row in rows:
        check_likelihoods_shape(n, row)

    log_sums = [sum(safe_log(_sanitize(row[i])) for row in rows) for i in range(n)]
    finite = [v for v in log_sums if math.isfinite(v)]
    if not finite:
        return [0.0] * n

    top = max(finite)
    return [_stable_exp(v - top) for v in log_sums]


def _normalized_rows(likelihood_matrix: Sequence[Sequence[Any]]) -> List[List[float]]:
    """Rescale each row to sum to 1; a row with no positive entry stays all zero."""
    rows = []
    for row in likelihood_matrix:
        sanitized = [_sanitize(v) for v in row]
        if any(v > 0 for v in sanitized):
            rows.append(normalize_probs(sanitized))
        else:
            rows.append(sanitized)
    return rows


def predicted_marginals(
    current: Sequence[Any],
    likelihood_matrix: Sequence[Sequence[Any]]
) -> List[float]:
    """
    Model-predicted probability of each evidence category.

    P(E_j) = sum_i P(H_i) * P(E_j | H_i), with the current beliefs and each
    matrix row normalized first (the same way jeffrey_update sees them).
    An all-zero row contributes nothing, so the result sums to less than 1
    when such a hypothesis has positive belief.

    Args:
        current: Current beliefs
        likelihood_matrix: n x m matrix of P(E_j | H_i)

    Returns:
        List of m category probabilities
    """
    if not likelihood_matrix:
        raise ShapeError("Likelihood matrix must have at least one row")
    check_matrix_shape(len(current), likelihood_matrix, likelihood_matrix[0])

    beliefs = normalize_probs(current)
    rows = _normalized_rows(likelihood_matrix)
    m = len(rows[0])
    return [sum(beliefs[i] * rows[i][j] for i in range(len(rows))) for j in range(m)]


def jeffrey_update_detailed(
    current: Sequence[Any],
    likelihood_matrix: Sequence[Sequence[Any]],
    target_weights: Sequence[Any]
) -> UpdateResult:
    """
    Jeffrey conditionalization for uncertain evidence.

    For each category j the Bayesian posterior P(H | E_j) is computed in
    log space and the results are mixed with the normalized target weights
    q_j. Each matrix row is renormalized before use; an all-zero row rules
    its hypothesis out under every category and keeps it at 0.

    If the target weights equal predicted_marginals(current, matrix) the
    output equals current (conditioned on the hypotheses not ruled out).

    Args:
        current: Current beliefs over n hypotheses
        likelihood_matrix: n x m matrix where entry [i][j] is P(E_j | H_i)
        target_weights: New probability of each of the m categories

    Returns:
        UpdateResult with the mixed posterior and degeneracy reason (or None)

    Raises:
        ShapeError: If the matrix does not match current and target_weights
    """
    n = len(current)
    check_matrix_shape(n, likelihood_matrix, target_weights)

    q = normalize_probs(target_weights)
    rows = _normalized_rows(likelihood_matrix)
    log_current = [safe_log(_sanitize(c)) for c in current]

    degeneracy = None
    new_beliefs = [0.0] * n
    for j, weight in enumerate(q):
        log_unnorm = [log_current[i] + safe_log(rows[i][j]) for i in range(n)]
        lz = log_sum_exp(log_unnorm)
        if math.isfinite(lz):
            posterior_slice = [_stable_exp(v - lz) for v in log_unnorm]
        else:
            posterior_slice = [0.0] * n
            if weight > 0:
                degeneracy = DEGENERACY_NON_FINITE
                logger.warning(
                    f"Category {j} is impossible under current beliefs; "
                    f"its weight {weight:.6g} is spread uniformly"
                )
        posterior_slice = normalize_probs(posterior_slice)
        for i in range(n):
            new_beliefs[i] += weight * posterior_slice[i]

    return UpdateResult(normalize_probs(new_beliefs), degeneracy)


def jeffrey_update(
    current: Sequence[Any],
    likelihood_matrix: Sequence[Sequence[Any]],
    target_weights: Sequence[Any]
) -> List[float]:
    """Jeffrey conditionalization. See jeffrey_update_detailed."""
    return jeffrey_update_detailed(current, likelihood_matrix, target_weights).posterior
