"""
Evidence step records.

An evidence step is either certain (one likelihood per hypothesis) or
uncertain (Jeffrey: a likelihood matrix over evidence categories plus
target weights). Steps are immutable and positionally aligned with the
hypothesis list they were recorded against.
"""

import math
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Tuple, Union

from .errors import ShapeError
from .updates import (
    UpdateResult,
    bayes_update_detailed,
    check_likelihoods_shape,
    check_matrix_shape,
    jeffrey_update_detailed,
)


STEP_CERTAIN = "certain"
STEP_JEFFREY = "jeffrey"


def _finite(value: Any) -> float:
    v = float(value)
    # NaN and infinities weigh nothing in an update and have no JSON form
    return v if math.isfinite(v) else 0.0


def _floats(values: Sequence[Any]) -> Tuple[float, ...]:
    return tuple(_finite(v) for v in values)


@dataclass(frozen=True)
class CertainStep:
    """Evidence observed with certainty: likelihoods[i] = P(E | H_i)."""
    likelihoods: Tuple[float, ...]
    label: str = ""
    at: Optional[int] = None

    kind: ClassVar[str] = STEP_CERTAIN

    def __post_init__(self):
        object.__setattr__(self, "likelihoods", _floats(self.likelihoods))

    @property
    def hypothesis_count(self) -> int:
        return len(self.likelihoods)

    def validate(self, n: int) -> None:
        check_likelihoods_shape(n, self.likelihoods)

    def apply(self, belief: Sequence[float]) -> UpdateResult:
        return bayes_update_detailed(belief, self.likelihoods)

    def permuted(self, order: Sequence[int]) -> "CertainStep":
        return CertainStep(tuple(self.likelihoods[k] for k in order), self.label, self.at)

    def without(self, index: int) -> "CertainStep":
        rest = self.likelihoods[:index] + self.likelihoods[index + 1:]
        return CertainStep(rest, self.label, self.at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "likelihoods": list(self.likelihoods),
            "label": self.label,
            "at": self.at,
        }


@dataclass(frozen=True)
class JeffreyStep:
    """
    Uncertain evidence over m categories.

    likelihood_matrix[i][j] is P(E_j | H_i); target_weights[j] is the new
    probability assigned to category j.
    """
    categories: Tuple[str, ...]
    likelihood_matrix: Tuple[Tuple[float, ...], ...]
    target_weights: Tuple[float, ...]
    label: str = ""
    at: Optional[int] = None

    kind: ClassVar[str] = STEP_JEFFREY

    def __post_init__(self):
        object.__setattr__(self, "categories", tuple(str(c) for c in self.categories))
        object.__setattr__(
            self, "likelihood_matrix", tuple(_floats(row) for row in self.likelihood_matrix)
        )
        object.__setattr__(self, "target_weights", _floats(self.target_weights))

        m = len(self.target_weights)
        if len(self.categories) != m:
            raise ShapeError(
                f"{len(self.categories)} categories but {m} target weights"
            )
        for i, row in enumerate(self.likelihood_matrix):
            if len(row) != m:
                raise ShapeError(
                    f"Likelihood matrix row {i} has {len(row)} entries, expected {m}"
                )

    @property
    def hypothesis_count(self) -> int:
        return len(self.likelihood_matrix)

    @property
    def category_count(self) -> int:
        return len(self.categories)

    def validate(self, n: int) -> None:
        check_matrix_shape(n, self.likelihood_matrix, self.target_weights)

    def apply(self, belief: Sequence[float]) -> UpdateResult:
        return jeffrey_update_detailed(belief, self.likelihood_matrix, self.target_weights)

    def permuted(self, order: Sequence[int]) -> "JeffreyStep":
        rows = tuple(self.likelihood_matrix[k] for k in order)
        return JeffreyStep(self.categories, rows, self.target_weights, self.label, self.at)

    def without(self, index: int) -> "JeffreyStep":
        rows = self.likelihood_matrix[:index] + self.likelihood_matrix[index + 1:]
        return JeffreyStep(self.categories, rows, self.target_weights, self.label, self.at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "categories": list(self.categories),
            "likelihood_matrix": [list(row) for row in self.likelihood_matrix],
            "target_weights": list(self.target_weights),
            "label": self.label,
            "at": self.at,
        }


EvidenceStep = Union[CertainStep, JeffreyStep]


def apply_step(step: EvidenceStep, belief: Sequence[float]) -> UpdateResult:
    """
    Apply one evidence step to a belief vector.

    Args:
        step: Certain or Jeffrey step
        belief: Belief vector the step is applied to

    Returns:
        UpdateResult from the matching updater

    Raises:
        ShapeError: If the step does not fit the belief vector
        TypeError: If step is not an evidence step
    """
    if isinstance(step, CertainStep):
        step.validate(len(belief))
        return step.apply(belief)
    if isinstance(step, JeffreyStep):
        step.validate(len(belief))
        return step.apply(belief)
    raise TypeError(f"Unsupported evidence step: {type(step).__name__}")


def _pick(record: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in record:
            return record[key]
    raise ShapeError(f"Evidence record missing field: {keys[0]}")


def step_from_dict(record: Dict[str, Any]) -> EvidenceStep:
    """
    Build an evidence step from its serialized form.

    Accepts the camelCase field names written by older exports
    (L, cats, likeMatrix, q) as well as the current snake_case names.

    Raises:
        ShapeError: If the record is malformed or has an unknown type
    """
    step_type = record.get("type")
    label = record.get("label") or ""
    at = record.get("at")

    if step_type == STEP_CERTAIN:
        return CertainStep(_pick(record, "likelihoods", "L"), label, at)
    if step_type == STEP_JEFFREY:
        weights = _pick(record, "target_weights", "q")
        categories = record.get("categories", record.get("cats"))
        if categories is None:
            categories = [f"Category {j + 1}" for j in range(len(weights))]
        return JeffreyStep(
            categories,
            _pick(record, "likelihood_matrix", "likeMatrix"),
            weights,
            label,
            at,
        )
    raise ShapeError(f"Unknown evidence step type: {step_type!r}")


def steps_to_dicts(steps: Sequence[EvidenceStep]) -> List[Dict[str, Any]]:
    return [step.to_dict() for step in steps]


def steps_from_dicts(records: Sequence[Dict[str, Any]]) -> List[EvidenceStep]:
    return [step_from_dict(r) for r in records]
