"""
Hypothesis set model.

Hypotheses are immutable records with a stable id. Every edit returns a
new tuple so that positional alignment between the hypothesis list and
recorded belief vectors is only ever changed through a full recompute.
"""

import math
import secrets
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .updates import uniform


DEFAULT_COLORS = [
    "#2a6df4", "#d97706", "#16a34a", "#dc2626", "#7c3aed",
    "#0891b2", "#be185d", "#059669", "#9333ea", "#ca8a04",
]

MIN_HYPOTHESES = 1
DEFAULT_HYPOTHESIS_COUNT = 2


@dataclass(frozen=True)
class Hypothesis:
    id: str
    label: str
    prior: float
    color: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        record = {"id": self.id, "label": self.label, "prior": self.prior}
        if self.color is not None:
            record["color"] = self.color
        return record

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> "Hypothesis":
        return cls(
            id=str(record["id"]),
            label=str(record["label"]),
            prior=float(record["prior"]),
            color=record.get("color"),
        )


def new_hypothesis_id() -> str:
    return "h-" + secrets.token_hex(4)


def clamp01(x: Any) -> float:
    """Clamp to [0, 1]; non-numeric and non-finite values become 0."""
    try:
        v = float(x)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(v):
        return 0.0
    return max(0.0, min(1.0, v))


def default_hypotheses() -> Tuple[Hypothesis, ...]:
    return (
        Hypothesis(new_hypothesis_id(), "H1", 0.5, DEFAULT_COLORS[0]),
        Hypothesis(new_hypothesis_id(), "H2", 0.5, DEFAULT_COLORS[1]),
    )


def priors_of(hypotheses: Sequence[Hypothesis]) -> List[float]:
    return [h.prior for h in hypotheses]


def normalize_priors(hypotheses: Sequence[Hypothesis]) -> Tuple[Hypothesis, ...]:
    """
    Return hypotheses with priors clamped to [0, 1] and rescaled to sum to 1.

    Falls back to uniform priors when every clamped prior is 0.
    """
    clamped = [clamp01(h.prior) for h in hypotheses]
    total = sum(clamped)
    if total > 0:
        norm = [v / total for v in clamped]
    else:
        norm = uniform(len(clamped)) if clamped else []
    return tuple(replace(h, prior=p) for h, p in zip(hypotheses, norm))


def index_of(hypotheses: Sequence[Hypothesis], hypothesis_id: str) -> int:
    for i, h in enumerate(hypotheses):
        if h.id == hypothesis_id:
            return i
    raise KeyError(f"Unknown hypothesis id: {hypothesis_id}")


def add_hypothesis(
    hypotheses: Sequence[Hypothesis],
    label: Optional[str] = None,
    prior: float = 1.0,
    color: Optional[str] = None
) -> Tuple[Hypothesis, ...]:
    n = len(hypotheses)
    if label is None:
        label = f"H{n + 1}"
    if color is None:
        color = DEFAULT_COLORS[n % len(DEFAULT_COLORS)]
    return tuple(hypotheses) + (Hypothesis(new_hypothesis_id(), label, clamp01(prior), color),)


def remove_hypothesis(
    hypotheses: Sequence[Hypothesis],
    hypothesis_id: str
) -> Tuple[Hypothesis, ...]:
    i = index_of(hypotheses, hypothesis_id)
    return tuple(hypotheses[:i]) + tuple(hypotheses[i + 1:])


def reorder_hypotheses(
    hypotheses: Sequence[Hypothesis],
    ordered_ids: Sequence[str]
) -> Tuple[Tuple[Hypothesis, ...], List[int]]:
    """
    Reorder hypotheses by id.

    Args:
        hypotheses: Current hypothesis list
        ordered_ids: Every current id exactly once, in the new order

    Returns:
        Tuple of (reordered hypotheses, order) where order[k] is the old
        index of the hypothesis now at position k

    Raises:
        KeyError: If ordered_ids is not a permutation of the current ids
    """
    current_ids = [h.id for h in hypotheses]
    if sorted(current_ids) != sorted(ordered_ids) or len(set(ordered_ids)) != len(ordered_ids):
        raise KeyError("Reorder ids must be a permutation of the current hypothesis ids")
    order = [current_ids.index(hid) for hid in ordered_ids]
    return tuple(hypotheses[k] for k in order), order


def set_prior(
    hypotheses: Sequence[Hypothesis],
    hypothesis_id: str,
    prior: float
) -> Tuple[Hypothesis, ...]:
    i = index_of(hypotheses, hypothesis_id)
    updated = list(hypotheses)
    updated[i] = replace(updated[i], prior=clamp01(prior))
    return tuple(updated)


def rename_hypothesis(
    hypotheses: Sequence[Hypothesis],
    hypothesis_id: str,
    label: str
) -> Tuple[Hypothesis, ...]:
    i = index_of(hypotheses, hypothesis_id)
    updated = list(hypotheses)
    updated[i] = replace(updated[i], label=label)
    return tuple(updated)


def migrate_hypotheses(records: Any) -> Tuple[Hypothesis, ...]:
    """
    Repair hypothesis records loaded from older or hand-edited files.

    Missing ids and labels are filled in positionally, non-numeric priors
    become 0.5, and the list is padded to DEFAULT_HYPOTHESIS_COUNT entries.
    """
    if not isinstance(records, list):
        records = []

    repaired = []
    for i, rec in enumerate(records):
        if not isinstance(rec, dict):
            rec = {}
        prior = rec.get("prior")
        if isinstance(prior, bool) or not isinstance(prior, (int, float)) or not math.isfinite(prior):
            prior = 0.5
        repaired.append(Hypothesis(
            id=str(rec.get("id") or f"h{i + 1}"),
            label=str(rec.get("label") or f"H{i + 1}"),
            prior=float(prior),
            color=rec.get("color"),
        ))

    while len(repaired) < DEFAULT_HYPOTHESIS_COUNT:
        index = len(repaired) + 1
        repaired.append(Hypothesis(f"h{index}", f"H{index}", 0.5))

    return tuple(repaired)
