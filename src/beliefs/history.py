"""
Evidence history, belief timeline and undo/redo state machine.

The engine owns three sequences for one belief-tracking session:

    timeline  - belief vectors; timeline[0] is the normalized prior
    history   - evidence steps; timeline[k + 1] = apply(history[k], timeline[k])
    redo      - steps removed by undo, most recent last

len(timeline) == len(history) + 1 always holds. Every operation either
completes fully or leaves all three sequences untouched, and a single
re-entrant lock serializes mutations and reads.
"""

import logging
import math
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .errors import ShapeError
from .steps import EvidenceStep, apply_step, steps_from_dicts, steps_to_dicts
from .updates import normalize_probs

logger = logging.getLogger(__name__)

BeliefVector = Tuple[float, ...]

# Tolerance when comparing a stored timeline against its replay
REPLAY_TOLERANCE = 1e-9


@dataclass(frozen=True)
class StepOutcome:
    """Result of applying (or re-applying) one evidence step."""
    posterior: BeliefVector
    degeneracy: Optional[str] = None

    @property
    def degenerate(self) -> bool:
        return self.degeneracy is not None


def initial_belief(priors: Sequence[Any]) -> BeliefVector:
    return tuple(normalize_probs(priors))


def replay(priors: Sequence[Any], history: Sequence[EvidenceStep]) -> List[BeliefVector]:
    """
    Rebuild a timeline from priors and recorded evidence.

    This is the single code path used by incremental application, redo and
    recompute, so replaying the same history always reproduces the same
    belief vectors.

    Args:
        priors: Prior weights (normalized here)
        history: Evidence steps in application order

    Returns:
        Timeline with len(history) + 1 belief vectors

    Raises:
        ShapeError: If any step does not fit the hypothesis count
    """
    timeline = [initial_belief(priors)]
    for step in history:
        result = apply_step(step, timeline[-1])
        timeline.append(tuple(result.posterior))
    return timeline


def timelines_match(
    a: Sequence[Sequence[float]],
    b: Sequence[Sequence[float]],
    tolerance: float = REPLAY_TOLERANCE
) -> bool:
    if len(a) != len(b):
        return False
    for va, vb in zip(a, b):
        if len(va) != len(vb):
            return False
        if any(not math.isclose(x, y, rel_tol=0.0, abs_tol=tolerance) for x, y in zip(va, vb)):
            return False
    return True


class HistoryEngine:
    """Owns the (timeline, history, redo) triple for one session."""

    def __init__(self, priors: Sequence[Any]):
        self._lock = threading.RLock()
        self._timeline: List[BeliefVector] = [initial_belief(priors)]
        self._history: List[EvidenceStep] = []
        self._redo: List[EvidenceStep] = []

    # Read-only views

    @property
    def timeline(self) -> Tuple[BeliefVector, ...]:
        with self._lock:
            return tuple(self._timeline)

    @property
    def history(self) -> Tuple[EvidenceStep, ...]:
        with self._lock:
            return tuple(self._history)

    @property
    def redo_stack(self) -> Tuple[EvidenceStep, ...]:
        with self._lock:
            return tuple(self._redo)

    @property
    def current(self) -> BeliefVector:
        with self._lock:
            return self._timeline[-1]

    @property
    def priors(self) -> BeliefVector:
        with self._lock:
            return self._timeline[0]

    @property
    def hypothesis_count(self) -> int:
        with self._lock:
            return len(self._timeline[0])

    @property
    def can_undo(self) -> bool:
        with self._lock:
            return bool(self._history)

    @property
    def can_redo(self) -> bool:
        with self._lock:
            return bool(self._redo)

    def state(self) -> Tuple[Tuple[BeliefVector, ...], Tuple[EvidenceStep, ...], Tuple[EvidenceStep, ...]]:
        """Consistent view of (timeline, history, redo) taken under one lock."""
        with self._lock:
            return tuple(self._timeline), tuple(self._history), tuple(self._redo)

    # Transitions

    def apply_step(self, step: EvidenceStep) -> StepOutcome:
        """
        Apply new evidence to the latest belief.

        Clears the redo stack; applying evidence after an undo discards the
        undone branch.

        Raises:
            ShapeError: If the step does not match the hypothesis count.
                The engine is left unchanged.
        """
        with self._lock:
            result = apply_step(step, self._timeline[-1])
            outcome = StepOutcome(tuple(result.posterior), result.degeneracy)

            self._timeline.append(outcome.posterior)
            self._history.append(step)
            if self._redo:
                logger.debug(f"Discarding {len(self._redo)} redo step(s)")
            self._redo.clear()

            logger.debug(f"Applied {step.kind} step #{len(self._history)}")
            return outcome

    def undo(self) -> bool:
        """Move the last step onto the redo stack. Returns False if there is nothing to undo."""
        with self._lock:
            if not self._history:
                return False
            self._redo.append(self._history.pop())
            self._timeline.pop()
            return True

    def redo(self) -> Optional[StepOutcome]:
        """
        Re-apply the most recently undone step.

        The posterior is recomputed from the current belief rather than
        restored from a cached value.

        Returns:
            StepOutcome, or None if the redo stack is empty
        """
        with self._lock:
            if not self._redo:
                return None
            step = self._redo[-1]
            result = apply_step(step, self._timeline[-1])
            outcome = StepOutcome(tuple(result.posterior), result.degeneracy)

            self._redo.pop()
            self._timeline.append(outcome.posterior)
            self._history.append(step)
            return outcome

    def clear_last(self) -> bool:
        """Discard the last step without making it available to redo."""
        with self._lock:
            if not self._history:
                return False
            self._history.pop()
            self._timeline.pop()
            return True

    def recompute_from_start(self, new_priors: Sequence[Any]) -> Tuple[BeliefVector, ...]:
        """
        Reset the timeline to new priors and replay every recorded step.

        Used whenever the hypothesis set changes. Steps on the redo stack are
        checked against the new hypothesis count as well.

        Args:
            new_priors: Prior weights for the (possibly changed) hypothesis set

        Returns:
            The rebuilt timeline

        Raises:
            ShapeError: If any recorded step no longer fits. The engine is
                left unchanged.
        """
        with self._lock:
            timeline = replay(new_priors, self._history)
            n = len(timeline[0])
            for step in self._redo:
                step.validate(n)

            self._timeline = timeline
            logger.debug(f"Recomputed timeline over {len(self._history)} step(s)")
            return tuple(self._timeline)

    def replace_steps(
        self,
        new_priors: Sequence[Any],
        history: Sequence[EvidenceStep],
        redo: Sequence[EvidenceStep]
    ) -> Tuple[BeliefVector, ...]:
        """
        Swap in rewritten steps (e.g. after reordering hypotheses) and recompute.

        Raises:
            ShapeError: If the steps do not fit new_priors. The engine is
                left unchanged.
        """
        with self._lock:
            timeline = replay(new_priors, history)
            n = len(timeline[0])
            for step in redo:
                step.validate(n)

            self._timeline = timeline
            self._history = list(history)
            self._redo = list(redo)
            return tuple(self._timeline)

    # Snapshots

    def to_snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "timeline": [list(b) for b in self._timeline],
                "history": steps_to_dicts(self._history),
                "redo": steps_to_dicts(self._redo),
            }

    @classmethod
    def from_snapshot(
        cls,
        snapshot: Dict[str, Any],
        priors: Optional[Sequence[Any]] = None
    ) -> "HistoryEngine":
        """
        Rebuild an engine from a snapshot.

        The stored timeline is treated as a cache: it is replayed from the
        priors and the recorded history, and a warning is logged if the two
        disagree.

        Args:
            snapshot: Dict with timeline, history and redo
            priors: Priors to replay from (defaults to the stored timeline[0])

        Raises:
            ShapeError: If the snapshot is structurally inconsistent
        """
        stored = snapshot.get("timeline") or []
        if priors is None:
            if not stored:
                raise ShapeError("Snapshot has no timeline and no priors were given")
            priors = stored[0]

        engine = cls(priors)
        engine.replace_steps(
            priors,
            steps_from_dicts(snapshot.get("history", [])),
            steps_from_dicts(snapshot.get("redo", [])),
        )

        if stored and not timelines_match(stored, engine.timeline):
            logger.warning("Stored timeline differs from replayed history; using replay")
        return engine
