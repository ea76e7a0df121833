"""
Belief tracking session.

A session owns the hypothesis list, the history engine and the display
settings. The engine is driven through explicit command messages
(ApplyEvidence, Undo, Redo, ClearLast, Recompute) and any change to the
hypothesis set forces a full recompute so belief vectors never drift out
of alignment with hypothesis identity.
"""

import logging
import secrets
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from . import hypotheses as hyp
from .config import Settings
from .errors import ShapeError
from .history import HistoryEngine, StepOutcome
from .hypotheses import Hypothesis
from .steps import CertainStep, EvidenceStep, JeffreyStep

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplyEvidence:
    step: EvidenceStep


@dataclass(frozen=True)
class Undo:
    pass


@dataclass(frozen=True)
class Redo:
    pass


@dataclass(frozen=True)
class ClearLast:
    pass


@dataclass(frozen=True)
class Recompute:
    pass


Command = Union[ApplyEvidence, Undo, Redo, ClearLast, Recompute]


def _now_utc() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_session_id() -> str:
    return "p-" + secrets.token_hex(6)


class BeliefSession:
    """Hypotheses, evidence engine and settings for one project."""

    def __init__(
        self,
        hypotheses: Optional[Sequence[Hypothesis]] = None,
        settings: Optional[Settings] = None,
        engine: Optional[HistoryEngine] = None,
        name: str = "My Project",
        session_id: Optional[str] = None,
        created_at: Optional[str] = None,
        updated_at: Optional[str] = None,
        on_change: Optional[Callable[["BeliefSession"], None]] = None,
    ):
        if hypotheses is None:
            hypotheses = hyp.default_hypotheses()
        hypotheses = tuple(hypotheses)
        if len(hypotheses) < hyp.MIN_HYPOTHESES:
            raise ShapeError(f"A session needs at least {hyp.MIN_HYPOTHESES} hypothesis")

        if engine is None:
            engine = HistoryEngine(hyp.priors_of(hypotheses))
        elif engine.hypothesis_count != len(hypotheses):
            raise ShapeError(
                f"Engine tracks {engine.hypothesis_count} hypotheses, "
                f"session has {len(hypotheses)}"
            )

        self._lock = threading.RLock()
        self._hypotheses = hypotheses
        self.engine = engine
        self.settings = settings or Settings()
        self.name = name
        self.session_id = session_id or new_session_id()
        self.created_at = created_at or _now_utc()
        self.updated_at = updated_at or self.created_at
        self.on_change = on_change

    @property
    def hypotheses(self) -> Tuple[Hypothesis, ...]:
        return self._hypotheses

    def current_posterior(self) -> List[Tuple[Hypothesis, float]]:
        """Pair each hypothesis with its latest belief."""
        with self._lock:
            return list(zip(self._hypotheses, self.engine.current))

    def _changed(self) -> None:
        self.updated_at = _now_utc()
        if self.on_change is None:
            return
        try:
            self.on_change(self)
        except Exception as e:
            # Change listeners (persistence) are best-effort
            logger.warning(f"Session {self.session_id}: change listener failed: {e}")

    # Commands

    def handle(self, command: Command) -> Any:
        """
        Execute one command against the engine.

        Returns:
            StepOutcome for ApplyEvidence and Redo (None if nothing to redo),
            bool for Undo and ClearLast, the rebuilt timeline for Recompute

        Raises:
            ShapeError: If evidence does not fit the hypothesis set
            TypeError: For unknown commands
        """
        if isinstance(command, ApplyEvidence):
            return self.apply_evidence(command.step)
        if isinstance(command, Undo):
            return self.undo()
        if isinstance(command, Redo):
            return self.redo()
        if isinstance(command, ClearLast):
            return self.clear_last()
        if isinstance(command, Recompute):
            return self.recompute()
        raise TypeError(f"Unsupported command: {type(command).__name__}")

    def apply_evidence(self, step: EvidenceStep) -> StepOutcome:
        with self._lock:
            step = self._stamp(step)
            outcome = self.engine.apply_step(step)
            if outcome.degenerate:
                logger.warning(f"Evidence '{step.label}' was degenerate ({outcome.degeneracy})")
            self._changed()
            return outcome

    def _stamp(self, step: EvidenceStep) -> EvidenceStep:
        number = len(self.engine.history) + 1
        changes = {}
        if not step.label:
            prefix = "Jeffrey Evidence" if isinstance(step, JeffreyStep) else "Evidence"
            changes["label"] = f"{prefix} {number}"
        if step.at is None:
            changes["at"] = int(time.time() * 1000)
        return replace(step, **changes) if changes else step

    def apply_certain(self, likelihoods: Sequence[float], label: str = "") -> StepOutcome:
        return self.apply_evidence(CertainStep(likelihoods, label))

    def apply_jeffrey(
        self,
        categories: Sequence[str],
        likelihood_matrix: Sequence[Sequence[float]],
        target_weights: Sequence[float],
        label: str = ""
    ) -> StepOutcome:
        return self.apply_evidence(JeffreyStep(categories, likelihood_matrix, target_weights, label))

    def undo(self) -> bool:
        with self._lock:
            done = self.engine.undo()
            if done:
                self._changed()
            return done

    def redo(self) -> Optional[StepOutcome]:
        with self._lock:
            outcome = self.engine.redo()
            if outcome is not None:
                self._changed()
            return outcome

    def clear_last(self) -> bool:
        with self._lock:
            done = self.engine.clear_last()
            if done:
                self._changed()
            return done

    def recompute(self):
        with self._lock:
            timeline = self.engine.recompute_from_start(hyp.priors_of(self._hypotheses))
            self._changed()
            return timeline

    # Hypothesis edits

    def _rebuild(
        self,
        new_hypotheses: Tuple[Hypothesis, ...],
        history: Optional[Sequence[EvidenceStep]] = None,
        redo: Optional[Sequence[EvidenceStep]] = None
    ) -> None:
        priors = hyp.priors_of(new_hypotheses)
        if history is None:
            self.engine.recompute_from_start(priors)
        else:
            self.engine.replace_steps(priors, history, redo or [])
        self._hypotheses = new_hypotheses
        self._changed()

    def set_prior(self, hypothesis_id: str, prior: float) -> None:
        with self._lock:
            self._rebuild(hyp.set_prior(self._hypotheses, hypothesis_id, prior))

    def normalize_priors(self) -> None:
        with self._lock:
            self._rebuild(hyp.normalize_priors(self._hypotheses))

    def rename(self, hypothesis_id: str, label: str) -> None:
        with self._lock:
            self._hypotheses = hyp.rename_hypothesis(self._hypotheses, hypothesis_id, label)
            self._changed()

    def add(self, label: Optional[str] = None, prior: float = 1.0) -> Hypothesis:
        """
        Add a hypothesis.

        Raises:
            ShapeError: If evidence has already been recorded, since past
                steps carry no likelihood for the new hypothesis
        """
        with self._lock:
            _, history, redo = self.engine.state()
            if history or redo:
                raise ShapeError(
                    "Cannot add a hypothesis after evidence was recorded; "
                    "recorded steps have no likelihood for it"
                )
            new_hypotheses = hyp.add_hypothesis(self._hypotheses, label, prior)
            self._rebuild(new_hypotheses)
            return new_hypotheses[-1]

    def remove(self, hypothesis_id: str) -> None:
        """
        Remove a hypothesis and its row from every recorded step.

        Raises:
            ShapeError: If it is the last remaining hypothesis
            KeyError: If the id is unknown
        """
        with self._lock:
            if len(self._hypotheses) <= hyp.MIN_HYPOTHESES:
                raise ShapeError(f"At least {hyp.MIN_HYPOTHESES} hypothesis must remain")
            index = hyp.index_of(self._hypotheses, hypothesis_id)
            _, history, redo = self.engine.state()
            self._rebuild(
                hyp.remove_hypothesis(self._hypotheses, hypothesis_id),
                [s.without(index) for s in history],
                [s.without(index) for s in redo],
            )

    def reorder(self, ordered_ids: Sequence[str]) -> None:
        """Reorder hypotheses by id, permuting every recorded step to match."""
        with self._lock:
            new_hypotheses, order = hyp.reorder_hypotheses(self._hypotheses, ordered_ids)
            _, history, redo = self.engine.state()
            self._rebuild(
                new_hypotheses,
                [s.permuted(order) for s in history],
                [s.permuted(order) for s in redo],
            )

    # Snapshots

    def to_snapshot(self) -> Dict[str, Any]:
        """Plain serializable view: {id, name, hypotheses, timeline, history, redo, settings}."""
        with self._lock:
            snapshot = {
                "id": self.session_id,
                "name": self.name,
                "created_at": self.created_at,
                "updated_at": self.updated_at,
                "hypotheses": [h.to_dict() for h in self._hypotheses],
                "settings": self.settings.to_dict(),
            }
            snapshot.update(self.engine.to_snapshot())
            return snapshot

    @classmethod
    def from_snapshot(
        cls,
        snapshot: Dict[str, Any],
        on_change: Optional[Callable[["BeliefSession"], None]] = None
    ) -> "BeliefSession":
        """
        Rebuild a session, replaying recorded evidence from the hypothesis priors.

        Raises:
            ShapeError: If recorded steps do not fit the hypothesis list
        """
        hypotheses = tuple(Hypothesis.from_dict(h) for h in snapshot["hypotheses"])
        engine = HistoryEngine.from_snapshot(snapshot, hyp.priors_of(hypotheses))
        return cls(
            hypotheses=hypotheses,
            settings=Settings.from_dict(snapshot.get("settings")),
            engine=engine,
            name=snapshot.get("name", "My Project"),
            session_id=snapshot.get("id"),
            created_at=snapshot.get("created_at"),
            updated_at=snapshot.get("updated_at"),
            on_change=on_change,
        )
