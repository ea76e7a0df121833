"""
Plain-text exports of session results.

CSV of the latest posterior, CSV of the full timeline and a one-line
summary per recorded step. Numbers are formatted with the session's
display settings.
"""

import csv
import io
from datetime import datetime, timezone
from typing import List, Optional

from .config import Settings
from .session import BeliefSession
from .steps import EvidenceStep, JeffreyStep


def format_probability(p: float, settings: Optional[Settings] = None) -> str:
    """Format a probability as a percentage or decimal per settings."""
    settings = settings or Settings()
    if settings.number_format == "percent":
        return f"{p * 100:.{settings.round}f}%"
    return f"{p:.{settings.round}f}"


def posterior_rows(session: BeliefSession, formatted: bool = False) -> List[List[str]]:
    rows = []
    for hypothesis, p in session.current_posterior():
        value = format_probability(p, session.settings) if formatted else repr(p)
        rows.append([hypothesis.label, value])
    return rows


def _to_csv(rows: List[List[str]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerows(rows)
    return buffer.getvalue()


def results_csv(session: BeliefSession) -> str:
    """CSV with one row per hypothesis and its current posterior."""
    return _to_csv([["Hypothesis", "Posterior Probability"]] + posterior_rows(session))


def timeline_csv(session: BeliefSession) -> str:
    """
    CSV of the whole timeline.

    Row 0 is the prior; row k is the belief after step k, labelled with
    that step's label.
    """
    timeline, history, _ = session.engine.state()
    header = ["Step", "Evidence"] + [h.label for h in session.hypotheses]
    rows = [header]
    for k, belief in enumerate(timeline):
        evidence = "Prior" if k == 0 else history[k - 1].label
        rows.append([str(k), evidence] + [repr(p) for p in belief])
    return _to_csv(rows)


def _describe(step: EvidenceStep) -> str:
    if isinstance(step, JeffreyStep):
        return f"Evidence (Jeffrey, {step.category_count} categories)"
    return "Evidence (Certain)"


def history_summary(session: BeliefSession) -> List[str]:
    """One human-readable line per recorded evidence step."""
    lines = []
    for idx, step in enumerate(session.engine.history, 1):
        line = f"#{idx} {_describe(step)}"
        if step.label:
            line += f" - {step.label}"
        if step.at is not None:
            when = datetime.fromtimestamp(step.at / 1000, tz=timezone.utc)
            line += f" - {when.strftime('%Y-%m-%d %H:%M:%S')} UTC"
        lines.append(line)
    return lines
