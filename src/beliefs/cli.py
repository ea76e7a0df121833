"""
Command-line interface for belief tracking sessions.

Each invocation loads a session snapshot, runs one command and writes the
snapshot back.

Usage:
    python -m src.beliefs.cli --session s.json init --hypotheses Rain Dry
    python -m src.beliefs.cli --session s.json apply 0.9 0.2 --label "Clouds"
    python -m src.beliefs.cli --session s.json jeffrey --categories Wet Dry \
        --weights 0.7 0.3 --row 0.9,0.1 --row 0.2,0.8
    python -m src.beliefs.cli --session s.json undo
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from src.logging_config import configure_logging

from . import export
from . import hypotheses as hyp
from . import storage
from .config import default_settings, load_config
from .errors import BeliefError
from .session import BeliefSession
from .updates import normalize_probs

logger = logging.getLogger(__name__)


def _parse_row(text: str) -> List[float]:
    try:
        return [float(v) for v in text.split(",")]
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid likelihood row: {text!r}")


def _config_path(args: argparse.Namespace, key: str) -> Path:
    path = Path(args.config_data["storage"][key])
    if not path.is_absolute():
        path = storage.REPO_ROOT / path
    return path


def _load(args: argparse.Namespace) -> BeliefSession:
    logger.debug(f"Loading session from {args.session}")
    snapshot = storage.load_snapshot(Path(args.session), _config_path(args, "schema_path"))
    return storage.restore_session(snapshot)


def _save(args: argparse.Namespace, session: BeliefSession) -> None:
    storage.save_snapshot(
        Path(args.session), storage.snapshot_session(session), _config_path(args, "schema_path")
    )


def _print_posterior(session: BeliefSession) -> None:
    for label, value in export.posterior_rows(session, formatted=True):
        print(f"  {label:<24} {value}")


def _report_outcome(outcome) -> None:
    if outcome is not None and outcome.degenerate:
        print(f"Warning: degenerate evidence ({outcome.degeneracy})", file=sys.stderr)


def cmd_init(args: argparse.Namespace) -> int:
    """Create a new session file."""
    path = Path(args.session)
    if path.exists() and not args.force:
        print(f"Error: {path} already exists (use --force to overwrite)", file=sys.stderr)
        return 1

    labels = args.hypotheses or ["H1", "H2"]
    priors = args.priors or [1.0] * len(labels)
    if len(priors) != len(labels):
        print("Error: --priors must give one value per hypothesis", file=sys.stderr)
        return 1

    hypotheses = ()
    for label, prior in zip(labels, normalize_probs(priors)):
        hypotheses = hyp.add_hypothesis(hypotheses, label, prior)

    session = BeliefSession(
        hypotheses=hypotheses,
        settings=default_settings(args.config_data),
        name=args.name,
    )
    _save(args, session)
    print(f"Created session {session.session_id} with {len(labels)} hypotheses")
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    """Show the current posterior and evidence history."""
    session = _load(args)
    print(f"{session.name} ({session.session_id})")
    print("Current beliefs:")
    _print_posterior(session)

    lines = export.history_summary(session)
    if lines:
        print()
        print("History:")
        for line in lines:
            print(f"  {line}")

    if args.verbose:
        print()
        print("Hypothesis ids:")
        for h in session.hypotheses:
            print(f"  {h.id}: {h.label}")
    return 0


def cmd_apply(args: argparse.Namespace) -> int:
    """Apply certain evidence."""
    session = _load(args)
    outcome = session.apply_certain(args.likelihoods, label=args.label or "")
    _save(args, session)
    _report_outcome(outcome)
    _print_posterior(session)
    return 0


def cmd_jeffrey(args: argparse.Namespace) -> int:
    """Apply uncertain (Jeffrey) evidence."""
    session = _load(args)
    outcome = session.apply_jeffrey(args.categories, args.row, args.weights, label=args.label or "")
    _save(args, session)
    _report_outcome(outcome)
    _print_posterior(session)
    return 0


def cmd_undo(args: argparse.Namespace) -> int:
    session = _load(args)
    if not session.undo():
        print("Nothing to undo.")
        return 0
    _save(args, session)
    _print_posterior(session)
    return 0


def cmd_redo(args: argparse.Namespace) -> int:
    session = _load(args)
    outcome = session.redo()
    if outcome is None:
        print("Nothing to redo.")
        return 0
    _save(args, session)
    _report_outcome(outcome)
    _print_posterior(session)
    return 0


def cmd_clear_last(args: argparse.Namespace) -> int:
    session = _load(args)
    if not session.clear_last():
        print("History is empty.")
        return 0
    _save(args, session)
    _print_posterior(session)
    return 0


def cmd_hypothesis(args: argparse.Namespace) -> int:
    """Add, remove or re-weight a hypothesis."""
    session = _load(args)
    if args.action == "add":
        added = session.add(args.label, args.prior)
        print(f"Added {added.label} ({added.id})")
    elif args.action == "remove":
        session.remove(args.id)
        print(f"Removed {args.id}")
    elif args.action == "prior":
        session.set_prior(args.id, args.value)
    _save(args, session)
    _print_posterior(session)
    return 0


def cmd_sessions(args: argparse.Namespace) -> int:
    """List sessions stored in the configured sessions directory."""
    store = storage.SessionStore(_config_path(args, "sessions_dir"), _config_path(args, "schema_path"))
    summaries = store.list_sessions()
    if not summaries:
        print(f"No sessions in {store.root}")
        return 0
    for s in summaries:
        print(f"  {s['id']:<16} {s['name']:<24} {s['updated_at'] or '-'}")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Export results or the timeline as CSV."""
    session = _load(args)
    if args.what == "timeline":
        content = export.timeline_csv(session)
    else:
        content = export.results_csv(session)

    if args.output:
        try:
            with open(args.output, 'w') as f:
                f.write(content)
        except OSError as e:
            print(f"Error: cannot write {args.output}: {e}", file=sys.stderr)
            return 1
        print(f"Exported {args.what} to {args.output}")
    else:
        print(content, end="")
    return 0


def main(argv: Optional[list] = None) -> int:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="beliefs",
        description="Sequential Bayesian belief revision"
    )

    parser.add_argument(
        "--session",
        default="session.json",
        help="Path to session snapshot file"
    )
    parser.add_argument(
        "--config",
        help="Path to YAML config (default: config/beliefs.yaml)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    init_parser = subparsers.add_parser("init", help="Create a new session")
    init_parser.add_argument("--name", default="My Project", help="Session name")
    init_parser.add_argument("--hypotheses", nargs="+", help="Hypothesis labels")
    init_parser.add_argument("--priors", nargs="+", type=float, help="Prior weights")
    init_parser.add_argument("--force", action="store_true", help="Overwrite an existing file")
    init_parser.set_defaults(func=cmd_init)

    show_parser = subparsers.add_parser("show", help="Show beliefs and history")
    show_parser.set_defaults(func=cmd_show)

    apply_parser = subparsers.add_parser("apply", help="Apply certain evidence")
    apply_parser.add_argument("likelihoods", nargs="+", type=float,
                              help="P(E|H) for each hypothesis, in order")
    apply_parser.add_argument("--label", help="Evidence label")
    apply_parser.set_defaults(func=cmd_apply)

    jeffrey_parser = subparsers.add_parser("jeffrey", help="Apply uncertain evidence")
    jeffrey_parser.add_argument("--categories", nargs="+", required=True, help="Category labels")
    jeffrey_parser.add_argument("--weights", nargs="+", type=float, required=True,
                                help="Target probability of each category")
    jeffrey_parser.add_argument("--row", action="append", type=_parse_row, required=True,
                                help="Comma-separated P(E_j|H) for one hypothesis (repeat per hypothesis)")
    jeffrey_parser.add_argument("--label", help="Evidence label")
    jeffrey_parser.set_defaults(func=cmd_jeffrey)

    subparsers.add_parser("undo", help="Undo the last step").set_defaults(func=cmd_undo)
    subparsers.add_parser("redo", help="Redo the last undone step").set_defaults(func=cmd_redo)
    subparsers.add_parser("clear-last", help="Discard the last step").set_defaults(func=cmd_clear_last)

    hyp_parser = subparsers.add_parser("hypothesis", help="Edit hypotheses")
    hyp_sub = hyp_parser.add_subparsers(dest="action", required=True)
    add_parser = hyp_sub.add_parser("add", help="Add a hypothesis (only before any evidence)")
    add_parser.add_argument("label")
    add_parser.add_argument("--prior", type=float, default=1.0)
    remove_parser = hyp_sub.add_parser("remove", help="Remove a hypothesis")
    remove_parser.add_argument("id")
    prior_parser = hyp_sub.add_parser("prior", help="Set a hypothesis prior")
    prior_parser.add_argument("id")
    prior_parser.add_argument("value", type=float)
    hyp_parser.set_defaults(func=cmd_hypothesis)

    subparsers.add_parser("sessions", help="List stored sessions").set_defaults(func=cmd_sessions)

    export_parser = subparsers.add_parser("export", help="Export CSV")
    export_parser.add_argument("--what", choices=["results", "timeline"], default="results")
    export_parser.add_argument("--output", "-o", help="Output file")
    export_parser.set_defaults(func=cmd_export)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    args.config_data = load_config(Path(args.config) if args.config else None)

    try:
        return args.func(args)
    except (BeliefError, KeyError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
