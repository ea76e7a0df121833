"""
Session snapshot persistence.

Snapshots are plain JSON documents {id, name, hypotheses, timeline,
history, redo, settings} validated against a JSON Schema. Writes go to a
temporary file that is then renamed into place. AsyncSnapshotSaver runs
saves on a background worker so persistence never blocks, or fails, an
in-memory engine update.
"""

import copy
import hashlib
import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import jsonschema

from .errors import BeliefError, SnapshotError
from .hypotheses import migrate_hypotheses
from .session import BeliefSession, new_session_id
from .steps import steps_from_dicts, steps_to_dicts

logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_SCHEMA_PATH = REPO_ROOT / "config" / "schemas" / "session_snapshot.schema.json"

_schema_cache: Dict[Path, Dict[str, Any]] = {}


def compute_content_hash(content: bytes) -> str:
    """Return "sha256:<hex_digest>" for content bytes."""
    return f"sha256:{hashlib.sha256(content).hexdigest()}"


def load_schema(schema_path: Path = DEFAULT_SCHEMA_PATH) -> Dict[str, Any]:
    if schema_path not in _schema_cache:
        try:
            with open(schema_path, 'r') as f:
                _schema_cache[schema_path] = json.load(f)
        except (IOError, json.JSONDecodeError) as e:
            raise SnapshotError(f"Failed to load snapshot schema {schema_path}: {e}")
    return _schema_cache[schema_path]


def validate_snapshot(
    snapshot: Dict[str, Any],
    schema_path: Optional[Path] = DEFAULT_SCHEMA_PATH
) -> None:
    """
    Validate a snapshot against the schema and the engine invariants.

    Checks, beyond the JSON Schema:
    1. len(timeline) == len(history) + 1
    2. every belief vector has one entry per hypothesis

    Raises:
        SnapshotError: If validation fails
    """
    if schema_path is not None:
        schema = load_schema(schema_path)
        try:
            jsonschema.validate(snapshot, schema)
        except jsonschema.ValidationError as e:
            path = ".".join(str(p) for p in e.absolute_path)
            where = f" at {path}" if path else ""
            raise SnapshotError(f"Schema validation failed{where}: {e.message}")

    timeline = snapshot.get("timeline", [])
    history = snapshot.get("history", [])
    if len(timeline) != len(history) + 1:
        raise SnapshotError(
            f"Timeline has {len(timeline)} entries but history has {len(history)} steps"
        )

    n = len(snapshot.get("hypotheses", []))
    for k, belief in enumerate(timeline):
        if len(belief) != n:
            raise SnapshotError(
                f"timeline[{k}] has {len(belief)} entries, expected {n}"
            )


def save_snapshot(
    path: Path,
    snapshot: Dict[str, Any],
    schema_path: Optional[Path] = DEFAULT_SCHEMA_PATH
) -> str:
    """
    Validate and write a snapshot atomically.

    Args:
        path: Destination JSON file
        snapshot: Snapshot dictionary
        schema_path: Schema to validate against (None skips schema checks)

    Returns:
        "sha256:<hash>" of the written content

    Raises:
        SnapshotError: If validation or the write fails
    """
    validate_snapshot(snapshot, schema_path)

    try:
        content = json.dumps(snapshot, indent=2, sort_keys=True, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise SnapshotError(f"Failed to serialize snapshot: {e}")
    content_bytes = content.encode('utf-8')
    content_hash = compute_content_hash(content_bytes)

    temp_path = path.with_suffix('.tmp')
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(temp_path, 'wb') as f:
            f.write(content_bytes)
        temp_path.replace(path)
    except OSError as e:
        if temp_path.exists():
            temp_path.unlink()
        raise SnapshotError(f"Failed to write snapshot {path}: {e}")

    return content_hash


def load_snapshot(
    path: Path,
    schema_path: Optional[Path] = DEFAULT_SCHEMA_PATH
) -> Dict[str, Any]:
    """
    Read and validate a snapshot.

    Raises:
        SnapshotError: If the file is missing, unreadable or invalid
    """
    try:
        with open(path, 'r') as f:
            snapshot = json.load(f)
    except FileNotFoundError:
        raise SnapshotError(f"Snapshot not found: {path}")
    except (IOError, json.JSONDecodeError) as e:
        raise SnapshotError(f"Failed to read snapshot {path}: {e}")

    if not isinstance(snapshot, dict):
        raise SnapshotError(f"Snapshot {path} must contain a JSON object")
    validate_snapshot(snapshot, schema_path)
    return snapshot


def snapshot_session(session: BeliefSession) -> Dict[str, Any]:
    return session.to_snapshot()


def restore_session(snapshot: Dict[str, Any], **kwargs) -> BeliefSession:
    """Restore a session, converting engine errors to SnapshotError."""
    try:
        return BeliefSession.from_snapshot(snapshot, **kwargs)
    except (BeliefError, KeyError, TypeError, ValueError) as e:
        raise SnapshotError(f"Snapshot cannot be restored: {e}")


def migrate_snapshot(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Bring an exported project into the current snapshot layout.

    Handles camelCase exports (createdAt, numberFormat, likeMatrix, ...),
    missing redo stacks and settings, and repairs hypothesis records.

    Raises:
        SnapshotError: If recorded evidence cannot be converted
    """
    snap = copy.deepcopy(data)

    hypotheses = migrate_hypotheses(snap.get("hypotheses"))
    snap["hypotheses"] = [h.to_dict() for h in hypotheses]
    for h in snap["hypotheses"]:
        h["prior"] = min(1.0, max(0.0, h["prior"]))

    for key in ("history", "redo"):
        records = snap.get(key)
        if not isinstance(records, list):
            snap[key] = []
            continue
        try:
            snap[key] = steps_to_dicts(steps_from_dicts(records))
        except (BeliefError, KeyError, TypeError, ValueError) as e:
            raise SnapshotError(f"Invalid evidence in {key}: {e}")

    settings = snap.get("settings") or {}
    snap["settings"] = {
        "number_format": settings.get("number_format", settings.get("numberFormat", "percent")),
        "round": settings.get("round", 2),
        "theme": settings.get("theme", "light"),
    }

    for key, legacy_key in (("created_at", "createdAt"), ("updated_at", "updatedAt")):
        legacy = snap.pop(legacy_key, None)
        if snap.get(key) is None:
            snap[key] = legacy
        if snap[key] is None:
            del snap[key]

    snap["name"] = snap.get("name") or "Imported Project"
    snap["id"] = str(snap.get("id") or new_session_id())

    # The timeline is derived data; it is rebuilt from priors and history
    rebuilt = restore_session({**snap, "timeline": []})
    snap["timeline"] = [list(b) for b in rebuilt.engine.timeline]
    return snap


class SessionStore:
    """Directory of session snapshots, one <id>.json file per session."""

    def __init__(self, root: Union[str, Path], schema_path: Optional[Path] = DEFAULT_SCHEMA_PATH):
        self.root = Path(root)
        self.schema_path = schema_path

    def path_for(self, session_id: str) -> Path:
        return self.root / f"{session_id}.json"

    def list_sessions(self) -> List[Dict[str, Any]]:
        """Summaries of stored sessions, most recently updated first."""
        if not self.root.exists():
            return []

        summaries = []
        for file_path in self.root.glob("*.json"):
            try:
                with open(file_path, 'r') as f:
                    snap = json.load(f)
            except (IOError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping unreadable session file {file_path}: {e}")
                continue
            if not isinstance(snap, dict):
                logger.warning(f"Skipping session file {file_path}: not a JSON object")
                continue
            summaries.append({
                "id": snap.get("id", file_path.stem),
                "name": snap.get("name", ""),
                "created_at": snap.get("created_at"),
                "updated_at": snap.get("updated_at"),
            })

        summaries.sort(key=lambda s: s.get("updated_at") or "", reverse=True)
        return summaries

    def save(self, session: BeliefSession) -> str:
        return save_snapshot(self.path_for(session.session_id), session.to_snapshot(), self.schema_path)

    def load(self, session_id: str) -> Optional[BeliefSession]:
        path = self.path_for(session_id)
        if not path.exists():
            return None
        return restore_session(load_snapshot(path, self.schema_path))

    def delete(self, session_id: str) -> bool:
        path = self.path_for(session_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def export_json(self, session_id: str) -> str:
        path = self.path_for(session_id)
        snapshot = load_snapshot(path, self.schema_path)
        try:
            return json.dumps(snapshot, indent=2, sort_keys=True, ensure_ascii=False, allow_nan=False)
        except ValueError as e:
            raise SnapshotError(f"Failed to serialize snapshot: {e}")

    def import_json(self, data: Union[str, Dict[str, Any]]) -> BeliefSession:
        """
        Import an exported project under a new id and save it.

        Raises:
            SnapshotError: If the data cannot be parsed or restored
        """
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as e:
                raise SnapshotError(f"Invalid JSON: {e}")
        if not isinstance(data, dict):
            raise SnapshotError("Imported project must be a JSON object")

        snap = migrate_snapshot(data)
        now = datetime.now(timezone.utc).isoformat()
        snap["id"] = new_session_id()
        snap["name"] = f"{snap['name']} (imported)"
        snap["created_at"] = now
        snap["updated_at"] = now

        validate_snapshot(snap, self.schema_path)
        session = restore_session(snap)
        self.save(session)
        return session


class AsyncSnapshotSaver:
    """
    Best-effort background persistence for a session.

    submit() takes the snapshot synchronously (cheap, consistent) and hands
    the write to a single worker thread. Failed writes are logged and
    counted; they never propagate into the session or its engine.

    Usage:
        saver = AsyncSnapshotSaver(store)
        session.on_change = saver.submit
    """

    def __init__(self, store: SessionStore):
        self.store = store
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="snapshot-saver")
        self._lock = threading.Lock()
        self._pending: List[Future] = []
        self.failures = 0
        self.last_error: Optional[Exception] = None

    def submit(self, session: BeliefSession) -> Future:
        snapshot = session.to_snapshot()
        path = self.store.path_for(session.session_id)
        future = self._executor.submit(self._write, path, snapshot)
        with self._lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)
        return future

    def _write(self, path: Path, snapshot: Dict[str, Any]) -> Optional[str]:
        try:
            return save_snapshot(path, snapshot, self.store.schema_path)
        except SnapshotError as e:
            with self._lock:
                self.failures += 1
                self.last_error = e
            logger.warning(f"Background save of {path} failed: {e}")
            return None

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for queued writes to finish."""
        with self._lock:
            pending = list(self._pending)
        for future in pending:
            future.result(timeout=timeout)

    def close(self) -> None:
        self.flush()
        self._executor.shutdown(wait=True)
