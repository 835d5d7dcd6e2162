"""State — what iamrecon has applied, and an audit journal of how.

The state file maps each managed address to the identity and attributes
it had when last applied. It is how the planner finds orphans (managed
resources no longer declared) and how drift detection knows what to
expect remotely. Every executed operation is also appended to a JSONL
journal, successful or not.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from iamrecon.errors import StateError
from iamrecon.models.resources import ResourceKind

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StateRecord:
    """A managed resource as it was last applied."""

    address: str
    kind: str
    identity: dict = field(default_factory=dict)
    attributes: dict = field(default_factory=dict)
    applied_at: str = ""  # ISO 8601 timestamp

    @property
    def resource_kind(self) -> ResourceKind:
        return ResourceKind(self.kind)


@dataclass
class JournalEntry:
    """Auditable record of one executed operation."""

    address: str
    operation: str  # create | update | delete
    backend: str
    success: bool
    error: str = ""
    actor: str = ""
    at: str = ""


class StateStore:
    """Stores managed-resource state and the operation journal for a workspace."""

    STATE_FILE = "state.json"
    JOURNAL_FILE = "journal.jsonl"

    def __init__(self, state_dir: str | Path):
        self.state_dir = Path(state_dir)
        self.state_file = self.state_dir / self.STATE_FILE
        self.journal_file = self.state_dir / self.JOURNAL_FILE
        self.backend: str = ""
        self._records: dict[str, StateRecord] = {}
        self._load()

    # --- Records ---

    def get(self, address: str) -> StateRecord | None:
        return self._records.get(address)

    def records(self) -> list[StateRecord]:
        return [self._records[a] for a in sorted(self._records)]

    def addresses(self) -> set[str]:
        return set(self._records)

    def put(self, record: StateRecord) -> None:
        if not record.applied_at:
            record.applied_at = _now()
        self._records[record.address] = record
        self._save()

    def remove(self, address: str) -> None:
        if self._records.pop(address, None) is not None:
            self._save()

    def bind_backend(self, backend: str) -> None:
        """Tie this state to a backend; refuse to mix backends in one workspace."""
        if self.backend and self.backend != backend and self._records:
            raise StateError(
                f"State in {self.state_dir} was written by the '{self.backend}' backend; "
                f"refusing to reconcile it with '{backend}'."
            )
        self.backend = backend

    # --- Journal ---

    def record_operation(self, entry: JournalEntry) -> None:
        """Append an operation to the journal."""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        if not entry.at:
            entry.at = _now()
        with open(self.journal_file, "a") as f:
            f.write(json.dumps(asdict(entry)) + "\n")

    def history(self, address: str | None = None) -> list[JournalEntry]:
        """Journal entries, optionally filtered by address."""
        if not self.journal_file.exists():
            return []

        entries = []
        with open(self.journal_file) as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                if address and data.get("address") != address:
                    continue
                entries.append(JournalEntry(**data))
        return entries

    # --- Persistence ---

    def _load(self) -> None:
        if not self.state_file.exists():
            return
        try:
            with open(self.state_file) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StateError(f"Corrupt state file {self.state_file}: {e}") from e

        if data.get("version") != STATE_VERSION:
            raise StateError(
                f"Unsupported state version {data.get('version')!r} in {self.state_file}"
            )
        self.backend = data.get("backend", "")
        for address, entry in data.get("resources", {}).items():
            self._records[address] = StateRecord(address=address, **entry)
        logger.debug("Loaded %d state record(s) from %s", len(self._records), self.state_file)

    def _save(self) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        data = {
            "version": STATE_VERSION,
            "backend": self.backend,
            "resources": {
                r.address: {
                    "kind": r.kind,
                    "identity": r.identity,
                    "attributes": r.attributes,
                    "applied_at": r.applied_at,
                }
                for r in self.records()
            },
        }
        tmp = self.state_file.with_suffix(".json.tmp")
        with open(tmp, "w") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        tmp.replace(self.state_file)
