"""Persistence of last-known resource state across runs.

The engine calls ``load(urn)`` before diffing a resource and ``save(urn,
state)`` after every successful operation (``delete(urn)`` after a
successful deletion). Stores are called from worker threads, so
implementations must be thread-safe.
"""

import json
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional


def to_plain(value: Any) -> Any:
    """Return value in the shape it takes after a JSON round-trip.

    Tuples and sets become lists and mapping keys become strings, so a
    freshly resolved input compares equal to the same input loaded back
    from a JSON state file. Other leaves are returned unchanged.
    """
    if isinstance(value, Mapping):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((to_plain(v) for v in value), key=repr)
    return value


@dataclass
class ResourceState:
    """Last-known state of one deployed resource.

    Attributes:
        urn: Stable resource id (state key)
        type: Resource type token
        name: Logical resource name
        id: Provider-assigned id of the physical resource
        inputs: Fully resolved inputs the resource was last converged with
        outputs: Outputs reported by the provider
        parent_id: URN of the parent resource, if any
        dependencies: URNs the resource depended on when last converged
    """

    urn: str
    type: str
    name: str
    id: str
    inputs: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    parent_id: Optional[str] = None
    dependencies: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceState":
        return cls(
            urn=data["urn"],
            type=data["type"],
            name=data["name"],
            id=data["id"],
            inputs=dict(data.get("inputs") or {}),
            outputs=dict(data.get("outputs") or {}),
            parent_id=data.get("parent_id"),
            dependencies=list(data.get("dependencies") or []),
        )


class StateStore(ABC):
    """Abstract base class for state store implementations."""

    @abstractmethod
    def load(self, urn: str) -> Optional[ResourceState]:
        """Return the last-known state of a resource, or None if unknown."""
        pass

    @abstractmethod
    def save(self, urn: str, state: ResourceState) -> None:
        """Record the state of a resource after a successful operation."""
        pass

    @abstractmethod
    def delete(self, urn: str) -> None:
        """Forget a resource after it has been deleted."""
        pass

    @abstractmethod
    def list(self) -> List[ResourceState]:
        """Return every recorded resource in the order it was first saved."""
        pass


class InMemoryStateStore(StateStore):
    """Dictionary-backed store, useful for previews and tests."""

    def __init__(self, records: Optional[List[ResourceState]] = None):
        self._lock = threading.Lock()
        self._records: Dict[str, ResourceState] = {}
        for record in records or []:
            self._records[record.urn] = record

    def load(self, urn: str) -> Optional[ResourceState]:
        with self._lock:
            return self._records.get(urn)

    def save(self, urn: str, state: ResourceState) -> None:
        with self._lock:
            self._records[urn] = state

    def delete(self, urn: str) -> None:
        with self._lock:
            self._records.pop(urn, None)

    def list(self) -> List[ResourceState]:
        with self._lock:
            return list(self._records.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class JsonFileStateStore(StateStore):
    """State store persisted as a single JSON document.

    The file is rewritten after every change so an interrupted run keeps the
    state of every resource that finished converging.

    Attributes:
        path: Location of the JSON state file
    """

    def __init__(self, path: str):
        """Initialize the store, loading existing state if present.

        Args:
            path: File path of the state document (parent dirs are created)
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._records = self._load_file()

    def _load_file(self) -> Dict[str, ResourceState]:
        """Load records from disk."""
        if not self.path.exists():
            return {}
        with open(self.path, "r") as f:
            data = json.load(f)
        return {
            entry["urn"]: ResourceState.from_dict(entry)
            for entry in data.get("resources", [])
        }

    def _save_file(self) -> None:
        """Write records to disk (caller holds the lock)."""
        document = {
            "version": 1,
            "resources": [r.to_dict() for r in self._records.values()],
        }
        # Encode first; an unencodable value must leave the file untouched
        text = json.dumps(document, indent=2)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            f.write(text)
        tmp_path.replace(self.path)

    def load(self, urn: str) -> Optional[ResourceState]:
        with self._lock:
            return self._records.get(urn)

    def save(self, urn: str, state: ResourceState) -> None:
        with self._lock:
            self._records[urn] = state
            self._save_file()

    def delete(self, urn: str) -> None:
        with self._lock:
            if self._records.pop(urn, None) is not None:
                self._save_file()

    def list(self) -> List[ResourceState]:
        with self._lock:
            return list(self._records.values())

    def clear(self) -> None:
        """Forget every recorded resource."""
        with self._lock:
            self._records = {}
            self._save_file()
