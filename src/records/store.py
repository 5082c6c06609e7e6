# src/records/store.py
"""
Settlement record store.

Repository boundary between the settlement core and whatever persists its
results. The core only needs the operations on RecordStore; swapping the
in-memory store for a database-backed one must not change settlement code.

Implementations:
- InMemoryRecordStore: process-local, used by tests and the default API
- JsonFileRecordStore: same semantics, snapshotted to a JSON file on commit

Writes go through transaction(): nested writes commit (and persist) once at
the outermost exit, and any failure, persistence included, restores the
state held on entry.
"""

from __future__ import annotations

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from src.records.schemas import ActivityRecord, ClaimRecord, Policy, PurchaseRecord
from src.settlement.errors import PolicyNotFound
from src.utils.io import read_json, write_json

_log = logging.getLogger(__name__)


def _holder_key(holder: Optional[str]) -> Optional[str]:
    return holder.strip().lower() if holder else None


class RecordStore(ABC):
    @abstractmethod
    def transaction(self): ...

    @abstractmethod
    def next_policy_id(self) -> int: ...

    @abstractmethod
    def create_policy(self, policy: Policy) -> Policy: ...

    @abstractmethod
    def get_policy(self, policy_id: int) -> Policy: ...

    @abstractmethod
    def update_policy(self, policy: Policy) -> Policy: ...

    @abstractmethod
    def list_policies(self, holder: Optional[str] = None) -> List[Policy]: ...

    @abstractmethod
    def add_purchase(self, record: PurchaseRecord) -> PurchaseRecord: ...

    @abstractmethod
    def list_purchases(self, holder: Optional[str] = None) -> List[PurchaseRecord]: ...

    @abstractmethod
    def add_claim(self, record: ClaimRecord) -> ClaimRecord: ...

    @abstractmethod
    def list_claims(self, holder: Optional[str] = None) -> List[ClaimRecord]: ...

    @abstractmethod
    def log_activity(self, record: ActivityRecord) -> ActivityRecord: ...

    @abstractmethod
    def list_activities(self, holder: Optional[str] = None, limit: int = 50) -> List[ActivityRecord]: ...

    @abstractmethod
    def save_escrow_state(self, state: Dict[str, Any]) -> None: ...

    @abstractmethod
    def load_escrow_state(self) -> Optional[Dict[str, Any]]: ...

    @staticmethod
    def new_activity_id() -> str:
        return f"activity_{uuid.uuid4().hex[:12]}"


class InMemoryRecordStore(RecordStore):
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._policies: Dict[int, Policy] = {}
        self._purchases: List[PurchaseRecord] = []
        self._claims: List[ClaimRecord] = []
        self._activities: List[ActivityRecord] = []
        self._escrow_state: Optional[Dict[str, Any]] = None
        self._last_policy_id = 0
        self._depth = 0

    # -----------------------------
    # Transactions
    # -----------------------------
    @contextmanager
    def transaction(self) -> Iterator["InMemoryRecordStore"]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            snapshot = self._snapshot()
            self._depth = 1
            try:
                yield self
                self._depth = 0
                self._persist()
            except Exception:
                self._depth = 0
                self._restore(snapshot)
                _log.debug("Record store rolled back")
                raise

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "policies": dict(self._policies),
            "purchases": list(self._purchases),
            "claims": list(self._claims),
            "activities": list(self._activities),
            "escrow_state": self._escrow_state,
            "last_policy_id": self._last_policy_id,
        }

    def _restore(self, snap: Dict[str, Any]) -> None:
        self._policies = snap["policies"]
        self._purchases = snap["purchases"]
        self._claims = snap["claims"]
        self._activities = snap["activities"]
        self._escrow_state = snap["escrow_state"]
        self._last_policy_id = snap["last_policy_id"]

    def _persist(self) -> None:
        """Hook for durable subclasses; runs once per committed transaction."""

    # -----------------------------
    # Policies
    # -----------------------------
    def next_policy_id(self) -> int:
        """Id the next created policy should take; reserves nothing."""
        with self._lock:
            return self._last_policy_id + 1

    def create_policy(self, policy: Policy) -> Policy:
        with self.transaction():
            if policy.id in self._policies:
                raise ValueError(f"Policy {policy.id} already exists")
            self._policies[policy.id] = policy
            self._last_policy_id = max(self._last_policy_id, policy.id)
        return policy

    def get_policy(self, policy_id: int) -> Policy:
        with self._lock:
            policy = self._policies.get(policy_id)
        if policy is None:
            raise PolicyNotFound(f"Policy {policy_id} not found")
        return policy

    def update_policy(self, policy: Policy) -> Policy:
        with self.transaction():
            if policy.id not in self._policies:
                raise PolicyNotFound(f"Policy {policy.id} not found")
            self._policies[policy.id] = policy
        return policy

    def list_policies(self, holder: Optional[str] = None) -> List[Policy]:
        key = _holder_key(holder)
        with self._lock:
            items = sorted(self._policies.values(), key=lambda p: p.id)
        return [p for p in items if key is None or p.holder == key]

    # -----------------------------
    # Settlement records
    # -----------------------------
    def add_purchase(self, record: PurchaseRecord) -> PurchaseRecord:
        with self.transaction():
            self._purchases.append(record)
        return record

    def list_purchases(self, holder: Optional[str] = None) -> List[PurchaseRecord]:
        key = _holder_key(holder)
        with self._lock:
            items = list(self._purchases)
        return [r for r in items if key is None or r.holder == key]

    def add_claim(self, record: ClaimRecord) -> ClaimRecord:
        with self.transaction():
            self._claims.append(record)
        return record

    def list_claims(self, holder: Optional[str] = None) -> List[ClaimRecord]:
        key = _holder_key(holder)
        with self._lock:
            items = list(self._claims)
        return [r for r in items if key is None or r.holder == key]

    # -----------------------------
    # Activity feed
    # -----------------------------
    def log_activity(self, record: ActivityRecord) -> ActivityRecord:
        with self.transaction():
            self._activities.append(record)
        return record

    def list_activities(self, holder: Optional[str] = None, limit: int = 50) -> List[ActivityRecord]:
        key = _holder_key(holder)
        with self._lock:
            items = [a for a in self._activities if key is None or a.holder == key]
        # Newest first; insertion order breaks timestamp ties.
        ordered = [a for _, a in sorted(enumerate(items), key=lambda t: (t[1].timestamp, t[0]), reverse=True)]
        return ordered[: max(limit, 0)]

    # -----------------------------
    # Escrow state
    # -----------------------------
    def save_escrow_state(self, state: Dict[str, Any]) -> None:
        with self.transaction():
            self._escrow_state = state

    def load_escrow_state(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._escrow_state


class JsonFileRecordStore(InMemoryRecordStore):
    """
    In-memory store mirrored to a single JSON document.

    Loads the document on construction if it exists; rewrites it atomically
    when a transaction commits. Records and escrow state share the document,
    so they are always written together.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            self._load(read_json(self.path))
            _log.info("Loaded %d policies from %s", len(self._policies), self.path)

    def _load(self, doc: Dict[str, Any]) -> None:
        self._last_policy_id = int(doc.get("last_policy_id", 0))
        for d in doc.get("policies", []):
            p = Policy.from_dict(d)
            self._policies[p.id] = p
        self._purchases = [PurchaseRecord.from_dict(d) for d in doc.get("purchases", [])]
        self._claims = [ClaimRecord.from_dict(d) for d in doc.get("claims", [])]
        self._activities = [ActivityRecord.from_dict(d) for d in doc.get("activities", [])]
        self._escrow_state = doc.get("escrow")

    def _persist(self) -> None:
        doc = {
            "last_policy_id": self._last_policy_id,
            "policies": [p.to_dict() for p in sorted(self._policies.values(), key=lambda p: p.id)],
            "purchases": [r.to_dict() for r in self._purchases],
            "claims": [r.to_dict() for r in self._claims],
            "activities": [a.to_dict() for a in self._activities],
            "escrow": self._escrow_state,
        }
        write_json(doc, self.path)
