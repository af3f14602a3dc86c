"""
Authorization Audit Trail -- recorder interface and hash-chained log.

Every authorization decision that touches clinical data must be recorded for
compliance: who asked, for what, on which record, when, and what the engine
decided.  The engine does not own audit storage; it hands each
``AuditEntry`` to an ``AuditRecorder``.  A recorder signals failure by raising
``AuditError``, and for compliance-critical actions that failure becomes a
failure of the authorization call itself.

``AuditLog`` is the in-process recorder.  Entries are linked via a SHA-256
hash chain so that any after-the-fact modification is detected by
``verify_chain()``.  Production deployments forward entries to durable,
write-once storage through their own recorder.

**Multi-tenant isolation:**  ``query()`` and ``export_for_review()`` are
always scoped by ``org_id``.  Entries recorded for organization A are never
returned for organization B.
"""

from __future__ import annotations

import enum
import hashlib
import json
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from neurobridge.models import Decision, Identity, Outcome, ResourceRef


# ---------------------------------------------------------------------------
# Audit event types
# ---------------------------------------------------------------------------

class AuditEventType(str, enum.Enum):
    """Enumeration of auditable events in the access core."""

    AUTHORIZATION_DECISION = "AUTHORIZATION_DECISION"
    CATALOG_RELOADED = "CATALOG_RELOADED"


# ---------------------------------------------------------------------------
# Audit entry model
# ---------------------------------------------------------------------------

class AuditEntry(BaseModel):
    """A single audit log entry.

    Records who did what, when, against which record, and the outcome, plus a
    hash link to the previous entry for tamper evidence.
    """

    entry_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique identifier for this audit entry (UUID).",
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="UTC timestamp of the decision.",
    )
    event_type: AuditEventType = Field(default=AuditEventType.AUTHORIZATION_DECISION)
    org_id: str = Field(
        ...,
        description="Caller's organization -- scopes this entry for multi-tenant isolation.",
    )
    user_id: str = Field(..., description="Identifier of the caller.")
    role: str = Field(..., description="Caller's role at the time of the decision.")
    action: str = Field(..., description="Catalog action key, e.g. 'sessions.edit'.")
    resource_type: Optional[str] = Field(default=None)
    resource_id: Optional[str] = Field(
        default=None,
        description="Target record id; None for list/query actions.",
    )
    resource_org_id: Optional[str] = Field(
        default=None,
        description="Organization owning the target record.",
    )
    client_id: Optional[str] = Field(default=None)
    outcome: Outcome = Field(...)
    reason: Optional[str] = Field(default=None)
    metadata: dict[str, Any] = Field(default_factory=dict)
    previous_hash: str = Field(
        default="",
        description=(
            "SHA-256 hash of the previous entry's canonical representation. "
            "Empty string for the first entry in the chain."
        ),
    )

    @classmethod
    def for_decision(
        cls,
        identity: Identity,
        action: str,
        ref: ResourceRef,
        decision: Decision,
        metadata: Optional[dict[str, Any]] = None,
    ) -> "AuditEntry":
        """Build the entry recording ``decision`` for ``identity`` acting on ``ref``."""
        return cls(
            org_id=identity.organization_id,
            user_id=identity.user_id,
            role=identity.role.value,
            action=action,
            resource_type=ref.resource_type.value,
            resource_id=ref.resource_id,
            resource_org_id=ref.organization_id,
            client_id=ref.client_id,
            outcome=decision.outcome,
            reason=decision.reason.value if decision.reason is not None else None,
            metadata=metadata or {},
        )

    def canonical_bytes(self) -> bytes:
        """Return a deterministic byte representation for hashing."""
        data = self.model_dump(mode="json")
        return json.dumps(data, sort_keys=True, default=str).encode("utf-8")

    def compute_hash(self) -> str:
        """Compute the SHA-256 hash of this entry's canonical representation."""
        return hashlib.sha256(self.canonical_bytes()).hexdigest()


# ---------------------------------------------------------------------------
# Recorder interface
# ---------------------------------------------------------------------------

@runtime_checkable
class AuditRecorder(Protocol):
    """Destination for audit entries.

    ``record`` returns once the entry is durably stored and raises
    ``neurobridge.exceptions.AuditError`` when it cannot be.
    """

    def record(self, entry: AuditEntry) -> None:
        ...


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------

class AuditLog:
    """Append-only, tamper-evident audit log with SHA-256 hash chaining.

    * **Append-only writes** -- there are no ``update()`` or ``delete()``
      methods.
    * **Hash chain verification** -- each entry stores the SHA-256 hash of
      the previous entry; ``verify_chain()`` walks the log and reports the
      first broken link.
    * **Thread safety** -- appends are serialized so that concurrent
      recorders produce a single consistent chain.
    * **Multi-tenant query isolation** -- ``query()`` and
      ``export_for_review()`` are always scoped by ``org_id``.
    """

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []
        self._hashes: list[str] = []  # parallel list of computed hashes
        self._lock = threading.Lock()

    def record(self, entry: AuditEntry) -> None:
        """``AuditRecorder`` interface: append the entry."""
        self.append(entry)

    def append(self, entry: AuditEntry) -> AuditEntry:
        """Append a new entry, linking it to the previous one.

        Returns:
            The entry with ``previous_hash`` populated.
        """
        with self._lock:
            entry.previous_hash = self._hashes[-1] if self._hashes else ""
            self._entries.append(entry)
            self._hashes.append(entry.compute_hash())
        return entry

    def verify_chain(self) -> tuple[bool, Optional[int]]:
        """Walk the log and validate every hash link.

        Returns:
            ``(valid, broken_at)`` where ``broken_at`` is the index of the
            first broken link, or None if the chain is intact.
        """
        with self._lock:
            entries = list(self._entries)
            hashes = list(self._hashes)

        for i, entry in enumerate(entries):
            if i == 0:
                if entry.previous_hash != "":
                    return (False, 0)
            elif entry.previous_hash != entries[i - 1].compute_hash():
                return (False, i)

            if hashes[i] != entry.compute_hash():
                return (False, i)

        return (True, None)

    def query(
        self,
        org_id: str,
        event_type: Optional[AuditEventType] = None,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
        user_id: Optional[str] = None,
        outcome: Optional[Outcome] = None,
        action: Optional[str] = None,
    ) -> list[AuditEntry]:
        """Query audit entries with multi-tenant isolation.

        Args:
            org_id: Required.  Only entries for this organization are returned.
            event_type: Optional filter by event type.
            time_start: Optional inclusive start time.
            time_end: Optional inclusive end time.
            user_id: Optional filter by caller.
            outcome: Optional filter by allow/deny.
            action: Optional filter by catalog action.

        Returns:
            List of matching ``AuditEntry`` objects (copies), in append order.
        """
        with self._lock:
            entries = list(self._entries)

        results = []
        for entry in entries:
            if entry.org_id != org_id:
                continue
            if event_type is not None and entry.event_type != event_type:
                continue
            if time_start is not None and entry.timestamp < time_start:
                continue
            if time_end is not None and entry.timestamp > time_end:
                continue
            if user_id is not None and entry.user_id != user_id:
                continue
            if outcome is not None and entry.outcome != outcome:
                continue
            if action is not None and entry.action != action:
                continue
            results.append(entry.model_copy(deep=True))
        return results

    def export_for_review(
        self,
        org_id: str,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Produce a JSON-serializable export bundle for compliance review.

        Includes the chain verification result alongside the entries.
        """
        entries = self.query(org_id, time_start=time_start, time_end=time_end)
        chain_valid, broken_at = self.verify_chain()

        return {
            "export_metadata": {
                "org_id": org_id,
                "exported_at": datetime.now(timezone.utc).isoformat(),
                "entry_count": len(entries),
                "chain_integrity": "VALID" if chain_valid else f"BROKEN_AT_INDEX_{broken_at}",
            },
            "entries": [entry.model_dump(mode="json") for entry in entries],
        }

    @property
    def length(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
