"""
Core data models for the NeuroBridge access core.

The engine reasons about four kinds of value: who is asking (``Identity``),
what they are asking about (``ResourceRef``), which tenant owns it
(``Organization``), and what the engine decided (``Decision``).  Identities
and refs are built fresh for every request and are immutable; nothing in this
module holds state across calls.

Record field names follow the storage schema (``organization_id``,
``primary_therapist_id``, ``client_id``...).  ``SCOPE_COLUMNS`` records, for
each resource type, which storage columns carry the ownership fields used for
scoping, so that instance checks and row filters read the same columns.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from neurobridge.predicate import Predicate


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Role(str, enum.Enum):
    """Roles a user can hold inside an organization.

    ``PLATFORM_ADMIN`` operates across tenants.  Every other role is bound to
    the single organization named on the identity.  The storage layer's legacy
    value ``super_admin`` is accepted as an alias of ``platform_admin``.
    """

    PLATFORM_ADMIN = "platform_admin"
    ORG_ADMIN = "org_admin"
    SUPERVISOR = "supervisor"
    THERAPIST = "therapist"
    FAMILY = "family"
    EDUCATOR = "educator"

    @classmethod
    def _missing_(cls, value: object) -> Optional["Role"]:
        if value == "super_admin":
            return cls.PLATFORM_ADMIN
        return None


class OrganizationType(str, enum.Enum):
    """Kinds of tenant served by a deployment."""

    CLINIC = "clinic"
    SCHOOL = "school"
    PRIVATE_PRACTICE = "private_practice"
    AGENCY = "agency"


class ResourceType(str, enum.Enum):
    """Resource types an action can target.

    ``REPORT`` covers organization-level aggregated reports addressed by the
    ``reports.*`` actions.
    """

    CLIENT = "client"
    SESSION = "session"
    PROGRAM = "program"
    TARGET = "target"
    DATA_POINT = "data_point"
    USER = "user"
    ORGANIZATION_SETTINGS = "organization_settings"
    REPORT = "report"


class Outcome(str, enum.Enum):
    ALLOW = "allow"
    DENY = "deny"


class DecisionReason(str, enum.Enum):
    """Machine-readable reason codes attached to denials.

    These are for internal logs and audit review.  Callers must map every
    denial to a generic "not authorized" response.
    """

    ROLE_NOT_PERMITTED = "role_not_permitted"
    OUT_OF_SCOPE = "out_of_scope"
    INSUFFICIENT_CONTEXT = "insufficient_context"
    AUDIT_TIMEOUT = "audit_timeout"


# ---------------------------------------------------------------------------
# Organizations
# ---------------------------------------------------------------------------

class OrganizationSettings(BaseModel):
    """Per-tenant operational settings."""

    timezone: str = Field(
        default="America/New_York",
        min_length=1,
        description="IANA timezone name used for session scheduling.",
    )
    currency: str = Field(
        default="USD",
        pattern=r"^[A-Z]{3}$",
        description="ISO 4217 currency code.",
    )
    session_duration_default: int = Field(
        default=60,
        gt=0,
        description="Default session length in minutes.",
    )
    billing_enabled: bool = Field(default=False)


class Organization(BaseModel):
    """A tenant: the isolation boundary for all clinical data.

    Every clinical record belongs to exactly one organization and never
    moves to another one.
    """

    id: str = Field(
        ...,
        min_length=1,
        description="Tenant identifier; the isolation key for every record.",
    )
    name: str = Field(..., min_length=1)
    type: OrganizationType = Field(default=OrganizationType.CLINIC)
    settings: OrganizationSettings = Field(default_factory=OrganizationSettings)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------

class Identity(BaseModel):
    """The authenticated caller, as supplied by the identity provider.

    Relationship sets are role-dependent: ``supervised_therapist_ids`` is
    read for supervisors, ``guardian_of_client_ids`` for family members.
    Therapists are matched on ``user_id`` directly.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    role: Role
    organization_id: str = Field(..., min_length=1)
    supervised_therapist_ids: frozenset[str] = Field(default_factory=frozenset)
    guardian_of_client_ids: frozenset[str] = Field(default_factory=frozenset)


class ScopeColumns(BaseModel):
    """Storage columns holding a resource type's ownership fields.

    ``None`` means the resource type has no such field; scoping clauses that
    depend on it never match.
    """

    model_config = ConfigDict(frozen=True)

    id: str = "id"
    organization_id: str = "organization_id"
    assigned_therapist_id: Optional[str] = None
    supervisor_id: Optional[str] = None
    client_id: Optional[str] = None


# Programs, targets and data points carry their client's ownership columns
# through a join on clients; sessions carry the client's supervisor the same way.
SCOPE_COLUMNS: dict[ResourceType, ScopeColumns] = {
    ResourceType.CLIENT: ScopeColumns(
        assigned_therapist_id="primary_therapist_id",
        supervisor_id="supervisor_id",
        client_id="id",
    ),
    ResourceType.SESSION: ScopeColumns(
        assigned_therapist_id="therapist_id",
        supervisor_id="supervisor_id",
        client_id="client_id",
    ),
    ResourceType.PROGRAM: ScopeColumns(
        assigned_therapist_id="primary_therapist_id",
        supervisor_id="supervisor_id",
        client_id="client_id",
    ),
    ResourceType.TARGET: ScopeColumns(
        assigned_therapist_id="primary_therapist_id",
        supervisor_id="supervisor_id",
        client_id="client_id",
    ),
    ResourceType.DATA_POINT: ScopeColumns(
        assigned_therapist_id="primary_therapist_id",
        supervisor_id="supervisor_id",
        client_id="client_id",
    ),
    ResourceType.USER: ScopeColumns(),
    ResourceType.ORGANIZATION_SETTINGS: ScopeColumns(organization_id="id"),
    ResourceType.REPORT: ScopeColumns(assigned_therapist_id="therapist_id"),
}


class ResourceRef(BaseModel):
    """The target of an action.

    A ref with ``resource_id`` set addresses one record; a ref without one
    addresses the whole collection of that type (a list or query).
    """

    model_config = ConfigDict(frozen=True)

    resource_type: ResourceType
    organization_id: str = Field(
        ...,
        min_length=1,
        description="Organization that owns the record (or is being queried).",
    )
    resource_id: Optional[str] = None
    assigned_therapist_id: Optional[str] = None
    supervisor_id: Optional[str] = None
    client_id: Optional[str] = None

    @property
    def is_collection(self) -> bool:
        return self.resource_id is None

    @classmethod
    def from_record(
        cls, resource_type: ResourceType, record: Mapping[str, Any]
    ) -> "ResourceRef":
        """Build an instance ref from a storage row.

        Reads the ownership columns listed in ``SCOPE_COLUMNS`` for the
        resource type.  Raises ``KeyError`` if the row has no identifier or
        organization column.
        """
        columns = SCOPE_COLUMNS[resource_type]

        def _read(column: Optional[str]) -> Optional[str]:
            if column is None:
                return None
            value = record.get(column)
            return None if value is None else str(value)

        return cls(
            resource_type=resource_type,
            organization_id=str(record[columns.organization_id]),
            resource_id=str(record[columns.id]),
            assigned_therapist_id=_read(columns.assigned_therapist_id),
            supervisor_id=_read(columns.supervisor_id),
            client_id=_read(columns.client_id),
        )


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------

class Decision(BaseModel):
    """Outcome of an authorization call.

    ``row_filter`` is attached to allowed list/query actions so the caller
    can push scoping into its storage query instead of filtering in memory.
    """

    model_config = ConfigDict(frozen=True)

    outcome: Outcome
    reason: Optional[DecisionReason] = None
    row_filter: Optional[Predicate] = None

    @field_validator("reason")
    @classmethod
    def reason_only_on_deny(cls, v: Optional[DecisionReason], info) -> Optional[DecisionReason]:
        if v is not None and info.data.get("outcome") == Outcome.ALLOW:
            raise ValueError("allow decisions do not carry a reason code")
        return v

    @property
    def allowed(self) -> bool:
        return self.outcome == Outcome.ALLOW

    @classmethod
    def allow(cls, row_filter: Optional[Predicate] = None) -> "Decision":
        return cls(outcome=Outcome.ALLOW, row_filter=row_filter)

    @classmethod
    def deny(cls, reason: DecisionReason) -> "Decision":
        return cls(outcome=Outcome.DENY, reason=reason)
