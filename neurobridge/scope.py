"""
Scope Evaluator -- tenant isolation and relationship gating.

The role check in ``neurobridge.rbac`` says what a role may ever do.  This
module narrows that to the specific records an identity may act on:

1. **Tenant check.**  The record's organization must be the identity's
   organization.  Any mismatch is an unconditional denial for every role
   except ``PLATFORM_ADMIN``.
2. **Context check.**  A ref to a single clinical record, including one
   about to be created, must carry the ownership fields its type needs (a
   session ref without a client id cannot be gated, so it is rejected rather
   than waved through).  Only a list query may omit them.
3. **Relationship check**, by role:

   * org admin -- every record in the organization;
   * supervisor -- records assigned to a supervised therapist or naming the
     supervisor directly, plus supervisor-neutral types (org-level reports);
   * therapist -- records assigned to the therapist;
   * family -- records of a child they are guardian of; never users,
     organization settings or reports, and never program/target mutations;
   * educator -- read-only access to educator-visible types only.

``row_filter_for`` expresses the same relationship rule as a declarative
predicate over storage columns.  For any well-formed record,
``row_filter_for(identity, type).matches(record)`` agrees with
``in_scope(identity, ResourceRef.from_record(type, record))``.

Relationship gating for family and educator users is strict.  An unknown
relationship is a denial, never a permissive default.
"""

from __future__ import annotations

import enum
from typing import Optional

from neurobridge.config import DEFAULT_SETTINGS, EngineSettings
from neurobridge.exceptions import MalformedResourceRef
from neurobridge.models import SCOPE_COLUMNS, Identity, ResourceRef, ResourceType, Role
from neurobridge.predicate import ALWAYS, NEVER, Predicate, all_of, any_of, eq, in_


class ScopeVerdict(str, enum.Enum):
    """Precise result of a scope check, kept for logs and audit metadata."""

    IN_SCOPE = "in_scope"
    TENANT_MISMATCH = "tenant_mismatch"
    INSUFFICIENT_CONTEXT = "insufficient_context"
    RESTRICTED_RESOURCE = "restricted_resource"
    NO_RELATIONSHIP = "no_relationship"


# Ownership fields a single-record ref must carry, per resource type.
_REQUIRED_CONTEXT: dict[ResourceType, tuple[str, ...]] = {
    ResourceType.CLIENT: ("client_id",),
    ResourceType.SESSION: ("client_id",),
    ResourceType.PROGRAM: ("client_id",),
    ResourceType.TARGET: ("client_id",),
    ResourceType.DATA_POINT: ("client_id",),
}

_PROGRAM_DEFINITIONS = (ResourceType.PROGRAM, ResourceType.TARGET)


class ScopeEvaluator:
    """Decides whether an identity may act on a record, or which records it may list."""

    def __init__(self, settings: Optional[EngineSettings] = None) -> None:
        self._settings = settings if settings is not None else DEFAULT_SETTINGS

    # -- instance checks --

    def is_list_query(self, ref: ResourceRef, action: Optional[str] = None) -> bool:
        """Whether ``ref`` addresses a collection through a read verb.

        A ref without ``resource_id`` under a mutating verb (``sessions.create``,
        ``data.collect``...) describes a record about to be written.  It is
        checked against its ownership fields like any single record.
        """
        return ref.is_collection and self._settings.is_query_action(action)

    def check_context(self, ref: ResourceRef, action: Optional[str] = None) -> None:
        """Raise ``MalformedResourceRef`` if a record ref lacks scoping fields."""
        if self.is_list_query(ref, action):
            return
        required = _REQUIRED_CONTEXT.get(ref.resource_type, ())
        if ref.resource_type == ResourceType.CLIENT and ref.is_collection:
            # A client being created has no id of its own yet.
            required = ()
        missing = [name for name in required if getattr(ref, name) is None]
        if missing:
            raise MalformedResourceRef(ref.resource_type.value, missing)

    def check(
        self, identity: Identity, ref: ResourceRef, action: Optional[str] = None
    ) -> ScopeVerdict:
        """Run the tenant, context and relationship checks in order.

        ``action`` decides whether a ref without ``resource_id`` is a list
        query or a record about to be created, and feeds the read-only floors
        of family and educator users.  When omitted the access is treated as
        a read.
        """
        if identity.role != Role.PLATFORM_ADMIN and identity.organization_id != ref.organization_id:
            return ScopeVerdict.TENANT_MISMATCH

        try:
            self.check_context(ref, action)
        except MalformedResourceRef:
            return ScopeVerdict.INSUFFICIENT_CONTEXT

        if self._is_restricted(identity.role, ref.resource_type, action):
            return ScopeVerdict.RESTRICTED_RESOURCE

        if self.is_list_query(ref, action):
            visible = self.row_filter_for(identity, ref.resource_type, ref.organization_id) != NEVER
        else:
            visible = self._has_relationship(identity, ref)
        return ScopeVerdict.IN_SCOPE if visible else ScopeVerdict.NO_RELATIONSHIP

    def in_scope(
        self, identity: Identity, ref: ResourceRef, action: Optional[str] = None
    ) -> bool:
        return self.check(identity, ref, action) == ScopeVerdict.IN_SCOPE

    # -- list/query filters --

    def row_filter_for(
        self,
        identity: Identity,
        resource_type: ResourceType,
        organization_id: Optional[str] = None,
    ) -> Predicate:
        """Return the predicate selecting exactly the records in scope for ``identity``.

        ``organization_id`` names the tenant being listed.  Only a platform
        admin can list another tenant; for every other role the identity's
        own organization applies.  A platform admin who names no tenant gets
        an unrestricted filter.
        """
        if self._is_restricted(identity.role, resource_type, None):
            return NEVER

        columns = SCOPE_COLUMNS[resource_type]
        role = identity.role

        if role == Role.PLATFORM_ADMIN:
            if organization_id is None:
                return ALWAYS
            return eq(columns.organization_id, organization_id)

        tenant = eq(columns.organization_id, identity.organization_id)

        if role == Role.ORG_ADMIN:
            relationship = ALWAYS
        elif role == Role.SUPERVISOR:
            if resource_type in self._settings.supervisor_neutral_resources:
                relationship = ALWAYS
            else:
                relationship = any_of(
                    _column_in(columns.assigned_therapist_id, identity.supervised_therapist_ids),
                    _column_eq(columns.supervisor_id, identity.user_id),
                )
        elif role == Role.THERAPIST:
            relationship = _column_eq(columns.assigned_therapist_id, identity.user_id)
        elif role == Role.FAMILY:
            relationship = _column_in(columns.client_id, identity.guardian_of_client_ids)
        elif role == Role.EDUCATOR:
            relationship = ALWAYS
        else:
            relationship = NEVER

        return all_of(tenant, relationship)

    # -- helpers --

    def _is_restricted(
        self, role: Role, resource_type: ResourceType, action: Optional[str]
    ) -> bool:
        """Hard floors that hold regardless of what the catalog grants."""
        read_only = self._settings.is_query_action(action)
        if role == Role.FAMILY:
            if resource_type in self._settings.family_restricted_resources:
                return True
            return resource_type in _PROGRAM_DEFINITIONS and not read_only
        if role == Role.EDUCATOR:
            return resource_type not in self._settings.educator_visible_resources or not read_only
        return False

    def _has_relationship(self, identity: Identity, ref: ResourceRef) -> bool:
        role = identity.role
        if role in (Role.PLATFORM_ADMIN, Role.ORG_ADMIN, Role.EDUCATOR):
            return True
        if role == Role.SUPERVISOR:
            if ref.resource_type in self._settings.supervisor_neutral_resources:
                return True
            if ref.assigned_therapist_id is not None and ref.assigned_therapist_id in identity.supervised_therapist_ids:
                return True
            return ref.supervisor_id is not None and ref.supervisor_id == identity.user_id
        if role == Role.THERAPIST:
            return ref.assigned_therapist_id is not None and ref.assigned_therapist_id == identity.user_id
        if role == Role.FAMILY:
            return ref.client_id is not None and ref.client_id in identity.guardian_of_client_ids
        return False


def _column_eq(column: Optional[str], value: str) -> Predicate:
    if column is None:
        return NEVER
    return eq(column, value)


def _column_in(column: Optional[str], values: frozenset[str]) -> Predicate:
    if column is None:
        return NEVER
    return in_(column, values)
