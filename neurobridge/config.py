"""
Engine Configuration and Tenant Registry for NeuroBridge.

This module holds the deployment-level knobs of the access core and the
registry of tenants it serves.  Settings are validated pydantic models so a
bad value is rejected when the process starts, not when the first request
trips over it.

**Why the scoping sets are configurable:**

Deployments differ in which resource types are safe to share.  A school
district may expose program and target views to classroom educators; a
private practice may expose nothing to them.  Supervisors in a large agency
may need org-wide user lists; a small clinic may not.  The floors that protect
clinical records (educators never see sessions or data points, family members
never see users, organization settings or reports) are validated here and
cannot be configured away.

All three YAML loaders read files with ``yaml.safe_load`` and validate every
entry through the corresponding model.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from neurobridge.catalog import EXPOSED_ACTIONS, PermissionCatalog
from neurobridge.exceptions import ConfigurationError
from neurobridge.models import Organization, ResourceType


_CLINICAL_RECORD_TYPES = {ResourceType.SESSION, ResourceType.DATA_POINT}
_FAMILY_FLOOR = {
    ResourceType.USER,
    ResourceType.ORGANIZATION_SETTINGS,
    ResourceType.REPORT,
}


# ---------------------------------------------------------------------------
# Engine settings
# ---------------------------------------------------------------------------

class EngineSettings(BaseModel):
    """Deployment-wide settings for the authorization engine."""

    audit_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description=(
            "Upper bound on waiting for the audit sink during a "
            "compliance-critical authorization.  On timeout the decision "
            "degrades to deny unless best-effort auditing is enabled."
        ),
    )
    audit_workers: int = Field(
        default=4,
        ge=1,
        description="Threads available for delivering audit entries.",
    )
    detached_audit_backlog: int = Field(
        default=256,
        ge=1,
        description=(
            "Most audit entries for non-critical actions that may wait for "
            "delivery at once.  Entries beyond the backlog are dropped and "
            "logged so a stalled sink cannot grow memory without bound."
        ),
    )
    best_effort_audit: bool = Field(
        default=False,
        description=(
            "When True, audit failures on compliance-critical actions are "
            "logged and the decision stands.  Leave False unless the "
            "deployment has another durable record of access."
        ),
    )
    compliance_critical_resources: list[str] = Field(
        default_factory=lambda: ["clients", "sessions", "data"],
        description=(
            "Action resources (the part before the dot) whose audit entries "
            "must be durably recorded before a decision is returned."
        ),
    )
    query_verbs: list[str] = Field(
        default_factory=lambda: ["view", "advanced"],
        min_length=1,
        description=(
            "Verbs treated as read/list operations.  Allowed decisions for "
            "these verbs carry a row filter."
        ),
    )
    supervisor_neutral_resources: list[ResourceType] = Field(
        default_factory=lambda: [ResourceType.REPORT, ResourceType.USER],
        description=(
            "Resource types a supervisor sees organization-wide, without a "
            "supervision relationship."
        ),
    )
    educator_visible_resources: list[ResourceType] = Field(
        default_factory=lambda: [ResourceType.PROGRAM, ResourceType.TARGET],
        description="Resource types shared read-only with school staff.",
    )
    family_restricted_resources: list[ResourceType] = Field(
        default_factory=lambda: sorted(_FAMILY_FLOOR, key=lambda r: r.value),
        description=(
            "Resource types family members can never reach, whatever the "
            "catalog grants.  Must include users, organization settings and "
            "reports."
        ),
    )

    @field_validator("educator_visible_resources")
    @classmethod
    def educators_never_see_clinical_records(
        cls, v: list[ResourceType]
    ) -> list[ResourceType]:
        exposed = sorted(r.value for r in _CLINICAL_RECORD_TYPES.intersection(v))
        if exposed:
            raise ValueError(
                f"educator_visible_resources may not include clinical record types: {exposed}"
            )
        return v

    @field_validator("family_restricted_resources")
    @classmethod
    def family_floor_is_fixed(cls, v: list[ResourceType]) -> list[ResourceType]:
        missing = sorted(r.value for r in _FAMILY_FLOOR.difference(v))
        if missing:
            raise ValueError(
                f"family_restricted_resources must include {missing}"
            )
        return v

    def is_query_action(self, action: Optional[str]) -> bool:
        if action is None:
            return True
        return action.partition(".")[2] in self.query_verbs

    def is_compliance_critical(self, action: str) -> bool:
        return action.partition(".")[0] in self.compliance_critical_resources


DEFAULT_SETTINGS = EngineSettings()
"""Built-in settings: strict auditing, conservative sharing."""


# ---------------------------------------------------------------------------
# Organization registry (multi-tenant)
# ---------------------------------------------------------------------------

class OrganizationRegistry:
    """In-memory registry of the tenants a deployment serves.

    Organizations are keyed by ``id``.  The engine consults the registry (when
    one is configured) to reject identities whose organization is unknown.
    """

    def __init__(self) -> None:
        self._organizations: dict[str, Organization] = {}

    def register(self, organization: Organization) -> None:
        """Register a new organization.

        Raises:
            ValueError: If ``organization.id`` is already registered.
        """
        if organization.id in self._organizations:
            raise ValueError(
                f"Organization '{organization.id}' already registered. "
                "Use update() to modify an existing organization."
            )
        self._organizations[organization.id] = copy.deepcopy(organization)

    def get(self, org_id: str) -> Organization:
        """Return a deep copy of the registered organization.

        Raises:
            KeyError: If no organization is registered under ``org_id``.
        """
        if org_id not in self._organizations:
            raise KeyError(f"No organization registered with id '{org_id}'")
        return copy.deepcopy(self._organizations[org_id])

    def update(self, organization: Organization) -> None:
        """Replace the settings of an existing organization.

        Raises:
            KeyError: If the organization is not registered.
        """
        if organization.id not in self._organizations:
            raise KeyError(
                f"Cannot update: no organization registered with id '{organization.id}'"
            )
        self._organizations[organization.id] = copy.deepcopy(organization)

    def list_orgs(self) -> list[str]:
        """Return the sorted list of registered organization ids."""
        return sorted(self._organizations.keys())

    def __len__(self) -> int:
        return len(self._organizations)

    def __contains__(self, org_id: object) -> bool:
        return org_id in self._organizations


# ---------------------------------------------------------------------------
# YAML loaders
# ---------------------------------------------------------------------------

def _read_yaml(path: str | Path, key: str) -> Any:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(path, "r") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict) or key not in raw:
        raise ConfigurationError(
            f"YAML file {path} must contain a top-level '{key}' key."
        )
    return raw[key]


def load_engine_settings_from_yaml(path: str | Path) -> EngineSettings:
    """Load ``EngineSettings`` from the ``engine`` mapping of a YAML file.

    Example YAML structure::

        engine:
          audit_timeout_seconds: 1.5
          educator_visible_resources: [program, target]

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the YAML structure is invalid.
        pydantic.ValidationError: If a setting fails validation.
    """
    data = _read_yaml(path, "engine")
    if not isinstance(data, dict):
        raise ConfigurationError("'engine' must be a mapping of settings.")
    return EngineSettings(**data)


def load_organizations_from_yaml(path: str | Path) -> list[Organization]:
    """Load organizations from the ``organizations`` list of a YAML file.

    Example YAML structure::

        organizations:
          - id: "org_lakeside"
            name: "Lakeside Behavioral Clinic"
            type: clinic
            settings:
              timezone: "America/Chicago"

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the YAML structure is invalid.
        pydantic.ValidationError: If any organization fails validation.
    """
    data = _read_yaml(path, "organizations")
    if not isinstance(data, list):
        raise ConfigurationError("'organizations' must be a list of organization objects.")

    organizations: list[Organization] = []
    for idx, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Organization entry at index {idx} must be a mapping.")
        organizations.append(Organization(**entry))
    return organizations


def load_catalog_from_yaml(
    path: str | Path, require_exposed_actions: bool = True
) -> PermissionCatalog:
    """Load a permission catalog from the ``permissions`` mapping of a YAML file.

    Used for an explicit catalog reload.  By default the loaded catalog must
    still define every exposed action.

    Example YAML structure::

        permissions:
          clients.view: [org_admin, supervisor, therapist, family]
          clients.edit: [org_admin, supervisor]

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the YAML structure is invalid.
        CatalogError: If the catalog fails validation.
    """
    data = _read_yaml(path, "permissions")
    if not isinstance(data, dict):
        raise ConfigurationError("'permissions' must map actions to lists of roles.")
    for action, roles in data.items():
        if not isinstance(roles, list):
            raise ConfigurationError(f"Roles for action '{action}' must be a list.")

    return PermissionCatalog(
        data,
        required_actions=EXPOSED_ACTIONS if require_exposed_actions else None,
    )
