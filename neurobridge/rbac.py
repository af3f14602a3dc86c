"""
Role-Based Access Control (RBAC) for NeuroBridge.

Expands a role into the full set of actions the permission catalog grants it.
This is the coarse check: it answers "may a therapist ever edit sessions?",
not "may this therapist edit this session?".  Relationship and tenant checks
live in ``neurobridge.scope``.

**Roles:**

* PLATFORM_ADMIN -- operates across tenants; holds no catalog grants of its own.
* ORG_ADMIN      -- full control of one organization.
* SUPERVISOR     -- BCBA or clinical supervisor; scoped to supervisees' clients.
* THERAPIST      -- direct therapist (RBT); scoped to assigned clients.
* FAMILY         -- parent or guardian; read access to their own child only.
* EDUCATOR       -- school staff; read access to shared program views only.
"""

from __future__ import annotations

from typing import Optional

from neurobridge.catalog import DEFAULT_CATALOG, PermissionCatalog
from neurobridge.models import Role


class RoleResolver:
    """Resolves a role to the actions the catalog grants it.

    Results are memoized per role.  The catalog is immutable, so concurrent
    first lookups for the same role compute identical frozensets and the
    last write wins harmlessly; no lock is needed.
    """

    def __init__(self, catalog: PermissionCatalog) -> None:
        self._catalog = catalog
        self._cache: dict[Role, frozenset[str]] = {}

    @property
    def catalog(self) -> PermissionCatalog:
        return self._catalog

    def permissions_for(self, role: Role) -> frozenset[str]:
        """Return every action ``role`` may perform."""
        permissions = self._cache.get(role)
        if permissions is None:
            permissions = frozenset(
                action
                for action in self._catalog.actions()
                if self._catalog.is_role_allowed(action, role)
            )
            self._cache[role] = permissions
        return permissions

    def has_permission(self, role: Role, action: str) -> bool:
        return action in self.permissions_for(role)


# ---------------------------------------------------------------------------
# Convenience checks against a catalog (default: the standard catalog)
# ---------------------------------------------------------------------------

def check_permission(
    role: Role, action: str, catalog: Optional[PermissionCatalog] = None
) -> bool:
    """Check whether a role has permission to perform an action.

    Args:
        role: The actor's role.
        action: The action to check (e.g., 'clients.edit').
        catalog: Catalog to consult; the standard catalog if omitted.

    Returns:
        True if the role is permitted to perform the action, False otherwise
        (including when the action is unknown).
    """
    if catalog is None:
        catalog = DEFAULT_CATALOG
    return catalog.is_role_allowed(action, role)


def require_permission(
    role: Role, action: str, catalog: Optional[PermissionCatalog] = None
) -> None:
    """Enforce a permission check; raise if denied.

    Raises:
        PermissionError: If the role is not permitted.
    """
    if not check_permission(role, action, catalog):
        raise PermissionError(
            f"Role '{role.value}' is not permitted to perform action '{action}'."
        )


def get_permissions_for_role(
    role: Role, catalog: Optional[PermissionCatalog] = None
) -> dict[str, bool]:
    """Return every catalog action mapped to whether ``role`` holds it."""
    if catalog is None:
        catalog = DEFAULT_CATALOG
    return {action: catalog.is_role_allowed(action, role) for action in catalog.actions()}
