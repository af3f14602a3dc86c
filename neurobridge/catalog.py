"""
Permission Catalog -- the closed table of who may perform which action.

Every action the application exposes is a string key of the form
``<resource>.<verb>`` (``clients.edit``, ``data.collect``) mapped to the
ordered set of roles allowed to perform it.  The catalog is closed: an action
that is not in the table is denied for every role.  A typo in calling code
therefore fails safe instead of falling through to "allowed".

The catalog is validated once, on construction, and is immutable afterwards.
Changing it means building a new ``PermissionCatalog`` (a deployment or an
explicit, audited reload through the engine), never mutating one in place.
"""

from __future__ import annotations

import re
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional

from neurobridge.exceptions import CatalogError, UnknownAction
from neurobridge.models import Role


_ACTION_PATTERN = re.compile(r"^[a-z][a-z_]*\.[a-z][a-z_]*$")

_STAFF = (Role.ORG_ADMIN, Role.SUPERVISOR)
_CLINICAL = (Role.ORG_ADMIN, Role.SUPERVISOR, Role.THERAPIST)
_CLINICAL_READ = (Role.ORG_ADMIN, Role.SUPERVISOR, Role.THERAPIST, Role.FAMILY)
_ORG_ADMIN = (Role.ORG_ADMIN,)


# ---------------------------------------------------------------------------
# Default catalog
# ---------------------------------------------------------------------------

DEFAULT_PERMISSIONS: Mapping[str, tuple[Role, ...]] = MappingProxyType({
    # Client management
    "clients.view": _CLINICAL_READ,
    "clients.create": _STAFF,
    "clients.edit": _STAFF,
    "clients.delete": _STAFF,
    # Session management
    "sessions.view": _CLINICAL_READ,
    "sessions.create": _CLINICAL,
    "sessions.edit": _CLINICAL,
    "sessions.delete": _STAFF,
    # Data collection
    "data.view": _CLINICAL_READ,
    "data.collect": _CLINICAL,
    "data.edit": _CLINICAL,
    # Reports and analytics
    "reports.view": _CLINICAL,
    "reports.advanced": _STAFF,
    # User management
    "users.view": _STAFF,
    "users.create": _ORG_ADMIN,
    "users.edit": _ORG_ADMIN,
    "users.delete": _ORG_ADMIN,
    # Organization settings
    "org.view": _ORG_ADMIN,
    "org.edit": _ORG_ADMIN,
})

#: Every action the application exposes.  A catalog that omits one of these
#: is rejected at construction time.
EXPOSED_ACTIONS: frozenset[str] = frozenset(DEFAULT_PERMISSIONS)


def resource_of(action: str) -> str:
    """Return the resource half of an action key (``clients`` for ``clients.edit``)."""
    return action.partition(".")[0]


def verb_of(action: str) -> str:
    """Return the verb half of an action key (``edit`` for ``clients.edit``)."""
    return action.partition(".")[2]


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class PermissionCatalog:
    """Immutable mapping from action to the ordered roles allowed to perform it.

    Construction validates the whole table:

    * every action key has the ``<resource>.<verb>`` shape;
    * every role name resolves to a ``Role``;
    * no action has an empty role set;
    * every action in ``required_actions`` is present.

    Any violation raises ``CatalogError`` listing the offending entries, so a
    gap in the table is caught at startup rather than at request time.
    """

    def __init__(
        self,
        entries: Mapping[str, Iterable[Role | str]],
        required_actions: Optional[Iterable[str]] = None,
    ) -> None:
        problems: list[str] = []
        table: dict[str, tuple[Role, ...]] = {}

        for action, roles in entries.items():
            if not isinstance(action, str) or not _ACTION_PATTERN.match(action):
                problems.append(f"action {action!r} is not of the form '<resource>.<verb>'")
                continue
            resolved: list[Role] = []
            for raw in roles:
                try:
                    role = Role(raw)
                except ValueError:
                    problems.append(f"action '{action}' names unknown role {raw!r}")
                    continue
                if role not in resolved:
                    resolved.append(role)
            if not resolved:
                problems.append(f"action '{action}' has no allowed roles")
                continue
            table[action] = tuple(resolved)

        if required_actions is not None:
            missing = sorted(set(required_actions) - set(entries))
            if missing:
                problems.append(f"catalog is missing actions: {', '.join(missing)}")

        if problems:
            raise CatalogError("Invalid permission catalog: " + "; ".join(problems))

        self._entries: Mapping[str, tuple[Role, ...]] = MappingProxyType(table)

    @classmethod
    def default(cls) -> "PermissionCatalog":
        """Build the standard catalog, checked against ``EXPOSED_ACTIONS``."""
        return cls(DEFAULT_PERMISSIONS, required_actions=EXPOSED_ACTIONS)

    def is_role_allowed(self, action: str, role: Role) -> bool:
        """Whether ``role`` may perform ``action``.

        Unknown actions return False; they are a denial, not an error.
        """
        return role in self._entries.get(action, ())

    def roles_for(self, action: str) -> tuple[Role, ...]:
        """Return the ordered roles allowed to perform ``action``.

        Raises:
            UnknownAction: If the action is not in the catalog.
        """
        try:
            return self._entries[action]
        except KeyError:
            raise UnknownAction(f"Action '{action}' is not defined in the permission catalog") from None

    def actions(self) -> list[str]:
        """Return all catalog actions, sorted."""
        return sorted(self._entries)

    def to_dict(self) -> dict[str, list[str]]:
        return {action: [r.value for r in roles] for action, roles in self._entries.items()}

    def __contains__(self, action: object) -> bool:
        return action in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self.actions())

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"PermissionCatalog(actions={len(self._entries)})"


DEFAULT_CATALOG = PermissionCatalog.default()
"""The standard catalog.  Immutable; safe to share between engines."""
