"""
Tests for neurobridge.catalog -- the closed permission catalog.

Covers: the verbatim default table, closed-world denial of unknown actions,
startup validation, and immutability.
"""

from __future__ import annotations

import pytest

from neurobridge.catalog import (
    DEFAULT_CATALOG,
    DEFAULT_PERMISSIONS,
    EXPOSED_ACTIONS,
    PermissionCatalog,
    resource_of,
    verb_of,
)
from neurobridge.exceptions import CatalogError, UnknownAction
from neurobridge.models import Role


ORG_ADMIN = Role.ORG_ADMIN
SUPERVISOR = Role.SUPERVISOR
THERAPIST = Role.THERAPIST
FAMILY = Role.FAMILY

EXPECTED_TABLE = {
    "clients.view": {ORG_ADMIN, SUPERVISOR, THERAPIST, FAMILY},
    "clients.create": {ORG_ADMIN, SUPERVISOR},
    "clients.edit": {ORG_ADMIN, SUPERVISOR},
    "clients.delete": {ORG_ADMIN, SUPERVISOR},
    "sessions.view": {ORG_ADMIN, SUPERVISOR, THERAPIST, FAMILY},
    "sessions.create": {ORG_ADMIN, SUPERVISOR, THERAPIST},
    "sessions.edit": {ORG_ADMIN, SUPERVISOR, THERAPIST},
    "sessions.delete": {ORG_ADMIN, SUPERVISOR},
    "data.view": {ORG_ADMIN, SUPERVISOR, THERAPIST, FAMILY},
    "data.collect": {ORG_ADMIN, SUPERVISOR, THERAPIST},
    "data.edit": {ORG_ADMIN, SUPERVISOR, THERAPIST},
    "reports.view": {ORG_ADMIN, SUPERVISOR, THERAPIST},
    "reports.advanced": {ORG_ADMIN, SUPERVISOR},
    "users.view": {ORG_ADMIN, SUPERVISOR},
    "users.create": {ORG_ADMIN},
    "users.edit": {ORG_ADMIN},
    "users.delete": {ORG_ADMIN},
    "org.view": {ORG_ADMIN},
    "org.edit": {ORG_ADMIN},
}


# ---------------------------------------------------------------------------
# 1. Default table
# ---------------------------------------------------------------------------

class TestDefaultCatalog:
    def test_default_catalog_matches_table_exactly(self):
        assert set(DEFAULT_CATALOG.actions()) == set(EXPECTED_TABLE)
        for action, roles in EXPECTED_TABLE.items():
            assert set(DEFAULT_CATALOG.roles_for(action)) == roles, action

    def test_every_role_pair_agrees_with_table(self):
        for action, roles in EXPECTED_TABLE.items():
            for role in Role:
                assert DEFAULT_CATALOG.is_role_allowed(action, role) is (role in roles)

    def test_role_order_is_preserved(self):
        assert DEFAULT_CATALOG.roles_for("clients.view") == (
            ORG_ADMIN, SUPERVISOR, THERAPIST, FAMILY,
        )

    def test_platform_admin_and_educator_hold_no_grants(self):
        for action in DEFAULT_CATALOG:
            assert not DEFAULT_CATALOG.is_role_allowed(action, Role.PLATFORM_ADMIN)
            assert not DEFAULT_CATALOG.is_role_allowed(action, Role.EDUCATOR)

    def test_exposed_actions_cover_catalog(self):
        assert EXPOSED_ACTIONS == frozenset(EXPECTED_TABLE)
        assert len(DEFAULT_CATALOG) == 19


# ---------------------------------------------------------------------------
# 2. Closed-world default deny
# ---------------------------------------------------------------------------

class TestUnknownActions:
    def test_unknown_action_is_denied_for_every_role(self):
        for role in Role:
            assert DEFAULT_CATALOG.is_role_allowed("clients.teleport", role) is False

    def test_typo_fails_safe(self):
        assert DEFAULT_CATALOG.is_role_allowed("client.view", ORG_ADMIN) is False

    def test_strict_lookup_raises_unknown_action(self):
        with pytest.raises(UnknownAction):
            DEFAULT_CATALOG.roles_for("billing.export")

    def test_contains(self):
        assert "data.collect" in DEFAULT_CATALOG
        assert "data.export" not in DEFAULT_CATALOG


# ---------------------------------------------------------------------------
# 3. Startup validation
# ---------------------------------------------------------------------------

class TestCatalogValidation:
    def test_accepts_role_names(self):
        catalog = PermissionCatalog({"clients.view": ["org_admin", "family"]})
        assert catalog.is_role_allowed("clients.view", Role.FAMILY)

    def test_super_admin_alias_resolves(self):
        catalog = PermissionCatalog({"org.audit": ["super_admin"]})
        assert catalog.roles_for("org.audit") == (Role.PLATFORM_ADMIN,)

    def test_unknown_role_rejected(self):
        with pytest.raises(CatalogError, match="unknown role"):
            PermissionCatalog({"clients.view": ["org_admin", "janitor"]})

    def test_malformed_action_rejected(self):
        with pytest.raises(CatalogError, match="<resource>.<verb>"):
            PermissionCatalog({"clients": ["org_admin"]})

    def test_empty_role_set_rejected(self):
        with pytest.raises(CatalogError, match="no allowed roles"):
            PermissionCatalog({"clients.view": []})

    def test_missing_required_action_rejected(self):
        partial = {k: v for k, v in DEFAULT_PERMISSIONS.items() if k != "sessions.delete"}
        with pytest.raises(CatalogError, match="sessions.delete"):
            PermissionCatalog(partial, required_actions=EXPOSED_ACTIONS)

    def test_catalog_error_is_value_error(self):
        with pytest.raises(ValueError):
            PermissionCatalog({"bad": ["org_admin"]})

    def test_duplicate_roles_collapsed(self):
        catalog = PermissionCatalog({"clients.view": ["org_admin", "org_admin"]})
        assert catalog.roles_for("clients.view") == (ORG_ADMIN,)


# ---------------------------------------------------------------------------
# 4. Immutability and helpers
# ---------------------------------------------------------------------------

class TestImmutability:
    def test_source_mapping_changes_do_not_leak_in(self):
        source = {"clients.view": ["org_admin"]}
        catalog = PermissionCatalog(source)
        source["clients.view"].append("family")
        source["clients.edit"] = ["family"]
        assert not catalog.is_role_allowed("clients.view", FAMILY)
        assert "clients.edit" not in catalog

    def test_default_permissions_is_read_only(self):
        with pytest.raises(TypeError):
            DEFAULT_PERMISSIONS["clients.view"] = (FAMILY,)  # type: ignore[index]

    def test_to_dict(self):
        assert DEFAULT_CATALOG.to_dict()["org.edit"] == ["org_admin"]

    def test_action_parts(self):
        assert resource_of("sessions.edit") == "sessions"
        assert verb_of("sessions.edit") == "edit"
