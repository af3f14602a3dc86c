"""
Tests for neurobridge.config -- engine settings and the tenant registry.

Covers: default settings, scoping floors that cannot be configured away,
organization registry isolation, and the three YAML loaders.
"""

from pathlib import Path

import pytest
import yaml

from neurobridge.catalog import DEFAULT_PERMISSIONS
from neurobridge.config import (
    DEFAULT_SETTINGS,
    EngineSettings,
    OrganizationRegistry,
    load_catalog_from_yaml,
    load_engine_settings_from_yaml,
    load_organizations_from_yaml,
)
from neurobridge.exceptions import CatalogError, ConfigurationError
from neurobridge.models import Organization, ResourceType, Role


# ---------------------------------------------------------------------------
# 1. Default settings
# ---------------------------------------------------------------------------

class TestDefaultSettings:
    def test_defaults_are_strict(self):
        assert DEFAULT_SETTINGS.best_effort_audit is False
        assert DEFAULT_SETTINGS.audit_timeout_seconds == 2.0
        assert DEFAULT_SETTINGS.compliance_critical_resources == ["clients", "sessions", "data"]

    def test_query_actions(self):
        assert DEFAULT_SETTINGS.is_query_action("sessions.view")
        assert DEFAULT_SETTINGS.is_query_action("reports.advanced")
        assert not DEFAULT_SETTINGS.is_query_action("data.collect")
        assert DEFAULT_SETTINGS.is_query_action(None)

    def test_compliance_critical_actions(self):
        assert DEFAULT_SETTINGS.is_compliance_critical("data.edit")
        assert DEFAULT_SETTINGS.is_compliance_critical("clients.view")
        assert not DEFAULT_SETTINGS.is_compliance_critical("users.view")
        assert not DEFAULT_SETTINGS.is_compliance_critical("org.edit")


# ---------------------------------------------------------------------------
# 2. Settings validation
# ---------------------------------------------------------------------------

class TestEngineSettingsValidation:
    def test_timeout_must_be_positive(self):
        with pytest.raises(Exception):
            EngineSettings(audit_timeout_seconds=0)

    def test_at_least_one_worker(self):
        with pytest.raises(Exception):
            EngineSettings(audit_workers=0)

    def test_background_backlog_must_be_positive(self):
        with pytest.raises(Exception):
            EngineSettings(detached_audit_backlog=0)
        assert DEFAULT_SETTINGS.detached_audit_backlog == 256

    def test_educators_never_see_sessions(self):
        with pytest.raises(Exception, match="clinical record types"):
            EngineSettings(educator_visible_resources=[ResourceType.PROGRAM, ResourceType.SESSION])

    def test_educators_never_see_data_points(self):
        with pytest.raises(Exception):
            EngineSettings(educator_visible_resources=["data_point"])

    def test_educator_visibility_can_be_narrowed(self):
        settings = EngineSettings(educator_visible_resources=[])
        assert settings.educator_visible_resources == []

    def test_family_floor_cannot_be_removed(self):
        with pytest.raises(Exception, match="organization_settings"):
            EngineSettings(family_restricted_resources=["user", "report"])

    def test_family_floor_can_be_widened(self):
        settings = EngineSettings(
            family_restricted_resources=["user", "organization_settings", "report", "program"]
        )
        assert ResourceType.PROGRAM in settings.family_restricted_resources


# ---------------------------------------------------------------------------
# 3. Organization registry -- multi-tenant isolation
# ---------------------------------------------------------------------------

class TestOrganizationRegistry:
    def test_register_and_retrieve(self):
        registry = OrganizationRegistry()
        registry.register(Organization(id="org_a", name="Org A"))
        retrieved = registry.get("org_a")
        assert retrieved.id == "org_a"
        assert retrieved.name == "Org A"
        assert "org_a" in registry
        assert len(registry) == 1

    def test_duplicate_registration_rejected(self):
        registry = OrganizationRegistry()
        org = Organization(id="org_a", name="Org A")
        registry.register(org)
        with pytest.raises(ValueError, match="already registered"):
            registry.register(org)

    def test_get_nonexistent_org_raises_key_error(self):
        registry = OrganizationRegistry()
        with pytest.raises(KeyError):
            registry.get("nonexistent")

    def test_update_existing_organization(self):
        registry = OrganizationRegistry()
        registry.register(Organization(id="org_a", name="Org A"))
        registry.update(
            Organization(id="org_a", name="Org A", settings={"billing_enabled": True})
        )
        assert registry.get("org_a").settings.billing_enabled is True

    def test_update_nonexistent_raises_key_error(self):
        registry = OrganizationRegistry()
        with pytest.raises(KeyError):
            registry.update(Organization(id="ghost", name="Ghost Org"))

    def test_list_orgs_sorted(self):
        registry = OrganizationRegistry()
        for oid in ["charlie", "alpha", "bravo"]:
            registry.register(Organization(id=oid, name=oid.title()))
        assert registry.list_orgs() == ["alpha", "bravo", "charlie"]

    def test_registry_returns_deep_copies(self):
        """Mutations to retrieved organizations must not affect the registry."""
        registry = OrganizationRegistry()
        registry.register(Organization(id="org_a", name="Org A"))

        retrieved = registry.get("org_a")
        retrieved.name = "MUTATED"
        retrieved.settings.timezone = "UTC"

        original = registry.get("org_a")
        assert original.name == "Org A"
        assert original.settings.timezone == "America/New_York"


# ---------------------------------------------------------------------------
# 4. YAML loaders
# ---------------------------------------------------------------------------

def _write_yaml(data: dict, tmp_dir: Path, name: str = "settings.yaml") -> Path:
    path = tmp_dir / name
    with open(path, "w") as f:
        yaml.dump(data, f)
    return path


class TestEngineSettingsLoader:
    def test_load_valid_yaml(self, tmp_path):
        path = _write_yaml(
            {"engine": {"audit_timeout_seconds": 0.5, "supervisor_neutral_resources": ["report"]}},
            tmp_path,
        )
        settings = load_engine_settings_from_yaml(path)
        assert settings.audit_timeout_seconds == 0.5
        assert settings.supervisor_neutral_resources == [ResourceType.REPORT]

    def test_missing_key_raises(self, tmp_path):
        path = _write_yaml({"settings": {}}, tmp_path)
        with pytest.raises(ValueError, match="top-level 'engine' key"):
            load_engine_settings_from_yaml(path)

    def test_non_mapping_rejected(self, tmp_path):
        path = _write_yaml({"engine": ["audit_timeout_seconds"]}, tmp_path)
        with pytest.raises(ConfigurationError):
            load_engine_settings_from_yaml(path)

    def test_load_nonexistent_file_raises(self):
        with pytest.raises(FileNotFoundError):
            load_engine_settings_from_yaml("/nonexistent/path.yaml")


class TestOrganizationLoader:
    def test_load_multiple_organizations(self, tmp_path):
        data = {
            "organizations": [
                {"id": f"org_{i}", "name": f"Org {i}", "type": "agency"}
                for i in range(3)
            ]
        }
        organizations = load_organizations_from_yaml(_write_yaml(data, tmp_path))
        assert [o.id for o in organizations] == ["org_0", "org_1", "org_2"]

    def test_non_list_rejected(self, tmp_path):
        path = _write_yaml({"organizations": {"id": "org_a"}}, tmp_path)
        with pytest.raises(ConfigurationError, match="must be a list"):
            load_organizations_from_yaml(path)

    def test_invalid_organization_rejected(self, tmp_path):
        path = _write_yaml({"organizations": [{"id": "org_a", "name": "A", "type": "hospital"}]}, tmp_path)
        with pytest.raises(Exception):
            load_organizations_from_yaml(path)


class TestCatalogLoader:
    def _full_table(self) -> dict:
        return {action: [r.value for r in roles] for action, roles in DEFAULT_PERMISSIONS.items()}

    def test_load_full_catalog(self, tmp_path):
        path = _write_yaml({"permissions": self._full_table()}, tmp_path)
        catalog = load_catalog_from_yaml(path)
        assert len(catalog) == 19
        assert catalog.is_role_allowed("data.view", Role.FAMILY)

    def test_partial_catalog_rejected_by_default(self, tmp_path):
        path = _write_yaml({"permissions": {"clients.view": ["org_admin"]}}, tmp_path)
        with pytest.raises(CatalogError, match="missing"):
            load_catalog_from_yaml(path)

    def test_partial_catalog_allowed_when_not_required(self, tmp_path):
        path = _write_yaml({"permissions": {"clients.view": ["org_admin"]}}, tmp_path)
        catalog = load_catalog_from_yaml(path, require_exposed_actions=False)
        assert catalog.actions() == ["clients.view"]

    def test_roles_must_be_lists(self, tmp_path):
        path = _write_yaml({"permissions": {"clients.view": "org_admin"}}, tmp_path)
        with pytest.raises(ConfigurationError, match="must be a list"):
            load_catalog_from_yaml(path, require_exposed_actions=False)


class TestBundledPolicy:
    def test_load_sample_access_policy(self):
        """Validate that the bundled example file loads successfully."""
        sample_path = Path(__file__).parent.parent / "examples" / "access_policy.yaml"
        settings = load_engine_settings_from_yaml(sample_path)
        organizations = load_organizations_from_yaml(sample_path)
        catalog = load_catalog_from_yaml(sample_path)

        assert settings.best_effort_audit is False
        assert len(organizations) >= 2
        org_ids = [o.id for o in organizations]
        assert "org_lakeside" in org_ids
        assert "district_9" in org_ids
        assert len(catalog) == 19
