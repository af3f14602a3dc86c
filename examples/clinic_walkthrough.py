"""
Clinic Walkthrough: Multi-Tenant Access Decisions
=================================================

This script walks the NeuroBridge access core through a day at a synthetic
clinic.  No real clients, staff or clinical data are used.

Steps demonstrated:
  1. Load engine settings, tenants and the permission catalog from YAML
  2. Build identities for each role
  3. Authorize single-record actions (role, tenant and relationship checks)
  4. Authorize list queries and render their row filters
  5. Attempt a cross-tenant read
  6. Generate an Access Review Report
  7. Export the audit log for compliance review

Usage:
    python -m examples.clinic_walkthrough
    # or: python examples/clinic_walkthrough.py
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from neurobridge.access_report import generate_access_report
from neurobridge.audit import AuditLog
from neurobridge.config import (
    OrganizationRegistry,
    load_catalog_from_yaml,
    load_engine_settings_from_yaml,
    load_organizations_from_yaml,
)
from neurobridge.engine import AuthorizationEngine
from neurobridge.logging_config import setup_logging
from neurobridge.models import Identity, ResourceRef, ResourceType, Role


def _banner(text: str) -> None:
    print(f"\n{'=' * 60}")
    print(f"  {text}")
    print(f"{'=' * 60}\n")


def _show(label: str, decision) -> None:
    verdict = "ALLOW" if decision.allowed else f"DENY ({decision.reason.value})"
    print(f"  {label:<48} {verdict}")


def main() -> None:
    setup_logging()
    _banner("NeuroBridge Walkthrough: Lakeside Behavioral Clinic")
    print("All identities and records in this demo are synthetic.\n")

    # ------------------------------------------------------------------
    # Step 1: Load policy
    # ------------------------------------------------------------------
    _banner("Step 1: Load Access Policy")

    policy_path = Path(__file__).parent / "access_policy.yaml"
    settings = load_engine_settings_from_yaml(policy_path)
    catalog = load_catalog_from_yaml(policy_path)

    registry = OrganizationRegistry()
    for organization in load_organizations_from_yaml(policy_path):
        registry.register(organization)
    print(f"Catalog: {len(catalog)} actions")
    print(f"Tenants: {registry.list_orgs()}")

    clinic = registry.get("org_lakeside")
    print(f"Working in: {clinic.name} ({clinic.settings.timezone})")

    # ------------------------------------------------------------------
    # Step 2: Identities
    # ------------------------------------------------------------------
    _banner("Step 2: Staff and Family Identities")

    admin = Identity(user_id="admin_ana", role=Role.ORG_ADMIN, organization_id=clinic.id)
    supervisor = Identity(
        user_id="sup_sam",
        role=Role.SUPERVISOR,
        organization_id=clinic.id,
        supervised_therapist_ids=frozenset({"ther_tara"}),
    )
    tara = Identity(user_id="ther_tara", role=Role.THERAPIST, organization_id=clinic.id)
    parent = Identity(
        user_id="parent_pat",
        role=Role.FAMILY,
        organization_id=clinic.id,
        guardian_of_client_ids=frozenset({"client_c1"}),
    )
    for identity in (admin, supervisor, tara, parent):
        print(f"  {identity.user_id:<12} {identity.role.value}")

    audit_log = AuditLog()
    with AuthorizationEngine(audit_log, catalog=catalog, settings=settings, organizations=registry) as engine:

        # --------------------------------------------------------------
        # Step 3: Single-record actions
        # --------------------------------------------------------------
        _banner("Step 3: Single-Record Actions")

        taras_session = ResourceRef(
            resource_type=ResourceType.SESSION,
            organization_id=clinic.id,
            resource_id="sess_001",
            assigned_therapist_id="ther_tara",
            client_id="client_c1",
        )
        other_session = ResourceRef(
            resource_type=ResourceType.SESSION,
            organization_id=clinic.id,
            resource_id="sess_002",
            assigned_therapist_id="ther_omar",
            client_id="client_c2",
        )
        c2_data = ResourceRef(
            resource_type=ResourceType.DATA_POINT,
            organization_id=clinic.id,
            resource_id="dp_077",
            assigned_therapist_id="ther_omar",
            client_id="client_c2",
        )

        _show("ther_tara edits her own session", engine.authorize(tara, "sessions.edit", taras_session))
        _show("ther_tara edits a colleague's session", engine.authorize(tara, "sessions.edit", other_session))
        _show("ther_tara deletes her own session", engine.authorize(tara, "sessions.delete", taras_session))
        _show("sup_sam edits a supervisee's session", engine.authorize(supervisor, "sessions.edit", taras_session))
        _show("sup_sam edits an unsupervised session", engine.authorize(supervisor, "sessions.edit", other_session))
        _show("parent_pat views another child's data", engine.authorize(parent, "data.view", c2_data))
        _show("admin_ana edits organization settings", engine.authorize(
            admin, "org.edit",
            ResourceRef(resource_type=ResourceType.ORGANIZATION_SETTINGS, organization_id=clinic.id),
        ))

        # --------------------------------------------------------------
        # Step 4: List queries
        # --------------------------------------------------------------
        _banner("Step 4: List Queries and Row Filters")

        for identity in (admin, supervisor, tara, parent):
            sessions = ResourceRef(resource_type=ResourceType.SESSION, organization_id=clinic.id)
            decision = engine.authorize(identity, "sessions.view", sessions)
            print(f"  {identity.user_id:<12} WHERE {decision.row_filter.render()}")

        # --------------------------------------------------------------
        # Step 5: Cross-tenant attempt
        # --------------------------------------------------------------
        _banner("Step 5: Cross-Tenant Attempt")

        school_client = ResourceRef(
            resource_type=ResourceType.CLIENT,
            organization_id="district_9",
            resource_id="student_s4",
            client_id="student_s4",
        )
        _show("admin_ana views a District 9 student", engine.authorize(admin, "clients.view", school_client))

    # ------------------------------------------------------------------
    # Step 6: Access Review Report
    # ------------------------------------------------------------------
    _banner("Step 6: Access Review Report")

    report = generate_access_report(audit_log, clinic.id)
    print(json.dumps(report.to_dict(), indent=2, default=str))

    # ------------------------------------------------------------------
    # Step 7: Export audit log
    # ------------------------------------------------------------------
    _banner("Step 7: Audit Log Export (Compliance Review)")

    export = audit_log.export_for_review(org_id=clinic.id)
    print(json.dumps(export["export_metadata"], indent=2))

    valid, broken_at = audit_log.verify_chain()
    print(f"\nFull chain verification: valid={valid}, broken_at={broken_at}")

    _banner("Walkthrough Complete")
    print("All data was synthetic.")


if __name__ == "__main__":
    main()
