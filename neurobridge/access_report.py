"""
Access Review Report Generator.

Summarizes an organization's authorization decisions for periodic compliance
review: how many requests were allowed and denied, why denials happened,
which actions were exercised, and which users were denied most often.  A
spike in ``tenant_mismatch`` causes, or a single user accumulating
``no_relationship`` denials, is the kind of pattern a privacy officer looks
for.

The report reads the hash-chained ``AuditLog`` and includes its integrity
status so that a reviewer knows whether the underlying trail was intact.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from typing import Any, Optional

from neurobridge.audit import AuditEventType, AuditLog
from neurobridge.models import Outcome


class AccessReport:
    """A structured access review report for one organization."""

    def __init__(
        self,
        org_id: str,
        window_start: Optional[str],
        window_end: Optional[str],
        total_decisions: int,
        outcomes: dict[str, int],
        denials_by_reason: dict[str, int],
        denials_by_cause: dict[str, int],
        decisions_by_action: dict[str, int],
        denied_users: list[dict[str, Any]],
        chain_integrity: str,
        generated_at: str,
    ) -> None:
        self.org_id = org_id
        self.window_start = window_start
        self.window_end = window_end
        self.total_decisions = total_decisions
        self.outcomes = outcomes
        self.denials_by_reason = denials_by_reason
        self.denials_by_cause = denials_by_cause
        self.decisions_by_action = decisions_by_action
        self.denied_users = denied_users
        self.chain_integrity = chain_integrity
        self.generated_at = generated_at

    def to_dict(self) -> dict[str, Any]:
        """Serialize the report to a dictionary."""
        return {
            "report_type": "Access Review Report",
            "disclaimer": (
                "This report summarizes recorded authorization decisions. "
                "It does not contain clinical record contents."
            ),
            "org_id": self.org_id,
            "window": {"start": self.window_start, "end": self.window_end},
            "total_decisions": self.total_decisions,
            "outcomes": self.outcomes,
            "denials_by_reason": self.denials_by_reason,
            "denials_by_cause": self.denials_by_cause,
            "decisions_by_action": self.decisions_by_action,
            "denied_users": self.denied_users,
            "chain_integrity": self.chain_integrity,
            "generated_at": self.generated_at,
        }

    def __repr__(self) -> str:
        return (
            f"AccessReport(org_id={self.org_id}, decisions={self.total_decisions}, "
            f"denied={self.outcomes.get(Outcome.DENY.value, 0)})"
        )


def generate_access_report(
    audit_log: AuditLog,
    org_id: str,
    time_start: Optional[datetime] = None,
    time_end: Optional[datetime] = None,
) -> AccessReport:
    """Build an ``AccessReport`` from the organization's decision entries.

    Args:
        audit_log: The audit log to summarize.
        org_id: Organization under review.
        time_start: Optional inclusive start of the review window.
        time_end: Optional inclusive end of the review window.

    Returns:
        An ``AccessReport``; denied users are ordered by denial count, highest first.
    """
    entries = audit_log.query(
        org_id,
        event_type=AuditEventType.AUTHORIZATION_DECISION,
        time_start=time_start,
        time_end=time_end,
    )

    outcomes: Counter[str] = Counter({Outcome.ALLOW.value: 0, Outcome.DENY.value: 0})
    by_reason: Counter[str] = Counter()
    by_cause: Counter[str] = Counter()
    by_action: Counter[str] = Counter()
    denied: Counter[str] = Counter()

    for entry in entries:
        outcomes[entry.outcome.value] += 1
        by_action[entry.action] += 1
        if entry.outcome == Outcome.DENY:
            by_reason[entry.reason or "unspecified"] += 1
            by_cause[entry.metadata.get("cause", "unspecified")] += 1
            denied[entry.user_id] += 1

    chain_valid, broken_at = audit_log.verify_chain()

    return AccessReport(
        org_id=org_id,
        window_start=time_start.isoformat() if time_start else None,
        window_end=time_end.isoformat() if time_end else None,
        total_decisions=len(entries),
        outcomes=dict(outcomes),
        denials_by_reason=dict(by_reason),
        denials_by_cause=dict(by_cause),
        decisions_by_action=dict(sorted(by_action.items())),
        denied_users=[
            {"user_id": user_id, "denials": count}
            for user_id, count in sorted(denied.items(), key=lambda item: (-item[1], item[0]))
        ],
        chain_integrity="VALID" if chain_valid else f"BROKEN_AT_INDEX_{broken_at}",
        generated_at=datetime.now(timezone.utc).isoformat(),
    )
