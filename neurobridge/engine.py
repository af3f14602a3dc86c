"""
Authorization Engine -- the single decision API for data access.

Every data-access call in the application asks the engine first::

    decision = engine.authorize(identity, "sessions.edit", ref)
    if not decision.allowed:
        return not_authorized()   # generic; never reveal decision.reason

The engine combines the coarse role check (``RoleResolver``) with the
tenant and relationship checks (``ScopeEvaluator``):

1. role lacks the action (unknown actions included) -> deny ``role_not_permitted``;
2. caller's organization is not registered -> deny ``out_of_scope``;
3. ref is missing scoping fields -> deny ``insufficient_context``;
4. record is outside the caller's scope -> deny ``out_of_scope``;
5. otherwise allow, with a row filter for list/query verbs.

**Auditing.**  Every call produces an ``AuditEntry``.  For
compliance-critical actions (``clients.*``, ``sessions.*``, ``data.*`` by
default) the engine waits for the recorder, bounded by
``audit_timeout_seconds``:

* recorder raises (``AuditError`` or any other fault) -> ``AuditUnavailable``
  is raised;
* recorder times out -> the decision degrades to deny ``audit_timeout``, and a
  second entry recording the degraded outcome supersedes the late one.

With best-effort auditing both failures are logged and the decision stands.
Entries for other actions are delivered in the background on separate
workers, with a bounded backlog; failures and slow deliveries are logged out
of band.

The engine holds no per-request state.  It is safe to share one instance
between threads and to call ``authorize`` concurrently.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import Optional, Protocol

from neurobridge.audit import AuditEntry, AuditEventType, AuditRecorder
from neurobridge.catalog import DEFAULT_CATALOG, EXPOSED_ACTIONS, PermissionCatalog
from neurobridge.config import DEFAULT_SETTINGS, EngineSettings, OrganizationRegistry
from neurobridge.exceptions import AuditUnavailable, CatalogError
from neurobridge.models import Decision, DecisionReason, Identity, Outcome, ResourceRef, Role
from neurobridge.rbac import RoleResolver
from neurobridge.scope import ScopeEvaluator, ScopeVerdict

logger = logging.getLogger(__name__)

CATALOG_RELOAD_ACTION = "catalog.reload"


class IdentityProvider(Protocol):
    """Supplies the validated identity of the current caller."""

    def current_identity(self) -> Identity:
        ...


class AuthorizationEngine:
    """Orchestrates role, tenant and relationship checks into one decision.

    Construct once at process start and pass it to every handler.  Call
    ``close()`` (or use the engine as a context manager) on shutdown so
    pending audit deliveries complete.
    """

    def __init__(
        self,
        audit_recorder: AuditRecorder,
        catalog: Optional[PermissionCatalog] = None,
        settings: Optional[EngineSettings] = None,
        organizations: Optional[OrganizationRegistry] = None,
    ) -> None:
        self._settings = settings if settings is not None else DEFAULT_SETTINGS
        self._resolver = RoleResolver(catalog if catalog is not None else DEFAULT_CATALOG)
        self._scope = ScopeEvaluator(self._settings)
        self._organizations = organizations
        self._audit = audit_recorder
        self._executor = ThreadPoolExecutor(
            max_workers=self._settings.audit_workers,
            thread_name_prefix="neurobridge-audit",
        )
        self._detached_executor = ThreadPoolExecutor(
            max_workers=self._settings.audit_workers,
            thread_name_prefix="neurobridge-audit-bg",
        )
        self._detached_slots = threading.BoundedSemaphore(self._settings.detached_audit_backlog)

    @property
    def catalog(self) -> PermissionCatalog:
        return self._resolver.catalog

    @property
    def scope(self) -> ScopeEvaluator:
        return self._scope

    # -- decisions --

    def authorize(
        self,
        identity: Identity,
        action: str,
        ref: ResourceRef,
        *,
        best_effort: Optional[bool] = None,
    ) -> Decision:
        """Decide whether ``identity`` may perform ``action`` on ``ref``.

        Args:
            identity: The authenticated caller.
            action: Catalog action key, e.g. ``"sessions.edit"``.
            ref: The target record, or a collection ref for list/query actions.
            best_effort: Override ``EngineSettings.best_effort_audit`` for this call.

        Returns:
            The ``Decision``.  Denials are returned, never raised.

        Raises:
            AuditUnavailable: The audit sink failed while recording a
                compliance-critical decision.
        """
        decision, cause = self._decide(identity, action, ref)
        self._log_decision(identity, action, decision, cause)

        entry = AuditEntry.for_decision(identity, action, ref, decision, metadata={"cause": cause})
        if not self._settings.is_compliance_critical(action):
            self._record_detached(entry)
            return decision

        if best_effort is None:
            best_effort = self._settings.best_effort_audit
        if self._record_blocking(entry, best_effort):
            return decision

        degraded = Decision.deny(DecisionReason.AUDIT_TIMEOUT)
        # The timed-out entry may still land; this one records what the caller got.
        self._record_detached(
            AuditEntry.for_decision(
                identity, action, ref, degraded,
                metadata={
                    "cause": DecisionReason.AUDIT_TIMEOUT.value,
                    "supersedes": entry.entry_id,
                },
            )
        )
        return degraded

    def authorize_request(
        self,
        provider: IdentityProvider,
        action: str,
        ref: ResourceRef,
        *,
        best_effort: Optional[bool] = None,
    ) -> Decision:
        """``authorize`` for the caller supplied by ``provider``."""
        return self.authorize(provider.current_identity(), action, ref, best_effort=best_effort)

    def _decide(
        self, identity: Identity, action: str, ref: ResourceRef
    ) -> tuple[Decision, str]:
        """Return the decision and the precise cause behind it."""
        resolver = self._resolver
        if not resolver.has_permission(identity.role, action):
            return Decision.deny(DecisionReason.ROLE_NOT_PERMITTED), "role_not_permitted"

        if (
            self._organizations is not None
            and identity.role != Role.PLATFORM_ADMIN
            and identity.organization_id not in self._organizations
        ):
            return Decision.deny(DecisionReason.OUT_OF_SCOPE), "unknown_organization"

        verdict = self._scope.check(identity, ref, action)
        if verdict == ScopeVerdict.INSUFFICIENT_CONTEXT:
            return Decision.deny(DecisionReason.INSUFFICIENT_CONTEXT), verdict.value
        if verdict != ScopeVerdict.IN_SCOPE:
            return Decision.deny(DecisionReason.OUT_OF_SCOPE), verdict.value

        row_filter = None
        if self._settings.is_query_action(action):
            row_filter = self._scope.row_filter_for(identity, ref.resource_type, ref.organization_id)
        return Decision.allow(row_filter=row_filter), verdict.value

    def _log_decision(
        self, identity: Identity, action: str, decision: Decision, cause: str
    ) -> None:
        extra = {
            "user_id": identity.user_id,
            "organization_id": identity.organization_id,
            "action": action,
            "outcome": decision.outcome.value,
            "reason": decision.reason.value if decision.reason is not None else None,
            "cause": cause,
        }
        if cause in (ScopeVerdict.TENANT_MISMATCH.value, "unknown_organization"):
            logger.warning(
                "Cross-tenant access denied: user %s (org %s) attempted %s",
                identity.user_id, identity.organization_id, action,
                extra=extra,
            )
        elif decision.outcome == Outcome.DENY:
            logger.info("Authorization denied (%s): %s by %s", cause, action, identity.user_id, extra=extra)
        else:
            logger.debug("Authorization allowed: %s by %s", action, identity.user_id, extra=extra)

    # -- auditing --

    def _record_blocking(self, entry: AuditEntry, best_effort: bool) -> bool:
        """Deliver an entry and wait for it.

        Returns False when the delivery timed out and the decision must
        degrade to deny.
        """
        future = self._executor.submit(self._audit.record, entry)
        try:
            future.result(timeout=self._settings.audit_timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            logger.error(
                "Audit sink timed out after %.2fs recording %s for %s",
                self._settings.audit_timeout_seconds, entry.action, entry.user_id,
            )
            return best_effort
        except Exception as exc:
            logger.error(
                "Audit sink failed recording %s for %s: %s", entry.action, entry.user_id, exc,
                exc_info=exc,
            )
            if best_effort:
                return True
            raise AuditUnavailable(
                f"Audit record for compliance-critical action '{entry.action}' could not be stored"
            ) from exc
        return True

    def _record_detached(self, entry: AuditEntry) -> None:
        """Deliver an entry in the background.

        At most ``detached_audit_backlog`` entries wait at once; the rest are
        dropped and logged.  Background deliveries run on their own workers so
        a stalled sink never delays compliance-critical records.
        """
        if not self._detached_slots.acquire(blocking=False):
            logger.error(
                "Audit backlog full (%d pending); dropped entry %s: %s by %s",
                self._settings.detached_audit_backlog, entry.entry_id, entry.action, entry.user_id,
            )
            return
        try:
            future = self._detached_executor.submit(self._deliver_detached, entry)
        except RuntimeError:
            self._detached_slots.release()
            raise
        future.add_done_callback(self._finish_detached)

    def _deliver_detached(self, entry: AuditEntry) -> None:
        started = time.monotonic()
        self._audit.record(entry)
        elapsed = time.monotonic() - started
        if elapsed > self._settings.audit_timeout_seconds:
            logger.warning(
                "Background audit delivery of %s for %s took %.2fs (limit %.2fs)",
                entry.action, entry.user_id, elapsed, self._settings.audit_timeout_seconds,
            )

    def _finish_detached(self, future: Future) -> None:
        self._detached_slots.release()
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Background audit delivery failed", exc_info=exc)

    # -- catalog management --

    def reload_catalog(self, catalog: PermissionCatalog, actor: Identity) -> None:
        """Replace the permission catalog.

        Only a platform admin may reload.  The reload is recorded (and the
        record waited on) before the new catalog takes effect; if the audit
        sink fails the old catalog stays in place.

        Raises:
            PermissionError: If ``actor`` is not a platform admin.
            CatalogError: If ``catalog`` omits an action the application exposes.
            AuditUnavailable: If the reload could not be recorded.
        """
        if actor.role != Role.PLATFORM_ADMIN:
            raise PermissionError(
                f"Role '{actor.role.value}' is not permitted to reload the permission catalog."
            )
        missing = sorted(EXPOSED_ACTIONS.difference(catalog.actions()))
        if missing:
            raise CatalogError(
                f"Reloaded catalog is missing actions: {', '.join(missing)}"
            )

        entry = AuditEntry(
            event_type=AuditEventType.CATALOG_RELOADED,
            org_id=actor.organization_id,
            user_id=actor.user_id,
            role=actor.role.value,
            action=CATALOG_RELOAD_ACTION,
            outcome=Outcome.ALLOW,
            metadata={
                "previous_action_count": len(self._resolver.catalog),
                "action_count": len(catalog),
            },
        )
        if not self._record_blocking(entry, best_effort=False):
            self._record_detached(
                entry.model_copy(
                    update={
                        "entry_id": str(uuid.uuid4()),
                        "timestamp": datetime.now(timezone.utc),
                        "outcome": Outcome.DENY,
                        "reason": DecisionReason.AUDIT_TIMEOUT.value,
                        "metadata": {**entry.metadata, "supersedes": entry.entry_id},
                    }
                )
            )
            raise AuditUnavailable("Catalog reload could not be recorded before the audit timeout")

        self._resolver = RoleResolver(catalog)
        logger.warning(
            "Permission catalog reloaded by %s (%d actions)", actor.user_id, len(catalog)
        )

    # -- lifecycle --

    def close(self) -> None:
        """Wait for pending audit deliveries and release the worker threads."""
        self._executor.shutdown(wait=True)
        self._detached_executor.shutdown(wait=True)

    def __enter__(self) -> "AuthorizationEngine":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
