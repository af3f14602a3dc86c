"""
NeuroBridge Access Core
=======================

Multi-tenant role-based access control and data scoping for a clinical
practice-management system.  Given an authenticated identity, an action and
a target record, the engine decides whether the action is allowed and, for
list operations, returns a declarative row filter the storage layer applies
to its query.

Tenant isolation is absolute: records of one organization are never visible
to users of another.  Within an organization, six roles receive different
rights, and family and supervisor access is further gated by relationship
(guardian-of and supervisor-of).  Every decision on clinical data is
recorded in an audit trail before it is returned.
"""

__version__ = "0.1.0"
