"""Core Business Logic Module

Framework-independent logic of the LMS admin service.

Module Structure:
    - keycloak/               : Low-level Keycloak Admin API client
    - db.py / models.py       : SQLAlchemy engine, session factory and ORM models
    - store.py                : Domain store (CRUD, uniqueness, links)
    - permissions.py          : Effective permission resolution
    - directory_sync.py       : Directory sync adapter and outbox
    - provisioning_service.py : Administrative flows (AdminService)
    - rbac.py                 : Caller identity and role checks
    - validators.py           : Input validation and payload parsing
    - representations.py      : ORM rows to JSON / Keycloak representations
    - audit.py                : Signed JSONL audit trail
    - errors.py               : Error taxonomy with HTTP status

Usage Pattern:
    These modules are NOT auto-imported; import explicitly when needed:
        from lms_admin.core.provisioning_service import AdminService
        from lms_admin.core.permissions import resolve_effective_permissions
"""
