"""Operator CLI for directory synchronization.

Drains the sync outbox, lists queued tasks, retries provisioning and
reconciles role mappings outside of the HTTP API.

    lms-admin-sync drain --limit 50
    lms-admin-sync list --status failed
    lms-admin-sync provision --username alice
    lms-admin-sync reconcile --username alice
    lms-admin-sync verify-audit
"""
from __future__ import annotations
import argparse
import json
import logging
import sys
from typing import Optional

from lms_admin.config import load_settings
from lms_admin.core import audit
from lms_admin.core.db import create_db_engine, init_db, session_scope
from lms_admin.core.directory_sync import DirectorySettings, DirectorySyncAdapter
from lms_admin.core.errors import AdminError, NotFoundError
from lms_admin.core.provisioning_service import AdminService
from lms_admin.core.rbac import Caller


def _resolve_user_id(service: AdminService, args) -> str:
    if args.user_id:
        return args.user_id
    user = service.store.find_user_by_username(args.username)
    if user is None:
        raise NotFoundError(f"User '{args.username}' not found")
    return str(user.id)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="LMS directory sync helper")
    parser.add_argument("--operator", default="cli",
                        help="Operator identifier for audit logs (default: cli)")

    sub = parser.add_subparsers(dest="cmd")

    sd = sub.add_parser("drain", help="Replay pending outbox tasks")
    sd.add_argument("--limit", type=int, default=100)

    sl = sub.add_parser("list", help="List outbox tasks")
    sl.add_argument("--status", choices=["pending", "failed"])

    for name, help_text in (
        ("provision", "Create or refresh the directory account of a user"),
        ("reconcile", "Reconcile directory role mappings of a user"),
    ):
        sp = sub.add_parser(name, help=help_text)
        target = sp.add_mutually_exclusive_group(required=True)
        target.add_argument("--user-id")
        target.add_argument("--username")
        if name == "provision":
            sp.add_argument("--password", help="Initial password (defaults to DEFAULT_USER_PASSWORD)")

    sub.add_parser("verify-audit", help="Verify audit log signatures")
    return parser


def main(argv: Optional[list[str]] = None, *, engine=None, client_factory=None) -> int:
    """Command-line entry point. Returns the process exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.cmd:
        parser.print_help()
        return 2

    cfg = load_settings()
    logging.basicConfig(level=cfg.log_level)
    audit.configure_audit(cfg.audit_log_dir, cfg.audit_log_signing_key)

    if args.cmd == "verify-audit":
        total, valid = audit.verify_audit_log()
        print(f"Audit log: {valid}/{total} events with valid signatures")
        return 0 if total == valid else 1

    engine = engine or create_db_engine(cfg.database_url)
    init_db(engine)
    caller = Caller(subject=args.operator, username=args.operator)

    with session_scope(engine) as session:
        adapter = DirectorySyncAdapter(session, DirectorySettings.from_config(cfg), client_factory)
        service = AdminService(session, adapter)
        try:
            if args.cmd == "drain":
                result = service.drain_outbox(caller, limit=args.limit)
            elif args.cmd == "list":
                result = service.outbox_tasks(args.status)
            elif args.cmd == "provision":
                result = service.provision_user(_resolve_user_id(service, args), caller, password=args.password)
            else:
                user = service.store.get_user(_resolve_user_id(service, args))
                result = adapter.sync_user_roles(user)
        except AdminError as e:
            print(f"[{args.cmd}] Error: {e.detail}", file=sys.stderr)
            return 1

    print(json.dumps(result, indent=2, default=str))
    if args.cmd == "drain" and (result["failed"] or result["retried"]):
        return 1
    return 0
