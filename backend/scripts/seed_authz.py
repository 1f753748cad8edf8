#!/usr/bin/env python
"""Idempotent seed script for role permission matrices.

Usage:
    python backend/scripts/seed_authz.py                      # seed missing matrix rows
    python backend/scripts/seed_authz.py --admin-user-id U1   # also grant admin to U1
    python backend/scripts/seed_authz.py --show-roles         # print role -> enabled flag counts
    python backend/scripts/seed_authz.py --check              # validate every role has a total matrix
    python backend/scripts/seed_authz.py --dry-run            # run logic then rollback (no DB changes)

Existing rows are never overwritten unless --reset is given; admins edit matrices at runtime.
"""
from __future__ import annotations
import os, sys, argparse, textwrap
from sqlalchemy import select

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from portal import create_app, get_db  # type: ignore
from portal.constants.permissions import ALL_ROLES, AppRole, preset_flags
from portal.errors import PortalError
from portal.models.authz import Base, RolePermission
from portal.services.matrix import validate_matrices
from portal.services.roles import assign_role
import portal.models.service_ticket  # noqa: F401
import portal.models.audit  # noqa: F401


def ensure_role_matrices(session, reset: bool = False):
    """Insert a preset row for every role lacking one. Returns the roles written."""
    existing = {r.role: r for r in session.execute(select(RolePermission)).scalars().all()}
    written = []
    for role in ALL_ROLES:
        flags = preset_flags(role)
        row = existing.get(role.value)
        if row is None:
            session.add(RolePermission(role=role.value, **flags))
            written.append(role)
        elif reset:
            for name, value in flags.items():
                setattr(row, name, value)
            written.append(role)
    session.flush()
    return written


def summarize_roles(session):
    rows = []
    for row in session.execute(select(RolePermission).order_by(RolePermission.role)).scalars().all():
        enabled = sorted(name for name in preset_flags(AppRole.ADMIN) if getattr(row, name))
        rows.append((row.role, len(enabled), enabled[:6]))
    return rows


def print_role_summary(session):
    rows = summarize_roles(session)
    if not rows:
        print("[INFO] No role matrices present.")
        return
    name_w = max(len(r[0]) for r in rows)
    print(f"{'Role'.ljust(name_w)} | Enabled | Sample (up to 6)")
    print('-' * (name_w + 40))
    for name, cnt, sample in rows:
        print(f"{name.ljust(name_w)} | {str(cnt).rjust(7)} | {', '.join(sample)}")


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Seed role permission matrices",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_authz.py\n  dry run: seed_authz.py --dry-run\n  grant admin: seed_authz.py --admin-user-id <id>\n""")
    )
    p.add_argument('--admin-user-id', default=os.getenv('SEED_ADMIN_USER_ID'), help='Grant the admin role to this identity provider user id')
    p.add_argument('--reset', action='store_true', help='Overwrite existing matrix rows with the presets')
    p.add_argument('--show-roles', action='store_true', help='Print enabled flag counts after seeding')
    p.add_argument('--check', action='store_true', help='Validate that every role has a complete matrix; exits 2 on problems')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    app = create_app()
    with app.app_context():
        session = get_db()
        # Bootstrap fallback when migrations have not been run; prefer alembic upgrade
        Base.metadata.create_all(session.get_bind(), checkfirst=True)
        try:
            written = ensure_role_matrices(session, reset=args.reset)
            if args.admin_user_id:
                assign_role(session, args.admin_user_id, AppRole.ADMIN)
            if args.check:
                try:
                    validate_matrices(session)
                except PortalError as e:
                    print(f'[CHECK] FAIL: {e.message} {e.details or ""}')
                    session.rollback()
                    sys.exit(2)
                print('[CHECK] OK: every role has a complete permission matrix.')
            names = ', '.join(r.value for r in written) or 'none'
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) Matrices would write: {names}")
            else:
                session.commit()
                print(f"[DONE] Matrices written: {names}")
            if args.admin_user_id and not args.dry_run:
                print(f"[INFO] Granted admin role to {args.admin_user_id}")
            if args.show_roles:
                print('\nRole Matrix Summary:')
                print_role_summary(session)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


if __name__ == '__main__':
    main()
