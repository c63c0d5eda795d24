#!/usr/bin/env python
"""Idempotent seed script for preset roles and the initial administrator.

Usage:
    python backend/scripts/seed_authz.py               # seed normally
    python backend/scripts/seed_authz.py --show-roles  # print role -> grant summary (after ensuring seed)
    python backend/scripts/seed_authz.py --dry-run     # run logic then rollback (no DB changes)
    python backend/scripts/seed_authz.py --validate    # strict-parse every stored grant list
"""
from __future__ import annotations
import os, sys, argparse, textwrap, json
from sqlalchemy import select

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from storefront import create_app, get_db  # type: ignore
from storefront.models.authz import Base, Role, User, UserRole
from storefront.services.roles import ensure_preset_roles, role_grant_map, validate_stored_grants


def ensure_initial_admin(session):
    super_role = session.execute(select(Role).where(Role.name == 'SuperAdmin')).scalar_one_or_none()
    if not super_role:
        print('[WARN] SuperAdmin role missing; skipping admin user creation')
        return
    admin_email = os.getenv('SEED_ADMIN_EMAIL', 'admin@example.com')
    existing_admin = session.execute(select(User).where(User.email == admin_email)).scalar_one_or_none()
    if not existing_admin:
        user = User(name='Administrator', email=admin_email, password_hash='')
        user.set_password(os.getenv('SEED_ADMIN_PASSWORD', 'ChangeMe123!'))
        session.add(user)
        session.flush()
        session.add(UserRole(user_id=user.id, role_id=super_role.id))
        print(f"[INFO] Created initial admin user {admin_email} with temporary password.")


def print_role_summary(session):
    mapping = role_grant_map(session)
    if not mapping:
        print("[INFO] No roles present.")
        return
    name_w = max(len(n) for n in mapping)
    print(f"{'Role'.ljust(name_w)} | Grants | Resources")
    print('-' * (name_w + 40))
    for name, grants in mapping.items():
        resources = sorted({g.get('resource', '?') for g in grants if isinstance(g, dict)})
        print(f"{name.ljust(name_w)} | {str(len(grants)).rjust(6)} | {', '.join(resources)}")


def parse_args():
    p = argparse.ArgumentParser(
        description="Seed preset roles and the initial administrator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_authz.py\n  dry run: seed_authz.py --dry-run\n  show roles: seed_authz.py --show-roles\n""")
    )
    p.add_argument('--show-roles', action='store_true', help='Print role grant summary after seeding')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--export-json', nargs='?', const='-', metavar='FILE', help='Export role->grants JSON (to FILE or stdout if omitted)')
    p.add_argument('--validate', action='store_true', help='Strict-parse stored grants; exits non-zero on problems')
    return p.parse_args()


def main():
    args = parse_args()
    # the seed run never needs the background sweep
    app = create_app({'ORDER_AUTOMATION_ENABLED': False})
    with app.app_context():
        session = get_db()
        # lightweight fallback if migrations were not run yet; prefer alembic upgrade
        Base.metadata.create_all(session.get_bind(), checkfirst=True)
        created = ensure_preset_roles(session)
        ensure_initial_admin(session)
        if args.validate:
            problems = validate_stored_grants(session)
            if problems:
                print('\n[VALIDATION] FAIL:')
                for role_name, problem in problems:
                    print(f' - {role_name}: {problem}')
                session.rollback()
                sys.exit(2)
            print('[VALIDATION] OK: all stored grants parse.')
        mapping = role_grant_map(session)
        if args.dry_run:
            session.rollback()
            print(f"[DRY-RUN] (rolled back) Roles would create: {len(created)} {created}")
        else:
            session.commit()
            print(f"[DONE] Roles created: {len(created)} {created}")
        if args.show_roles:
            print_role_summary(session)
        if args.export_json:
            payload = json.dumps(mapping, indent=2, sort_keys=True)
            if args.export_json == '-':
                print(payload)
            else:
                with open(args.export_json, 'w', encoding='utf-8') as fh:
                    fh.write(payload + '\n')
                print(f"[INFO] Exported role grants to {args.export_json}")


if __name__ == '__main__':
    main()
