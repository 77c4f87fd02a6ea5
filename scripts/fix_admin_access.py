#!/usr/bin/env python3
"""
Admin access troubleshooter for the Supabase project behind the admin suite.

Usage:
  python scripts/fix_admin_access.py list-users
  python scripts/fix_admin_access.py check admin@example.com
  python scripts/fix_admin_access.py grant admin@example.com
  python scripts/fix_admin_access.py list-admins
  python scripts/fix_admin_access.py create-admin admin@example.com [--password PW]

Requires SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY (the service role key,
not the anon key).
"""

from __future__ import annotations

import argparse
import getpass
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from diagnostics import (  # noqa: E402
    check_admin_by_email,
    create_admin_user,
    grant_admin_by_email,
    list_admins,
    list_users,
)
from settings import load_auth_settings  # noqa: E402
from supabase_client import CredentialStore  # noqa: E402


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Diagnose and fix admin access")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list-users", help="List all auth users")
    check = sub.add_parser("check", help="Check admin status for a user")
    check.add_argument("email")
    grant = sub.add_parser("grant", help="Grant admin role to a user")
    grant.add_argument("email")
    sub.add_parser("list-admins", help="List profiles with the admin role")
    create = sub.add_parser("create-admin", help="Create an admin user, or reset its password")
    create.add_argument("email")
    create.add_argument("--password", help="Prompted for when omitted")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = load_auth_settings()
    if not settings.supabase_url or not settings.supabase_service_key:
        print("[!] Missing SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY.")
        print("    Both are listed in the Supabase dashboard under Project Settings > API.")
        return 1
    store = CredentialStore(settings)

    if args.command == "list-users":
        result = list_users(store)
        if result["success"]:
            for index, user in enumerate(result["users"], start=1):
                print(f"{index}. {user['email']} (ID: {user['id']})")
    elif args.command == "check":
        result = check_admin_by_email(store, args.email)
        if result["success"]:
            check = result["admin_check"]
            print(f"[*] {args.email}")
            print(f"    Profile exists: {check['user_exists']}")
            print(f"    Is admin: {check['is_admin']}")
            print(f"    Role: {check['user_role']}")
            if check["user_exists"] and not check["is_admin"]:
                print("    Run `grant` to give this user the admin role.")
    elif args.command == "grant":
        result = grant_admin_by_email(store, args.email)
        if result["success"]:
            print(f"[+] {args.email} is now an admin. They must sign in again.")
    elif args.command == "create-admin":
        password = args.password or getpass.getpass(f"Password for {args.email}: ")
        result = create_admin_user(store, args.email, password)
        if result["success"]:
            action = "created" if result["created"] else "updated"
            print(f"[+] Admin user {action}: {result['user']['email']} (ID: {result['user']['id']})")
    else:
        result = list_admins(store)
        if result["success"]:
            if not result["admins"]:
                print("No admin users found.")
            for index, profile in enumerate(result["admins"], start=1):
                print(f"{index}. {profile.get('email') or '(no email)'} (ID: {profile['id']})")

    if not result["success"]:
        print(f"[!] {result.get('error')}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
