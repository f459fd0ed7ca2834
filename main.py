#!/usr/bin/env python3
"""
MemberPortal -- operator command line.

Usage:
  python main.py create-admin --username ana
  python main.py create-admin --username ana --email ana@example.org --full-name "Ana Souza"
  python main.py create-admin --username ana --db-url sqlite:///memberportal.db

create-admin provisions the initial super administrator on a fresh
deployment, the same thing the /setup page does. It refuses to run when a
super administrator already exists. The password is read interactively
(twice) and never accepted on the command line, where it would end up in
shell history.

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the member database (default: auth/memberportal.db)
  SECRET_KEY    Not needed by this command, but read by the shared settings loader;
                set DEBUG=true to run without one.
"""

import argparse
import asyncio
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.identity import provision_initial_administrator
from auth.store import UserStore
from core.config import get_settings


def _read_password() -> Optional[str]:
    password = getpass.getpass("  Password: ")
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return None
    if getpass.getpass("  Confirm password: ") != password:
        print("  [!] Passwords do not match.")
        return None
    return password


def create_admin(args: argparse.Namespace) -> int:
    store = UserStore(args.db_url or get_settings().database_url)
    try:
        if store.has_super_admin():
            print("  [!] A super administrator already exists. Use the admin console instead.")
            return 1
        password = _read_password()
        if password is None:
            return 1
        try:
            admin = asyncio.run(
                provision_initial_administrator(
                    store,
                    username=args.username,
                    password=password,
                    email=args.email,
                    full_name=args.full_name,
                )
            )
        except IntegrityError:
            print(f"  [!] Username '{args.username}' is already taken.")
            return 1
        print(f"  [+] Created super administrator '{admin.username}' (id {admin.id}).")
        return 0
    finally:
        store.close()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="memberportal",
        description="MemberPortal operator commands.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_admin = sub.add_parser("create-admin", help="Provision the initial super administrator")
    p_admin.add_argument("--username", required=True)
    p_admin.add_argument("--email", default="")
    p_admin.add_argument("--full-name", dest="full_name", default="")
    p_admin.add_argument("--db-url", dest="db_url", default=None, help="Override DATABASE_URL")
    p_admin.set_defaults(func=create_admin)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
