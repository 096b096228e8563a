#!/usr/bin/env python3
"""
Staff Training Portal -- operator CLI.

Usage:
  python main.py sign --id 12345 --user jsmith
  python main.py sign --id 12345 --user jsmith --base-url https://training.example.edu/dashboard
  python main.py sync --dry-run
  python main.py sync
  python main.py users

Environment variables (see core/config.py):
  SCHOOLBOX_SHARED_SECRET   Handshake signing secret (sign).
  SCHOOLBOX_BASE_URL        Schoolbox host for the directory API (sync).
  SCHOOLBOX_API_TOKEN       Bearer token for the directory API (sync).
  DATABASE_URL              Local user database (sync, users).
"""

import argparse
import sys

from auth.handshake import sign_handshake
from auth.reconcile import sync_roster
from auth.store import UserStore
from core.config import get_settings
from core.directory import DirectoryClient, DirectoryError


def _cmd_sign(args: argparse.Namespace) -> int:
    """Print a handshake URL signed the way Schoolbox signs it.

    Lets a developer open the portal locally without a Schoolbox instance.
    The link is valid for five minutes either side of now.
    """
    handshake = sign_handshake(args.id, args.user)
    separator = "&" if "?" in args.base_url else "?"
    print(f"{args.base_url}{separator}{handshake.to_query()}")
    return 0


def _cmd_sync(args: argparse.Namespace) -> int:
    cfg = get_settings()
    if not cfg.schoolbox_configured:
        print("  [!] SCHOOLBOX_BASE_URL and SCHOOLBOX_API_TOKEN must be set to sync staff.")
        return 2

    client = DirectoryClient.from_settings()
    try:
        print("Fetching staff from Schoolbox...", end=" ", flush=True)
        staff = client.fetch_all_staff()
    except DirectoryError as e:
        print(f"\n  [!] Staff fetch failed: {e}")
        return 1
    finally:
        client.close()
    print(f"{len(staff)} staff found.")

    if args.dry_run:
        for s in staff[: args.limit]:
            print(f"  {s.full_name:<32} {s.email or '(no email)':<40} {s.username}")
        if len(staff) > args.limit:
            print(f"  ... and {len(staff) - args.limit} more")
        return 0

    store = UserStore(cfg.database_url)
    try:
        stats = sync_roster(store, staff)
    finally:
        store.close()
    print(f"Sync complete: {stats.created} created, {stats.updated} updated, {stats.skipped} skipped.")
    return 0


def _cmd_users(args: argparse.Namespace) -> int:
    store = UserStore(get_settings().database_url)
    try:
        users = store.list_users()
    finally:
        store.close()
    for u in users:
        flag = "" if u.active else " (inactive)"
        print(f"  {u.name:<32} {u.email:<40} {','.join(u.roles)}{flag}")
    print(f"{len(users)} user(s).")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="training-portal",
        description="Operator tools for the Schoolbox staff training portal.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py sign --id 12345 --user jsmith
  python main.py sync --dry-run
  DATABASE_URL=sqlite:///portal.db python main.py users
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sign = sub.add_parser("sign", help="Print a signed handshake link for local testing")
    sign.add_argument("--id", required=True, help="External (staff) id to sign")
    sign.add_argument("--user", required=True, help="Schoolbox username")
    sign.add_argument(
        "--base-url",
        default="http://localhost:8000/dashboard",
        metavar="URL",
        help="Portal URL to append the handshake to (default: http://localhost:8000/dashboard)",
    )
    sign.set_defaults(func=_cmd_sign)

    sync = sub.add_parser("sync", help="Import staff from the Schoolbox directory")
    sync.add_argument("--dry-run", action="store_true", help="List what would be synced; change nothing")
    sync.add_argument("--limit", type=int, default=50, help="Rows to list with --dry-run (default: 50)")
    sync.set_defaults(func=_cmd_sync)

    users = sub.add_parser("users", help="List local users")
    users.set_defaults(func=_cmd_users)

    args = parser.parse_args()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
