#!/usr/bin/env python3
"""Create the first admin account for the back-office.

There is no built-in default account; run this once against the configured
store before anyone can log in.

Usage:
    # Using environment variables:
    ADMIN_USERNAME=ops ADMIN_PASSWORD='Correct-Horse-42' python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --username ops --password 'Correct-Horse-42' --email ops@example.com

Environment Variables:
    ADMIN_USERNAME: Username for the admin account
    ADMIN_PASSWORD: Password (at least 12 characters, 3 of 4 character classes)
    ADMIN_EMAIL: Contact email (optional)
    KV_BACKEND: redis | upstash | proxy | memory (see travelbook_auth.config)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def validate_password(password: str) -> bool:
    """Check password meets complexity requirements."""
    if len(password) < 12:
        return False
    has_upper = any(c.isupper() for c in password)
    has_lower = any(c.islower() for c in password)
    has_digit = any(c.isdigit() for c in password)
    has_special = any(not c.isalnum() for c in password)
    return sum([has_upper, has_lower, has_digit, has_special]) >= 3


async def bootstrap_admin(
    username: str,
    password: str,
    *,
    email: str = "",
    role: str = "admin",
    dry_run: bool = False,
    runtime=None,
) -> dict:
    """Create an admin account unless the username is already taken.

    Returns:
        dict with user_id, username and status ('created', 'exists' or 'dry_run')
    """
    # Import here so env overrides from main() apply before settings load
    from travelbook_auth.service.runtime import Runtime

    owns_runtime = runtime is None
    runtime = runtime or Runtime()
    try:
        existing = await runtime.credentials.find_by_username(username, active_only=False)
        if existing:
            print(f"User {username} already exists (id: {existing.id}, role: {existing.role.value})")
            return {"user_id": existing.id, "username": username, "status": "exists"}

        if dry_run:
            print(f"[DRY RUN] Would create {role} user: {username}")
            return {"user_id": None, "username": username, "status": "dry_run"}

        result = await runtime.credentials.create(username, password, email=email, role=role)
        if not result.success:
            raise RuntimeError(result.message)
        print(f"Created {role} user: {username} (id: {result.value.id})")
        return {"user_id": result.value.id, "username": username, "status": "created"}
    finally:
        if owns_runtime:
            await runtime.shutdown()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin user for the Travelbook back-office",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--username",
        default=os.environ.get("ADMIN_USERNAME"),
        help="Admin username (or set ADMIN_USERNAME env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL", ""),
        help="Contact email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--role",
        choices=["admin", "editor"],
        default="admin",
        help="Role for the new account",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args(argv)

    if not args.username:
        print("Error: --username or ADMIN_USERNAME environment variable required")
        sys.exit(1)

    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        sys.exit(1)

    if not validate_password(args.password):
        print("Error: Password must be at least 12 characters with 3+ character classes")
        print("       (uppercase, lowercase, digits, special characters)")
        sys.exit(1)

    if os.environ.get("KV_BACKEND", "memory").lower() == "memory":
        print("Note: Using the local memory store (set KV_BACKEND for a shared store)")

    try:
        result = asyncio.run(
            bootstrap_admin(
                args.username,
                args.password,
                email=args.email,
                role=args.role,
                dry_run=args.dry_run,
            )
        )
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nAdmin user created successfully!")
        print(f"  Username: {result['username']}")
        print(f"  User ID: {result['user_id']}")
    elif result["status"] == "exists":
        print("\nNo changes made - username already taken.")


if __name__ == "__main__":
    main()
