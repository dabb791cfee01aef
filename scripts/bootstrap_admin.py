#!/usr/bin/env python3
"""Provision a client application and an admin user.

Usage:
    # Register an application; a random signing secret is generated:
    python scripts/bootstrap_admin.py --app-name portal

    # Promote an existing user, or register and promote a new one:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=SecurePassword123! python scripts/bootstrap_admin.py

    # Both at once:
    python scripts/bootstrap_admin.py --app-name portal --email admin@example.com --password ...

Environment Variables:
    ADMIN_EMAIL: Email for the admin user
    ADMIN_PASSWORD: Password used when the admin user does not exist yet
    APP_SECRET: Signing secret for the application (random when unset)
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import secrets
import sys
from pathlib import Path
from typing import Optional

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def bootstrap(
    *,
    app_name: Optional[str],
    app_secret: Optional[str],
    email: Optional[str],
    password: Optional[str],
    dry_run: bool = False,
) -> dict:
    """Create the application and/or admin user.

    Returns:
        dict with ``app`` and ``admin`` entries describing what happened
    """
    # Import here to avoid loading config before env vars are set
    from ssoauth.service.runtime import get_runtime
    from ssoauth.storage.errors import ConstraintViolation

    runtime = get_runtime()
    await runtime.start()
    result: dict = {}
    try:
        if app_name:
            if dry_run:
                print(f"[DRY RUN] Would create application: {app_name}")
                result["app"] = {"name": app_name, "status": "dry_run"}
            else:
                secret = app_secret or secrets.token_urlsafe(48)
                try:
                    app = await runtime.store.create_app(app_name, secret.encode())
                except ConstraintViolation:
                    print(f"Application {app_name} already exists")
                    result["app"] = {"name": app_name, "status": "exists"}
                else:
                    print(f"Created application: {app_name} (id: {app.id})")
                    result["app"] = {
                        "id": app.id,
                        "name": app_name,
                        "status": "created",
                        "secret": secret if not app_secret else None,
                    }

        if email:
            result["admin"] = await _ensure_admin(runtime, email, password, dry_run)
    finally:
        await runtime.close()
    return result


async def _ensure_admin(runtime, email: str, password: Optional[str], dry_run: bool) -> dict:
    existing = await runtime.store.get_user_by_email(email.strip())

    if existing:
        if existing.is_admin:
            print(f"User {email} already exists as admin (id: {existing.id})")
            return {"user_id": existing.id, "email": email, "status": "already_admin"}
        if dry_run:
            print(f"[DRY RUN] Would promote existing user {email} to admin")
            return {"user_id": existing.id, "email": email, "status": "dry_run"}
        await runtime.store.set_admin(existing.id, True)
        print(f"Promoted existing user {email} to admin (id: {existing.id})")
        return {"user_id": existing.id, "email": email, "status": "promoted"}

    if not password:
        raise ValueError(f"user {email} does not exist; --password is required to create it")
    if dry_run:
        print(f"[DRY RUN] Would register admin user: {email}")
        return {"user_id": None, "email": email, "status": "dry_run"}

    user_id = await runtime.credentials.register(email, password)
    await runtime.store.set_admin(user_id, True)
    print(f"Registered admin user: {email} (id: {user_id}); a verification code was sent")
    return {"user_id": user_id, "email": email, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Provision an application and admin user for the credential service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--app-name", help="Name of the application to register")
    parser.add_argument(
        "--app-secret",
        default=os.environ.get("APP_SECRET"),
        help="Signing secret for the application (or set APP_SECRET env var)",
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.app_name and not args.email:
        print("Error: nothing to do; pass --app-name and/or --email")
        sys.exit(1)

    # Use memory store if no database configured
    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        os.environ.setdefault("SHARED_FS_ROOT", "/tmp/ssoauth-bootstrap")
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    try:
        result = asyncio.run(
            bootstrap(
                app_name=args.app_name,
                app_secret=args.app_secret,
                email=args.email,
                password=args.password,
                dry_run=args.dry_run,
            )
        )
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    app_info = result.get("app")
    if app_info and app_info.get("secret"):
        print("\nStore this signing secret with the client application; it is not shown again:")
        print(f"  {app_info['secret']}")
    admin_info = result.get("admin")
    if admin_info and admin_info["status"] == "already_admin":
        print("\nNo changes needed - user is already an admin.")


if __name__ == "__main__":
    main()
