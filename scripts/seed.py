#!/usr/bin/env python3
"""Seed the demo company, its users and the global challenges.

Usage:
    # Against the configured database:
    DATABASE_URL=postgres://... JWT_SECRET=... python scripts/seed.py

    # Preview without writing:
    python scripts/seed.py --dry-run

Re-running is safe: existing rows are left untouched.

Environment Variables:
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
    SEED_PASSWORD: Password for the seeded users (default: password123)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DEMO_DOMAIN = "acme.com"
DEMO_COMPANY = "ACME Corporation"

DEMO_USERS = (
    # email, name, role, xp
    ("admin@acme.com", "Admin User", "ADMIN", 500),
    ("manager@acme.com", "Maria Gestora", "MANAGER", 350),
    ("joao@acme.com", "João Silva", "EMPLOYEE", 250),
)

GLOBAL_CHALLENGES = (
    # title, description, category, xp_reward
    ("Pausa de 5 minutos", "Levante e estique o corpo", "PHYSICAL", 15),
    ("Beber 2L de água", "Mantenha-se hidratado ao longo do dia", "NUTRITION", 10),
    ("Meditação guiada", "5 minutos de meditação", "MENTAL", 30),
    ("Conversa com colega", "Tenha uma conversa significativa", "SOCIAL", 15),
)


async def seed(password: str, dry_run: bool = False) -> dict:
    """Create whatever part of the demo data is missing.

    Returns:
        dict with the tenant id and lists of created/existing entries
    """
    # Import here to avoid loading config before env vars are set
    from lifesync.service.runtime import get_runtime

    runtime = get_runtime()
    store = runtime.store
    summary: dict = {"tenant_id": None, "created": [], "existing": []}

    tenant = store.get_tenant_by_domain(DEMO_DOMAIN)
    if tenant is None:
        if dry_run:
            print(f"[DRY RUN] Would create tenant {DEMO_DOMAIN} ({DEMO_COMPANY})")
            summary["created"].append(f"tenant:{DEMO_DOMAIN}")
        else:
            tenant = store.create_tenant(DEMO_DOMAIN, DEMO_COMPANY)
            print(f"Created tenant {DEMO_DOMAIN} (id: {tenant.id})")
            summary["created"].append(f"tenant:{DEMO_DOMAIN}")
    else:
        summary["existing"].append(f"tenant:{DEMO_DOMAIN}")
    if tenant is not None:
        summary["tenant_id"] = tenant.id

    password_hash = None
    for email, name, role, xp in DEMO_USERS:
        existing = store.get_user_by_email(email, tenant.id) if tenant else None
        if existing:
            summary["existing"].append(f"user:{email}")
            continue
        summary["created"].append(f"user:{email}")
        if dry_run:
            print(f"[DRY RUN] Would create {role} user {email}")
            continue
        if password_hash is None:
            password_hash = await runtime.hasher.hash(password)
        user = store.create_user(
            tenant_id=tenant.id,
            email=email,
            name=name,
            password_hash=password_hash,
            role=role,
            xp=xp,
        )
        print(f"Created {role} user {email} (id: {user.id}, level {user.level})")

    for title, description, category, xp_reward in GLOBAL_CHALLENGES:
        if store.find_global_challenge(title):
            summary["existing"].append(f"challenge:{title}")
            continue
        summary["created"].append(f"challenge:{title}")
        if dry_run:
            print(f"[DRY RUN] Would create global challenge {title!r}")
            continue
        store.create_challenge(
            title=title,
            description=description,
            category=category,
            xp_reward=xp_reward,
            tenant_id=None,
            is_global=True,
        )
        print(f"Created global challenge {title!r}")

    return summary


def main():
    parser = argparse.ArgumentParser(
        description="Seed LifeSync demo data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("SEED_PASSWORD", "password123"),
        help="Password for the seeded users (or set SEED_PASSWORD env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if len(args.password) < 8:
        print("Error: Password must be at least 8 characters")
        sys.exit(1)

    if not os.environ.get("JWT_SECRET"):
        import secrets
        os.environ["JWT_SECRET"] = secrets.token_urlsafe(48)

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    try:
        result = asyncio.run(seed(args.password, args.dry_run))
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"\nSeed finished: {len(result['created'])} created, {len(result['existing'])} already present.")


if __name__ == "__main__":
    main()
