#!/usr/bin/env python
"""Seed the development database with a workspace to click around in.

Creates an owner user, a workspace, the owner's membership and one
connection, so conversations can be created right away.

Constraints:
- Refuses to run in staging or prod (QUERYGENIE_ENV check)
- Idempotent via ON CONFLICT DO NOTHING
- Never runs automatically (manual invocation only)

Usage:
    DATABASE_URL=... SEED_OWNER_ID=<jwt sub> SEED_OWNER_EMAIL=you@example.com \\
        python scripts/seed_dev.py
"""

import os
import sys
from uuid import UUID

DEV_WORKSPACE_ID = UUID("00000000-0000-4000-8000-00000000a001")
DEV_CONNECTION_ID = UUID("00000000-0000-4000-8000-00000000c001")
DEV_WORKSPACE_SLUG = "dev-workspace"


def main():
    # 1. Environment check (hard fail in staging/prod)
    env = os.getenv("QUERYGENIE_ENV", "local")
    if env not in ("local", "test"):
        print(f"ERROR: seed_dev.py refuses to run in QUERYGENIE_ENV={env}")
        sys.exit(1)

    # 2. Required inputs
    database_url = os.getenv("DATABASE_URL")
    owner_id = os.getenv("SEED_OWNER_ID")
    owner_email = os.getenv("SEED_OWNER_EMAIL")
    if not database_url or not owner_id or not owner_email:
        print("ERROR: DATABASE_URL, SEED_OWNER_ID and SEED_OWNER_EMAIL must be set")
        sys.exit(1)

    from sqlalchemy import create_engine, text

    engine = create_engine(database_url)

    with engine.connect() as conn:
        # 3. Idempotent seeding
        conn.execute(
            text("""
                INSERT INTO users (id, email, name)
                VALUES (:id, :email, 'Dev Owner')
                ON CONFLICT (id) DO NOTHING
            """),
            {"id": UUID(owner_id), "email": owner_email.strip().lower()},
        )

        result = conn.execute(
            text("""
                INSERT INTO workspaces (id, name, slug, owner_id)
                VALUES (:id, 'Dev Workspace', :slug, :owner_id)
                ON CONFLICT (id) DO NOTHING
                RETURNING id
            """),
            {"id": DEV_WORKSPACE_ID, "slug": DEV_WORKSPACE_SLUG, "owner_id": UUID(owner_id)},
        )
        workspace_created = result.fetchone() is not None

        conn.execute(
            text("""
                INSERT INTO memberships (workspace_id, user_id, role)
                VALUES (:wid, :uid, 'owner')
                ON CONFLICT (workspace_id, user_id) DO NOTHING
            """),
            {"wid": DEV_WORKSPACE_ID, "uid": UUID(owner_id)},
        )

        result = conn.execute(
            text("""
                INSERT INTO connections (id, workspace_id, name, type)
                VALUES (:id, :wid, 'Dev Postgres', 'postgresql')
                ON CONFLICT (id) DO NOTHING
                RETURNING id
            """),
            {"id": DEV_CONNECTION_ID, "wid": DEV_WORKSPACE_ID},
        )
        connection_created = result.fetchone() is not None

        conn.commit()

    # 4. Report
    db_display = database_url.split("@")[1] if "@" in database_url else database_url
    print(f"Database: {db_display}")
    print(f"QUERYGENIE_ENV: {env}")
    print()
    print(f"{'✓ Created' if workspace_created else '• Exists'}: workspace {DEV_WORKSPACE_ID}")
    print(f"{'✓ Created' if connection_created else '• Exists'}: connection {DEV_CONNECTION_ID}")


if __name__ == "__main__":
    main()
