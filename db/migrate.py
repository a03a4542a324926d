#!/usr/bin/env python3
"""
Database Migration Runner

Applies the versioned SQL files under ``db/migrations/<backend>/`` through
the data-access layer, so the same runner serves SQLite and PostgreSQL.

Usage:
    python -m db.migrate              # Run all pending migrations
    python -m db.migrate --status     # Show migration status

Environment:
    DATABASE_BACKEND / DATABASE_URL / SQLITE_PATH - backend selection
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Set

from irrigation_core.database import Database, create_database
from irrigation_core.database.sql import split_statements


MIGRATIONS_DIR = Path(__file__).parent / "migrations"

SCHEMA_MIGRATIONS_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""


@dataclass(frozen=True)
class Migration:
    version: str
    name: str
    path: Path

    def statements(self) -> List[str]:
        return split_statements(self.path.read_text())


def discover_migrations(backend: str, root: Path = MIGRATIONS_DIR) -> List[Migration]:
    """Migration files for ``backend``, ordered by version prefix."""
    migrations = []
    for path in sorted((root / backend).glob("*.sql")):
        version, _, name = path.stem.partition("_")
        migrations.append(Migration(version=version, name=name or path.stem, path=path))
    return migrations


async def get_applied_migrations(db: Database) -> Set[str]:
    """Get set of already-applied migration versions."""
    await db.run(SCHEMA_MIGRATIONS_DDL)
    rows = await db.query("SELECT version FROM schema_migrations")
    return {row["version"] for row in rows}


async def run_migration(db: Database, migration: Migration) -> None:
    """Apply one migration and record it, atomically."""

    async def apply(tx):
        for statement in migration.statements():
            await tx.run(statement)
        await tx.run(
            "INSERT INTO schema_migrations (version, name) VALUES (?, ?)",
            [migration.version, migration.name],
        )

    await db.transaction(apply)


async def run_pending(db: Database, root: Path = MIGRATIONS_DIR) -> List[str]:
    """Apply every pending migration in order. Returns the versions applied."""
    applied = await get_applied_migrations(db)
    pending = [m for m in discover_migrations(db.backend.value, root) if m.version not in applied]

    for migration in pending:
        print(f"  Running migration {migration.version}_{migration.name}...")
        await run_migration(db, migration)
        print(f"  Migration {migration.version} complete")

    return [m.version for m in pending]


async def show_status(db: Database, root: Path = MIGRATIONS_DIR) -> None:
    """Show migration status."""
    applied = await get_applied_migrations(db)

    print("Migrations:")
    print("-" * 50)
    for migration in discover_migrations(db.backend.value, root):
        status = "Applied" if migration.version in applied else "Pending"
        print(f"  {migration.version}: {migration.name}")
        print(f"      Status: {status}")


async def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        description="Irrigation Pro Database Migration Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m db.migrate              # Run pending migrations
  python -m db.migrate --status     # Show status
        """
    )
    parser.add_argument("--status", action="store_true", help="Show migration status")
    args = parser.parse_args(argv)

    db = create_database()
    await db.connect()

    print("=" * 60)
    print("Irrigation Pro Database Migration Runner")
    print("=" * 60)
    print(f"\nDatabase: {db.config!r}")
    print(f"Migrations: {MIGRATIONS_DIR / db.backend.value}\n")

    try:
        if args.status:
            await show_status(db)
        else:
            applied = await run_pending(db)
            if applied:
                print(f"\n{len(applied)} migration(s) applied.")
            else:
                print("No pending migrations. Database is up to date.")
    finally:
        await db.close()


if __name__ == "__main__":
    asyncio.run(main())
