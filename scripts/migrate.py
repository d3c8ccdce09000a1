"""
Apply, roll back or inspect schema migrations.

Usage:
    python scripts/migrate.py                    # upgrade to head
    python scripts/migrate.py downgrade -1
    python scripts/migrate.py current
    python scripts/migrate.py create "add payout schedule"

The overlap exclusion constraint and the append-only audit trigger only exist
in migrations; ``scripts/init_db.py`` does not install them.
"""

import argparse
import sys

from alembic import command
from alembic.config import Config


def _config() -> Config:
    return Config("alembic.ini")


def upgrade(revision: str = "head") -> None:
    """Upgrade the schema to ``revision``."""
    print(f"Upgrading schema to {revision}...")
    command.upgrade(_config(), revision)
    print("✓ Migrations applied")


def downgrade(revision: str) -> None:
    """Downgrade the schema to ``revision``."""
    print(f"Downgrading schema to {revision}...")
    command.downgrade(_config(), revision)
    print("✓ Downgrade complete")


def create(message: str) -> None:
    """Autogenerate a revision from the table metadata."""
    print(f"Creating migration: {message}")
    command.revision(_config(), message=message, autogenerate=True)
    print("✓ Migration created, review it before applying")


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Manage database migrations")
    subparsers = parser.add_subparsers(dest="command")

    upgrade_parser = subparsers.add_parser("upgrade", help="Apply migrations")
    upgrade_parser.add_argument("revision", nargs="?", default="head")

    downgrade_parser = subparsers.add_parser("downgrade", help="Roll back migrations")
    downgrade_parser.add_argument("revision")

    subparsers.add_parser("current", help="Show the applied revision")

    create_parser = subparsers.add_parser("create", help="Autogenerate a migration")
    create_parser.add_argument("message", nargs="+")

    args = parser.parse_args()

    try:
        if args.command in (None, "upgrade"):
            upgrade(getattr(args, "revision", "head"))
        elif args.command == "downgrade":
            downgrade(args.revision)
        elif args.command == "current":
            command.current(_config(), verbose=True)
        else:
            create(" ".join(args.message))
    except Exception as e:
        print(f"✗ Migration failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
