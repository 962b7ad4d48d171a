"""Apply the SQL files in migrations/ to the configured Postgres database.

Requires DATABASE_URL in .env or .env.local (Postgres connection string from
Supabase Dashboard → Database → Connection string).

Usage:
    uv run python -m src.db.migrate
    uv run pagepulse migrate
"""

import os
from pathlib import Path
from typing import Callable

import psycopg
from dotenv import load_dotenv

# Project root (parent of src/)
_project_root = Path(__file__).resolve().parent.parent.parent
MIGRATIONS_DIR = _project_root / "migrations"


def _connection_hint(error: str) -> str:
    if "No route to host" in error or "2600:" in error:
        return (
            "\n\nThe 'Direct' connection string needs IPv6. Use the Session or "
            "Transaction pooler URI from Supabase Dashboard → Project Settings → "
            "Database → Connection string instead."
        )
    if "password authentication failed" in error:
        return (
            "\n\nUse the database password (not the service key) and "
            "percent-encode any # @ % or : characters in it."
        )
    return ""


def list_migrations(migrations_dir: Path = MIGRATIONS_DIR) -> list[Path]:
    """SQL files in lexicographic order (001_initial.sql, 002_..., ...)."""
    if not migrations_dir.is_dir():
        raise SystemExit(f"Migrations directory not found: {migrations_dir}")
    sql_files = sorted(migrations_dir.glob("*.sql"))
    if not sql_files:
        raise SystemExit(f"No .sql files found in {migrations_dir}")
    return sql_files


def run_migrations(
    database_url: str | None = None,
    migrations_dir: Path = MIGRATIONS_DIR,
    echo: Callable[[str], None] = print,
) -> list[str]:
    """
    Apply every migration file in one autocommit session.

    Returns:
        Names of the files applied.

    Raises:
        SystemExit: DATABASE_URL missing, no migrations, or connection failure
    """
    database_url = database_url or os.environ.get("DATABASE_URL")
    if not database_url:
        raise SystemExit(
            "DATABASE_URL is not set. Add your Postgres connection string to .env or .env.local."
        )

    sql_files = list_migrations(migrations_dir)
    applied: list[str] = []
    try:
        with psycopg.connect(database_url, autocommit=True) as conn:
            with conn.cursor() as cur:
                for path in sql_files:
                    echo(f"Applying {path.name}...")
                    cur.execute(path.read_text())
                    applied.append(path.name)
                    echo(f"  OK {path.name}")
    except psycopg.OperationalError as e:
        raise SystemExit(
            f"Database connection failed: {e}{_connection_hint(str(e))}"
        ) from e

    echo("Migrations complete.")
    return applied


if __name__ == "__main__":
    load_dotenv(_project_root / ".env")
    load_dotenv(_project_root / ".env.local")
    run_migrations()
