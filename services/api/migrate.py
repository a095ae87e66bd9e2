import os
from pathlib import Path

import psycopg2
from sqlalchemy.engine import make_url

from common.config import POSTGRES_DSN
from common.events import log_event

MIGRATIONS_TABLE = "schema_migrations"


def libpq_dsn(url: str) -> str:
    """psycopg2 wants a plain postgresql:// URL, not the SQLAlchemy driver form."""
    return make_url(url).set(drivername="postgresql").render_as_string(hide_password=False)


def migrations_dir() -> Path:
    override = os.getenv("MIGRATIONS_DIR")
    if override:
        return Path(override)
    # services/api/migrate.py -> <root>/migrations
    return Path(__file__).resolve().parents[2] / "migrations"


def list_sql_migrations(dirpath: Path) -> list[Path]:
    return sorted(p for p in dirpath.glob("*.sql") if p.is_file())


def pending_migrations(files: list[Path], applied: set[str]) -> list[Path]:
    return [p for p in files if p.name not in applied]


def apply_migrations(conn, files: list[Path]) -> list[str]:
    """
    Run every file not yet recorded in schema_migrations, one transaction
    per file, so a failing migration leaves the earlier ones applied.
    """
    with conn.cursor() as cur:
        cur.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
              filename TEXT PRIMARY KEY,
              applied_at TIMESTAMP NOT NULL DEFAULT NOW()
            );
            """
        )
        cur.execute(f"SELECT filename FROM {MIGRATIONS_TABLE};")
        applied = {r[0] for r in cur.fetchall()}
    conn.commit()

    done = []
    for path in pending_migrations(files, applied):
        log_event("migration_started", filename=path.name)
        with conn.cursor() as cur:
            cur.execute(path.read_text(encoding="utf-8"))
            cur.execute(f"INSERT INTO {MIGRATIONS_TABLE}(filename) VALUES (%s)", (path.name,))
        conn.commit()
        done.append(path.name)

    return done


def main():
    mdir = migrations_dir()
    files = list_sql_migrations(mdir)
    if not files:
        log_event("migrations_missing", directory=str(mdir))
        return

    conn = psycopg2.connect(libpq_dsn(os.getenv("DATABASE_URL") or POSTGRES_DSN))
    try:
        done = apply_migrations(conn, files)
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()

    log_event("migrations_applied", count=len(done), filenames=done)


if __name__ == "__main__":
    main()
