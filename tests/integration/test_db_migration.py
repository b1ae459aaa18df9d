from __future__ import annotations

import os
import sqlite3
import subprocess
import sys
from pathlib import Path

TABLES = ("profiles", "documents", "evidence", "identity_claims", "opportunities", "jobs", "job_steps")


def _tables(cur: sqlite3.Cursor) -> set[str]:
    cur.execute("SELECT name FROM sqlite_master WHERE type='table'")
    return {row[0] for row in cur.fetchall()}


def test_alembic_upgrade_and_downgrade_initial_schema(tmp_path: Path) -> None:
    repo_root = Path(__file__).resolve().parents[2]
    db_path = tmp_path / "migration_test.db"
    env = os.environ.copy()
    env["DATABASE_URL"] = f"sqlite:///{db_path}"

    subprocess.run(
        [sys.executable, "-m", "alembic", "-c", "alembic.ini", "upgrade", "head"],
        cwd=repo_root,
        env=env,
        check=True,
    )

    conn = sqlite3.connect(db_path)
    cur = conn.cursor()
    assert set(TABLES) <= _tables(cur)

    cur.execute("PRAGMA table_info(jobs)")
    job_cols = {row[1] for row in cur.fetchall()}
    assert {"phase", "phase_history", "highlights", "warning", "summary"} <= job_cols

    subprocess.run(
        [sys.executable, "-m", "alembic", "-c", "alembic.ini", "downgrade", "base"],
        cwd=repo_root,
        env=env,
        check=True,
    )

    assert not set(TABLES) & _tables(cur)
    conn.close()
