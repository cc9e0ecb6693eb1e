import sqlite3
import threading
from contextlib import contextmanager

from .errors import StoreError

# Serialises writers on the shared sqlite file
db_lock = threading.Lock()

SCHEMA = (
    """CREATE TABLE IF NOT EXISTS devices (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        identity_key TEXT NOT NULL,
        owner TEXT NOT NULL,
        model TEXT,
        firmware TEXT,
        capacity_gb REAL,
        info TEXT,
        created_at TEXT NOT NULL,
        UNIQUE(owner, identity_key)
    )""",
    """CREATE TABLE IF NOT EXISTS certificates (
        certificate_id TEXT PRIMARY KEY,
        user TEXT NOT NULL,
        device INTEGER NOT NULL REFERENCES devices(id),
        wipe_method TEXT NOT NULL,
        status TEXT NOT NULL,
        log_hash TEXT,
        payload TEXT NOT NULL,
        signature TEXT NOT NULL,
        artifact_url TEXT,
        error TEXT,
        created_at TEXT NOT NULL,
        completed_at TEXT
    )""",
    "CREATE INDEX IF NOT EXISTS idx_certificates_user ON certificates(user)",
)


def connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, check_same_thread=False, timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def transaction(db_path: str):
    """Yield a connection that commits on success and rolls back on error.

    sqlite3.IntegrityError propagates untouched so callers can map it to a
    domain conflict; any other sqlite failure becomes StoreError.
    """
    try:
        conn = connect(db_path)
    except sqlite3.Error as e:
        raise StoreError(f"Cannot open store: {e}") from e
    try:
        with conn:
            yield conn
    except sqlite3.IntegrityError:
        raise
    except sqlite3.Error as e:
        raise StoreError(f"Store operation failed: {e}") from e
    finally:
        conn.close()


def init_schema(db_path: str) -> None:
    with db_lock, transaction(db_path) as conn:
        for stmt in SCHEMA:
            conn.execute(stmt)
