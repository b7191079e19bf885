import re
import sqlite3
from contextlib import contextmanager

from config import get_data_dir, get_database_path

NAME_PATTERN = re.compile(r"[a-z][a-z0-9_-]{0,62}")


class DatabaseExistsError(Exception):
    pass


class DatabaseNotFoundError(Exception):
    pass


def validate_name(name: str) -> None:
    """Reject names that are not safe to use as a file name."""
    if not NAME_PATTERN.fullmatch(name):
        raise ValueError(f"Invalid database name: {name!r}")


def database_exists(name: str) -> bool:
    validate_name(name)
    return get_database_path(name).exists()


def init_data_dir():
    """Create the data directory. Call on app startup."""
    get_data_dir().mkdir(parents=True, exist_ok=True)


def _get_connection(name: str) -> sqlite3.Connection:
    """Create a new read-write connection to an existing database."""
    conn = sqlite3.connect(get_database_path(name), timeout=10.0)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def db_transaction(name: str):
    """Context manager for database transactions with IMMEDIATE locking."""
    conn = _get_connection(name)
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def create_database(name: str, statements: list[str]) -> None:
    """Create database ``name`` and apply the given DDL statements.

    The database file is removed again if any statement fails.
    """
    if database_exists(name):
        raise DatabaseExistsError(name)

    init_data_dir()
    path = get_database_path(name)
    try:
        with db_transaction(name) as conn:
            for statement in statements:
                conn.execute(statement)
    except Exception:
        path.unlink(missing_ok=True)
        raise


def drop_database(name: str) -> None:
    if not database_exists(name):
        raise DatabaseNotFoundError(name)
    get_database_path(name).unlink()


def open_readonly(name: str) -> sqlite3.Connection:
    """Open a read-only connection usable from any thread."""
    if not database_exists(name):
        raise DatabaseNotFoundError(name)
    uri = f"{get_database_path(name).resolve().as_uri()}?mode=ro"
    return sqlite3.connect(uri, uri=True, timeout=10.0, check_same_thread=False)
