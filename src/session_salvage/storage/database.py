"""Read-only SQLite helpers shared by the storage backends."""

import sqlite3
from pathlib import Path

from session_salvage.errors import StorageError
from session_salvage.logging import get_logger
from session_salvage.models import RawRecord

logger = get_logger("database")

# Column pairs tried, in order, when discovering a table's key/value shape
KEY_VALUE_COLUMNS = (("key", "value"), ("id", "data"))


def open_readonly(db_path: Path) -> sqlite3.Connection:
    """Open a SQLite database without write access.

    Raises:
        StorageError: If the file is missing or cannot be opened
    """
    if not db_path.is_file():
        raise StorageError(str(db_path), "open", "file does not exist")
    uri = db_path.resolve().as_uri() + "?mode=ro"
    try:
        conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
        # Fail now on a file that is not a database
        conn.execute("SELECT name FROM sqlite_master LIMIT 1").fetchall()
    except sqlite3.Error as e:
        raise StorageError(str(db_path), "open", e) from e
    return conn


def value_to_str(value: object) -> str:
    """Render a stored value as a string.

    BLOB values are decoded with ``surrogateescape`` so undecodable bytes
    can be recovered exactly by the binary decoders.
    """
    if isinstance(value, bytes):
        return value.decode("utf-8", "surrogateescape")
    if value is None:
        return ""
    return str(value)


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
    ).fetchone()
    return row is not None


def discover_key_value_columns(conn: sqlite3.Connection, table: str) -> tuple[str, str] | None:
    """Guess which two columns of ``table`` hold keys and values.

    Tries ``key``/``value``, then ``id``/``data``, then the first two
    columns. Returns None when the table has fewer than two columns.
    """
    columns = [row[1] for row in conn.execute(f"PRAGMA table_info({quote_identifier(table)})")]
    lowered = {name.lower(): name for name in columns}
    for key_col, value_col in KEY_VALUE_COLUMNS:
        if key_col in lowered and value_col in lowered:
            return lowered[key_col], lowered[value_col]
    if len(columns) >= 2:
        return columns[0], columns[1]
    return None


def read_table(
    conn: sqlite3.Connection,
    table: str,
    columns: tuple[str, str],
    key_prefix: str | None = None,
    db_path: Path | None = None,
) -> list[RawRecord]:
    """Read (key, value) rows from ``table``.

    Args:
        conn: Open connection
        table: Table name
        columns: Key and value column names
        key_prefix: Only return keys starting with this prefix
        db_path: Database path for error reporting

    Raises:
        StorageError: If the query fails
    """
    key_col, value_col = (quote_identifier(c) for c in columns)
    sql = f"SELECT {key_col}, {value_col} FROM {quote_identifier(table)}"
    params: tuple = ()
    if key_prefix is not None:
        sql += f" WHERE {key_col} LIKE ? ESCAPE '\\'"
        escaped = key_prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        params = (escaped + "%",)

    try:
        rows = conn.execute(sql, params).fetchall()
    except sqlite3.Error as e:
        raise StorageError(str(db_path or table), "query", e) from e

    return [
        RawRecord(key=value_to_str(key), value=value_to_str(value))
        for key, value in rows
        if value is not None
    ]
