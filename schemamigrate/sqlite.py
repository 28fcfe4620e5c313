"""Database driver for SQLite files, reached through ``sqlite://`` style URLs."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, quote, urlencode, urlsplit

from schemamigrate.util import (
    NIL_VERSION,
    AtomicBool,
    DatabaseError,
    LockedError,
    NotLockedError,
    parse_bool,
)

DEFAULT_MIGRATIONS_TABLE = "schema_migrations"

_SCHEME_PREFIXES = ("sqlite3://", "sqlite://", "sqlcipher://")


@dataclass
class SqliteConfig:
    """Options for the SQLite driver."""

    migrations_table: str = ""
    database_name: str = ""
    no_tx_wrap: bool = False


def _read_migration(migration: Any) -> str:
    if hasattr(migration, "read"):
        migration = migration.read()
    if isinstance(migration, (bytes, bytearray, memoryview)):
        return bytes(migration).decode("utf-8")
    return str(migration)


def _split_url(url: str) -> tuple[str, str, dict[str, str]]:
    """Return the connection target, whether it is a URI, and the query options."""
    for prefix in _SCHEME_PREFIXES:
        if url.startswith(prefix):
            rest = url[len(prefix):]
            break
    else:
        raise ValueError(f"unsupported scheme in URL: {url}")

    path, _, query = rest.partition("?")
    pairs = parse_qsl(query, keep_blank_values=True)
    options: dict[str, str] = {}
    for key, value in pairs:
        options.setdefault(key, value)
    kept = urlencode([(key, value) for key, value in pairs if not key.startswith("x-")])
    return path, kept, options


class SqliteDriver:
    """Applies migrations to a SQLite database and records its version."""

    def __init__(
        self,
        db: sqlite3.Connection | None = None,
        config: SqliteConfig | None = None,
    ) -> None:
        self._db = db
        self.config = config if config is not None else SqliteConfig()
        self._locked = AtomicBool()

    def open(self, url: str) -> SqliteDriver:
        """Connect to the database named by ``url`` and return a ready driver."""
        path, query, options = _split_url(url)

        migrations_table = options.get("x-migrations-table", "") or DEFAULT_MIGRATIONS_TABLE

        no_tx_wrap = False
        raw = options.get("x-no-tx-wrap", "")
        if raw:
            try:
                no_tx_wrap = parse_bool(raw)
            except ValueError as exc:
                raise ValueError(f"x-no-tx-wrap: {exc}") from None

        if path.startswith("file:"):
            target = f"{path}?{query}" if query else path
            use_uri = True
        elif query:
            target = f"file:{quote(path)}?{query}"
            use_uri = True
        else:
            target = path
            use_uri = False

        connection = sqlite3.connect(target, uri=use_uri, isolation_level=None)
        try:
            return with_instance(
                connection,
                SqliteConfig(
                    migrations_table=migrations_table,
                    database_name=urlsplit(url).path,
                    no_tx_wrap=no_tx_wrap,
                ),
            )
        except BaseException:
            connection.close()
            raise

    def close(self) -> None:
        if self._db is not None:
            self._db.close()

    def drop(self) -> None:
        """Drop every table in the database and reclaim the space."""
        query = "SELECT name FROM sqlite_master WHERE type = 'table';"
        try:
            rows = self._connection.execute(query).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(orig_err=exc, query=query) from exc

        table_names = [name for (name,) in rows if name]
        if not table_names:
            return

        for table in table_names:
            statement = "DROP TABLE " + table
            try:
                self._execute_query(statement)
            except DatabaseError as exc:
                raise DatabaseError(orig_err=exc, query=statement) from exc

        try:
            self._connection.execute("VACUUM")
        except sqlite3.Error as exc:
            raise DatabaseError(orig_err=exc, query="VACUUM") from exc

    def lock(self) -> None:
        if not self._locked.compare_and_swap(False, True):
            raise LockedError()

    def unlock(self) -> None:
        if not self._locked.compare_and_swap(True, False):
            raise NotLockedError()

    def run(self, migration: Any) -> None:
        """Execute a migration given as text, bytes or a readable object."""
        query = _read_migration(migration)
        if self.config.no_tx_wrap:
            self._execute_query_no_tx(query)
        else:
            self._execute_query(query)

    def set_version(self, version: int, dirty: bool) -> None:
        """Replace the recorded version with ``version`` and its dirty flag."""
        db = self._connection
        try:
            db.execute("BEGIN")
        except sqlite3.Error as exc:
            raise DatabaseError("transaction start failed", orig_err=exc) from exc

        table = self.config.migrations_table
        statements: list[tuple[str, tuple[Any, ...]]] = [(f"DELETE FROM {table}", ())]
        # A dirty nil version is kept so a failed first down migration stays visible.
        if version >= 0 or (version == NIL_VERSION and dirty):
            statements.append(
                (f"INSERT INTO {table} (version, dirty) VALUES (?, ?)", (version, bool(dirty)))
            )

        for statement, params in statements:
            try:
                db.execute(statement, params)
            except sqlite3.Error as exc:
                self._rollback()
                raise DatabaseError(orig_err=exc, query=statement) from exc

        try:
            db.execute("COMMIT")
        except sqlite3.Error as exc:
            raise DatabaseError("transaction commit failed", orig_err=exc) from exc

    def version(self) -> tuple[int, bool]:
        """Return the recorded version and dirty flag, or the nil version."""
        query = f"SELECT version, dirty FROM {self.config.migrations_table} LIMIT 1"
        try:
            row = self._connection.execute(query).fetchone()
        except sqlite3.Error:
            return NIL_VERSION, False
        if row is None or row[0] is None:
            return NIL_VERSION, False
        return int(row[0]), bool(row[1])

    @property
    def _connection(self) -> sqlite3.Connection:
        if self._db is None:
            raise DatabaseError("database connection is not open")
        return self._db

    def _rollback(self) -> None:
        if self._connection.in_transaction:
            try:
                self._connection.execute("ROLLBACK")
            except sqlite3.Error:
                pass

    def _execute_query(self, query: str) -> None:
        db = self._connection
        if db.in_transaction:
            raise DatabaseError("transaction start failed")
        try:
            db.executescript(f"BEGIN;\n{query}\n;COMMIT;")
        except sqlite3.Error as exc:
            self._rollback()
            raise DatabaseError(orig_err=exc, query=query) from exc

    def _execute_query_no_tx(self, query: str) -> None:
        try:
            self._connection.executescript(query)
        except sqlite3.Error as exc:
            self._rollback()
            raise DatabaseError(orig_err=exc, query=query) from exc

    def _ensure_version_table(self) -> None:
        """Create the version table if missing; takes the lock while doing so."""
        self.lock()
        try:
            table = self.config.migrations_table
            self._connection.executescript(
                f"CREATE TABLE IF NOT EXISTS {table} (version uint64,dirty bool);\n"
                f"CREATE UNIQUE INDEX IF NOT EXISTS version_unique ON {table} (version);\n"
            )
        finally:
            self.unlock()


def with_instance(instance: sqlite3.Connection, config: SqliteConfig | None) -> SqliteDriver:
    """Build a driver on an open connection, creating the version table if needed.

    The connection is switched to autocommit mode so the driver controls
    transactions itself.
    """
    if config is None:
        raise ValueError("no config")

    instance.execute("SELECT 1").fetchone()
    if instance.in_transaction:
        instance.commit()
    instance.isolation_level = None

    if not config.migrations_table:
        config.migrations_table = DEFAULT_MIGRATIONS_TABLE

    driver = SqliteDriver(instance, config)
    driver._ensure_version_table()
    return driver