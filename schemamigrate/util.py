"""Shared helpers for database drivers: errors, locking and URL handling."""

from __future__ import annotations

import threading
import zlib
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

NIL_VERSION = -1
"""Version reported when no migration has been applied."""

_ADVISORY_LOCK_ID_SALT = 1486364155
_UINT32 = 1 << 32

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


class DatabaseError(Exception):
    """A failure reported by a database driver, with the query that caused it."""

    def __init__(
        self,
        err: str = "",
        *,
        orig_err: BaseException | None = None,
        query: bytes | str = b"",
        line: int = 0,
    ) -> None:
        super().__init__(err or orig_err)
        self.err = err
        self.orig_err = orig_err
        self.query = query
        self.line = line

    def __str__(self) -> str:
        if isinstance(self.query, bytes):
            query = self.query.decode("utf-8", errors="replace")
        else:
            query = self.query
        if self.err:
            text = self.err
        elif self.orig_err is not None:
            text = str(self.orig_err)
        else:
            text = "database error"
        text = f"{text} in line {self.line}: {query}"
        if self.err and self.orig_err is not None:
            text += f" (details: {self.orig_err})"
        return text


class LockedError(Exception):
    """Raised when a lock is requested while it is already held."""

    def __init__(self, message: str = "can't acquire lock") -> None:
        super().__init__(message)


class NotLockedError(Exception):
    """Raised when a lock is released while it is not held."""

    def __init__(self, message: str = "can't unlock, as not currently locked") -> None:
        super().__init__(message)


class AtomicBool:
    """A thread-safe boolean with compare-and-swap."""

    def __init__(self, value: bool = False) -> None:
        self._value = bool(value)
        self._guard = threading.Lock()

    def compare_and_swap(self, old: bool, new: bool) -> bool:
        """Set the value to ``new`` if it equals ``old``; report whether it did."""
        with self._guard:
            if self._value != bool(old):
                return False
            self._value = bool(new)
            return True

    def load(self) -> bool:
        with self._guard:
            return self._value

    def store(self, value: bool) -> None:
        with self._guard:
            self._value = bool(value)


def generate_advisory_lock_id(database_name: str, *args: str) -> str:
    """Derive a stable numeric lock identifier from a database and extra names."""
    if args:
        database_name = "\x00".join([*args, database_name])
    checksum = zlib.crc32(database_name.encode("utf-8"))
    return str((checksum * _ADVISORY_LOCK_ID_SALT) % _UINT32)


def cas_restore_on_err(
    lock: AtomicBool,
    old: bool,
    new: bool,
    cas_err: BaseException,
    func: Callable[[], Any],
) -> None:
    """Swap ``lock`` from ``old`` to ``new`` and run ``func``.

    Raises ``cas_err`` if the swap fails; if ``func`` raises, the lock is put
    back to ``old`` before the exception propagates.
    """
    if not lock.compare_and_swap(old, new):
        raise cas_err
    try:
        func()
    except BaseException:
        lock.store(old)
        raise


def filter_custom_query(url: str) -> str:
    """Return ``url`` without the query parameters whose names start with ``x-``."""
    parts = urlsplit(url)
    kept = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not key.startswith("x-")
    ]
    return urlunsplit(parts._replace(query=urlencode(kept)))


def parse_bool(value: str) -> bool:
    """Parse the boolean spellings accepted by driver URL options."""
    if value in _TRUE_WORDS:
        return True
    if value in _FALSE_WORDS:
        return False
    raise ValueError(f'strconv.ParseBool: parsing "{value}": invalid syntax')