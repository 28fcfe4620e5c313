import pytest

from schemamigrate.util import (
    AtomicBool,
    DatabaseError,
    LockedError,
    NotLockedError,
    cas_restore_on_err,
    filter_custom_query,
    generate_advisory_lock_id,
    parse_bool,
)


@pytest.mark.parametrize(
    "dbname, additional, expected",
    [
        ("database_name", [], "1764327054"),
        ("database_name", ["schema_name_1"], "2453313553"),
        ("database_name", ["schema_name_2"], "235207038"),
        ("database_name", ["schema_name_1", "schema_name_2"], "3743845847"),
    ],
)
def test_generate_advisory_lock_id(dbname, additional, expected):
    assert generate_advisory_lock_id(dbname, *additional) == expected


CAS_ERR = RuntimeError("test lock CAS failure")
F_ERR = RuntimeError("test callback error")


def test_cas_positive_lock():
    lock = AtomicBool(False)
    cas_restore_on_err(lock, False, True, CAS_ERR, lambda: None)
    assert lock.load() is True


def test_cas_negative_lock():
    lock = AtomicBool(True)
    with pytest.raises(RuntimeError) as excinfo:
        cas_restore_on_err(lock, False, True, CAS_ERR, lambda: None)
    assert excinfo.value is CAS_ERR
    assert lock.load() is True


def test_cas_negative_with_callback():
    lock = AtomicBool(False)

    def failing():
        raise F_ERR

    with pytest.raises(RuntimeError) as excinfo:
        cas_restore_on_err(lock, False, True, CAS_ERR, failing)
    assert excinfo.value is F_ERR
    assert lock.load() is False


def test_atomic_bool_compare_and_swap():
    flag = AtomicBool()
    assert flag.compare_and_swap(False, True) is True
    assert flag.compare_and_swap(False, True) is False
    flag.store(False)
    assert flag.load() is False


def test_filter_custom_query_drops_x_params():
    url = "sqlite://file.db?x-migrations-table=foo&cache=shared"
    assert filter_custom_query(url) == "sqlite://file.db?cache=shared"


def test_filter_custom_query_without_query_is_unchanged():
    assert filter_custom_query("sqlite3://path/to/db") == "sqlite3://path/to/db"


@pytest.mark.parametrize("value", ["1", "t", "T", "TRUE", "true", "True"])
def test_parse_bool_true(value):
    assert parse_bool(value) is True


@pytest.mark.parametrize("value", ["0", "f", "F", "FALSE", "false", "False"])
def test_parse_bool_false(value):
    assert parse_bool(value) is False


def test_parse_bool_invalid():
    with pytest.raises(ValueError) as excinfo:
        parse_bool("yeppers")
    assert "invalid syntax" in str(excinfo.value)
    assert "yeppers" in str(excinfo.value)


def test_database_error_carries_query():
    cause = ValueError("boom")
    error = DatabaseError("migration failed", orig_err=cause, query=b"SELECT 1", line=3)
    assert error.orig_err is cause
    assert error.line == 3
    assert "migration failed" in str(error)
    assert "SELECT 1" in str(error)


def test_lock_errors_are_distinct():
    assert not issubclass(LockedError, NotLockedError)
    assert str(LockedError()) != str(NotLockedError())