"""Tests for backup key layout and the per-database path guard."""

import pytest

from dbvault.errors import TenantIsolationError, ValidationError
from dbvault.storage.keys import (
    database_backup_key,
    ensure_tenant,
    parse_key,
    table_backup_key,
    validate_table_name,
)


class TestKeyLayout:
    def test_database_key(self):
        assert database_backup_key("db-1", 1700000000000) == "backups/db-1/1700000000000.sql"

    def test_table_key(self):
        assert (
            table_backup_key("db-1", "users", 1700000000000, "csv")
            == "backups/db-1/tables/users/1700000000000.csv"
        )

    def test_parse_database_key(self):
        parsed = parse_key("backups/db-1/1700000000000.sql")
        assert parsed.database_id == "db-1"
        assert parsed.timestamp == 1700000000000
        assert parsed.extension == "sql"
        assert not parsed.is_table_backup

    def test_parse_table_key(self):
        parsed = parse_key("backups/db-1/tables/users/1700000000000.json")
        assert parsed.table_name == "users"
        assert parsed.timestamp == 1700000000000
        assert parsed.is_table_backup

    @pytest.mark.parametrize("key", ["other/db-1/1.sql", "backups/", "backups//1.sql"])
    def test_parse_rejects_foreign_keys(self, key):
        assert parse_key(key) is None


class TestTableNames:
    @pytest.mark.parametrize("name", ["users", "user_events", "Order Items", "v2.archive"])
    def test_plain_names_allowed(self, name):
        assert validate_table_name(name) == name

    @pytest.mark.parametrize("name", ["", ".", "..", "../../victim", "a/b", "a\\b", "x..y", "nul\x00"])
    def test_unsafe_names_rejected(self, name):
        with pytest.raises(ValidationError):
            validate_table_name(name)

    def test_key_builder_refuses_traversal(self):
        with pytest.raises(ValidationError):
            table_backup_key("attacker", "../../victim", 1700000000000, "sql")


class TestEnsureTenant:
    def test_own_path_allowed(self):
        path = "backups/db-1/tables/users/1.sql"
        assert ensure_tenant("db-1", path) == path

    @pytest.mark.parametrize(
        "path",
        [
            "backups/db-2/1.sql",
            "backups/db-10/1.sql",
            "backups/db-1/../db-2/1.sql",
            "backups/db-1//1.sql",
            "db-1/1.sql",
        ],
    )
    def test_foreign_paths_rejected(self, path):
        with pytest.raises(TenantIsolationError) as info:
            ensure_tenant("db-1", path)
        assert info.value.message == "Invalid backup path for this database"
        assert info.value.status_code == 400
