"""
Unit tests for database enumeration (dbbackup/backup/catalog.py).

Tests exclusion parsing and DatabaseLister listing/filtering.
"""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from dbbackup.backup.catalog import (
    DatabaseLister,
    create_catalog_engine,
    create_lister,
    parse_exclusions
)
from dbbackup.errors import CatalogConnectionError
from dbbackup.models import DatabaseRef

from conftest import make_lister


class TestParseExclusions:
    """Test parse_exclusions."""

    @pytest.mark.parametrize("raw,expected", [
        ("", frozenset()),
        ("a", frozenset({"a"})),
        ("a,b", frozenset({"a", "b"})),
        (" a , b ", frozenset({"a", "b"})),
    ])
    def test_parse_exclusions(self, raw, expected):
        assert parse_exclusions(raw) == expected

    def test_none_and_blank_give_empty_set(self):
        assert parse_exclusions(None) == frozenset()
        assert parse_exclusions("   ") == frozenset()

    def test_empty_elements_dropped(self):
        assert parse_exclusions("a,,b, ,") == frozenset({"a", "b"})

    def test_single_value_is_still_a_set(self):
        result = parse_exclusions("mysql")

        assert isinstance(result, frozenset)
        assert "mysql" in result


class TestDatabaseLister:
    """Test DatabaseLister."""

    def test_list_keeps_server_order(self):
        lister = make_lister(["zeta", "alpha", "mysql"])

        assert lister.list() == [DatabaseRef("zeta"), DatabaseRef("alpha"), DatabaseRef("mysql")]

    def test_list_runs_show_databases(self):
        lister = make_lister(["shop"])
        lister.list()

        connection = lister.engine.connect.return_value.__enter__.return_value
        statement = connection.execute.call_args[0][0]
        assert str(statement) == "SHOW DATABASES"

    def test_targets_remove_exclusions_in_order(self):
        lister = make_lister(["information_schema", "shop", "mysql", "blog"], "information_schema, mysql")

        assert [d.name for d in lister.targets()] == ["shop", "blog"]

    def test_exclusion_is_case_sensitive(self):
        lister = make_lister(["Shop", "shop"], "shop")

        assert [d.name for d in lister.targets()] == ["Shop"]

    def test_exclusion_is_not_a_pattern(self):
        lister = make_lister(["shop", "shop_archive"], "shop*")

        assert [d.name for d in lister.targets()] == ["shop", "shop_archive"]

    def test_exclusions_exposed_as_set(self):
        lister = make_lister([], "a , b")

        assert lister.exclusions() == frozenset({"a", "b"})

    def test_unreachable_server_raises_connection_error(self):
        engine = MagicMock()
        engine.connect.side_effect = OperationalError(
            "SHOW DATABASES", {}, Exception("Can't connect to MySQL server")
        )
        lister = DatabaseLister(engine)

        with pytest.raises(CatalogConnectionError, match="Cannot list databases"):
            lister.targets()

    def test_connection_error_is_builtin_connection_error(self):
        engine = MagicMock()
        engine.connect.side_effect = OperationalError("x", {}, Exception("Access denied"))

        with pytest.raises(ConnectionError):
            DatabaseLister(engine).list()

    def test_close_disposes_engine(self):
        lister = make_lister([])
        lister.close()

        lister.engine.dispose.assert_called_once()


class TestCatalogFactory:
    """Test engine and lister construction from configuration."""

    def test_create_catalog_engine_url(self):
        engine = create_catalog_engine('db.example.com', 'backup', 'p@ss', 3307)

        assert engine.url.drivername == 'mysql+pymysql'
        assert engine.url.host == 'db.example.com'
        assert engine.url.port == 3307
        assert engine.url.username == 'backup'
        assert engine.url.password == 'p@ss'
        assert engine.url.database is None

    @patch('dbbackup.backup.catalog.create_catalog_engine')
    def test_create_lister_uses_config(self, mock_engine, config):
        config.DB_EXCLUDE_DATABASES = 'mysql,sys'

        lister = create_lister(config)

        mock_engine.assert_called_once_with(
            host='db.example.com', user='backup', password='s3cret', port=3306
        )
        assert lister.exclusions() == frozenset({'mysql', 'sys'})
