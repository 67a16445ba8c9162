"""
Unit tests for T-SQL quoting and statement builders.
"""

import pytest

from sqlsnap.core.exceptions import ValidationError
from sqlsnap.engine import sql


@pytest.mark.unit
class TestQuoting:
    """Tests for identifier and literal quoting."""

    def test_quote_identifier(self):
        assert sql.quote_identifier("orders") == "[orders]"

    def test_quote_identifier_doubles_closing_bracket(self):
        """Test a closing bracket cannot terminate the quoted name."""
        assert sql.quote_identifier("evil]; DROP DATABASE x; --") == "[evil]]; DROP DATABASE x; --]"

    def test_quote_literal_doubles_quote(self):
        assert sql.quote_literal("O'Brien") == "N'O''Brien'"

    @pytest.mark.parametrize("name", ["", "   ", "a" * 129, "bad\x00name"])
    def test_invalid_identifiers_rejected(self, name):
        with pytest.raises(ValueError):
            sql.quote_identifier(name)

    def test_invalid_identifier_is_validation_error(self):
        """Test an unusable name surfaces as a sqlsnap validation error."""
        with pytest.raises(ValidationError):
            sql.quote_identifier("a" * 129)

    def test_kill_requires_integer(self):
        """Test KILL only accepts a session number."""
        assert sql.build_kill(57) == "KILL 57"
        with pytest.raises(ValueError):
            sql.build_kill("57; SHUTDOWN")


@pytest.mark.unit
class TestStatements:
    """Tests for statement builders."""

    def test_create_snapshot(self):
        statement = sql.build_create_snapshot(
            "billing_ab12cd34_orders",
            "orders",
            [
                ("orders", "/snap/billing_ab12cd34_orders_orders.ss"),
                ("orders_2", "/snap/billing_ab12cd34_orders_orders_2.ss"),
            ],
        )

        assert statement == (
            "CREATE DATABASE [billing_ab12cd34_orders] ON "
            "(NAME = [orders], FILENAME = N'/snap/billing_ab12cd34_orders_orders.ss'), "
            "(NAME = [orders_2], FILENAME = N'/snap/billing_ab12cd34_orders_orders_2.ss') "
            "AS SNAPSHOT OF [orders]"
        )

    def test_create_snapshot_requires_files(self):
        with pytest.raises(ValueError):
            sql.build_create_snapshot("s", "orders", [])

    def test_restore_from_snapshot(self):
        assert sql.build_restore_from_snapshot("orders", "snap_orders") == (
            "RESTORE DATABASE [orders] FROM DATABASE_SNAPSHOT = N'snap_orders'"
        )

    def test_access_modes(self):
        assert sql.build_set_single_user("orders") == (
            "ALTER DATABASE [orders] SET SINGLE_USER WITH ROLLBACK IMMEDIATE"
        )
        assert sql.build_set_multi_user("orders") == "ALTER DATABASE [orders] SET MULTI_USER"

    def test_drop_database(self):
        assert sql.build_drop_database("snap") == "DROP DATABASE IF EXISTS [snap]"
        assert sql.build_drop_database("snap", if_exists=False) == "DROP DATABASE [snap]"

    def test_removal_command(self):
        assert sql.removal_command("manual_orders") == "DROP DATABASE [manual_orders];"
