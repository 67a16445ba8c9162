"""
Unit tests for SqlServerEngineGateway construction (no server required).
"""

import pytest

from sqlsnap.core.exceptions import ConfigurationError
from sqlsnap.engine import create_engine_gateway

pytest.importorskip("pyodbc")

from sqlsnap.engine.sqlserver_gateway import SqlServerEngineGateway


@pytest.mark.unit
class TestSqlServerEngineGateway:
    """Tests for connection settings."""

    def test_password_required(self):
        with pytest.raises(ConfigurationError):
            SqlServerEngineGateway(host="db", password=None)

    def test_connection_string_built_for_master(self):
        gateway = SqlServerEngineGateway(
            host="db.internal", port=1434, username="snap", password="secret",
            driver="ODBC Driver 17 for SQL Server", trust_server_certificate=False,
        )

        assert gateway.connection_string == (
            "Driver={ODBC Driver 17 for SQL Server};"
            "Server=db.internal,1434;"
            "Database=master;"
            "UID=snap;"
            "PWD=secret;"
            "TrustServerCertificate=no"
        )

    def test_explicit_connection_string(self):
        gateway = SqlServerEngineGateway(connection_string="DSN=snapshots")

        assert gateway.connection_string == "DSN=snapshots"

    def test_factory_uses_config(self):
        gateway = create_engine_gateway({"host": "h", "port": "1500", "password": "pw"})

        assert "Server=h,1500;" in gateway.connection_string
        assert gateway.login_timeout == 15
