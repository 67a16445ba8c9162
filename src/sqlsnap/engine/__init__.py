"""
Engine gateway implementations.

The default gateway talks to SQL Server over pyodbc. The in-memory gateway
simulates the snapshot catalog for tests and dry runs.
"""

import logging
from typing import Any, Dict, Optional

from .gateway import EngineGateway
from .memory_gateway import InMemoryEngineGateway


logger = logging.getLogger(__name__)


def create_engine_gateway(
    sqlserver_config: Optional[Dict[str, Any]] = None,
    backend: str = "sqlserver",
) -> EngineGateway:
    """
    Factory function to create the engine gateway from configuration.

    Args:
        sqlserver_config: The engine.sqlserver section of the config
        backend: 'sqlserver' (default) or 'memory'

    Raises:
        ValueError: If backend is not recognized
        ConfigurationError: If connection settings are missing
    """
    if backend == "memory":
        logger.warning("Using in-memory engine gateway; no SQL Server commands will be issued")
        return InMemoryEngineGateway()

    if backend == "sqlserver":
        from .sqlserver_gateway import SqlServerEngineGateway

        cfg = sqlserver_config or {}
        return SqlServerEngineGateway(
            connection_string=cfg.get("connection_string"),
            host=cfg.get("host", "localhost"),
            port=int(cfg.get("port", 1433)),
            username=cfg.get("username", "sa"),
            password=cfg.get("password"),
            driver=cfg.get("driver", "ODBC Driver 18 for SQL Server"),
            trust_server_certificate=bool(cfg.get("trust_server_certificate", True)),
            login_timeout=int(cfg.get("login_timeout", 15)),
            command_timeout=int(cfg.get("command_timeout", 0)),
        )

    raise ValueError(
        f"Unknown engine backend: {backend}. "
        "Supported backends: 'sqlserver' (default), 'memory'"
    )


__all__ = ["EngineGateway", "InMemoryEngineGateway", "create_engine_gateway"]
