"""
SQL Server engine gateway.

Issues catalog reads and snapshot lifecycle commands over pyodbc. Runs on
an autocommit connection to the master database: CREATE DATABASE,
RESTORE DATABASE and ALTER DATABASE cannot run inside a user transaction.
"""

import logging
import threading
from typing import List, Optional, Sequence, Tuple

try:
    import pyodbc
except ImportError:
    pyodbc = None

from ..core.exceptions import ConfigurationError, EngineError
from ..core.models import DataFile, EngineSnapshotObject
from . import sql
from .gateway import EngineGateway


logger = logging.getLogger(__name__)


class SqlServerEngineGateway(EngineGateway):
    """
    pyodbc-backed implementation of the engine gateway.

    Connections are thread-local so a gateway can be shared by a web
    layer's worker threads; each thread drives its own session.
    """

    def __init__(
        self,
        connection_string: Optional[str] = None,
        host: str = "localhost",
        port: int = 1433,
        username: str = "sa",
        password: Optional[str] = None,
        driver: str = "ODBC Driver 18 for SQL Server",
        trust_server_certificate: bool = True,
        login_timeout: int = 15,
        command_timeout: int = 0,
    ):
        """
        Initialize the SQL Server gateway.

        Args:
            connection_string: Full ODBC connection string (if provided, other params ignored)
            host: SQL Server host
            port: SQL Server port
            username: Login name
            password: Login password
            driver: ODBC driver name
            trust_server_certificate: Whether to trust self-signed certificates
            login_timeout: Seconds to wait for a connection
            command_timeout: Seconds to wait for a statement (0 waits forever)
        """
        if pyodbc is None:
            raise ConfigurationError(
                "pyodbc is required for SqlServerEngineGateway. "
                "Install with: pip install pyodbc"
            )

        if connection_string:
            self.connection_string = connection_string
        else:
            if not password:
                raise ConfigurationError(
                    "No SQL Server password configured "
                    "(set SQLSNAP_SQLSERVER_PASSWORD or engine.sqlserver.password)"
                )
            trust_cert = "yes" if trust_server_certificate else "no"
            # Snapshot DDL must run from master
            self.connection_string = (
                f"Driver={{{driver}}};"
                f"Server={host},{port};"
                f"Database=master;"
                f"UID={username};"
                f"PWD={password};"
                f"TrustServerCertificate={trust_cert}"
            )

        self.login_timeout = login_timeout
        self.command_timeout = command_timeout
        self._thread_local = threading.local()
        self._connections = []
        self._connections_lock = threading.Lock()

    def _get_conn(self):
        """Get (or create) a thread-local autocommit connection."""
        conn = getattr(self._thread_local, "conn", None)
        if conn is None:
            try:
                conn = pyodbc.connect(
                    self.connection_string,
                    autocommit=True,
                    timeout=self.login_timeout,
                )
            except pyodbc.Error as e:
                logger.error(f"Failed to connect to SQL Server: {e}")
                raise ConfigurationError(f"Failed to connect to SQL Server: {e}") from e
            conn.timeout = self.command_timeout
            self._thread_local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
            logger.debug("Connected to SQL Server engine")
        return conn

    def _execute(self, statement: str, params: Sequence = ()) -> None:
        """Run a command that returns no rows."""
        cursor = self._get_conn().cursor()
        try:
            logger.debug(f"Executing: {statement}")
            cursor.execute(statement, *params)
            # Drain informational result sets so errors raised late surface here
            while cursor.nextset():
                pass
        except pyodbc.Error as e:
            logger.error(f"Engine command failed: {e}")
            raise EngineError(str(e), statement=statement) from e
        finally:
            cursor.close()

    def _query(self, statement: str, params: Sequence = ()) -> list:
        """Run a catalog read and return all rows."""
        cursor = self._get_conn().cursor()
        try:
            cursor.execute(statement, *params)
            return cursor.fetchall()
        except pyodbc.Error as e:
            logger.error(f"Engine query failed: {e}")
            raise EngineError(str(e), statement=statement) from e
        finally:
            cursor.close()

    def list_snapshot_objects(self) -> List[EngineSnapshotObject]:
        rows = self._query(sql.LIST_SNAPSHOT_OBJECTS)
        return [
            EngineSnapshotObject(
                name=row[0],
                source_database=row[1],
                create_date=row[2],
                state_desc=row[3],
            )
            for row in rows
        ]

    def list_data_files(self, database: str) -> List[DataFile]:
        rows = self._query(sql.LIST_DATA_FILES, (database,))
        return [DataFile(logical_name=row[0], physical_name=row[1]) for row in rows]

    def create_snapshot(
        self,
        snapshot_name: str,
        source_database: str,
        files: Sequence[Tuple[str, str]],
    ) -> None:
        self._execute(sql.build_create_snapshot(snapshot_name, source_database, files))
        logger.info(f"Created snapshot {snapshot_name} of {source_database}")

    def drop_database(self, name: str) -> None:
        self._execute(sql.build_drop_database(name))
        logger.info(f"Dropped snapshot {name}")

    def restore_from_snapshot(self, database: str, snapshot_name: str) -> None:
        self._execute(sql.build_restore_from_snapshot(database, snapshot_name))
        logger.info(f"Restored {database} from {snapshot_name}")

    def restore_with_recovery(self, database: str) -> None:
        self._execute(sql.build_restore_with_recovery(database))

    def set_single_user(self, database: str) -> None:
        self._execute(sql.build_set_single_user(database))

    def set_multi_user(self, database: str) -> None:
        self._execute(sql.build_set_multi_user(database))

    def terminate_sessions(self, database: str) -> int:
        rows = self._query(sql.LIST_SESSIONS, (database,))
        killed = 0
        for row in rows:
            session_id = int(row[0])
            if session_id <= 0:
                continue
            try:
                self._execute(sql.build_kill(session_id))
                killed += 1
            except EngineError as e:
                # Sessions can end on their own between the read and the KILL
                logger.debug(f"Could not kill session {session_id}: {e}")
        if killed:
            logger.info(f"Terminated {killed} sessions on {database}")
        return killed

    def get_database_state(self, database: str) -> Optional[str]:
        rows = self._query(sql.DATABASE_STATE, (database,))
        return rows[0][0] if rows else None

    def snapshot_exists(self, name: str) -> bool:
        return bool(self._query(sql.SNAPSHOT_EXISTS, (name,)))

    def is_accessible(self, name: str) -> bool:
        try:
            self._query(sql.build_accessibility_probe(name))
            return True
        except EngineError as e:
            logger.debug(f"Database {name} is not accessible: {e}")
            return False

    def list_databases(self) -> List[str]:
        return [row[0] for row in self._query(sql.LIST_USER_DATABASES)]

    def server_version(self) -> str:
        rows = self._query(sql.SERVER_VERSION)
        return rows[0][0] if rows else "Unknown"

    def close(self) -> None:
        """Close every connection opened by this gateway."""
        with self._connections_lock:
            for conn in self._connections:
                try:
                    conn.close()
                except pyodbc.Error as e:
                    logger.debug(f"Error closing connection: {e}")
            self._connections.clear()
        self._thread_local = threading.local()
        logger.debug("Closed SQL Server gateway connections")
