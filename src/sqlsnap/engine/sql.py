"""
T-SQL quoting and statement builders for snapshot lifecycle commands.

DDL such as CREATE DATABASE ... AS SNAPSHOT OF and RESTORE DATABASE cannot
take bound parameters for object names, so every identifier goes through
quote_identifier() and every string literal through quote_literal().
Catalog reads use pyodbc parameters instead.
"""

from typing import Iterable, Tuple

from ..core.exceptions import InvalidIdentifier


# SQL Server sysname limit
MAX_IDENTIFIER_LENGTH = 128

LIST_SNAPSHOT_OBJECTS = """
    SELECT s.name, src.name AS source_database, s.create_date, s.state_desc
    FROM sys.databases s
    LEFT JOIN sys.databases src ON src.database_id = s.source_database_id
    WHERE s.source_database_id IS NOT NULL
    ORDER BY s.name
"""

LIST_DATA_FILES = """
    SELECT name, physical_name
    FROM sys.master_files
    WHERE database_id = DB_ID(?) AND type = 0
    ORDER BY file_id
"""

LIST_SESSIONS = """
    SELECT session_id
    FROM sys.dm_exec_sessions
    WHERE database_id = DB_ID(?) AND session_id <> @@SPID
"""

DATABASE_STATE = "SELECT state_desc FROM sys.databases WHERE name = ?"

SNAPSHOT_EXISTS = """
    SELECT 1 FROM sys.databases
    WHERE name = ? AND source_database_id IS NOT NULL
"""

LIST_USER_DATABASES = """
    SELECT name
    FROM sys.databases
    WHERE database_id > 4 AND source_database_id IS NULL
    ORDER BY name
"""

SERVER_VERSION = "SELECT @@VERSION"


def validate_identifier(name: str) -> str:
    """
    Check that a name can be used as a SQL Server object name.

    Raises:
        InvalidIdentifier: If the name is empty, too long or contains NUL
    """
    if not name or not name.strip():
        raise InvalidIdentifier("Identifier must not be empty")
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise InvalidIdentifier(f"Identifier longer than {MAX_IDENTIFIER_LENGTH} characters: {name[:32]}...")
    if "\x00" in name:
        raise InvalidIdentifier("Identifier must not contain NUL characters")
    return name


def quote_identifier(name: str) -> str:
    """Bracket-quote an identifier, doubling any closing bracket."""
    validate_identifier(name)
    return "[" + name.replace("]", "]]") + "]"


def quote_literal(value: str) -> str:
    """Quote a Unicode string literal, doubling any single quote."""
    if "\x00" in value:
        raise InvalidIdentifier("Literal must not contain NUL characters")
    return "N'" + value.replace("'", "''") + "'"


def build_create_snapshot(
    snapshot_name: str,
    source_database: str,
    files: Iterable[Tuple[str, str]],
) -> str:
    """
    Build CREATE DATABASE ... AS SNAPSHOT OF.

    Args:
        snapshot_name: Name of the snapshot database to create
        source_database: Database being snapshotted
        files: (logical_name, sparse_file_path) pairs, one per data file
    """
    file_specs = [
        f"(NAME = {quote_identifier(logical)}, FILENAME = {quote_literal(path)})"
        for logical, path in files
    ]
    if not file_specs:
        raise ValueError(f"No data files given for snapshot {snapshot_name}")
    return (
        f"CREATE DATABASE {quote_identifier(snapshot_name)} "
        f"ON {', '.join(file_specs)} "
        f"AS SNAPSHOT OF {quote_identifier(source_database)}"
    )


def build_drop_database(name: str, if_exists: bool = True) -> str:
    if if_exists:
        return f"DROP DATABASE IF EXISTS {quote_identifier(name)}"
    return f"DROP DATABASE {quote_identifier(name)}"


def build_restore_from_snapshot(database: str, snapshot_name: str) -> str:
    validate_identifier(snapshot_name)
    return (
        f"RESTORE DATABASE {quote_identifier(database)} "
        f"FROM DATABASE_SNAPSHOT = {quote_literal(snapshot_name)}"
    )


def build_restore_with_recovery(database: str) -> str:
    return f"RESTORE DATABASE {quote_identifier(database)} WITH RECOVERY"


def build_set_single_user(database: str) -> str:
    return f"ALTER DATABASE {quote_identifier(database)} SET SINGLE_USER WITH ROLLBACK IMMEDIATE"


def build_set_multi_user(database: str) -> str:
    return f"ALTER DATABASE {quote_identifier(database)} SET MULTI_USER"


def build_kill(session_id: int) -> str:
    # KILL takes no parameters; int() rejects anything but a session number
    return f"KILL {int(session_id)}"


def build_accessibility_probe(database: str) -> str:
    return f"SELECT TOP 1 1 FROM {quote_identifier(database)}.sys.objects"


def removal_command(snapshot_name: str) -> str:
    """Ready-to-run command an operator can use to drop a blocking snapshot."""
    return build_drop_database(snapshot_name, if_exists=False) + ";"
