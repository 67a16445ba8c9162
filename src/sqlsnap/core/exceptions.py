"""
Custom exceptions for snapshot management.
"""


class SqlSnapError(Exception):
    """Base exception for all sqlsnap errors."""
    pass


class ValidationError(SqlSnapError):
    """
    A precondition of the requested operation does not hold.

    Raised when:
    - The group or snapshot does not exist
    - The group already holds the maximum number of snapshots
    - A database has no data files to snapshot
    - Input such as a display name is empty
    """
    pass


class GroupNotFound(ValidationError):
    """The referenced group does not exist."""

    def __init__(self, group_id: str):
        super().__init__(f"Group not found: {group_id}")
        self.group_id = group_id


class SnapshotNotFound(ValidationError):
    """The referenced snapshot does not exist."""

    def __init__(self, snapshot_id: str):
        super().__init__(f"Snapshot not found: {snapshot_id}")
        self.snapshot_id = snapshot_id


class SnapshotLimitExceeded(ValidationError):
    """The group already holds the maximum number of snapshots."""

    def __init__(self, group_id: str, limit: int):
        super().__init__(
            f"Maximum of {limit} snapshots allowed per group. "
            "Delete some snapshots before creating new ones."
        )
        self.group_id = group_id
        self.limit = limit


class InvalidIdentifier(ValidationError, ValueError):
    """A name cannot be used as a SQL Server identifier or literal."""
    pass


class NoDataFiles(ValidationError):
    """The source database exposes no data files to snapshot."""

    def __init__(self, database: str):
        super().__init__(
            f"No data files found for database '{database}'. Cannot create snapshot."
        )
        self.database = database


class EngineError(SqlSnapError):
    """
    The database engine rejected a command.

    Raised when:
    - Permissions are insufficient
    - The snapshot path is invalid or the disk is full
    - The database is locked or in use
    """

    def __init__(self, message: str, statement: str = None):
        super().__init__(message)
        self.statement = statement


class SnapshotCreationFailed(EngineError):
    """No database of the group could be snapshotted."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class ConsistencyError(SqlSnapError):
    """
    External engine objects block the requested operation.

    Carries the offending snapshot names and ready-to-run removal
    commands so an operator can resolve the state manually.
    """

    def __init__(
        self,
        message: str,
        external_snapshots: list = None,
        removal_commands: list = None,
    ):
        super().__init__(message)
        self.external_snapshots = external_snapshots or []
        self.removal_commands = removal_commands or []


class PartialFailure(SqlSnapError):
    """A batch finished with a mix of successes and failures."""

    def __init__(self, message: str, results: list = None):
        super().__init__(message)
        self.results = results or []


class ConfigurationError(SqlSnapError):
    """
    No usable engine connection or configuration.

    Raised when:
    - Connection settings are missing
    - The engine cannot be reached
    - A required driver library is not installed
    """
    pass
