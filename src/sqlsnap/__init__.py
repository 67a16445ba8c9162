"""
sqlsnap: point-in-time checkpoints and rollback for groups of SQL Server databases.
"""

__version__ = "0.1.0"
