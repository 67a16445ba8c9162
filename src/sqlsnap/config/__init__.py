"""Configuration loading."""

from .config_loader import DEFAULT_CONFIG, SnapshotConfig

__all__ = ["DEFAULT_CONFIG", "SnapshotConfig"]
