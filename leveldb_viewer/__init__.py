"""LevelDB Viewer: streaming table views over LevelDB parser output."""

__version__ = "0.1.0"
