"""OneDrive storage backend adapter for the backup engine."""

__version__ = "0.1.0"
