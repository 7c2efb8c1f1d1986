"""
Exception taxonomy for dbbackup.

Fatal before any database is dumped:
- ConfigError: configuration missing or malformed
- CatalogConnectionError: database names cannot be enumerated

Recorded per database and isolated:
- DumpError: the export routine failed for one database
- StorageError: the artifact backend failed (also per swept artifact)

Logged only:
- MailError: the notification could not be delivered
"""


class BackupError(Exception):
    """Base class for all dbbackup errors."""
    pass


class ConfigError(BackupError):
    """Raised when configuration is missing or malformed."""
    pass


class CatalogConnectionError(BackupError, ConnectionError):
    """Raised when the catalog server is unreachable or rejects credentials."""
    pass


class DumpError(BackupError):
    """Raised when dumping a single database fails."""

    def __init__(self, database: str, message: str, code=None):
        super().__init__(f"Dump of {database} failed: {message}")
        self.database = database
        self.message = message
        self.code = code


class StorageError(BackupError):
    """Raised when storage operation fails."""

    def __init__(self, message: str, code=None):
        super().__init__(message)
        self.code = code


class ArtifactNotFoundError(StorageError):
    """Raised when deleting or reading an artifact that does not exist."""
    pass


class MailError(BackupError):
    """Raised when the notification email cannot be sent."""
    pass
