
class ApplicationError(Exception):
    """Base class for application-specific errors."""
    pass

class TileNotFoundError(ApplicationError):
    """Raised when a tile record is not found."""
    pass

class TileGroupNotFoundError(ApplicationError):
    """Raised when a tile group has no records left to edit or delete."""
    pass

class TileValidationError(ApplicationError):
    """Raised when a save request would not write any variant."""
    pass

class PermissionDeniedError(ApplicationError):
    """Raised when the store rejects the caller's credentials (401/403)."""
    pass

class StoreInitializationError(ApplicationError):
    """Raised when the Cosmos DB client or container cannot be constructed."""
    pass

class DatabaseError(ApplicationError):
    """Raised for general database-related errors not specifically handled."""
    def __init__(self, message="A database error occurred.", original_exception=None):
        super().__init__(message)
        self.original_exception = original_exception

class PreconditionFailedError(ApplicationError):
    """Raised when a record changed since it was read (ETag mismatch)."""
    pass
