"""
Exception classes for mongolayer.
"""


class MongoLayerError(Exception):
    """Base exception for all mongolayer errors."""
    pass


class StorageError(MongoLayerError):
    """Raised when storage operations fail."""
    pass


class QueryError(MongoLayerError):
    """Raised when query building or execution fails."""
    pass


class InvalidQueryError(QueryError):
    """Raised when a filter or stage is malformed."""
    pass


class UnknownOperatorError(InvalidQueryError):
    """Raised when a where operator is not part of the supported set."""
    def __init__(self, operator):
        super().__init__(f"Unknown where operator: {operator!r}")
        self.operator = operator


class MissingLimitError(QueryError):
    """Raised when random() has no limit to sample with."""
    pass


class RelationNotFoundError(QueryError):
    """Raised when a named joining or relation is not declared on the model."""
    def __init__(self, name: str, model: str):
        super().__init__(f"Relation {name} not found on {model}")
        self.name = name
        self.model = model


class ValidationError(MongoLayerError):
    """Raised when a declaration or input is invalid."""
    pass


class SyncError(MongoLayerError):
    """
    Raised when syncing embedded copies fails for one or more target records.

    Attributes:
        failures: List of (target record, exception) pairs
    """
    def __init__(self, message: str, failures=None):
        super().__init__(message)
        self.failures = failures or []


class ConnectionError(MongoLayerError):
    """Raised when database connection fails."""
    pass
