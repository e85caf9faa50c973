"""
mongolayer - fluent MongoDB aggregation builder with embedded-document sync.
"""

from .aggregate import Aggregate, Stage, WhereOperator, agg, parse_where
from .config import Config
from .db import Database, MotorQueryExecutor, QueryExecutor, connect
from .exceptions import (
    ConnectionError,
    InvalidQueryError,
    MissingLimitError,
    MongoLayerError,
    QueryError,
    RelationNotFoundError,
    StorageError,
    SyncError,
    UnknownOperatorError,
    ValidationError,
)
from .log_manager import configure_logging, get_logger
from .model import (
    DeleteStrategy,
    FanOutPolicy,
    Joinable,
    Model,
    ModelAggregate,
    ModelEvents,
    ModelSync,
    OnDelete,
    SyncMode,
)

__version__ = "1.0.0"

__all__ = [
    'Aggregate',
    'Stage',
    'WhereOperator',
    'agg',
    'parse_where',
    'Config',
    'Database',
    'QueryExecutor',
    'MotorQueryExecutor',
    'connect',
    'Model',
    'ModelAggregate',
    'ModelEvents',
    'ModelSync',
    'Joinable',
    'DeleteStrategy',
    'OnDelete',
    'SyncMode',
    'FanOutPolicy',
    'configure_logging',
    'get_logger',
    'MongoLayerError',
    'QueryError',
    'InvalidQueryError',
    'UnknownOperatorError',
    'MissingLimitError',
    'RelationNotFoundError',
    'StorageError',
    'SyncError',
    'ConnectionError',
    'ValidationError',
]
