"""
Database layer for mongolayer.
"""

from .database import Database, connect, current_session
from .executor import MotorQueryExecutor, QueryExecutor
from .master_mind import MasterMind

__all__ = [
    'Database',
    'connect',
    'current_session',
    'QueryExecutor',
    'MotorQueryExecutor',
    'MasterMind',
]
