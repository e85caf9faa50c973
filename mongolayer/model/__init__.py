"""
Model layer for mongolayer.
"""

from .events import ModelEvents
from .joinable import Joinable
from .model import DeleteStrategy, Model, cast_value
from .model_aggregate import ModelAggregate
from .sync import FanOutPolicy, ModelSync, OnDelete, SyncMode

__all__ = [
    'Model',
    'ModelAggregate',
    'ModelEvents',
    'ModelSync',
    'Joinable',
    'DeleteStrategy',
    'OnDelete',
    'SyncMode',
    'FanOutPolicy',
    'cast_value',
]
