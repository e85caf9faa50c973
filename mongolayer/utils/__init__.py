"""
Shared helpers for document paths and datetime normalization.
"""

from .paths import get_path, set_path, unset_path, has_path, find_index
from .time_utils import to_utc, normalize_dates, parse_datetime, utc_now

__all__ = [
    'get_path',
    'set_path',
    'unset_path',
    'has_path',
    'find_index',
    'to_utc',
    'normalize_dates',
    'parse_datetime',
    'utc_now',
]
