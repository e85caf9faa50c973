"""
Aggregation pipeline builder for mongolayer.
"""

from . import expressions
from .aggregate import Aggregate
from .expressions import column_name
from .stages import Stage, parse_stages, raw_stage
from .where_expression import OPERATORS, WhereOperator, escape_string, parse_where, to_operator

agg = expressions

__all__ = [
    'Aggregate',
    'Stage',
    'WhereOperator',
    'OPERATORS',
    'agg',
    'column_name',
    'escape_string',
    'expressions',
    'parse_stages',
    'parse_where',
    'raw_stage',
    'to_operator',
]
