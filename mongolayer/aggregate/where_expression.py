#!/usr/bin/env python3
"""
Where expression compiler.
Turns (column, operator, value) triples into MongoDB match expressions.
"""

import re
from enum import Enum
from typing import Any, Dict, Union

from ..exceptions import InvalidQueryError, UnknownOperatorError
from ..utils.time_utils import normalize_dates
from .expressions import column_name

Filter = Dict[str, Any]


class WhereOperator(str, Enum):
    """Operators accepted by where() and friends."""
    # Comparison
    EQ = "="
    NE = "!="
    NOT = "not"
    GT = ">"
    GTE = ">="
    LT = "<"
    LTE = "<="

    # Array/List
    IN = "in"
    NIN = "nin"
    NOT_IN = "notIn"
    ALL = "all"
    ELEM_MATCH = "elemMatch"
    SIZE = "size"

    # Element
    EXISTS = "exists"
    TYPE = "type"
    MOD = "mod"

    # Ranges
    BETWEEN = "between"
    NOT_BETWEEN = "notBetween"

    # Geo
    GEO_INTERSECTS = "geoIntersects"
    GEO_WITHIN = "geoWithin"
    NEAR = "near"
    NEAR_SPHERE = "nearSphere"

    # Text
    REGEX = "regex"
    LIKE = "like"
    NOT_LIKE = "notLike"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    NOT_STARTS_WITH = "notStartsWith"
    NOT_ENDS_WITH = "notEndsWith"

    @classmethod
    def is_valid(cls, value: str) -> bool:
        """Check if a string is a valid operator."""
        return value in cls._value2member_map_

    @classmethod
    def from_string(cls, value: Union[str, 'WhereOperator']) -> 'WhereOperator':
        """
        Convert a token to an operator.

        Raises:
            UnknownOperatorError: If the token is not in the closed set
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise UnknownOperatorError(value) from None


OPERATORS: Dict[WhereOperator, str] = {
    WhereOperator.EQ: "$eq",
    WhereOperator.NE: "$ne",
    WhereOperator.NOT: "$not",
    WhereOperator.GT: "$gt",
    WhereOperator.GTE: "$gte",
    WhereOperator.LT: "$lt",
    WhereOperator.LTE: "$lte",
    WhereOperator.IN: "$in",
    WhereOperator.NIN: "$nin",
    WhereOperator.NOT_IN: "$nin",
    WhereOperator.ALL: "$all",
    WhereOperator.EXISTS: "$exists",
    WhereOperator.TYPE: "$type",
    WhereOperator.MOD: "$mod",
    WhereOperator.REGEX: "$regex",
    WhereOperator.BETWEEN: "$between",
    WhereOperator.NOT_BETWEEN: "$between",
    WhereOperator.GEO_INTERSECTS: "$geoIntersects",
    WhereOperator.GEO_WITHIN: "$geoWithin",
    WhereOperator.NEAR: "$near",
    WhereOperator.NEAR_SPHERE: "$nearSphere",
    WhereOperator.ELEM_MATCH: "$elemMatch",
    WhereOperator.SIZE: "$size",
    WhereOperator.LIKE: "$regex",
    WhereOperator.NOT_LIKE: "$regex",
    WhereOperator.STARTS_WITH: "$regex",
    WhereOperator.ENDS_WITH: "$regex",
    WhereOperator.NOT_STARTS_WITH: "$regex",
    WhereOperator.NOT_ENDS_WITH: "$regex",
}

_SPECIAL_CHARACTERS = re.compile(r"[-\[\]{}()*+?.,\\^$|#\s]")


def escape_string(value: Any) -> str:
    """Escape regex metacharacters so value matches literally."""
    return _SPECIAL_CHARACTERS.sub(lambda match: "\\" + match.group(0), str(value))


def to_operator(operator: Union[str, WhereOperator]) -> str:
    """Get the native MongoDB operator for a where operator token."""
    return OPERATORS[WhereOperator.from_string(operator)]


def _regex(value: Any, prefix: str = "", suffix: str = "", flags: int = 0):
    if isinstance(value, re.Pattern):
        return value
    return re.compile(f"{prefix}{escape_string(value)}{suffix}", flags)


def _range(value: Any, operator: WhereOperator):
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise InvalidQueryError(
            f"{operator.value} expects a [min, max] pair, got {value!r}"
        )
    return {"$gte": value[0], "$lte": value[1]}


def parse_where(*args: Any) -> Filter:
    """
    Compile a where clause into a MongoDB filter.

    Accepted forms:
        parse_where({"age": {"$gt": 18}})    raw filter, dates normalized only
        parse_where("age", 18)               equality
        parse_where("age", ">", 18)          operator form

    Returns:
        Single-key filter dict {column: expression} (or the raw filter)

    Raises:
        UnknownOperatorError: If the operator is not supported
        InvalidQueryError: If the arguments are malformed
    """
    if len(args) == 1:
        if not isinstance(args[0], dict):
            raise InvalidQueryError(
                f"Single argument where() expects a filter dict, got {type(args[0]).__name__}"
            )
        return normalize_dates(args[0])

    if len(args) == 2:
        column, value = args
        operator = WhereOperator.EQ
    elif len(args) == 3:
        column, operator, value = args
        operator = WhereOperator.from_string(operator)
    else:
        raise InvalidQueryError(f"where() takes 1 to 3 arguments, got {len(args)}")

    return {column: compile_expression(operator, value)}


def compile_expression(operator: WhereOperator, value: Any) -> Dict[str, Any]:
    """
    Build the expression part of a where clause for one operator.

    Args:
        operator: Where operator
        value: Raw caller value

    Returns:
        Operator-keyed expression dict
    """
    # Column references only apply when the caller passed a plain string
    if operator is WhereOperator.IN and isinstance(value, str):
        return {"$in": column_name(value)}
    if operator is WhereOperator.NOT_IN and isinstance(value, str):
        return {"$not": {"$in": column_name(value)}}

    if operator is WhereOperator.LIKE:
        return {"$regex": _regex(value, flags=re.IGNORECASE)}
    if operator is WhereOperator.NOT_LIKE:
        return {"$not": {"$regex": _regex(value, flags=re.IGNORECASE)}}
    if operator is WhereOperator.STARTS_WITH:
        return {"$regex": _regex(value, prefix="^")}
    if operator is WhereOperator.ENDS_WITH:
        return {"$regex": _regex(value, suffix="$")}
    if operator is WhereOperator.NOT_STARTS_WITH:
        return {"$not": {"$regex": _regex(value, prefix="^")}}
    if operator is WhereOperator.NOT_ENDS_WITH:
        return {"$not": {"$regex": _regex(value, suffix="$")}}

    value = normalize_dates(value)

    if operator is WhereOperator.BETWEEN:
        return _range(value, operator)
    if operator is WhereOperator.NOT_BETWEEN:
        return {"$not": _range(value, operator)}

    return {OPERATORS[operator]: value}
