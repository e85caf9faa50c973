#!/usr/bin/env python3
"""
Aggregation expression helpers.

Small builders for the operator dicts used inside $group, $project,
$addFields and $match payloads, e.g.

    group_by("status", {"total": sum_("amount"), "orders": count()})
"""

import re
from typing import Any, Dict, Optional

Expression = Dict[str, Any]


def column_name(column: str) -> str:
    """Turn a column into a field reference ("total" -> "$total")."""
    return "$" + column.lstrip("$")


def _wrap(expression: Any, column: Optional[str] = None) -> Any:
    if column:
        return {column_name(column): expression}
    return expression


# Accumulators

def count(column: Optional[str] = None) -> Expression:
    return _wrap({"$sum": 1}, column)


def sum_(column: str, base_column: Optional[str] = None) -> Expression:
    return _wrap({"$sum": column_name(column)}, base_column)


def avg(column: str) -> Expression:
    return {"$avg": column_name(column)}


average = avg


def min_(column: str) -> Expression:
    return {"$min": column_name(column)}


def max_(column: str) -> Expression:
    return {"$max": column_name(column)}


def first(column: str) -> Expression:
    return {"$first": column_name(column)}


def last(column: str) -> Expression:
    return {"$last": column_name(column)}


def push(data: Any) -> Expression:
    """Push a column (str) or a computed document into the group array."""
    if isinstance(data, str):
        data = column_name(data)
    return {"$push": data}


def add_to_set(column: str) -> Expression:
    return {"$addToSet": column_name(column)}


# Date parts

def year(column: str) -> Expression:
    return {"$year": column_name(column)}


def first_year(column: str) -> Expression:
    return {"$first": year(column)}


def last_year(column: str) -> Expression:
    return {"$last": year(column)}


def month(column: str) -> Expression:
    return {"$month": column_name(column)}


def first_month(column: str) -> Expression:
    return {"$first": month(column)}


def last_month(column: str) -> Expression:
    return {"$last": month(column)}


def day_of_month(column: str) -> Expression:
    return {"$dayOfMonth": column_name(column)}


def first_day_of_month(column: str) -> Expression:
    return {"$first": day_of_month(column)}


def last_day_of_month(column: str) -> Expression:
    return {"$last": day_of_month(column)}


def day_of_week(column: str) -> Expression:
    return {"$dayOfWeek": column_name(column)}


def week(column: str) -> Expression:
    return {"$week": column_name(column)}


def columns(*names: str) -> Expression:
    """Map each column to its own reference, for composite group keys."""
    return {name: column_name(name) for name in names}


# Match helpers

def gt(value: Any, column: Optional[str] = None) -> Expression:
    return _wrap({"$gt": value}, column)


def gte(value: Any, column: Optional[str] = None) -> Expression:
    return _wrap({"$gte": value}, column)


def lt(value: Any, column: Optional[str] = None) -> Expression:
    return _wrap({"$lt": value}, column)


def lte(value: Any, column: Optional[str] = None) -> Expression:
    return _wrap({"$lte": value}, column)


greater_than = gt
greater_than_or_equal = gte
less_than = lt
less_than_or_equal = lte


def eq(*values: Any) -> Expression:
    return {"$eq": list(values)}


def ne(value: Any) -> Expression:
    return {"$ne": value}


def in_array(value: Any) -> Expression:
    return {"$in": value}


def nin(value: Any) -> Expression:
    return {"$nin": value}


not_in = nin


def exists(value: bool = True, column: Optional[str] = None) -> Expression:
    return _wrap({"$exists": value}, column)


def not_exists(column: Optional[str] = None) -> Expression:
    return _wrap({"$exists": False}, column)


def like(value: Any, column: Optional[str] = None) -> Expression:
    """Case-insensitive regex; plain values are used as the raw pattern."""
    if not isinstance(value, re.Pattern):
        value = re.compile(str(value), re.IGNORECASE)
    return _wrap({"$regex": value}, column)


def not_like(value: Any, column: Optional[str] = None) -> Expression:
    if not isinstance(value, re.Pattern):
        value = re.compile(str(value), re.IGNORECASE)
    return _wrap({"$not": {"$regex": value}}, column)


def not_null(column: Optional[str] = None) -> Expression:
    return _wrap({"$ne": None}, column)


def is_null(column: Optional[str] = None) -> Expression:
    return _wrap({"$eq": None}, column)


def between(min_value: Any, max_value: Any, column: Optional[str] = None) -> Expression:
    return _wrap({"$gte": min_value, "$lte": max_value}, column)


def not_between(min_value: Any, max_value: Any, column: Optional[str] = None) -> Expression:
    return _wrap({"$not": {"$gte": min_value, "$lte": max_value}}, column)


def regex(value: Any, column: Optional[str] = None) -> Expression:
    return _wrap({"$regex": value}, column)


def all_(values: Any, column: Optional[str] = None) -> Expression:
    """Match arrays holding every one of values."""
    return _wrap({"$all": values}, column)


# Computed values

def concat(*parts: Any) -> Expression:
    return {"$concat": list(parts)}


merge = concat


def concat_with(separator: str, *names: str) -> Expression:
    """
    Concatenate columns with separator after each of them.

    concat_with(" ", "first", "last") -> {"$concat": ["$first", " ", "$last", " "]}
    """
    parts = []
    for name in names:
        parts.extend([column_name(name), separator])
    return {"$concat": parts}


merge_with = concat_with


def cond(condition: Any, if_true: Any, if_false: Any,
         column: Optional[str] = None) -> Expression:
    return _wrap({"$cond": {"if": condition, "then": if_true, "else": if_false}}, column)


condition = cond


def boolean_cond(condition: Any, column: Optional[str] = None) -> Expression:
    return cond(condition, True, False, column)


def _multiply(*expressions: Any) -> Expression:
    return {"$multiply": list(expressions)}


def multiply(*names: str) -> Expression:
    return {"$multiply": [column_name(name) for name in names]}


def _divide(*expressions: Any) -> Expression:
    return {"$divide": list(expressions)}


def divide(*names: str) -> Expression:
    return {"$divide": [column_name(name) for name in names]}


def expr(expression: Any) -> Expression:
    return {"$expr": expression}
