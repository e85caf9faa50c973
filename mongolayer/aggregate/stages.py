#!/usr/bin/env python3
"""
Pipeline stages.

Every stage is a `Stage(name, payload)` value; the factories below build the
payload for each built-in kind. `Stage.parse()` produces the wire form
`{"$<name>": payload}` expected by the aggregation framework.
"""

import copy
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from ..exceptions import InvalidQueryError
from .expressions import column_name

SORT_DIRECTIONS = {"asc": 1, "desc": -1}


@dataclass(frozen=True)
class Stage:
    """One named pipeline operation."""
    name: str
    payload: Any

    def parse(self) -> Dict[str, Any]:
        """Get the wire form of the stage."""
        return {f"${self.name}": copy.deepcopy(self.payload)}

    def __repr__(self):
        return f"Stage(${self.name}: {self.payload!r})"


def where_stage(expression: Dict[str, Any]) -> Stage:
    return Stage("match", expression)


def or_where_stage(operations: Union[Dict[str, Any], Sequence[Any]]) -> Stage:
    """
    Build a $match holding a single $or.

    Accepts a list of (column, value) pairs, a list of filter dicts or one
    dict whose keys become separate alternatives.
    """
    alternatives: List[Dict[str, Any]] = []
    if isinstance(operations, dict):
        for column, value in operations.items():
            alternatives.append({column: value})
    else:
        for operation in operations:
            if isinstance(operation, (list, tuple)):
                if len(operation) != 2:
                    raise InvalidQueryError(
                        f"or_where() pairs must be (column, value), got {operation!r}"
                    )
                alternatives.append({operation[0]: operation[1]})
            elif isinstance(operation, dict):
                alternatives.append(operation)
            else:
                raise InvalidQueryError(
                    f"or_where() expects pairs or dicts, got {type(operation).__name__}"
                )

    return Stage("match", {"$or": alternatives})


def select_stage(columns: Union[Iterable[str], Dict[str, Any]]) -> Stage:
    if isinstance(columns, dict):
        data = {}
        for column, value in columns.items():
            data[column] = column_name(value) if isinstance(value, str) else value
        return Stage("project", data)

    return Stage("project", {column: 1 for column in columns})


def deselect_stage(columns: Iterable[str]) -> Stage:
    return Stage("project", {column: 0 for column in columns})


def project_stage(data: Dict[str, Any]) -> Stage:
    return Stage("project", data)


def _direction(direction: str) -> int:
    try:
        return SORT_DIRECTIONS[direction]
    except KeyError:
        raise InvalidQueryError(
            f"Sort direction must be 'asc' or 'desc', got {direction!r}"
        ) from None


def sort_stage(column: str, direction: str = "asc") -> Stage:
    return Stage("sort", {column: _direction(direction)})


def sort_by_stage(columns: Dict[str, str]) -> Stage:
    return Stage("sort", {column: _direction(direction) for column, direction in columns.items()})


def group_by_stage(group_id: Union[str, List[str], Dict[str, Any], None],
                   data: Optional[Dict[str, Any]] = None) -> Stage:
    """
    Build a $group stage.

    group_id may be a column ("status" -> "$status"), None (single group),
    a list of columns (composite key) or a raw expression dict.
    """
    if isinstance(group_id, str):
        group_id = column_name(group_id)
    elif isinstance(group_id, (list, tuple)):
        group_id = {column: column_name(column) for column in group_id}

    return Stage("group", {"_id": group_id, **(data or {})})


def skip_stage(skip: int) -> Stage:
    return Stage("skip", skip)


def limit_stage(limit: int) -> Stage:
    return Stage("limit", limit)


def sample_stage(size: int) -> Stage:
    return Stage("sample", {"size": size})


def unwind_stage(column: str, preserve_null_and_empty_arrays: bool = False,
                 include_array_index: Optional[str] = None) -> Stage:
    payload = {
        "path": column_name(column),
        "preserveNullAndEmptyArrays": preserve_null_and_empty_arrays,
    }
    if include_array_index:
        payload["includeArrayIndex"] = include_array_index
    return Stage("unwind", payload)


def lookup_stage(options: Dict[str, Any]) -> Stage:
    """
    Build a $lookup stage.

    Keys: from, localField, foreignField, as, optional let and pipeline.
    The non-wire key "single" is ignored here.
    """
    payload = {
        "from": options["from"],
        "localField": options.get("localField"),
        "foreignField": options.get("foreignField"),
        "as": options["as"],
    }
    if options.get("let"):
        payload["let"] = options["let"]
    if options.get("pipeline"):
        payload["pipeline"] = options["pipeline"]
    if payload["localField"] is None:
        del payload["localField"]
    if payload["foreignField"] is None:
        del payload["foreignField"]
    return Stage("lookup", payload)


def add_fields_stage(fields: Dict[str, Any]) -> Stage:
    return Stage("addFields", fields)


def raw_stage(stage: Union[Stage, Dict[str, Any]]) -> Stage:
    """Wrap a wire-form stage dict ({"$op": payload})."""
    if isinstance(stage, Stage):
        return stage
    if not isinstance(stage, dict) or len(stage) != 1:
        raise InvalidQueryError(f"Raw stage must be a single-key dict, got {stage!r}")

    (operator, payload), = stage.items()
    if not operator.startswith("$"):
        raise InvalidQueryError(f"Raw stage operator must start with '$', got {operator!r}")
    return Stage(operator[1:], payload)


def parse_stages(stages: Iterable[Stage]) -> List[Dict[str, Any]]:
    """Get the wire form of a whole pipeline."""
    return [stage.parse() for stage in stages]
