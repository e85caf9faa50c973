#!/usr/bin/env python3
"""
Fluent aggregation builder.

Every chainable method appends exactly one stage (where_size appends two) and
returns the builder, so stage order is call order:

    orders = await (
        Aggregate("orders", executor)
        .where("total", ">=", 100)
        .where_like("customer.name", "ali")
        .sort_by_desc("createdAt")
        .limit(10)
        .get()
    )
"""

import copy
import inspect
import logging
import math
from typing import Any, Callable, Dict, List, Optional, Union

from ..exceptions import InvalidQueryError, MissingLimitError, QueryError
from ..log_manager import get_logger, log_with_context
from ..utils.paths import get_path
from ..utils.time_utils import normalize_dates
from . import expressions as agg
from .stages import (
    Stage,
    add_fields_stage,
    deselect_stage,
    group_by_stage,
    limit_stage,
    lookup_stage,
    or_where_stage,
    parse_stages,
    project_stage,
    raw_stage,
    sample_stage,
    select_stage,
    skip_stage,
    sort_by_stage,
    sort_stage,
    unwind_stage,
    where_stage,
)
from .where_expression import WhereOperator, parse_where, to_operator

MapData = Optional[Callable[[Dict[str, Any]], Any]]


class Aggregate:
    """
    Pipeline builder bound to one collection.

    Args:
        collection: Collection name
        executor: QueryExecutor that runs the compiled pipeline
        events: Optional listener registry receiving fetching/updating/deleting
    """

    def __init__(self, collection: str, executor=None, events=None):
        self.collection = collection
        self.executor = executor
        self.events = events
        self.stages: List[Stage] = []
        self.logger = get_logger('Aggregate', component='query')

    # ------------------------------------------------------------------
    # Stage plumbing
    # ------------------------------------------------------------------

    def pipeline(self, stage: Stage) -> 'Aggregate':
        """Append a stage."""
        self.stages.append(stage)
        return self

    def add_pipeline(self, stage: Union[Stage, Dict[str, Any]]) -> 'Aggregate':
        """Append a raw stage such as {"$replaceRoot": {...}}."""
        return self.pipeline(raw_stage(stage))

    def add_pipelines(self, stages: List[Union[Stage, Dict[str, Any]]]) -> 'Aggregate':
        for stage in stages:
            self.add_pipeline(stage)
        return self

    def get_pipelines(self) -> List[Stage]:
        return list(self.stages)

    def parse(self) -> List[Dict[str, Any]]:
        """Compile the pipeline to its wire form."""
        return parse_stages(self.stages)

    def reset(self) -> 'Aggregate':
        self.stages = []
        return self

    def clone(self) -> 'Aggregate':
        """Get an independent builder holding a copy of the stage list."""
        cloned = copy.copy(self)
        cloned.stages = list(self.stages)
        return cloned

    async def _trigger(self, event: str, *args: Any):
        if self.events is not None:
            await self.events.trigger(event, *args)

    # ------------------------------------------------------------------
    # Filtering
    # ------------------------------------------------------------------

    def where(self, *args: Any) -> 'Aggregate':
        """
        Add a match stage.

            where("status", "active")
            where("total", ">", 100)
            where({"status": {"$in": ["active", "pending"]}})
        """
        return self.pipeline(where_stage(parse_where(*args)))

    def or_where(self, *operations: Any) -> 'Aggregate':
        """
        Add a match stage holding one $or.

            or_where({"status": "active", "vip": True})
            or_where([("status", "active"), ("vip", True)])
            or_where({"status": "active"}, {"vip": True})
        """
        if len(operations) == 1 and isinstance(operations[0], (dict, list)):
            return self.pipeline(or_where_stage(operations[0]))
        return self.pipeline(or_where_stage(list(operations)))

    def where_columns(self, column: str, operator: str, *other_columns: str) -> 'Aggregate':
        """Compare columns with each other through $expr."""
        native = to_operator(operator) if WhereOperator.is_valid(operator) else operator
        return self.where(agg.expr({
            native: [agg.column_name(column)] + [agg.column_name(other) for other in other_columns]
        }))

    def where_null(self, column: str) -> 'Aggregate':
        return self.where(column, None)

    def where_not_null(self, column: str) -> 'Aggregate':
        return self.where(column, "!=", None)

    def where_like(self, column: str, value: Any) -> 'Aggregate':
        return self.where(column, "like", value)

    def where_not_like(self, column: str, value: Any) -> 'Aggregate':
        return self.where(column, "notLike", value)

    def where_starts_with(self, column: str, value: Any) -> 'Aggregate':
        return self.where(column, "startsWith", value)

    def where_not_starts_with(self, column: str, value: Any) -> 'Aggregate':
        return self.where(column, "notStartsWith", value)

    def where_ends_with(self, column: str, value: Any) -> 'Aggregate':
        return self.where(column, "endsWith", value)

    def where_not_ends_with(self, column: str, value: Any) -> 'Aggregate':
        return self.where(column, "notEndsWith", value)

    def where_between(self, column: str, value: Any) -> 'Aggregate':
        return self.where(column, "between", value)

    def where_not_between(self, column: str, value: Any) -> 'Aggregate':
        return self.where(column, "notBetween", value)

    def where_date_between(self, column: str, value: Any) -> 'Aggregate':
        return self.where(column, "between", value)

    def where_date_not_between(self, column: str, value: Any) -> 'Aggregate':
        return self.where(column, "notBetween", value)

    def where_exists(self, column: str) -> 'Aggregate':
        return self.where(column, "exists", True)

    def where_not_exists(self, column: str) -> 'Aggregate':
        return self.where(column, "exists", False)

    def where_in(self, column: str, values: Any) -> 'Aggregate':
        """values is a list of literals or the name of an array column."""
        return self.where(column, "in", values)

    def where_not_in(self, column: str, values: Any) -> 'Aggregate':
        return self.where(column, "notIn", values)

    def where_near(self, column: str, value: Any, max_distance: Optional[float] = None) -> 'Aggregate':
        expression = parse_where(column, "near", value)
        if max_distance is not None:
            expression[column]["$maxDistance"] = max_distance
        return self.pipeline(where_stage(expression))

    def where_size(self, column: str, *args: Any) -> 'Aggregate':
        """
        Filter on an array's length.

            where_size("tags", 3)
            where_size("tags", ">", 3)

        Adds a computed "<column>_size" field, which stays in the results.
        """
        size_column = f"{column}_size"
        self.add_fields({size_column: {"$size": agg.column_name(column)}})
        return self.where(size_column, *args)

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def select(self, *columns: Any) -> 'Aggregate':
        """select("id", "name"), select(["id", "name"]) or select({"total": 1, "ref": "id"})."""
        if len(columns) == 1 and isinstance(columns[0], (list, tuple, dict)):
            columns = columns[0]
        return self.pipeline(select_stage(columns))

    def deselect(self, *columns: Any) -> 'Aggregate':
        if len(columns) == 1 and isinstance(columns[0], (list, tuple)):
            columns = columns[0]
        return self.pipeline(deselect_stage(columns))

    def project(self, data: Dict[str, Any]) -> 'Aggregate':
        return self.pipeline(project_stage(data))

    def add_field(self, field: str, value: Any) -> 'Aggregate':
        return self.add_fields({field: value})

    def add_fields(self, fields: Dict[str, Any]) -> 'Aggregate':
        return self.pipeline(add_fields_stage(fields))

    def unwind(self, column: str, preserve_null_and_empty_arrays: bool = False,
               include_array_index: Optional[str] = None) -> 'Aggregate':
        return self.pipeline(unwind_stage(column, preserve_null_and_empty_arrays, include_array_index))

    def lookup(self, options: Dict[str, Any]) -> 'Aggregate':
        """
        Add a $lookup stage.

        With options["single"] the joined array is replaced by its first
        element through an extra $addFields stage.
        """
        self.pipeline(lookup_stage(options))
        if options.get("single") and options.get("as"):
            alias = options["as"]
            self.add_field(alias, agg.first(alias))
        return self

    # ------------------------------------------------------------------
    # Sorting and paging
    # ------------------------------------------------------------------

    def sort(self, column: str, direction: str = "asc") -> 'Aggregate':
        return self.pipeline(sort_stage(column, direction))

    def order_by(self, column: str, direction: str = "asc") -> 'Aggregate':
        return self.sort(column, direction)

    def sort_by_desc(self, column: str) -> 'Aggregate':
        return self.sort(column, "desc")

    def order_by_desc(self, column: str) -> 'Aggregate':
        return self.sort(column, "desc")

    def sort_by(self, columns: Dict[str, str]) -> 'Aggregate':
        """sort_by({"createdAt": "desc", "name": "asc"})"""
        return self.pipeline(sort_by_stage(columns))

    def latest(self, column: str = "createdAt") -> 'Aggregate':
        return self.sort(column, "desc")

    def oldest(self, column: str = "createdAt") -> 'Aggregate':
        return self.sort(column, "asc")

    def random(self, limit: Optional[int] = None) -> 'Aggregate':
        """
        Sample documents at random.

        Without limit, the size of an earlier limit() stage is used.

        Raises:
            MissingLimitError: If no size is available
        """
        if not limit:
            for stage in self.stages:
                if stage.name == "limit":
                    limit = stage.payload
                    break

        if not limit:
            raise MissingLimitError(
                "You must provide a limit when using random() or use limit() pipeline"
            )

        return self.pipeline(sample_stage(limit))

    def skip(self, skip: int) -> 'Aggregate':
        return self.pipeline(skip_stage(skip))

    def limit(self, limit: int) -> 'Aggregate':
        return self.pipeline(limit_stage(limit))

    # ------------------------------------------------------------------
    # Grouping
    # ------------------------------------------------------------------

    def group_by(self, group_id: Any, data: Optional[Dict[str, Any]] = None) -> 'Aggregate':
        """
        Add a $group stage.

            group_by("status", {"total": agg.count()})
            group_by(["status", "type"])
            group_by(None, {"revenue": agg.sum_("total")})
        """
        if isinstance(group_id, Stage):
            return self.pipeline(group_id)
        return self.pipeline(group_by_stage(group_id, data))

    def group_by_year(self, column: str, data: Optional[Dict[str, Any]] = None) -> 'Aggregate':
        return self.group_by({"year": agg.year(column)}, data)

    def group_by_month(self, column: str, data: Optional[Dict[str, Any]] = None) -> 'Aggregate':
        return self.group_by({"month": agg.month(column)}, data)

    def group_by_month_and_year(self, column: str, data: Optional[Dict[str, Any]] = None) -> 'Aggregate':
        return self.group_by({"year": agg.year(column), "month": agg.month(column)}, data)

    def group_by_date(self, column: str, data: Optional[Dict[str, Any]] = None) -> 'Aggregate':
        return self.group_by({
            "year": agg.year(column),
            "month": agg.month(column),
            "day": agg.day_of_month(column),
        }, data)

    def group_by_week(self, column: str, data: Optional[Dict[str, Any]] = None) -> 'Aggregate':
        return self.group_by({"year": agg.year(column), "week": agg.week(column)}, data)

    def group_by_day_of_month(self, column: str, data: Optional[Dict[str, Any]] = None) -> 'Aggregate':
        return self.group_by({"day": agg.day_of_month(column)}, data)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _require_executor(self):
        if self.executor is None:
            raise QueryError(f"No query executor configured for collection {self.collection}")
        return self.executor

    async def execute(self) -> List[Dict[str, Any]]:
        """Run the pipeline and return raw documents."""
        executor = self._require_executor()
        await self._trigger('fetching', self)
        return await executor.aggregate(self.collection, self.parse())

    async def get(self, map_data: MapData = None) -> List[Any]:
        documents = await self.execute()
        if map_data:
            return [map_data(document) for document in documents]
        return documents

    async def first(self, map_data: MapData = None) -> Optional[Any]:
        results = await self.limit(1).get(map_data)
        return results[0] if results else None

    async def last(self, filters: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        """Get the record with the highest id, optionally matching filters first."""
        if filters:
            self.where(filters)
        results = await self.order_by_desc("id").limit(1).get()
        return results[0] if results else None

    async def count(self) -> int:
        """
        Count matching documents.

        Appends a null-key $group stage to this builder; clone() first to keep
        the builder reusable.
        """
        self.group_by(None, {"total": agg.count()})
        results = await self.execute()
        return get_path(results, "0.total", 0)

    async def paginate(self, page: int = 1, limit: Optional[int] = None,
                       map_data: MapData = None) -> Dict[str, Any]:
        """
        Get one page of documents plus pagination info.

        Returns:
            {"documents": [...], "paginationInfo": {"limit", "page", "result",
            "total", "pages"}}

        Raises:
            InvalidQueryError: If page or limit is below 1
        """
        if limit is None:
            limit = getattr(self.executor, 'per_page', None) or 15
        if page < 1 or limit < 1:
            raise InvalidQueryError(f"paginate() needs page >= 1 and limit >= 1, got page={page} limit={limit}")

        snapshot = list(self.stages)
        self.skip((page - 1) * limit).limit(limit)
        documents = await self.get(map_data)

        self.stages = snapshot
        total = await self.count()

        return {
            "documents": documents,
            "paginationInfo": {
                "limit": limit,
                "page": page,
                "result": len(documents),
                "total": total,
                "pages": math.ceil(total / limit) if limit else 0,
            },
        }

    async def chunk(self, limit: int, callback: Callable, map_data: MapData = None):
        """
        Walk every page of limit documents.

        callback(documents, pagination_info) may be sync or async; returning
        False stops the walk.
        """
        if limit < 1:
            raise InvalidQueryError(f"chunk() needs limit >= 1, got {limit}")

        total = await self.clone().count()
        pages = math.ceil(total / limit)

        for page in range(1, pages + 1):
            results = await self.clone().paginate(page, limit, map_data)
            output = callback(results["documents"], results["paginationInfo"])
            if inspect.isawaitable(output):
                output = await output
            if output is False:
                break

    def _split_for_update(self):
        filters: Dict[str, Any] = {}
        pipeline: List[Dict[str, Any]] = []
        for stage in self.parse():
            if "$match" in stage:
                filters.update(stage["$match"])
            else:
                pipeline.append(stage)
        return filters, pipeline

    async def update(self, data: Dict[str, Any]) -> int:
        """
        Update every matching document through an update pipeline.

        Match stages become the filter, every other stage is kept in front of
        the final {"$set": data}.

        Returns:
            Number of modified documents
        """
        executor = self._require_executor()
        filters, pipeline = self._split_for_update()
        pipeline.append({"$set": normalize_dates(data)})

        try:
            await self._trigger('updating', self)
            return await executor.update_many(self.collection, filters, pipeline)
        except Exception as e:
            log_with_context(self.logger, logging.ERROR, f"Failed to update {self.collection}: {e}", {
                "filter": filters,
                "pipeline": pipeline,
            })
            raise

    async def unset(self, *columns: str) -> int:
        """Remove columns from every matching document; returns the modified count."""
        executor = self._require_executor()
        filters, pipeline = self._split_for_update()
        pipeline.append({"$unset": list(columns)})

        try:
            await self._trigger('updating', self)
            return await executor.update_many(self.collection, filters, pipeline)
        except Exception as e:
            log_with_context(self.logger, logging.ERROR, f"Failed to unset {list(columns)} on {self.collection}: {e}", {
                "filter": filters,
                "pipeline": pipeline,
            })
            raise

    async def delete(self) -> int:
        """Delete every matching document; returns the deleted count."""
        executor = self._require_executor()
        ids = await self.select(["_id"]).pluck("_id")
        await self._trigger('deleting', self)
        return await executor.delete_many(self.collection, {"_id": {"$in": ids}})

    async def explain(self) -> Dict[str, Any]:
        return await self._require_executor().explain(self.collection, self.parse())

    # ------------------------------------------------------------------
    # Column helpers
    # ------------------------------------------------------------------

    async def _first_document(self) -> Optional[Dict[str, Any]]:
        results = await self.limit(1).execute()
        return results[0] if results else None

    async def pluck(self, column: str) -> List[Any]:
        """Get the value of column from every matching document."""
        return await self.select([column]).get(lambda document: get_path(document, column))

    async def distinct(self, column: str) -> List[Any]:
        """Get the unique values of column."""
        document = await self.group_by(None, {"values": agg.add_to_set(column)}).select(["values"])._first_document()
        return document["values"] if document else []

    async def unique(self, column: str) -> List[Any]:
        return await self.distinct(column)

    async def distinct_heavy(self, column: str) -> List[Any]:
        """Like distinct() but drops null values before grouping."""
        return await self.where_not_null(column).distinct(column)

    async def values(self, column: str) -> List[Any]:
        """Get every value of column, duplicates included."""
        document = await self.group_by(None, {"values": agg.push(column)}).select(["values"])._first_document()
        return document["values"] if document else []

    async def _accumulate(self, name: str, expression: Dict[str, Any]) -> Any:
        document = await self.group_by(None, {name: expression})._first_document()
        if not document or document.get(name) is None:
            return 0
        return document[name]

    async def avg(self, column: str) -> Any:
        return await self._accumulate("avg", agg.avg(column))

    async def average(self, column: str) -> Any:
        return await self.avg(column)

    async def sum(self, column: str) -> Any:
        return await self._accumulate("sum", agg.sum_(column))

    async def min(self, column: str) -> Any:
        return await self._accumulate("min", agg.min_(column))

    async def max(self, column: str) -> Any:
        return await self._accumulate("max", agg.max_(column))

    def __repr__(self):
        return f"<{type(self).__name__} {self.collection} stages={len(self.stages)}>"
