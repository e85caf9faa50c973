#!/usr/bin/env python3
"""
Model-aware aggregation builder.

Returned by Model.aggregate(); results come back as model instances and
declared joinings/relations can be attached by name.
"""

from typing import Any, Callable, Dict, List, Optional, Union

from ..aggregate.aggregate import Aggregate, MapData
from ..aggregate.expressions import column_name
from ..aggregate.stages import raw_stage, select_stage
from ..exceptions import RelationNotFoundError
from .joinable import Joinable


class ModelAggregate(Aggregate):
    """Aggregate bound to a Model class."""

    def __init__(self, model):
        super().__init__(model.collection, model.get_executor())
        self.model = model
        self.transforms: Dict[str, Callable[[Any], Any]] = {}

    async def _trigger(self, event: str, *args: Any):
        await self.model.trigger_event(event, *args)

    def clone(self) -> 'ModelAggregate':
        cloned = super().clone()
        cloned.transforms = dict(self.transforms)
        return cloned

    def _apply_transforms(self, document: Dict[str, Any]) -> Dict[str, Any]:
        for alias, transform in self.transforms.items():
            value = document.get(alias)
            if isinstance(value, list):
                document[alias] = [transform(item) for item in value]
            elif value is not None:
                document[alias] = transform(value)
        return document

    async def get(self, map_data: MapData = None) -> List[Any]:
        """Fetch documents as model instances (or through map_data)."""
        documents = await self.execute()
        if self.transforms:
            documents = [self._apply_transforms(document) for document in documents]
        if map_data is None:
            map_data = self.model
        return [map_data(document) for document in documents]

    async def paginate(self, page: int = 1, limit: Optional[int] = None,
                       map_data: MapData = None) -> Dict[str, Any]:
        return await super().paginate(page, limit if limit is not None else self.model.per_page, map_data)

    async def delete(self) -> int:
        """Destroy every matching record so delete strategies and sync rules apply."""
        records = await self.get()
        for record in records:
            await record.destroy()
        return len(records)

    def _joinable(self, joinable: Union[str, Joinable]) -> Joinable:
        if isinstance(joinable, str):
            joinings = getattr(self.model, 'joinings', None) or {}
            if joinable not in joinings:
                raise RelationNotFoundError(joinable, self.model.__name__)
            joinable = joinings[joinable]
            if not isinstance(joinable, Joinable) and callable(joinable):
                joinable = joinable()
        return joinable.clone()

    def joining(self, joinable: Union[str, Joinable], where: Optional[Dict[str, Any]] = None,
                select: Optional[List[str]] = None, pipeline: Optional[List[Any]] = None,
                as_: Optional[str] = None) -> 'ModelAggregate':
        """
        Attach a declared joining (by name) or a Joinable.

        Raises:
            RelationNotFoundError: If the name is not declared in model.joinings
        """
        joinable = self._joinable(joinable)

        if where:
            joinable.where(where)
        if select:
            joinable.select(select)
        if as_:
            joinable.as_(as_)
        if pipeline:
            joinable.add_pipelines(pipeline)

        options = joinable.parse()
        if joinable.transform is not None:
            self.transforms[options["as"]] = joinable.transform

        return self.lookup(options)

    def count_joining(self, joinable: Union[str, Joinable], where: Optional[Dict[str, Any]] = None,
                      select: Optional[List[str]] = None, pipeline: Optional[List[Any]] = None,
                      as_: Optional[str] = None) -> 'ModelAggregate':
        """Attach a joining plus "<alias>Count" (or as_) holding its size."""
        joinable = self._joinable(joinable)
        alias = joinable.alias()

        self.joining(joinable, where=where, select=select, pipeline=pipeline)
        return self.add_field(as_ or f"{alias}Count", {"$size": column_name(alias)})

    def with_(self, alias: str, *params: Any) -> 'ModelAggregate':
        """
        Attach the relation returned by the model's `with_<alias>` classmethod.

        The classmethod returns {"model", "as", "local_field"?, "foreign_field"?,
        "single"?, "select"?, "pipeline"?}.
        """
        relation = getattr(self.model, f"with_{alias}", None)
        if relation is None:
            raise RelationNotFoundError(alias, self.model.__name__)

        options = relation(*params)
        related = options["model"]
        name = options.get("as", alias)

        pipeline = [raw_stage(stage).parse() for stage in options.get("pipeline", [])]
        if options.get("select"):
            pipeline.append(select_stage(options["select"]).parse())

        return self.lookup({
            "from": related.collection,
            "as": name,
            "single": options.get("single", False),
            "localField": options.get("local_field") or "id",
            "foreignField": options.get("foreign_field") or f"{name}.id",
            "pipeline": pipeline,
        })
