#!/usr/bin/env python3
"""
Joinable lookup descriptors.

A Joinable describes how to $lookup another model's collection. Declare them
on a model's `joinings` and refine them with any builder method:

    class Customer(Model):
        collection = "customers"
        joinings = {
            "orders": Joinable(Order).local_field("id").foreign_field("customer.id"),
        }

    await Customer.aggregate().joining("orders", where={"status": "paid"}).get()
"""

import copy
from typing import Any, Callable, Dict, List, Optional, Union

import inflect

from ..aggregate.aggregate import Aggregate
from ..aggregate.stages import Stage

_inflector = inflect.engine()


def singularize(word: str) -> str:
    """Singular form of word ("orders" -> "order"); singular words are kept."""
    if not word:
        return word
    return _inflector.singular_noun(word) or word


class Joinable:
    """Lookup data plus a nested builder holding the lookup sub-pipeline."""

    def __init__(self, model):
        self.model = model
        self.lookup_data: Dict[str, Any] = {
            "from": model.collection,
            "localField": "",
            "foreignField": "id",
            "as": "",
            "single": False,
            "let": None,
        }
        self.query = Aggregate(model.collection)
        self.transform: Optional[Callable[[Any], Any]] = None

    def __getattr__(self, name: str):
        # Builder methods (where_in, sort, limit, ...) refine the sub-pipeline
        query = self.__dict__.get('query')
        if query is None:
            raise AttributeError(name)

        attribute = getattr(query, name)
        if not callable(attribute):
            return attribute

        def forward(*args, **kwargs):
            result = attribute(*args, **kwargs)
            return self if result is query else result

        return forward

    def local_field(self, local_field: str) -> 'Joinable':
        self.lookup_data["localField"] = local_field
        return self

    def foreign_field(self, foreign_field: str) -> 'Joinable':
        self.lookup_data["foreignField"] = foreign_field
        return self

    def as_(self, alias: str) -> 'Joinable':
        self.lookup_data["as"] = alias
        return self

    def single(self, single: bool = True) -> 'Joinable':
        self.lookup_data["single"] = single
        return self

    def let(self, let_data: Dict[str, Any]) -> 'Joinable':
        self.lookup_data["let"] = let_data
        return self

    def select(self, *columns: Any) -> 'Joinable':
        self.query.select(*columns)
        return self

    def where(self, *args: Any) -> 'Joinable':
        self.query.where(*args)
        return self

    def add_pipeline(self, stage: Union[Stage, Dict[str, Any]]) -> 'Joinable':
        self.query.add_pipeline(stage)
        return self

    def add_pipelines(self, stages: List[Union[Stage, Dict[str, Any]]]) -> 'Joinable':
        self.query.add_pipelines(stages)
        return self

    def return_as(self, transform: Callable[[Any], Any]) -> 'Joinable':
        """
        Transform joined documents after fetching.

        transform is applied to each joined document, e.g. return_as(Order)
        turns them into Order models.
        """
        self.transform = transform
        return self

    def set(self, data: Dict[str, Any]) -> 'Joinable':
        """Replace the lookup data; "from" defaults to the model's collection."""
        data = dict(data)
        if not data.get("from"):
            data["from"] = self.model.collection
        self.lookup_data = data
        return self

    def get(self, key: str, default: Any = None) -> Any:
        return self.lookup_data.get(key) or default

    def default_name(self) -> str:
        if self.lookup_data.get("single"):
            return getattr(self.model, 'singular_name', None) or singularize(self.model.collection)
        return self.model.collection

    def alias(self) -> str:
        """The field the joined documents land in."""
        return self.lookup_data.get("as") or self.default_name()

    def parse(self) -> Dict[str, Any]:
        """
        Get the lookup options and clear the sub-pipeline.

        "as" defaults to the model's collection (or singular name when single)
        and "localField" to "<as>.id".
        """
        name = self.default_name()
        lookup_data = dict(self.lookup_data)

        if not lookup_data.get("as"):
            lookup_data["as"] = name
        if not lookup_data.get("localField"):
            lookup_data["localField"] = f"{name}.id"
        if self.query.stages:
            lookup_data["pipeline"] = self.query.parse()

        self.reset()
        return lookup_data

    def reset(self) -> 'Joinable':
        self.query.reset()
        return self

    def clone(self) -> 'Joinable':
        cloned = Joinable(self.model)
        cloned.set(copy.deepcopy(self.lookup_data))
        cloned.query = self.query.clone()
        cloned.transform = self.transform
        return cloned

    def __repr__(self):
        return f"<Joinable {self.model.__name__} as={self.alias()}>"
