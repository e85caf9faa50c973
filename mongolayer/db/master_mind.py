#!/usr/bin/env python3
"""
Auto-increment ids.

One counter document per collection is kept in the "MasterMind" collection:
{"collection": "orders", "id": 42}.
"""

from .executor import QueryExecutor


class MasterMind:
    """Generates sequential integer ids per collection."""

    collection = "MasterMind"

    def __init__(self, executor: QueryExecutor):
        self.executor = executor

    async def get_last_id(self, collection: str) -> int:
        document = await self.executor.find_one(self.collection, {"collection": collection})
        return document["id"] if document else 0

    async def generate_next_id(self, collection: str, increment_by: int = 1,
                               initial_id: int = 1) -> int:
        """
        Get the next id for collection and store it as the last one.

        The counter is bumped with a single $inc, so concurrent callers never
        receive the same id.

        Args:
            collection: Target collection name
            increment_by: Step between consecutive ids
            initial_id: First id handed out for a new collection
        """
        selector = {"collection": collection}
        bump = {"$inc": {"id": increment_by}}

        document = await self.executor.find_one_and_update(self.collection, selector, bump)
        if document is None:
            # seed so that the first $inc lands on initial_id
            await self.executor.update_one(
                self.collection, selector,
                {"$setOnInsert": {"id": initial_id - increment_by}},
                upsert=True,
            )
            document = await self.executor.find_one_and_update(self.collection, selector, bump)

        return document["id"]
