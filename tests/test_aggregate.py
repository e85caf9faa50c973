"""
Tests for the fluent aggregation builder.

Wire-shape tests compile pipelines without a database; execution tests run
against an in-memory Motor client.
"""

import logging
import re
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from mongolayer.aggregate import Aggregate, Stage, agg
from mongolayer.exceptions import InvalidQueryError, MissingLimitError, QueryError
from mongolayer.model.events import ModelEvents


@pytest_asyncio.fixture
async def orders(database, executor):
    """25 orders with ids 1..25, alternating status, total = id * 10."""
    await database["orders"].insert_many([
        {
            "id": i,
            "status": "paid" if i % 2 else "open",
            "total": i * 10,
            "customer": {"id": i % 3, "name": f"Customer {i % 3}"},
            "tags": ["a", "b"] if i % 5 == 0 else ["a"],
        }
        for i in range(1, 26)
    ])
    return Aggregate("orders", executor)


class TestPipelineShape:
    """Each call appends one stage in call order."""

    def test_call_order(self):
        """Stages compile in the order they were added"""
        query = (
            Aggregate("orders")
            .where("total", ">=", 100)
            .sort_by_desc("createdAt")
            .skip(10)
            .limit(5)
        )
        assert query.parse() == [
            {"$match": {"total": {"$gte": 100}}},
            {"$sort": {"createdAt": -1}},
            {"$skip": 10},
            {"$limit": 5},
        ]

    def test_or_where_forms(self):
        """or_where takes a dict, a list or several filters"""
        assert Aggregate("o").or_where({"a": 1, "b": 2}).parse() == [
            {"$match": {"$or": [{"a": 1}, {"b": 2}]}}
        ]
        assert Aggregate("o").or_where({"a": 1}, {"b": 2}).parse() == [
            {"$match": {"$or": [{"a": 1}, {"b": 2}]}}
        ]
        assert Aggregate("o").or_where([("a", 1)]).parse() == [
            {"$match": {"$or": [{"a": 1}]}}
        ]

    def test_where_helpers(self):
        """Named where helpers compile like their operators"""
        query = (
            Aggregate("o")
            .where_null("deletedAt")
            .where_not_null("email")
            .where_in("status", ["a", "b"])
            .where_not_in("status", ["c"])
            .where_exists("phone")
            .where_not_exists("fax")
            .where_between("total", [1, 5])
        )
        assert query.parse() == [
            {"$match": {"deletedAt": {"$eq": None}}},
            {"$match": {"email": {"$ne": None}}},
            {"$match": {"status": {"$in": ["a", "b"]}}},
            {"$match": {"status": {"$nin": ["c"]}}},
            {"$match": {"phone": {"$exists": True}}},
            {"$match": {"fax": {"$exists": False}}},
            {"$match": {"total": {"$gte": 1, "$lte": 5}}},
        ]

    def test_where_columns(self):
        """Column comparisons go through $expr"""
        query = Aggregate("o").where_columns("paid", ">=", "total")
        assert query.parse() == [{"$match": {"$expr": {"$gte": ["$paid", "$total"]}}}]

    def test_where_near(self):
        """max_distance is added to the $near expression"""
        point = {"type": "Point", "coordinates": [1.0, 2.0]}
        query = Aggregate("o").where_near("location", point, max_distance=500)
        assert query.parse() == [
            {"$match": {"location": {"$near": point, "$maxDistance": 500}}}
        ]

    def test_where_size_adds_two_stages(self):
        """where_size computes the length then filters on it"""
        query = Aggregate("o").where_size("tags", ">", 1)
        assert query.parse() == [
            {"$addFields": {"tags_size": {"$size": "$tags"}}},
            {"$match": {"tags_size": {"$gt": 1}}},
        ]

    def test_select_forms(self):
        """select accepts varargs, a list or a dict"""
        assert Aggregate("o").select("id", "name").parse() == [{"$project": {"id": 1, "name": 1}}]
        assert Aggregate("o").select(["id"]).parse() == [{"$project": {"id": 1}}]
        assert Aggregate("o").select({"ref": "id"}).parse() == [{"$project": {"ref": "$id"}}]
        assert Aggregate("o").deselect("secret", "token").parse() == [
            {"$project": {"secret": 0, "token": 0}}
        ]

    def test_lookup_single_collapses(self):
        """A single lookup is followed by $first on the alias"""
        query = Aggregate("orders").lookup({
            "from": "customers", "localField": "customer.id", "foreignField": "id",
            "as": "customer", "single": True,
        })
        assert query.parse() == [
            {"$lookup": {"from": "customers", "localField": "customer.id",
                         "foreignField": "id", "as": "customer"}},
            {"$addFields": {"customer": {"$first": "$customer"}}},
        ]

    def test_group_helpers(self):
        """Date grouping helpers build composite keys"""
        query = Aggregate("o").group_by_month_and_year("createdAt", {"total": agg.count()})
        assert query.parse() == [{"$group": {
            "_id": {"year": {"$year": "$createdAt"}, "month": {"$month": "$createdAt"}},
            "total": {"$sum": 1},
        }}]

    def test_group_by_stage_passes_through(self):
        """A prebuilt Stage is appended as-is"""
        stage = Stage("group", {"_id": "$status"})
        assert Aggregate("o").group_by(stage).stages == [stage]

    def test_add_pipeline(self):
        """Raw stages are validated and appended"""
        query = Aggregate("o").add_pipelines([{"$replaceRoot": {"newRoot": "$customer"}}])
        assert query.parse() == [{"$replaceRoot": {"newRoot": "$customer"}}]
        with pytest.raises(InvalidQueryError):
            query.add_pipeline({"replaceRoot": {}})

    def test_latest_and_oldest(self):
        """latest/oldest sort on createdAt"""
        assert Aggregate("o").latest().parse() == [{"$sort": {"createdAt": -1}}]
        assert Aggregate("o").oldest("updatedAt").parse() == [{"$sort": {"updatedAt": 1}}]

    def test_reset(self):
        """reset clears every stage"""
        assert Aggregate("o").where("a", 1).reset().parse() == []


class TestClone:
    """Clones are independent of the original."""

    def test_clone_isolation(self):
        """Stages added to one side never show up on the other"""
        base = Aggregate("orders").where("status", "paid")
        cloned = base.clone().limit(5)
        base.sort("id")

        assert [stage.name for stage in base.stages] == ["match", "sort"]
        assert [stage.name for stage in cloned.stages] == ["match", "limit"]

    def test_clone_keeps_executor(self, recorder):
        """The executor is shared"""
        assert Aggregate("o", recorder).clone().executor is recorder


class TestRandom:
    """random() sizing"""

    def test_random_with_limit(self):
        """An explicit size is used"""
        assert Aggregate("o").random(3).parse() == [{"$sample": {"size": 3}}]

    def test_random_reuses_limit(self):
        """An earlier limit stage provides the size"""
        assert Aggregate("o").limit(4).random().parse() == [
            {"$limit": 4},
            {"$sample": {"size": 4}},
        ]

    def test_random_without_limit(self):
        """No size anywhere is an error"""
        with pytest.raises(MissingLimitError):
            Aggregate("o").where("a", 1).random()


class TestExecution:
    """Terminal operations against the in-memory database."""

    @pytest.mark.asyncio
    async def test_get(self, orders):
        """get returns raw documents"""
        results = await orders.where("status", "paid").sort("id").get()
        assert [doc["id"] for doc in results] == list(range(1, 26, 2))

    @pytest.mark.asyncio
    async def test_get_with_map(self, orders):
        """map_data transforms every document"""
        results = await orders.where("id", "<=", 3).sort("id").get(lambda doc: doc["total"])
        assert results == [10, 20, 30]

    @pytest.mark.asyncio
    async def test_where_like(self, orders):
        """like matches substrings regardless of case"""
        results = await orders.where_like("customer.name", "TOMER 2").get()
        assert results
        assert all(doc["customer"]["id"] == 2 for doc in results)

    @pytest.mark.asyncio
    async def test_where_starts_with_compiled_regex(self, orders):
        """startsWith results all carry the prefix"""
        results = await orders.where_starts_with("customer.name", "Customer 1").get()
        assert len(results) == 9
        assert all(re.match("Customer 1", doc["customer"]["name"]) for doc in results)

    @pytest.mark.asyncio
    async def test_first(self, orders):
        """first returns one document or None"""
        assert (await orders.clone().sort_by_desc("total").first())["id"] == 25
        assert await orders.clone().where("id", 999).first() is None

    @pytest.mark.asyncio
    async def test_last(self, orders):
        """last returns the highest id"""
        assert (await orders.clone().last())["id"] == 25
        assert (await orders.clone().last({"status": "open"}))["id"] == 24

    @pytest.mark.asyncio
    async def test_count(self, orders):
        """count totals matching documents"""
        assert await orders.clone().count() == 25
        assert await orders.clone().where("status", "paid").count() == 13
        assert await orders.clone().where("id", 999).count() == 0

    @pytest.mark.asyncio
    async def test_count_appends_group_stage(self, orders):
        """count is a stage on the builder"""
        query = orders.where("status", "paid")
        await query.count()
        assert [stage.name for stage in query.stages] == ["match", "group"]

    @pytest.mark.asyncio
    async def test_pluck(self, orders):
        """pluck reads one column from each document"""
        totals = await orders.where("id", "<=", 3).sort("id").pluck("total")
        assert totals == [10, 20, 30]

    @pytest.mark.asyncio
    async def test_pluck_nested(self, orders):
        """pluck follows dotted paths"""
        ids = await orders.where("id", 4).pluck("customer.id")
        assert ids == [1]

    @pytest.mark.asyncio
    async def test_distinct(self, orders):
        """distinct returns each value once"""
        assert sorted(await orders.clone().distinct("status")) == ["open", "paid"]
        assert await orders.clone().where("id", 999).distinct("status") == []

    @pytest.mark.asyncio
    async def test_distinct_nested(self, orders):
        """distinct accepts dotted columns"""
        names = await orders.clone().distinct("customer.name")
        assert sorted(names) == ["Customer 0", "Customer 1", "Customer 2"]

    @pytest.mark.asyncio
    async def test_distinct_group_field_has_no_dots(self, recorder):
        """The accumulator field name is fixed, whatever the column"""
        recorder.aggregate_results = [[{"values": ["Ann"]}]]
        assert await Aggregate("orders", recorder).distinct("customer.name") == ["Ann"]

        _, _, pipeline = recorder.calls[0]
        assert pipeline[0] == {"$group": {"_id": None, "values": {"$addToSet": "$customer.name"}}}

    @pytest.mark.asyncio
    async def test_values(self, orders):
        """values keeps duplicates"""
        values = await orders.where("id", "<=", 4).values("status")
        assert sorted(values) == ["open", "open", "paid", "paid"]

    @pytest.mark.asyncio
    async def test_accumulators(self, orders):
        """sum/avg/min/max over a column"""
        assert await orders.clone().sum("total") == sum(i * 10 for i in range(1, 26))
        assert await orders.clone().avg("total") == 130
        assert await orders.clone().min("total") == 10
        assert await orders.clone().max("total") == 250

    @pytest.mark.asyncio
    async def test_accumulators_empty(self, orders):
        """No documents gives 0"""
        assert await orders.where("id", 999).sum("total") == 0

    @pytest.mark.asyncio
    async def test_random(self, orders):
        """random samples the requested number of documents"""
        results = await orders.random(5).get()
        assert len(results) == 5
        assert len({doc["id"] for doc in results}) == 5

    @pytest.mark.asyncio
    async def test_delete(self, orders, database):
        """delete removes exactly the matching documents"""
        deleted = await orders.where("status", "open").delete()
        assert deleted == 12
        assert await database["orders"].count_documents({}) == 13
        assert await database["orders"].count_documents({"status": "open"}) == 0

    @pytest.mark.asyncio
    async def test_no_executor(self):
        """Terminal operations need an executor"""
        with pytest.raises(QueryError):
            await Aggregate("orders").get()


class TestPagination:
    """paginate and chunk"""

    @pytest.mark.asyncio
    async def test_paginate(self, orders):
        """Page 2 of 25 documents with 10 per page"""
        result = await orders.sort("id").paginate(2, 10)

        assert [doc["id"] for doc in result["documents"]] == list(range(11, 21))
        assert result["paginationInfo"] == {
            "limit": 10,
            "page": 2,
            "result": 10,
            "total": 25,
            "pages": 3,
        }

    @pytest.mark.asyncio
    async def test_paginate_last_page(self, orders):
        """The last page holds the remainder"""
        result = await orders.sort("id").paginate(3, 10)
        assert result["paginationInfo"]["result"] == 5
        assert [doc["id"] for doc in result["documents"]] == list(range(21, 26))

    @pytest.mark.asyncio
    async def test_paginate_counts_filtered(self, orders):
        """The total respects earlier filters"""
        result = await orders.where("status", "paid").paginate(1, 5)
        assert result["paginationInfo"]["total"] == 13
        assert result["paginationInfo"]["pages"] == 3

    @pytest.mark.asyncio
    async def test_paginate_default_limit(self, orders):
        """The executor's page size is the default"""
        orders.executor.per_page = 7
        result = await orders.paginate()
        assert result["paginationInfo"]["limit"] == 7
        assert result["paginationInfo"]["pages"] == 4

    @pytest.mark.asyncio
    async def test_chunk(self, orders):
        """chunk walks every page"""
        seen = []

        def collect(documents, info):
            seen.append([doc["id"] for doc in documents])

        await orders.sort("id").chunk(10, collect)

        assert [len(page) for page in seen] == [10, 10, 5]
        assert sum(seen, []) == list(range(1, 26))

    @pytest.mark.asyncio
    async def test_chunk_stops_on_false(self, orders):
        """Returning False ends the walk"""
        pages = []

        async def first_only(documents, info):
            pages.append(info["page"])
            return False

        await orders.chunk(10, first_only)
        assert pages == [1]

    @pytest.mark.asyncio
    async def test_chunk_empty(self, orders):
        """No matches means no callback"""
        callback = MagicMock()
        await orders.where("id", 999).chunk(10, callback)
        callback.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page,limit", [(0, 10), (-1, 10), (1, 0)])
    async def test_paginate_rejects_bad_arguments(self, orders, page, limit):
        """Pages and page sizes start at 1"""
        with pytest.raises(InvalidQueryError):
            await orders.paginate(page, limit)

    @pytest.mark.asyncio
    async def test_chunk_rejects_zero_limit(self, orders):
        """A zero page size is rejected before querying"""
        callback = MagicMock()
        with pytest.raises(InvalidQueryError):
            await orders.chunk(0, callback)
        callback.assert_not_called()


class TestBulkUpdates:
    """update / unset go through update pipelines."""

    @pytest.mark.asyncio
    async def test_update_splits_matches(self, recorder):
        """Match stages become the filter, the rest stays in the pipeline"""
        recorder.modified_count = 3
        query = (
            Aggregate("orders", recorder)
            .where("status", "open")
            .where("total", ">", 100)
            .add_field("flag", True)
        )

        modified = await query.update({"status": "closed"})

        assert modified == 3
        name, collection, filters, pipeline = recorder.calls[-1]
        assert (name, collection) == ("update_many", "orders")
        assert filters == {"status": {"$eq": "open"}, "total": {"$gt": 100}}
        assert pipeline == [{"$addFields": {"flag": True}}, {"$set": {"status": "closed"}}]

    @pytest.mark.asyncio
    async def test_unset(self, recorder):
        """unset removes columns"""
        await Aggregate("orders", recorder).where("id", 1).unset("tmp", "cache")
        _, _, filters, pipeline = recorder.calls[-1]
        assert filters == {"id": {"$eq": 1}}
        assert pipeline == [{"$unset": ["tmp", "cache"]}]

    @pytest.mark.asyncio
    async def test_update_failure_logged_and_raised(self, recorder):
        """Driver errors are logged with context and propagate"""

        async def broken(*args):
            raise RuntimeError("write conflict")

        recorder.update_many = broken
        query = Aggregate("orders", recorder).where("id", 1)
        query.logger = MagicMock()

        with pytest.raises(RuntimeError):
            await query.update({"status": "closed"})

        level, message = query.logger.log.call_args[0]
        assert level == logging.ERROR
        assert "write conflict" in message
        assert "Context" in message


class TestEvents:
    """Builders report to an optional listener registry."""

    @pytest.mark.asyncio
    async def test_fetching_and_updating(self, recorder):
        """fetching fires on execute, updating on bulk updates"""
        events = ModelEvents("orders")
        seen = []
        events.on_fetching(lambda query: seen.append(("fetching", query)))
        events.on_updating(lambda query: seen.append(("updating", query)))

        query = Aggregate("orders", recorder, events)
        await query.get()
        await query.update({"a": 1})

        assert seen == [("fetching", query), ("updating", query)]

    @pytest.mark.asyncio
    async def test_queued_results(self, recorder):
        """The recording executor receives the compiled pipeline"""
        recorder.aggregate_results = [[{"id": 1}]]
        results = await Aggregate("orders", recorder).where("id", 1).get()
        assert results == [{"id": 1}]
        assert recorder.calls[0] == ("aggregate", "orders", [{"$match": {"id": {"$eq": 1}}}])
