"""
Tests for Joinable lookups and the model-level joining helpers.
"""

import pytest

from mongolayer.exceptions import RelationNotFoundError
from mongolayer.model import Joinable, Model
from mongolayer.model.joinable import singularize


class Order(Model):
    collection = "orders"


class Invoice(Model):
    collection = "invoices"
    singular_name = "invoice"


class Customer(Model):
    collection = "customers"
    joinings = {
        "orders": Joinable(Order).local_field("id").foreign_field("customer.id").return_as(Order),
        "lastInvoice": lambda: Joinable(Invoice).single().local_field("id").foreign_field("customerId"),
    }

    @classmethod
    def with_invoices(cls, status="paid"):
        return {
            "model": Invoice,
            "as": "invoices",
            "foreign_field": "customerId",
            "pipeline": [{"$match": {"status": status}}],
            "select": ["id", "total"],
        }

    @classmethod
    def with_account(cls):
        return {"model": Invoice, "as": "account", "single": True, "foreign_field": "owner.id"}


@pytest.fixture
def bound(recorder):
    """Bind models to a recording executor for pipeline-only tests."""
    Model.use(recorder)
    yield recorder
    Model._executor = None


class TestJoinable:
    """Lookup descriptors"""

    def test_parse_defaults(self):
        """as and localField default from the collection"""
        assert Joinable(Order).parse() == {
            "from": "orders",
            "localField": "orders.id",
            "foreignField": "id",
            "as": "orders",
            "single": False,
            "let": None,
        }

    def test_single_uses_singular_name(self):
        """Single joins default to the singular name"""
        options = Joinable(Invoice).single().parse()
        assert options["as"] == "invoice"
        assert options["localField"] == "invoice.id"
        assert options["single"] is True

        assert Joinable(Order).single().alias() == "order"

    def test_single_singularizes_collection(self):
        """Without singular_name the collection is singularized"""
        class Category(Model):
            collection = "categories"

        assert Joinable(Category).single().alias() == "category"
        assert singularize("orders") == "order"
        assert singularize("order") == "order"

    def test_explicit_fields(self):
        """Explicit fields win over defaults"""
        options = Joinable(Order).local_field("id").foreign_field("customer.id").as_("purchases").parse()
        assert options["localField"] == "id"
        assert options["foreignField"] == "customer.id"
        assert options["as"] == "purchases"

    def test_builder_methods_forwarded(self):
        """Builder methods refine the sub-pipeline and chain on the joinable"""
        joinable = Joinable(Order).where_in("status", ["paid"]).sort_by_desc("id").limit(3)
        assert isinstance(joinable, Joinable)

        options = joinable.parse()
        assert options["pipeline"] == [
            {"$match": {"status": {"$in": ["paid"]}}},
            {"$sort": {"id": -1}},
            {"$limit": 3},
        ]

    def test_parse_resets_pipeline(self):
        """The sub-pipeline is cleared after parsing"""
        joinable = Joinable(Order).where("status", "paid")
        joinable.parse()
        assert "pipeline" not in joinable.parse()

    def test_let(self):
        """let data is carried through"""
        options = Joinable(Order).let({"cid": "$id"}).parse()
        assert options["let"] == {"cid": "$id"}

    def test_clone_is_independent(self):
        """Refining a clone leaves the original untouched"""
        original = Joinable(Order).where("status", "paid")
        cloned = original.clone().as_("paid").limit(1)

        assert original.alias() == "orders"
        assert len(original.query.stages) == 1
        assert cloned.alias() == "paid"
        assert len(cloned.query.stages) == 2

    def test_set_and_get(self):
        """set replaces the lookup data, from defaults to the collection"""
        joinable = Joinable(Order).set({"as": "mine", "localField": "id"})
        assert joinable.get("from") == "orders"
        assert joinable.get("as") == "mine"
        assert joinable.get("missing", "x") == "x"

    def test_unknown_attribute(self):
        """Unknown names still raise AttributeError"""
        with pytest.raises(AttributeError):
            Joinable(Order).no_such_method()


class TestModelJoining:
    """ModelAggregate.joining / count_joining / with_"""

    def test_joining_by_name(self, bound):
        """Declared joinings compile into a lookup"""
        query = Customer.aggregate().joining("orders", where={"status": "paid"}, select=["id"])
        assert query.parse() == [{"$lookup": {
            "from": "orders",
            "localField": "id",
            "foreignField": "customer.id",
            "as": "orders",
            "pipeline": [{"$match": {"status": "paid"}}, {"$project": {"id": 1}}],
        }}]

    def test_joining_leaves_declaration_alone(self, bound):
        """Refinements apply to a copy"""
        Customer.aggregate().joining("orders", where={"status": "paid"})
        assert Customer.joinings["orders"].query.stages == []

    def test_joining_factory_and_single(self, bound):
        """Callable joinings are built on use; single adds $first"""
        query = Customer.aggregate().joining("lastInvoice", as_="latest")
        assert query.parse() == [
            {"$lookup": {"from": "invoices", "localField": "id",
                         "foreignField": "customerId", "as": "latest"}},
            {"$addFields": {"latest": {"$first": "$latest"}}},
        ]

    def test_joining_instance(self, bound):
        """A Joinable can be passed directly"""
        query = Customer.aggregate().joining(Joinable(Invoice).local_field("id"))
        assert query.parse()[0]["$lookup"]["as"] == "invoices"

    def test_count_joining(self, bound):
        """count_joining adds the size of the joined list"""
        query = Customer.aggregate().count_joining("orders")
        assert query.parse()[1] == {"$addFields": {"ordersCount": {"$size": "$orders"}}}

        named = Customer.aggregate().count_joining("orders", as_="n")
        assert named.parse()[1] == {"$addFields": {"n": {"$size": "$orders"}}}

    def test_unknown_joining(self, bound):
        """Undeclared names raise RelationNotFoundError"""
        with pytest.raises(RelationNotFoundError) as exc_info:
            Customer.aggregate().joining("refunds")
        assert exc_info.value.name == "refunds"
        assert exc_info.value.model == "Customer"

    def test_with_relation(self, bound):
        """with_ calls the with_<alias> classmethod with params"""
        query = Customer.aggregate().with_("invoices", "open")
        assert query.parse() == [{"$lookup": {
            "from": "invoices",
            "localField": "id",
            "foreignField": "customerId",
            "as": "invoices",
            "pipeline": [{"$match": {"status": "open"}}, {"$project": {"id": 1, "total": 1}}],
        }}]

    def test_with_single_relation(self, bound):
        """Single relations collapse to one document"""
        query = Customer.aggregate().with_("account")
        assert query.parse() == [
            {"$lookup": {"from": "invoices", "localField": "id",
                         "foreignField": "owner.id", "as": "account"}},
            {"$addFields": {"account": {"$first": "$account"}}},
        ]

    def test_unknown_relation(self, bound):
        with pytest.raises(RelationNotFoundError):
            Customer.aggregate().with_("payments")

    @pytest.mark.asyncio
    async def test_joined_documents_transformed(self, models):
        """return_as turns joined documents into models"""
        ann = await Customer.create({"name": "Ann"})
        bob = await Customer.create({"name": "Bob"})
        await Order.create({"customer": {"id": ann.id}, "total": 5})
        await Order.create({"customer": {"id": ann.id}, "total": 7})

        customers = await Customer.aggregate().joining("orders").sort("id").get()

        assert [c.id for c in customers] == [ann.id, bob.id]
        ann_orders = customers[0].get("orders")
        assert all(isinstance(order, Order) for order in ann_orders)
        assert sorted(order.get("total") for order in ann_orders) == [5, 7]
        assert customers[1].get("orders") == []
