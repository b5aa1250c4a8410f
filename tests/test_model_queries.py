"""Tests for fetching, converting and eager-loading models against SQLite."""

from __future__ import annotations

import pytest

from catalog_models import Category, Manufacturer, Order, OrderProduct, Product
from recordkit import FetchMode, Q, RecordNotFoundError, query_stats


@pytest.fixture
async def catalog(db):
    """Categories, manufacturers and products used by most tests."""
    phones = Category(name="phones")
    await phones.insert()
    tablets = Category(name="tablets")
    await tablets.insert()
    smartphones = Category(name="smartphones", id_parent=phones.id)
    await smartphones.insert()

    acme = Manufacturer(name="acme")
    await acme.insert()

    products = [
        Product(name="a phone", id_category=phones.id, id_manufacturer=acme.id),
        Product(name="b phone", id_category=phones.id),
        Product(name="big tablet", id_category=tablets.id, id_manufacturer=acme.id),
        Product(name="orphan"),
    ]
    for product in products:
        await product.insert()

    query_stats.reset()
    return {"phones": phones, "tablets": tablets, "smartphones": smartphones, "acme": acme, "products": products}


def _names(models):
    return sorted(model.name for model in models)


class TestFetch:
    async def test_fetch_all_returns_models(self, catalog):
        categories = await Category.query().order("id").fetch_all()
        assert [category.name for category in categories] == ["phones", "tablets", "smartphones"]
        assert isinstance(categories[0], Category)
        assert categories[2].id_parent == catalog["phones"].id

    async def test_fetch_first_or_none(self, catalog):
        category = await Category.where({"name": "tablets"}).fetch()
        assert category.id == catalog["tablets"].id
        assert await Category.where({"name": "missing"}).fetch() is None

    async def test_model_query_carries_marker(self, catalog):
        builder = Category.where({"name": "tablets"})
        await builder.fetch()
        assert builder.to_sql()[0].endswith("/* orm:model */")
        assert query_stats.queries[-1].sql.endswith("/* orm:model */")

    async def test_where_variants(self, catalog):
        assert _names(await Product.where("name LIKE ?", "b%").fetch_all()) == ["b phone", "big tablet"]
        assert _names(await Product.where({"id_manufacturer": None}).fetch_all()) == ["b phone", "orphan"]
        assert _names(await Product.where(Q(name="orphan") | Q(name="a phone")).fetch_all()) == ["a phone", "orphan"]
        assert _names(await Product.where({"name__regexp": "^b.*t$"}).fetch_all()) == ["big tablet"]

    async def test_find_by_id(self, catalog):
        tablets = await Category.find_by_id(catalog["tablets"].id)
        assert tablets.name == "tablets"
        with pytest.raises(RecordNotFoundError):
            await Category.find_by_id(999)

    async def test_count(self, catalog):
        assert await Product.count() == 4
        assert await Product.count({"id_category": catalog["phones"].id}) == 2
        assert await Product.where("name LIKE ?", "b%").count() == 2

    async def test_limit_offset(self, catalog):
        products = await Product.query().order("id").limit(2).offset(1).fetch_all()
        assert [product.name for product in products] == ["b phone", "big tablet"]
        products = await Product.query().order("id").offset(3).fetch_all()
        assert [product.name for product in products] == ["orphan"]
        assert len(await Product.query().limit(0).fetch_all()) == 4


class TestRawSelect:
    async def test_select_returns_tuples(self, catalog):
        rows = await Product.select(["id_category", "count(*)"]).where({"id_category__isnull": False}).group_by(
            "id_category"
        ).order("id_category").fetch_all()
        assert rows == [(catalog["phones"].id, 2), (catalog["tablets"].id, 1)]

    async def test_select_dict_and_column(self, catalog):
        row = await Product.select({"total": "count(*)"}, FetchMode.DICT).fetch()
        assert row == {"total": 4}
        names = await Category.select("name", FetchMode.COLUMN).order("name").fetch_all()
        assert names == ["phones", "smartphones", "tablets"]


class TestJoinedConversion:
    async def test_belongs_to_join_attaches_model(self, catalog):
        products = await Product.join("category").order("products.id").fetch_all()
        assert products[0].category.name == "phones"
        assert products[2].category.name == "tablets"
        assert len(query_stats) == 1

    async def test_outer_join_miss_leaves_relation_unset(self, db):
        await Category(id=7, name="parent").insert()
        await Category(id=8, name="child", id_parent=7).insert()
        await Category(id=9, name="root").insert()

        child, root = await Category.join("parent").where({"categories.id": [8, 9]}).order("categories.id").fetch_all()

        assert child.parent.id == 7
        assert child.parent.name == "parent"
        assert not root.is_loaded("parent")
        with pytest.raises(AttributeError, match="not loaded"):
            root.parent

    async def test_nested_join(self, catalog):
        product = await Product.join("category->parent").where({"products.name": "a phone"}).fetch()
        assert product.category.name == "phones"
        assert not product.category.is_loaded("parent")

        await Product(name="c phone", id_category=catalog["smartphones"].id).insert()
        product = await Product.join("category->parent").where({"products.name": "c phone"}).fetch()
        assert product.category.parent.name == "phones"
        assert product.get("category->parent->name") == "phones"

    async def test_inner_join_filters(self, catalog):
        products = await Product.inner_join("manufacturer").order("products.id").fetch_all()
        assert [product.name for product in products] == ["a phone", "big tablet"]
        assert products[0].manufacturer.name == "acme"

    async def test_collection_join_filters_without_attaching(self, catalog):
        categories = await Category.inner_join("products_starting_with_b").order("categories.id").fetch_all()
        assert [category.name for category in categories] == ["phones", "tablets"]
        assert not categories[0].is_loaded("products_starting_with_b")


class TestWith:
    async def test_has_many_uses_one_query_per_relation(self, catalog):
        categories = await Category.with_("products").order("id").fetch_all()

        assert len(query_stats) == 2
        assert sorted(product.name for product in categories[0].products) == ["a phone", "b phone"]
        assert [product.name for product in categories[1].products] == ["big tablet"]
        assert categories[2].products == []

    async def test_belongs_to_and_missing_key(self, catalog):
        products = await Product.with_("manufacturer").order("id").fetch_all()
        assert products[0].manufacturer.name == "acme"
        assert products[1].manufacturer is None
        assert len(query_stats) == 2

    async def test_nested_with(self, catalog):
        await Product(name="c phone", id_category=catalog["smartphones"].id).insert()
        query_stats.reset()

        product = await Product.with_("category->parent").where({"name": "c phone"}).fetch()

        assert product.category.name == "smartphones"
        assert product.category.parent.name == "phones"
        assert len(query_stats) == 3

    async def test_relation_condition_and_order(self, catalog):
        phones = await Category.with_("products_starting_with_b").where({"name": "phones"}).fetch()
        assert [product.name for product in phones.products_starting_with_b] == ["b phone"]

        phones = await Category.with_("products_by_name").where({"name": "phones"}).fetch()
        assert [product.name for product in phones.products_by_name] == ["a phone", "b phone"]

    async def test_has_one(self, catalog):
        phones = await Category.with_("child").where({"name": "phones"}).fetch()
        assert phones.child.name == "smartphones"

    async def test_fetch_relation_loads_whole_result_set(self, catalog):
        categories = await Category.query().order("id").fetch_all()
        query_stats.reset()

        first = await categories[0].fetch_relation("products")
        second = await categories[1].fetch_relation("products")

        assert len(first) == 2
        assert [product.name for product in second] == ["big tablet"]
        assert len(query_stats) == 1

    async def test_unloaded_relation_raises(self, catalog):
        category = await Category.where({"name": "phones"}).fetch()
        with pytest.raises(AttributeError, match="fetch_relation"):
            category.products


class TestFetchIterator:
    async def test_yields_models_in_order(self, catalog):
        names = [product.name async for product in Product.query().order("id").fetch_iterator()]
        assert names == ["a phone", "b phone", "big tablet", "orphan"]

    async def test_eager_loads_per_batch(self, catalog):
        products = [
            product
            async for product in Product.with_("category").order("id").fetch_iterator(batch_size=2)
        ]
        assert [product.category.name if product.category else None for product in products] == [
            "phones",
            "phones",
            "tablets",
            None,
        ]
        # the streaming select plus one eager load per batch
        assert len(query_stats) == 3

    async def test_raw_rows(self, catalog):
        rows = [row async for row in Category.select("name").order("name").fetch_iterator()]
        assert rows == [("phones",), ("smartphones",), ("tablets",)]

    async def test_zero_batch_size_is_rejected(self, catalog):
        with pytest.raises(ValueError, match="Batch size must be positive"):
            [product async for product in Product.query().fetch_iterator(batch_size=0)]


class TestBulkStatements:
    async def test_update_bypasses_callbacks(self, catalog):
        affected = await Product.where({"id_category": catalog["phones"].id}).update({"description": "cheap"})
        assert affected == 2
        described = await Product.where({"description": "cheap"}).count()
        assert described == 2

    async def test_delete_all(self, catalog):
        assert await Product.where("name LIKE ?", "b%").delete_all() == 2
        assert await Product.count() == 2

    async def test_delete_each(self, catalog):
        assert await Product.where("name LIKE ?", "b%").delete_each() == [True, True]
        assert await Product.count() == 2

    async def test_model_without_primary_key(self, catalog):
        order = Order(name="first")
        await order.insert()
        await OrderProduct(id_order=order.id, id_product=catalog["products"][0].id).insert()

        links = await OrderProduct.with_("product").join("order").fetch_all()
        assert links[0].order.name == "first"
        assert links[0].product.name == "a phone"
