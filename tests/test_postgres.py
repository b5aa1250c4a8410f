"""PostgreSQL tests. The database-backed ones need DATABASE_URL."""

from __future__ import annotations

import pytest

from catalog_models import Category, Product
from recordkit import query_stats
from recordkit.pool import _affected_rows, to_numbered_placeholders

PG_SCHEMA = [
    "DROP TABLE IF EXISTS products",
    "DROP TABLE IF EXISTS categories",
    "CREATE TABLE categories (id SERIAL PRIMARY KEY, name TEXT NOT NULL, id_parent INTEGER)",
    """
    CREATE TABLE products (
        id SERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        id_category INTEGER,
        id_manufacturer INTEGER
    )
    """,
]


@pytest.mark.parametrize(
    ("sql", "expected"),
    [
        ("SELECT * FROM t WHERE a = ? AND b = ?", "SELECT * FROM t WHERE a = $1 AND b = $2"),
        ("SELECT * FROM t WHERE a = '?' AND b = ?", "SELECT * FROM t WHERE a = '?' AND b = $1"),
        ('SELECT "?" FROM t WHERE a IN (?, ?)', 'SELECT "?" FROM t WHERE a IN ($1, $2)'),
        ("SELECT 1", "SELECT 1"),
    ],
)
def test_numbered_placeholders(sql, expected):
    assert to_numbered_placeholders(sql) == expected


@pytest.mark.parametrize(
    ("status", "expected"),
    [("UPDATE 3", 3), ("DELETE 0", 0), ("INSERT 0 1", 1), ("CREATE TABLE", 0), ("", 0)],
)
def test_affected_rows_from_command_tag(status, expected):
    assert _affected_rows(status) == expected


@pytest.fixture
async def pg_catalog(postgres_pool):
    for statement in PG_SCHEMA:
        await postgres_pool.execute_statement(statement)
    phones = Category(name="phones")
    await phones.insert()
    await Product(name="a phone", id_category=phones.id).insert()
    await Product(name="b phone", id_category=phones.id).insert()
    query_stats.reset()
    yield phones
    for statement in PG_SCHEMA[:2]:
        await postgres_pool.execute_statement(statement)


async def test_insert_returns_serial_key(pg_catalog):
    assert pg_catalog.id is not None
    assert (await Category.find_by_id(pg_catalog.id)).name == "phones"


async def test_regexp_and_ilike(pg_catalog):
    products = await Product.where({"name__regexp": "^b"}).fetch_all()
    assert [product.name for product in products] == ["b phone"]
    assert await Product.where({"name__ilike": "A%"}).count() == 1


async def test_join_and_with(pg_catalog):
    products = await Product.join("category").order("products.id").fetch_all()
    assert [product.category.name for product in products] == ["phones", "phones"]

    category = await Category.with_("products").where({"id": pg_catalog.id}).fetch()
    assert sorted(product.name for product in category.products) == ["a phone", "b phone"]


async def test_update_reports_affected_rows(pg_catalog):
    assert await Product.where({"id_category": pg_catalog.id}).update({"description": "x"}) == 2


async def test_batch_insert_returns_keys_in_order(pg_catalog):
    products = [Product(name=f"bulk {index}") for index in range(3)]
    await Product.insert_all(products)
    ids = [product.id for product in products]
    assert ids == sorted(ids)
    assert None not in ids


async def test_fetch_iterator_uses_cursor(pg_catalog):
    names = [product.name async for product in Product.query().order("id").fetch_iterator(batch_size=1)]
    assert names == ["a phone", "b phone"]
