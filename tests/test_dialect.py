"""Tests for SQL rendering by the dialects."""

import pytest

from recordkit import (
    ConfigurationError,
    Dialect,
    JoinClause,
    MySqlDialect,
    PostgresDialect,
    Query,
    QueryType,
    SqliteDialect,
    UnsupportedOperationError,
    dialect_for,
)

postgres = PostgresDialect()
mysql = MySqlDialect()
sqlite = SqliteDialect()


class TestSelect:
    def test_select_star_without_columns(self):
        assert postgres.build_query(Query(table="products")) == "SELECT * FROM products"

    def test_select_columns_with_aliases(self):
        query = Query(table="products", select_columns=[("products.id", "products_id"), ("name", None)])
        assert postgres.build_query(query) == "SELECT products.id AS products_id, name FROM products"

    def test_select_distinct(self):
        query = Query(table="products", select_columns=[("name", None)], distinct=True)
        assert postgres.build_query(query) == "SELECT DISTINCT name FROM products"

    def test_table_alias(self):
        query = Query(table="products", alias_table="p")
        assert postgres.build_query(query) == "SELECT * FROM products AS p"

    def test_alias_equal_to_table_is_not_repeated(self):
        query = Query(table="products", alias_table="products")
        assert postgres.build_query(query) == "SELECT * FROM products"

    def test_order_group_by(self):
        query = Query(
            table="products",
            select_columns=[("id_category", None), ("count(*)", None)],
            group_by="id_category",
            order=["id_category", "count(*) DESC"],
        )
        assert postgres.build_query(query) == (
            "SELECT id_category, count(*) FROM products GROUP BY id_category ORDER BY id_category, count(*) DESC"
        )

    def test_count_ignores_order(self):
        query = Query(table="products", type=QueryType.COUNT, order="name")
        assert postgres.build_query(query) == "SELECT count(*) FROM products"


class TestLimitOffset:
    def test_limit_and_offset_are_bound(self):
        query = Query(table="products", limit=10, offset=20)
        assert postgres.render(query) == ("SELECT * FROM products LIMIT ? OFFSET ?", [10, 20])

    def test_zero_offset_is_omitted(self):
        query = Query(table="products", limit=10, offset=0)
        assert postgres.render(query) == ("SELECT * FROM products LIMIT ?", [10])

    def test_zero_limit_is_omitted(self):
        query = Query(table="products", limit=0)
        assert postgres.render(query) == ("SELECT * FROM products", [])

    def test_postgres_offset_without_limit(self):
        query = Query(table="products", offset=5)
        assert postgres.render(query) == ("SELECT * FROM products OFFSET ?", [5])

    @pytest.mark.parametrize(
        ("dialect", "unbounded"),
        [(sqlite, -1), (mysql, 18446744073709551615)],
    )
    def test_offset_without_limit_needs_unbounded_limit(self, dialect, unbounded):
        query = Query(table="products", offset=5)
        assert dialect.render(query) == ("SELECT * FROM products LIMIT ? OFFSET ?", [unbounded, 5])


class TestLockingAndComments:
    def test_for_update(self):
        query = Query(table="products", lock_for_update=True)
        assert postgres.build_query(query) == "SELECT * FROM products FOR UPDATE"
        assert mysql.build_query(query) == "SELECT * FROM products FOR UPDATE"

    def test_sqlite_has_no_row_locks(self):
        query = Query(table="products", lock_for_update=True)
        assert sqlite.build_query(query) == "SELECT * FROM products"

    def test_comment_is_last(self):
        query = Query(table="products", lock_for_update=True, comment="orm:model", limit=1)
        assert postgres.build_query(query) == "SELECT * FROM products LIMIT ? FOR UPDATE /* orm:model */"


class TestUpdateDelete:
    def test_update_values_precede_where_values(self):
        query = Query(table="products", type=QueryType.UPDATE, update_attributes={"name": "a", "description": "b"})
        query.where({"id": 5})
        assert postgres.render(query) == ("UPDATE products set name = ?, description = ? WHERE id = ?", ["a", "b", 5])

    def test_delete(self):
        query = Query(table="products", type=QueryType.DELETE).where("name = ?", "x")
        assert postgres.render(query) == ("DELETE FROM products WHERE name = ?", ["x"])

    def test_mysql_delete_alias_has_no_as(self):
        query = Query(table="products", alias_table="p", type=QueryType.DELETE)
        assert mysql.build_query(query) == "DELETE FROM products p"
        assert postgres.build_query(query) == "DELETE FROM products AS p"


class TestJoins:
    def test_join(self):
        query = Query(table="products").add_join(
            JoinClause("categories", "id", "products", "id_category", type="INNER")
        )
        assert postgres.build_query(query) == (
            "SELECT * FROM products INNER JOIN categories ON products.id_category = categories.id"
        )

    def test_join_with_alias_and_extra_condition(self):
        from recordkit import WhereClause

        query = Query(table="products").add_join(
            JoinClause(
                "manufacturers",
                "id",
                "products",
                "id_manufacturer",
                join_table_alias="m",
                on_clauses=(WhereClause.create("m.name = ?", "acme"),),
            )
        )
        assert postgres.render(query) == (
            "SELECT * FROM products LEFT JOIN manufacturers AS m "
            "ON products.id_manufacturer = m.id AND m.name = ?",
            ["acme"],
        )

    def test_join_values_precede_where_values(self):
        from recordkit import WhereClause

        query = Query(table="products").add_join(
            JoinClause(
                "manufacturers", "id", "products", "id_manufacturer",
                on_clauses=(WhereClause.create("manufacturers.name = ?", "acme"),),
            )
        )
        query.where("products.name = ?", "phone")
        _, params = postgres.render(query)
        assert params == ["acme", "phone"]


class TestDeleteUsing:
    def _query(self):
        query = Query(table="products", type=QueryType.DELETE)
        query.add_using(JoinClause("manufacturers", "id", "products", "id_manufacturer"))
        return query.where({"manufacturers.name": "acme"})

    def test_postgres_moves_using_conditions_to_where(self):
        assert postgres.render(self._query()) == (
            "DELETE FROM products USING manufacturers "
            "WHERE products.id_manufacturer = manufacturers.id AND manufacturers.name = ?",
            ["acme"],
        )

    def test_mysql_uses_multi_table_delete(self):
        assert mysql.render(self._query()) == (
            "DELETE products FROM products "
            "INNER JOIN manufacturers ON products.id_manufacturer = manufacturers.id "
            "WHERE manufacturers.name = ?",
            ["acme"],
        )

    def test_sqlite_rejects_delete_using(self):
        with pytest.raises(UnsupportedOperationError):
            sqlite.render(self._query())


class TestOperators:
    def test_regexp_operator_per_dialect(self):
        query = Query(table="products").where({"name__regexp": "^b"})
        assert postgres.build_query(query) == "SELECT * FROM products WHERE name ~ ?"
        assert mysql.build_query(query) == "SELECT * FROM products WHERE name REGEXP ?"
        assert sqlite.build_query(query) == "SELECT * FROM products WHERE name REGEXP ?"

    def test_ilike_falls_back_to_like(self):
        query = Query(table="products").where({"name__ilike": "B%"})
        assert postgres.build_query(query) == "SELECT * FROM products WHERE name ILIKE ?"
        assert sqlite.build_query(query) == "SELECT * FROM products WHERE name LIKE ?"

    def test_quote(self):
        assert postgres.quote("name") == '"name"'
        assert mysql.quote("name") == "`name`"


class TestInsert:
    def test_insert_returning_primary_key(self):
        assert postgres.insert("products", {"name": "a"}, "id") == (
            'INSERT INTO products ("name") VALUES (?) RETURNING id',
            ["a"],
        )

    def test_mysql_insert_has_no_returning(self):
        assert mysql.insert("products", {"name": "a"}, "id") == ("INSERT INTO products (`name`) VALUES (?)", ["a"])

    def test_insert_empty_row(self):
        assert postgres.insert("products", {}, "id") == ("INSERT INTO products DEFAULT VALUES RETURNING id", [])
        assert mysql.insert("products", {}, "id") == ("INSERT INTO products VALUES ()", [])

    def test_batch_insert(self):
        sql, params = postgres.batch_insert("products", "id", ["name", "id_category"], [["a", 1], ["b", 2]])
        assert sql == 'INSERT INTO products ("name", "id_category") VALUES (?, ?), (?, ?) RETURNING id'
        assert params == ["a", 1, "b", 2]

    def test_mysql_batch_insert_is_unsupported(self):
        with pytest.raises(UnsupportedOperationError, match="Batch insert not supported in mysql"):
            mysql.batch_insert("products", "id", ["name"], [["a"]])

    def test_on_conflict(self):
        assert postgres.on_conflict_do_update(["id"], ["name"]) == (
            " ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name"
        )
        assert sqlite.on_conflict_do_update(["id"], ["name"]) == (
            " ON CONFLICT (id) DO UPDATE SET name = excluded.name"
        )
        assert mysql.on_conflict_do_update(["id"], ["name"]) == " ON DUPLICATE KEY UPDATE name = VALUES(name)"
        assert postgres.on_conflict_do_nothing(["id"]) == " ON CONFLICT (id) DO NOTHING"


class FakePostgresError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


class TestConnectionErrors:
    def test_postgres_sqlstate(self):
        assert postgres.is_connection_error(FakePostgresError("08006"))
        assert postgres.is_connection_error(FakePostgresError("57P01"))
        assert not postgres.is_connection_error(FakePostgresError("23505"))

    def test_mysql_error_codes(self):
        assert mysql.is_connection_error(Exception(2006, "MySQL server has gone away"))
        assert mysql.is_connection_error(Exception(2003, "Can't connect"))
        assert not mysql.is_connection_error(Exception(1062, "Duplicate entry"))
        assert not mysql.is_connection_error(Exception("no code"))

    def test_builtin_connection_errors_always_count(self):
        assert sqlite.is_connection_error(ConnectionResetError())
        assert not sqlite.is_connection_error(ValueError("bad"))


class CustomDialect(PostgresDialect):
    pass


class TestDialectFor:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [("postgres", PostgresDialect), ("postgresql", PostgresDialect), ("MySQL", MySqlDialect), ("sqlite", SqliteDialect)],
    )
    def test_short_names(self, name, expected):
        assert type(dialect_for(name)) is expected

    def test_class_instance_and_dotted_path(self):
        assert isinstance(dialect_for(CustomDialect), CustomDialect)
        assert dialect_for(postgres) is postgres
        assert type(dialect_for("recordkit.dialect.MySqlDialect")) is MySqlDialect

    def test_unknown_dialect(self):
        with pytest.raises(ConfigurationError):
            dialect_for("oracle")
        with pytest.raises(ConfigurationError):
            dialect_for("nowhere.to.be.Found")

    def test_base_dialect_is_usable(self):
        assert Dialect().build_query(Query(table="t")) == "SELECT * FROM t"
