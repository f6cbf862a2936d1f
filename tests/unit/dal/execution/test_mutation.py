"""Unit tests for mutation statement parsing."""

import pytest

from dal.execution.mutation import (
    MutationTarget,
    detect_mutation_type,
    parse_mutation,
    with_returning,
)


class TestDetectMutationType:
    @pytest.mark.parametrize(
        "sql, expected",
        [
            ("INSERT INTO t VALUES (1)", "INSERT"),
            ("update t set a = 1", "UPDATE"),
            ("DELETE FROM t", "DELETE"),
            ("WITH src AS (SELECT 1) INSERT INTO t SELECT * FROM src", "INSERT"),
            ("WITH x AS (SELECT * FROM t FOR UPDATE) SELECT 1", None),
            ("SELECT * FROM t", None),
            ("-- DELETE FROM t\nSELECT 1", None),
        ],
    )
    def test_detect(self, sql, expected):
        assert detect_mutation_type(sql) == expected


class TestParseMutation:
    def test_update_with_alias_and_where(self):
        target = parse_mutation("UPDATE public.users u SET active = false WHERE u.id = 5;")
        assert target == MutationTarget(
            mutation_type="UPDATE",
            table="public.users",
            alias="u",
            where_clause="u.id = 5",
            has_returning=False,
        )
        assert target.table_reference == "public.users u"

    def test_delete_with_returning(self):
        target = parse_mutation("DELETE FROM ONLY orders WHERE status = 'x' RETURNING id")
        assert target.table == "orders"
        assert target.where_clause == "status = 'x'"
        assert target.has_returning

    def test_insert_alias_requires_as(self):
        assert parse_mutation("INSERT INTO logs (msg) VALUES ('a')").alias is None
        assert parse_mutation("INSERT INTO logs AS l (msg) VALUES ('a')").alias == "l"

    def test_where_inside_subquery_is_ignored(self):
        sql = "UPDATE t SET a = (SELECT max(b) FROM s WHERE s.id = 1)"
        assert parse_mutation(sql).where_clause is None

    def test_last_top_level_where_wins(self):
        sql = "DELETE FROM t USING s WHERE t.id = s.id AND s.flag"
        assert parse_mutation(sql).where_clause == "t.id = s.id AND s.flag"

    def test_trailing_comment_is_not_part_of_where(self):
        sql = "DELETE FROM t WHERE id = 1; -- cleanup"
        assert parse_mutation(sql).where_clause == "id = 1"

    def test_quoted_table_keeps_quotes(self):
        target = parse_mutation('UPDATE "Sales"."Order Items" SET qty = 1')
        assert target.table == '"Sales"."Order Items"'
        assert target.alias is None

    def test_cte_led_delete(self):
        sql = "WITH old AS (SELECT id FROM t WHERE age > 3) DELETE FROM t WHERE id IN (SELECT id FROM old)"
        target = parse_mutation(sql)
        assert target.mutation_type == "DELETE"
        assert target.table == "t"
        assert target.where_clause == "id IN (SELECT id FROM old)"

    def test_non_mutation(self):
        assert parse_mutation("SELECT 1") is None


class TestQueries:
    def test_sample_and_count_queries(self):
        target = MutationTarget(
            mutation_type="DELETE", table="orders", alias="o", where_clause="o.total > 10"
        )
        assert target.sample_query(5) == "SELECT * FROM orders o WHERE o.total > 10 LIMIT 5"
        assert target.count_query() == "SELECT COUNT(*) AS count FROM orders o WHERE o.total > 10"

    def test_queries_without_where(self):
        target = MutationTarget(mutation_type="UPDATE", table="orders")
        assert target.sample_query(3) == "SELECT * FROM orders LIMIT 3"

    def test_with_returning_strips_terminator(self):
        assert with_returning("DELETE FROM t WHERE id = 1 ;  ") == "DELETE FROM t WHERE id = 1 RETURNING *"

    @pytest.mark.parametrize(
        "sql, expected",
        [
            (
                "DELETE FROM orders WHERE id < 3 -- cleanup",
                "DELETE FROM orders WHERE id < 3 RETURNING *",
            ),
            (
                "UPDATE t SET a = 1 /* bulk */ ; -- done\n",
                "UPDATE t SET a = 1 RETURNING *",
            ),
            (
                "INSERT INTO notes (body) VALUES ('-- not a comment')",
                "INSERT INTO notes (body) VALUES ('-- not a comment') RETURNING *",
            ),
        ],
    )
    def test_with_returning_skips_trailing_comments(self, sql, expected):
        assert with_returning(sql) == expected
