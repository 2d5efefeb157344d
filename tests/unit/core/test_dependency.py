# tests/unit/core/test_dependency.py
"""Tests for lexical table-dependency extraction."""

import pytest

from squeel.contracts.types import TableDependencies
from squeel.core.dependency import extract_cte_names, extract_tables, resolve_dependencies, strip_noise


class TestExtractTables:
    """Table references found after FROM / JOIN / UPDATE / INTO."""

    def test_join_reports_both_tables(self) -> None:
        sql = "SELECT * FROM orders o JOIN customers c ON o.customer_id = c.id"
        assert extract_tables(sql) == frozenset({"orders", "customers"})

    def test_cte_name_is_excluded(self) -> None:
        sql = "WITH recent AS (SELECT * FROM orders) SELECT * FROM recent"
        assert extract_tables(sql) == frozenset({"orders"})

    def test_pragma_is_unknown(self) -> None:
        assert extract_tables("PRAGMA foreign_keys") is None

    def test_ddl_is_unknown(self) -> None:
        assert extract_tables("CREATE TABLE todos (id INTEGER PRIMARY KEY)") is None

    @pytest.mark.parametrize(
        ("sql", "expected"),
        [
            ("INSERT INTO todos (title) VALUES (?)", {"todos"}),
            ("UPDATE todos SET done = 1 WHERE id = ?", {"todos"}),
            ("DELETE FROM todos WHERE id = ?", {"todos"}),
            ("INSERT OR REPLACE INTO todos (id, title) VALUES (1, 'x')", {"todos"}),
            ("UPDATE OR IGNORE todos SET done = 1", {"todos"}),
            ("REPLACE INTO tags (label) VALUES ('a')", {"tags"}),
        ],
    )
    def test_write_statements(self, sql: str, expected: set[str]) -> None:
        assert extract_tables(sql) == frozenset(expected)

    def test_names_are_lower_cased(self) -> None:
        assert extract_tables("select * from Orders JOIN CUSTOMERS on 1") == frozenset({"orders", "customers"})

    @pytest.mark.parametrize("quoted", ['"Orders"', "`Orders`", "[Orders]"])
    def test_quoted_identifiers(self, quoted: str) -> None:
        assert extract_tables(f"SELECT * FROM {quoted}") == frozenset({"orders"})

    def test_schema_qualified_name_uses_table_part(self) -> None:
        assert extract_tables("SELECT * FROM main.orders") == frozenset({"orders"})

    def test_comma_separated_from_list(self) -> None:
        sql = "SELECT * FROM orders o, customers AS c, items WHERE o.id = c.id"
        assert extract_tables(sql) == frozenset({"orders", "customers", "items"})

    def test_subquery_tables_found(self) -> None:
        sql = "SELECT * FROM (SELECT id FROM todos) AS t WHERE t.id IN (SELECT todo_id FROM tags)"
        assert extract_tables(sql) == frozenset({"todos", "tags"})

    def test_insert_select_over_approximates(self) -> None:
        sql = "INSERT INTO archive SELECT * FROM todos WHERE done = 1"
        assert extract_tables(sql) == frozenset({"archive", "todos"})

    def test_keywords_inside_string_literals_ignored(self) -> None:
        sql = "SELECT * FROM todos WHERE title = 'copy FROM elsewhere'"
        assert extract_tables(sql) == frozenset({"todos"})

    def test_escaped_quote_in_literal(self) -> None:
        sql = "SELECT * FROM todos WHERE title = 'it''s FROM secrets'"
        assert extract_tables(sql) == frozenset({"todos"})

    def test_comments_ignored(self) -> None:
        sql = """
        -- SELECT * FROM old_table
        SELECT * FROM todos /* JOIN hidden ON 1 */
        """
        assert extract_tables(sql) == frozenset({"todos"})

    def test_multiple_ctes(self) -> None:
        sql = """
        WITH RECURSIVE a AS (SELECT * FROM orders),
             b(x) AS (SELECT x FROM a JOIN customers ON 1)
        SELECT * FROM b
        """
        assert extract_tables(sql) == frozenset({"orders", "customers"})

    def test_only_cte_references_is_unknown(self) -> None:
        sql = "WITH nums AS (SELECT 1 AS n) SELECT n FROM nums"
        assert extract_tables(sql) is None


class TestExtractCteNames:
    def test_no_with_clause(self) -> None:
        assert extract_cte_names("SELECT 1, 2") == frozenset()

    def test_continuation_names_collected(self) -> None:
        sql = "WITH a AS (SELECT 1), b AS MATERIALIZED (SELECT 2) SELECT * FROM a, b"
        assert extract_cte_names(sql) == frozenset({"a", "b"})


class TestStripNoise:
    def test_literal_bodies_blanked(self) -> None:
        assert strip_noise("SELECT 'FROM x'") == "SELECT ''"

    def test_comment_markers_inside_literal_kept_as_literal(self) -> None:
        assert strip_noise("SELECT '--', a FROM t") == "SELECT '', a FROM t"


class TestResolveDependencies:
    def test_unknown_becomes_wildcard(self) -> None:
        assert resolve_dependencies("PRAGMA user_version = 3") == TableDependencies.any()

    def test_known_tables(self) -> None:
        deps = resolve_dependencies("SELECT * FROM todos")
        assert deps.tables == frozenset({"todos"})
        assert not deps.wildcard
