"""Tests for dqsync.sql_guard module."""

import pytest

from dqsync.sql_guard import UnsafeQueryError, prepare_subquery, validate_readonly_sql


class TestValidateReadonlySql:
    """Tests for validate_readonly_sql function."""

    def test_accepts_simple_select(self):
        validate_readonly_sql("SELECT * FROM table")

    def test_accepts_with_cte(self):
        validate_readonly_sql("WITH cte AS (SELECT 1) SELECT * FROM cte")

    def test_accepts_trailing_semicolon(self):
        validate_readonly_sql("SELECT * FROM table;")

    def test_accepts_column_names_containing_keywords(self):
        """updated_at / created_by are not the UPDATE / CREATE keywords."""
        validate_readonly_sql("SELECT MAX(updated_at), created_by FROM t GROUP BY created_by")

    def test_rejects_insert(self):
        with pytest.raises(UnsafeQueryError) as exc_info:
            validate_readonly_sql("INSERT INTO table VALUES (1)")
        assert "must start with SELECT or WITH" in str(exc_info.value)

    def test_rejects_mutating_keyword_in_cte(self):
        with pytest.raises(UnsafeQueryError) as exc_info:
            validate_readonly_sql("WITH x AS (SELECT 1) DELETE FROM t WHERE TRUE")
        assert "delete" in str(exc_info.value)

    def test_rejects_multi_statement(self):
        with pytest.raises(UnsafeQueryError) as exc_info:
            validate_readonly_sql("SELECT 1; SELECT 2")
        assert "Multi-statement" in str(exc_info.value)

    def test_rejects_empty_after_comments(self):
        with pytest.raises(UnsafeQueryError):
            validate_readonly_sql("-- nothing here")

    def test_keyword_in_comment_ignored(self):
        validate_readonly_sql("SELECT 1 -- drop table later")

    def test_keyword_in_literal_ignored(self):
        validate_readonly_sql("SELECT COUNT(*) AS n FROM audit.log WHERE action = 'delete'")

    def test_semicolon_in_literal_ignored(self):
        validate_readonly_sql("SELECT COUNT(*) AS n FROM t WHERE sep = ';' AND tag = \"a;b\";")

    def test_comment_after_literal_still_checked(self):
        with pytest.raises(UnsafeQueryError, match="Multi-statement"):
            validate_readonly_sql("SELECT 'x' AS n; /* then */ SELECT 2")

    def test_is_value_error(self):
        assert issubclass(UnsafeQueryError, ValueError)


class TestPrepareSubquery:
    """Tests for prepare_subquery."""

    def test_strips_trailing_semicolon(self):
        assert prepare_subquery("SELECT 1 AS n;") == "SELECT 1 AS n"

    def test_strips_line_comments(self):
        """A trailing -- comment would swallow the closing parenthesis of the CTE."""
        sql = prepare_subquery("SELECT COUNT(*) AS n FROM t -- total")
        assert "--" not in sql
        assert sql == "SELECT COUNT(*) AS n FROM t"

    def test_strips_block_comments(self):
        assert prepare_subquery("SELECT /* hint */ 1 AS n") == "SELECT  1 AS n"

    def test_validates(self):
        with pytest.raises(UnsafeQueryError):
            prepare_subquery("DROP TABLE t")

    def test_keeps_dashes_inside_literals(self):
        sql = "SELECT COUNT(*) AS n FROM sales.orders WHERE note != '--' AND region = 'EU'"
        assert prepare_subquery(sql) == sql

    def test_keeps_comment_markers_inside_literals(self):
        sql = "SELECT COUNT(*) AS n FROM t WHERE a = '/* x */' AND b = \"it\\\"s -- fine\" -- note"
        assert prepare_subquery(sql) == "SELECT COUNT(*) AS n FROM t WHERE a = '/* x */' AND b = \"it\\\"s -- fine\""
