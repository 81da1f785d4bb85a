"""Tests for generated-statement checks."""

import pytest

from envclone.analysis import SyntaxValidationError
from envclone.analysis.syntax import (
    check_statement_shape,
    parse_statements,
    split_statements,
    strip_leading_comments,
)


class TestSplitStatements:
    """Statement splitting."""

    def test_splits_on_semicolons(self):
        assert split_statements("DROP TABLE a; DROP TABLE b;") == [
            "DROP TABLE a;",
            "DROP TABLE b;",
        ]

    def test_ignores_semicolons_in_dollar_quotes(self):
        sql = (
            "CREATE OR REPLACE FUNCTION public.f()\nRETURNS integer\nLANGUAGE sql\n"
            "AS $function$\nSELECT 1;\n$function$;\nCOMMENT ON FUNCTION public.f() IS 'x';"
        )

        statements = split_statements(sql)

        assert len(statements) == 2
        assert statements[0].endswith("$function$;")
        assert statements[1].startswith("COMMENT ON FUNCTION")

    def test_ignores_semicolons_in_literals_and_comments(self):
        sql = "-- first; second\nCOMMENT ON TABLE t IS 'a;b';"

        assert split_statements(sql) == [sql]

    def test_keeps_unterminated_tail(self):
        assert split_statements("DROP TABLE a; DROP TABLE b") == [
            "DROP TABLE a;",
            "DROP TABLE b",
        ]


class TestStatementShape:
    """Leading keyword and terminator checks."""

    def test_strip_leading_comments(self):
        assert (
            strip_leading_comments("-- Create table\n\n-- more\nCREATE TABLE t ();")
            == "CREATE TABLE t ();"
        )

    @pytest.mark.parametrize(
        "sql",
        [
            "-- Create table public.t\nCREATE TABLE public.t (\n  id bigint\n);",
            "ALTER TABLE public.t\n  ADD COLUMN name text;",
            "DROP INDEX CONCURRENTLY IF EXISTS public.t_idx;",
            "CREATE TABLE public.t (id bigint);\nCOMMENT ON TABLE public.t IS 'Things';",
        ],
    )
    def test_accepts_well_formed_statements(self, sql):
        check_statement_shape(sql)

    def test_rejects_unknown_keyword(self):
        with pytest.raises(SyntaxValidationError, match="unexpected keyword 'SELECT'"):
            check_statement_shape("SELECT 1;")

    def test_rejects_leading_comment_statement(self):
        with pytest.raises(SyntaxValidationError, match="unexpected keyword 'COMMENT'"):
            check_statement_shape(
                "-- Alter table public.t\nCOMMENT ON TABLE public.t IS 'new';"
            )

    def test_rejects_missing_terminator(self):
        with pytest.raises(SyntaxValidationError, match="not terminated"):
            check_statement_shape("DROP TABLE public.t")

    def test_rejects_empty_sql(self):
        with pytest.raises(SyntaxValidationError) as exc_info:
            check_statement_shape("-- nothing here")

        assert exc_info.value.sql == "-- nothing here"


class TestParseStatements:
    """Best-effort parsing with sqlglot."""

    def test_parses_plain_ddl(self):
        report = parse_statements(
            "CREATE TABLE public.t (id bigint NOT NULL);\nDROP TABLE IF EXISTS public.u;"
        )

        assert report.parsed == 2
        assert report.is_clean

    def test_parse_failure_is_a_warning(self):
        report = parse_statements("UPDATE public.t SET name = 'unterminated")

        assert report.parsed == 0
        assert len(report.warnings) == 1
        assert report.warnings[0].startswith("Could not parse 'UPDATE public.t")
