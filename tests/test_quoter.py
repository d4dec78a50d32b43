"""Tests for identifier/literal quoting and template rewriting."""

from __future__ import annotations

from dbal.quoter import Quoter


def _quoter(prefix: str = "tbl_", escaper=None) -> Quoter:  # type: ignore[no-untyped-def]
    return Quoter("`", "`", escaper, table_prefix=prefix)


def test_quote_simple_table_name_is_idempotent() -> None:
    quoter = _quoter()

    once = quoter.quote_simple_table_name("post")

    assert once == "`post`"
    assert quoter.quote_simple_table_name(once) == once


def test_quote_table_name_quotes_each_dotted_part() -> None:
    quoter = _quoter()

    assert quoter.quote_table_name("a.b") == "`a`.`b`"
    assert quoter.quote_table_name("post") == "`post`"


def test_quote_table_name_leaves_expressions_alone() -> None:
    quoter = _quoter()

    assert quoter.quote_table_name("(SELECT 1)") == "(SELECT 1)"
    assert quoter.quote_table_name("{{post}}") == "{{post}}"
    assert quoter.quote_table_name("(a) x (b)") == "`(a) x (b)`"


def test_quote_column_name_qualifies_table() -> None:
    quoter = _quoter()

    expected = quoter.quote_table_name("user") + "." + quoter.quote_simple_column_name("name")

    assert quoter.quote_column_name("user.name") == expected == "`user`.`name`"
    assert quoter.quote_column_name("public.user.name") == "`public`.`user`.`name`"
    assert quoter.quote_column_name("t.*") == "`t`.*"


def test_quote_column_name_skips_wildcards_and_expressions() -> None:
    quoter = _quoter()

    assert quoter.quote_column_name("*") == "*"
    assert quoter.quote_column_name("COUNT(*)") == "COUNT(*)"
    assert quoter.quote_column_name("[[name]]") == "[[name]]"
    assert quoter.quote_column_name("{{post}}.id") == "{{post}}.id"
    assert quoter.quote_simple_column_name("`id`") == "`id`"


def test_quote_sql_substitutes_table_prefix() -> None:
    quoter = _quoter()

    assert quoter.quote_sql("SELECT * FROM {{%post}}") == "SELECT * FROM `tbl_post`"


def test_quote_sql_rewrites_tables_and_columns() -> None:
    quoter = Quoter('"', '"', table_prefix="app_")

    sql = quoter.quote_sql("SELECT [[p.title]], [[id]] FROM {{%post}} p JOIN {{public.user}} u ON u.id = p.author")

    assert sql == 'SELECT "p"."title", "id" FROM "app_post" p JOIN "public"."user" u ON u.id = p.author'


def test_quote_sql_leaves_malformed_tokens_untouched() -> None:
    quoter = _quoter()
    sql = "SELECT {{post FROM [[title WHERE a = '{{'"

    assert quoter.quote_sql(sql) == sql


def test_bracket_pairs_use_start_and_end_characters() -> None:
    quoter = Quoter(("[", "]"), ("[", "]"))

    assert quoter.quote_table_name("dbo.users") == "[dbo].[users]"
    assert quoter.quote_column_name("users.id") == "[users].[id]"
    assert quoter.unquote_simple_table_name("[users]") == "users"
    assert quoter.unquote_simple_column_name("id") == "id"


def test_quote_value_passes_non_strings_through() -> None:
    quoter = _quoter(escaper=lambda value: "never")

    assert quoter.quote_value(42) == 42
    assert quoter.quote_value(None) is None
    assert quoter.quote_value(1.5) == 1.5


def test_quote_value_prefers_native_escaping() -> None:
    quoter = _quoter(escaper=lambda value: f"E'{value}'")

    assert quoter.quote_value("abc") == "E'abc'"


def test_quote_value_falls_back_when_escaping_unsupported() -> None:
    quoter = _quoter(escaper=lambda value: None)

    assert quoter.quote_value("it's\n\\") == "'it''s\\n\\\\'"
    assert quoter.quote_value("\x00\r\x1a") == "'\\000\\r\\032'"


def test_table_prefix_is_mutable() -> None:
    quoter = _quoter()
    quoter.table_prefix = "x_"

    assert quoter.quote_sql("{{%post}}") == "`x_post`"
