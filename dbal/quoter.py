"""Identifier and literal quoting plus `{{table}}` / `[[column]]` template rewriting."""

from __future__ import annotations

import re
from typing import Callable, TypeVar

QuoteCharacter = str | tuple[str, str]
LiteralEscaper = Callable[[str], "str | None"]

T = TypeVar("T")

_TEMPLATE_TOKEN = re.compile(r"(\{\{(%?[\w\-. ]+%?)\}\}|\[\[([\w\-. ]+)\]\])")

# Characters backslash-escaped by the generic fallback, rendered C-style.
_FALLBACK_ESCAPES = str.maketrans(
    {
        "\x00": "\\000",
        "\n": "\\n",
        "\r": "\\r",
        "\\": "\\\\",
        "\x1a": "\\032",
    }
)


class Quoter:
    """Quotes table names, column names and string literals for one engine."""

    def __init__(
        self,
        column_quote_character: QuoteCharacter,
        table_quote_character: QuoteCharacter,
        escaper: LiteralEscaper | None = None,
        *,
        table_prefix: str = "",
    ) -> None:
        self._column_quotes = _pair(column_quote_character)
        self._table_quotes = _pair(table_quote_character)
        self._escaper = escaper
        self.table_prefix = table_prefix

    def quote_simple_table_name(self, name: str) -> str:
        """Quote a table name that has no schema prefix.

        Names already containing the starting quote character are returned as-is.
        """

        start, end = self._table_quotes
        if start in name:
            return name
        return f"{start}{name}{end}"

    def quote_table_name(self, name: str) -> str:
        """Quote a table name, quoting each dotted part (schema.table) separately.

        Parenthesized sub-expressions and names containing `{{` are left alone.
        """

        if name.startswith("(") and name.find(")") == len(name) - 1:
            return name
        if "{{" in name:
            return name
        if "." not in name:
            return self.quote_simple_table_name(name)
        return ".".join(self.quote_simple_table_name(part) for part in self.get_table_name_parts(name))

    def quote_simple_column_name(self, name: str) -> str:
        """Quote a column name that has no table prefix."""

        start, end = self._column_quotes
        if name == "*" or start in name:
            return name
        return f"{start}{name}{end}"

    def quote_column_name(self, name: str) -> str:
        """Quote a column name, quoting its table qualifier when present.

        Expressions (containing `(`, `[[` or `{{`) are returned unchanged.
        """

        if "(" in name or "[[" in name or "{{" in name:
            return name
        qualifier, dot, column = name.rpartition(".")
        prefix = f"{self.quote_table_name(qualifier)}." if dot else ""
        return prefix + self.quote_simple_column_name(column)

    def unquote_simple_table_name(self, name: str) -> str:
        start, _ = self._table_quotes
        return name[1:-1] if start in name else name

    def unquote_simple_column_name(self, name: str) -> str:
        start, _ = self._column_quotes
        return name[1:-1] if start in name else name

    def quote_value(self, value: T) -> T | str:
        """Quote a string literal; any other value is returned unchanged."""

        if not isinstance(value, str):
            return value
        if self._escaper is not None:
            quoted = self._escaper(value)
            if quoted is not None:
                return quoted
        return "'" + value.replace("'", "''").translate(_FALLBACK_ESCAPES) + "'"

    def quote_sql(self, sql: str) -> str:
        """Quote every `{{table}}` and `[[column]]` token in the statement.

        A `%` inside `{{...}}` is replaced with the configured table prefix.
        """

        def _replace(match: re.Match[str]) -> str:
            column = match.group(3)
            if column is not None:
                return self.quote_column_name(column)
            return self.quote_table_name(match.group(2)).replace("%", self.table_prefix)

        return _TEMPLATE_TOKEN.sub(_replace, sql)

    def get_table_name_parts(self, name: str) -> list[str]:
        return name.split(".")


def _pair(character: QuoteCharacter) -> tuple[str, str]:
    if isinstance(character, str):
        return character, character
    start, end = character
    return start, end


__all__ = ["LiteralEscaper", "QuoteCharacter", "Quoter"]
