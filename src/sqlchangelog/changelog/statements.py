"""
SQL statement tokenization and splitting.

Statements are split on semicolon tokens found by the sqlglot tokenizer, so
semicolons inside string literals, quoted identifiers and comments never end
a statement. Nothing is parsed or rewritten; the original text of each
statement is kept.
"""

import re

from sqlglot.dialects.dialect import Dialect
from sqlglot.tokens import Token, TokenType


def tokenize(sql: str, dialect: str | None = None) -> list[Token]:
    """
    Tokenize SQL text.

    Args:
        sql: SQL text
        dialect: Optional sqlglot dialect name used for quoting rules

    Returns:
        List of sqlglot tokens (comments are attached to tokens, not emitted)

    Raises:
        sqlglot.errors.TokenError: If the text cannot be tokenized
    """
    return Dialect.get_or_raise(dialect).tokenize(sql)


def split_statements(sql: str, dialect: str | None = None) -> list[str]:
    """
    Split SQL text into statements at top-level semicolons.

    Trailing semicolons are dropped, and chunks holding nothing but
    comments or whitespace are discarded.

    Example:
        >>> split_statements("INSERT INTO t VALUES ('a;b'); SELECT 1;")
        ["INSERT INTO t VALUES ('a;b')", 'SELECT 1']
    """
    statements = []
    start = 0
    has_tokens = False
    for token in tokenize(sql, dialect):
        if token.token_type == TokenType.SEMICOLON:
            if has_tokens:
                statements.append(sql[start : token.start].strip())
            start = token.end + 1
            has_tokens = False
        else:
            has_tokens = True

    if has_tokens:
        statements.append(sql[start:].strip())
    return statements


def split_on_delimiter(sql: str, delimiter: str) -> list[str]:
    """
    Split SQL text on a custom end delimiter.

    A statement ends at a line consisting only of the delimiter (``GO``) or
    at a line ending with it (``END$$``). Matching is case-insensitive.
    """
    statements = []
    current: list[str] = []
    pattern = re.compile(rf"^(.*?){re.escape(delimiter)}\s*$", re.IGNORECASE | re.DOTALL)

    for line in sql.splitlines():
        match = pattern.match(line)
        if match:
            current.append(match.group(1))
            chunk = "\n".join(current).strip()
            if chunk:
                statements.append(chunk)
            current = []
        else:
            current.append(line)

    tail = "\n".join(current).strip()
    if tail:
        statements.append(tail)
    return statements
