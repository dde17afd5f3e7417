"""
SQL identifier and value escaping utilities.

Ledger queries are built as SQL text, so every value and identifier that
reaches them goes through these helpers.
"""

import re
from datetime import datetime
from typing import Any

_IDENTIFIER_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def escape_sql_string(value: str) -> str:
    """Escape single quotes for SQL strings."""
    return value.replace("'", "''")


def sql_value(value: Any) -> str:
    """
    Convert Python value to SQL literal.

    Example:
        >>> sql_value("O'Brien")
        "'O''Brien'"
        >>> sql_value(None)
        'NULL'
    """
    if value is None:
        return "NULL"
    # bool before int: isinstance(True, int) holds
    elif isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    elif isinstance(value, (int, float)):
        return str(value)
    elif isinstance(value, datetime):
        return f"TIMESTAMP '{value.isoformat(sep=' ')}'"
    else:
        return f"'{escape_sql_string(str(value))}'"


def validate_identifier(identifier: str) -> bool:
    """
    Validate that identifier contains only safe characters.

    Allows letters, numbers and underscores, not starting with a digit.
    """
    return bool(identifier) and bool(_IDENTIFIER_RE.match(identifier))


def qualified_name(schema: str | None, table: str) -> str:
    """
    Build a ``schema.table`` reference from validated identifiers.

    Raises:
        ValueError: If schema or table are not plain identifiers
    """
    for part in (schema, table):
        if part is not None and not validate_identifier(part):
            raise ValueError(f"Invalid SQL identifier '{part}': use letters, digits and underscores only")
    return f"{schema}.{table}" if schema else table
