"""
Changeset checksums for drift detection.

The checksum covers the token stream of the forward statements: whitespace,
line breaks and comments may change freely, any token change (including
whitespace inside a string literal) produces a new checksum.
"""

import hashlib
from collections.abc import Iterable

from sqlglot.errors import TokenError

from sqlchangelog.changelog.statements import tokenize
from sqlchangelog.utils.logging import get_logger

logger = get_logger("sqlchangelog.changelog.checksum")

# Bumped whenever normalization changes, so old ledger values stay recognisable
CHECKSUM_VERSION = "1"


def normalize_statement(statement: str, dialect: str | None = None) -> str:
    """
    Normalize a statement into its canonical checksum form.

    Each token is written as ``TYPE:length:text`` so token boundaries cannot
    be forged by literal contents. Text that cannot be tokenized falls back
    to whitespace-collapsed text.
    """
    try:
        tokens = tokenize(statement, dialect)
    except TokenError as e:
        logger.debug(f"Checksumming untokenizable statement as plain text: {e}")
        return " ".join(statement.split())
    return "\n".join(f"{t.token_type.name}:{len(t.text)}:{t.text}" for t in tokens)


def compute_checksum(statements: Iterable[str], dialect: str | None = None) -> str:
    """
    Compute the checksum of an ordered sequence of statements.

    Args:
        statements: Forward statements of a changeset
        dialect: Optional sqlglot dialect name used for tokenizing

    Returns:
        Checksum string ``"<version>:<sha256 hex>"``
    """
    sha256_hash = hashlib.sha256()
    for statement in statements:
        sha256_hash.update(normalize_statement(statement, dialect).encode("utf-8"))
        sha256_hash.update(b"\x00")
    return f"{CHECKSUM_VERSION}:{sha256_hash.hexdigest()}"
