"""Identifier validation and vendor-specific quoting for table and column names."""

import re

from .dialects import get_dialect
from .exceptions import InvalidIdentifierError

IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
QUALIFIED_IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?")


def _check_not_empty(name, label: str) -> None:
    if not isinstance(name, str) or not name:
        raise InvalidIdentifierError(f"{label} must not be empty")


def validate_identifier(name: str, label: str = "Identifier") -> str:
    """
    Validate a single-segment identifier such as a column name.

    Raises:
        InvalidIdentifierError: If the name is empty or has characters outside [A-Za-z0-9_]
    """
    _check_not_empty(name, label)
    if not IDENTIFIER_PATTERN.fullmatch(name):
        raise InvalidIdentifierError(
            f"{label} '{name}' contains invalid characters. Only letters, digits and "
            f"underscores are allowed, and it must not start with a digit."
        )
    return name


def validate_qualified_identifier(name: str, label: str = "Identifier") -> str:
    """
    Validate an identifier that may carry one `schema.` qualifier.

    Raises:
        InvalidIdentifierError: If the name does not match `name` or `schema.name`
    """
    _check_not_empty(name, label)
    if not QUALIFIED_IDENTIFIER_PATTERN.fullmatch(name):
        raise InvalidIdentifierError(
            f"{label} '{name}' contains invalid characters. Only letters, digits, "
            f"underscores and one dot for schema qualification are allowed."
        )
    return name


def quote_identifier(name: str, vendor, label: str = "Identifier") -> str:
    """Validate and quote a single-segment identifier."""
    validate_identifier(name, label)
    return get_dialect(vendor).quote(name)


def quote_qualified_identifier(name: str, vendor, label: str = "Identifier") -> str:
    """Validate and quote each dot segment of a possibly qualified identifier."""
    validate_qualified_identifier(name, label)
    dialect = get_dialect(vendor)
    return ".".join(dialect.quote(segment) for segment in name.split("."))
