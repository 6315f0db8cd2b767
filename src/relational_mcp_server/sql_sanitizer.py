"""
Raw SQL safety checks.

Raw statements are analysed on a copy with comments, string literals, quoted
identifiers and dollar-quoted bodies blanked out, so keywords and placeholder
characters that only appear inside those regions never trigger a rejection.
"""

import logging
import re
from typing import Any, Optional

from .exceptions import (
    DangerousOperationError,
    EmptyQueryError,
    MissingParametersError,
    NullByteError,
    ParametersRequiredForMutationError,
)
from .models import DatabaseVendor

logger = logging.getLogger(__name__)

DANGEROUS_KEYWORD_PATTERN = re.compile(r"\b(create|drop|truncate|alter)\b", re.IGNORECASE)
NUMBERED_PLACEHOLDER_PATTERN = re.compile(r"\$(\d+)")
NAMED_PLACEHOLDER_PATTERN = re.compile(r"(?<!:):[a-zA-Z_][a-zA-Z0-9_]*")
PYFORMAT_PLACEHOLDER_PATTERN = re.compile(r"(?<!%)%(\([A-Za-z_][A-Za-z0-9_]*\))?s")
PARAMETER_REQUIRED_PATTERN = re.compile(r"^(insert|update|delete)\b")
MUTATION_PATTERN = re.compile(r"\b(insert|update|delete)\b")
WITH_PATTERN = re.compile(r"^with\b")
DOLLAR_TAG_CHAR = re.compile(r"[A-Za-z0-9_]")
QUESTION_OPERAND_CHAR = re.compile(r"[A-Za-z0-9_'\"$\[]")


def strip_comments_and_literals(sql: str, backslash_escapes: bool = False, dollar_quotes: bool = True) -> str:
    """
    Produce the safety-analysis copy of a SQL string.

    Comments become a single space, single-quoted literals become `''`,
    double-quoted identifiers become `""` and dollar-quoted bodies become `$$`.
    Dollar quoting is PostgreSQL syntax; pass dollar_quotes=False for other
    vendors, where `$` is an ordinary identifier character.
    """
    result = []
    i = 0
    length = len(sql)

    while i < length:
        ch = sql[i]
        nxt = sql[i + 1] if i + 1 < length else ""

        if ch == "-" and nxt == "-":
            result.append(" ")
            i += 2
            while i < length and sql[i] != "\n":
                i += 1
            continue

        if ch == "/" and nxt == "*":
            result.append(" ")
            end = sql.find("*/", i + 2)
            i = length if end == -1 else end + 2
            continue

        if ch in ("'", '"'):
            result.append(ch * 2)
            i = _skip_quoted(sql, i + 1, ch, backslash_escapes)
            continue

        if dollar_quotes and ch == "$":
            j = i + 1
            while j < length and DOLLAR_TAG_CHAR.match(sql[j]):
                j += 1
            if j < length and sql[j] == "$":
                tag = sql[i:j + 1]
                result.append("$$")
                end = sql.find(tag, j + 1)
                if end == -1:
                    break
                i = end + len(tag)
                continue

        result.append(ch)
        i += 1

    return "".join(result)


def _skip_quoted(sql: str, i: int, quote: str, backslash_escapes: bool) -> int:
    """Return the index just past the closing quote that starts before `i`."""
    length = len(sql)
    while i < length:
        if backslash_escapes and sql[i] == "\\" and i + 1 < length:
            i += 2
            continue
        if sql[i] == quote:
            if i + 1 < length and sql[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return i


def validate_sql_string(sql: str, vendor: Optional[str] = None) -> None:
    """
    Reject blank SQL, null bytes and destructive DDL keywords.

    Raises:
        EmptyQueryError: If the string is empty or whitespace
        NullByteError: If the string contains a null byte
        DangerousOperationError: If CREATE, DROP, TRUNCATE or ALTER appears as a word
            outside comments and literals
    """
    if not isinstance(sql, str) or not sql.strip():
        raise EmptyQueryError()

    if "\x00" in sql:
        raise NullByteError()

    analysed = _analysis_copy(sql, vendor)
    match = DANGEROUS_KEYWORD_PATTERN.search(analysed)
    if match:
        logger.warning(f"Rejected SQL containing dangerous keyword '{match.group(1).upper()}'")
        raise DangerousOperationError()


def enforce_parameterized_query_usage(sql: str, params: Any = None, vendor: Optional[str] = None) -> None:
    """
    Enforce parameter-binding discipline for a raw statement.

    Raises:
        MissingParametersError: If the SQL has placeholders and no params were given
        ParametersRequiredForMutationError: If an INSERT/UPDATE/DELETE has no params
    """
    analysed = _analysis_copy(sql, vendor)
    normalized = analysed.strip().lower()
    params_given = has_parameters(params)

    if has_placeholders(analysed, vendor) and not params_given:
        raise MissingParametersError()

    if WITH_PATTERN.match(normalized):
        requires_params = MUTATION_PATTERN.search(normalized) is not None
    else:
        requires_params = PARAMETER_REQUIRED_PATTERN.match(normalized) is not None

    if requires_params and not params_given:
        raise ParametersRequiredForMutationError()


def has_parameters(params: Any) -> bool:
    if params is None:
        return False
    if isinstance(params, dict):
        return len(params) > 0
    if isinstance(params, (list, tuple)):
        return len(params) > 0
    return True


def has_placeholders(analysed_sql: str, vendor: Optional[str] = None) -> bool:
    """Detect bind placeholders in an already stripped SQL string."""
    if NUMBERED_PLACEHOLDER_PATTERN.search(analysed_sql):
        return True
    if NAMED_PLACEHOLDER_PATTERN.search(analysed_sql):
        return True
    if PYFORMAT_PLACEHOLDER_PATTERN.search(analysed_sql):
        return True

    # ? / ?| / ?& are JSONB operators in PostgreSQL
    if vendor == DatabaseVendor.POSTGRESQL.value or vendor == DatabaseVendor.POSTGRESQL:
        return _has_postgres_question_placeholder(analysed_sql)

    return "?" in analysed_sql


def _has_postgres_question_placeholder(sql: str) -> bool:
    length = len(sql)
    for i, ch in enumerate(sql):
        if ch != "?":
            continue

        immediate = sql[i + 1] if i + 1 < length else None
        if immediate in ("|", "&"):
            continue

        next_token = _next_non_whitespace(sql, i + 1)
        if next_token is None or next_token in (",", ")", ";", ":"):
            return True

        # `data ? 'key'` style: ? used as the JSONB key-exists operator
        if QUESTION_OPERAND_CHAR.match(next_token):
            continue

        return True

    return False


def _next_non_whitespace(sql: str, start: int) -> Optional[str]:
    for ch in sql[start:]:
        if not ch.isspace():
            return ch
    return None


def _uses_backslash_escapes(vendor) -> bool:
    return vendor == DatabaseVendor.MYSQL.value or vendor == DatabaseVendor.MYSQL


def _uses_dollar_quotes(vendor) -> bool:
    return vendor == DatabaseVendor.POSTGRESQL.value or vendor == DatabaseVendor.POSTGRESQL


def _analysis_copy(sql: str, vendor) -> str:
    return strip_comments_and_literals(
        sql,
        backslash_escapes=_uses_backslash_escapes(vendor),
        dollar_quotes=_uses_dollar_quotes(vendor),
    )
