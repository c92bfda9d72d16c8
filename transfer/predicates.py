"""
Length-bounded filter predicates over large literal sets.

The remote query language rejects WHERE clauses above an undocumented
length, so a filter over tens of thousands of keys has to be split into
several complete expressions, each queried separately. Everything here is
pure and performs no I/O.

Usage:
    clauses = build_in_clauses("Id", ids, where="IsDeleted = false")
    for clause in clauses:
        query = f"SELECT Id, Name FROM Account WHERE {clause}"
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Sequence, Union
import enum

from core.config import settings
from core.exceptions import PredicateLengthError


class Combinator(str, enum.Enum):
    """Boolean operator joining sibling clauses"""
    AND = "AND"
    OR = "OR"


@dataclass(frozen=True)
class PredicateFragment:
    """One syntactically complete filter clause and how it joins its siblings"""
    clause: str
    combinator: Combinator = Combinator.AND


def value_to_literal(value: Any) -> str:
    """
    Serialize a Python value as a query-language literal.

    Strings are single-quoted with backslashes and quotes escaped, dates and
    datetimes become unquoted ISO-8601 literals (datetimes in UTC, no
    fractional seconds), None becomes NULL.
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.strftime("%Y-%m-%dT%H:%M:%SZ")
    if isinstance(value, date):
        return value.isoformat()

    text = value if isinstance(value, str) else str(value)
    escaped = text.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def build_in_clauses(
    field: str,
    values: Iterable[Any],
    where: Optional[str] = None,
    max_length: Optional[int] = None
) -> List[str]:
    """
    Build `field IN (...)` expressions that each fit in max_length.

    Args:
        field: Field the literals are matched against
        values: Literals (str, number, bool, date, datetime, None)
        where: Optional clause conjoined to every expression with AND
        max_length: Length budget per expression (defaults to settings)

    Returns:
        Expressions in input order; every literal appears in exactly one.
        An empty input yields an empty list.

    Raises:
        PredicateLengthError: If a single literal cannot fit in any expression
    """
    if max_length is None:
        max_length = settings.PREDICATE_MAX_LENGTH

    if where:
        prefix, suffix = f"({where}) AND ({field} IN (", "))"
    else:
        prefix, suffix = f"{field} IN (", ")"

    literals = (value_to_literal(value) for value in values)
    return _pack(literals, ",", prefix, suffix, max_length, field=field)


def combine_clauses(
    clauses: Sequence[Union[str, PredicateFragment]],
    combinator: Combinator = Combinator.OR,
    where: Optional[str] = None,
    max_length: Optional[int] = None
) -> List[str]:
    """
    Join pre-built clauses with one combinator, split by length.

    Each clause is parenthesized and joined as `(c1) OR (c2) ...`. When
    where is given, each resulting expression becomes
    `(where) AND ((c1) OR (c2) ...)`.

    Raises:
        PredicateLengthError: If a single clause cannot fit in any expression
    """
    if max_length is None:
        max_length = settings.PREDICATE_MAX_LENGTH

    combinator = Combinator(combinator)

    if where:
        prefix, suffix = f"({where}) AND (", ")"
    else:
        prefix, suffix = "", ""

    items = (f"({_clause_text(clause)})" for clause in clauses)
    return _pack(items, f" {combinator.value} ", prefix, suffix, max_length)


def join_fragments(fragments: Sequence[PredicateFragment]) -> str:
    """
    Render fragments left to right into one expression.

    Each fragment is attached to everything before it with its own
    combinator; the first fragment's combinator is ignored. Grouping is
    explicit so mixed AND/OR never depends on operator precedence.
    """
    expression = ""
    for fragment in fragments:
        if not expression:
            expression = f"({fragment.clause})"
        else:
            expression = f"({expression} {fragment.combinator.value} ({fragment.clause}))"
    return expression


def _clause_text(clause: Union[str, PredicateFragment]) -> str:
    if isinstance(clause, PredicateFragment):
        return clause.clause
    return clause


def _pack(
    items: Iterable[str],
    separator: str,
    prefix: str,
    suffix: str,
    max_length: int,
    field: Optional[str] = None
) -> List[str]:
    """Greedily fill prefix + items + suffix expressions up to max_length."""
    base_length = len(prefix) + len(suffix)
    expressions: List[str] = []
    current: List[str] = []
    current_length = base_length

    for item in items:
        if base_length + len(item) > max_length:
            context = {"value": item[:200], "max_length": max_length}
            if field:
                context["field"] = field
            raise PredicateLengthError(
                f"Value {item[:200]} does not fit in a predicate of at most {max_length} characters",
                context=context
            )

        added = len(item) + (len(separator) if current else 0)
        if current and current_length + added > max_length:
            expressions.append(prefix + separator.join(current) + suffix)
            current = []
            current_length = base_length
            added = len(item)

        current.append(item)
        current_length += added

    if current:
        expressions.append(prefix + separator.join(current) + suffix)

    return expressions
