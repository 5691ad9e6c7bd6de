"""Filter language shared by the document stores.

A filter maps top-level field names to either a literal (equality) or an
operator mapping. Supported operators: ``$in``, ``$ne``, ``$gt``, ``$gte``,
``$lt``, ``$lte`` and ``$exists``. The in-process store evaluates filters
with :func:`matches`; the PostgreSQL store compiles them to SQL over a JSONB
``data`` column with :func:`compile_filter`.
"""

import re
from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from beartype import beartype

from ..core.errors import ValidationError
from .base import ASCENDING, DESCENDING, Document, Filter, SortSpec

COMPARISON_OPERATORS = {"$gt", "$gte", "$lt", "$lte"}
OPERATORS = COMPARISON_OPERATORS | {"$in", "$ne", "$exists"}

_FIELD_NAME = re.compile(r"^[a-z_][a-z0-9_]*$")


def normalize_value(value: Any) -> Any:
    """Convert Python values to their JSON document representation."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return [normalize_value(item) for item in value]
    return value


@beartype
def validate_filter(filter: Filter) -> None:
    """Reject unknown operators and unsafe field names."""
    for name, condition in filter.items():
        if not _FIELD_NAME.match(name):
            raise ValidationError(f"Invalid filter field name: {name!r}", field=name)
        if isinstance(condition, Mapping):
            unknown = set(condition) - OPERATORS
            if unknown:
                raise ValidationError(
                    f"Unsupported filter operators: {sorted(unknown)}", field=name
                )
            if "$in" in condition and not isinstance(
                condition["$in"], (list, tuple, set, frozenset)
            ):
                raise ValidationError("$in requires a sequence", field=name)


def _compare(actual: Any, operator: str, expected: Any) -> bool:
    if actual is None:
        return False
    try:
        if operator == "$gt":
            return actual > expected
        if operator == "$gte":
            return actual >= expected
        if operator == "$lt":
            return actual < expected
        return actual <= expected
    except TypeError:
        return False


def _matches_condition(actual: Any, present: bool, condition: Any) -> bool:
    if not isinstance(condition, Mapping):
        return actual == normalize_value(condition)

    for operator, expected in condition.items():
        expected = normalize_value(expected)
        if operator == "$in":
            if actual not in expected:
                return False
        elif operator == "$ne":
            if actual == expected:
                return False
        elif operator == "$exists":
            if (present and actual is not None) != bool(expected):
                return False
        elif not _compare(actual, operator, expected):
            return False
    return True


@beartype
def matches(document: Document, filter: Filter) -> bool:
    """Evaluate a filter against a document."""
    for name, condition in filter.items():
        if not _matches_condition(document.get(name), name in document, condition):
            return False
    return True


@beartype
def sort_documents(documents: list[Document], sort: SortSpec | None) -> list[Document]:
    """Sort documents by the given (field, direction) pairs, None values last."""
    if not sort:
        return documents
    ordered = list(documents)
    # Stable sorts applied from the least significant key.
    for name, direction in reversed(list(sort)):
        if direction not in (ASCENDING, DESCENDING):
            raise ValidationError(f"Invalid sort direction for {name}: {direction}")
        present = [doc for doc in ordered if doc.get(name) is not None]
        missing = [doc for doc in ordered if doc.get(name) is None]
        present.sort(key=lambda doc: doc[name], reverse=direction == DESCENDING)
        ordered = present + missing
    return ordered


def _text_form(value: Any) -> str:
    """Representation produced by the ``->>`` operator for a JSON value."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@beartype
def compile_filter(filter: Filter, *, start_index: int = 1) -> tuple[str, list[Any]]:
    """Compile a filter to a SQL predicate over the ``data`` JSONB column.

    Returns the predicate and its positional parameters, numbered from
    ``start_index``. Field names are validated before being inlined.
    """
    validate_filter(filter)
    clauses: list[str] = []
    params: list[Any] = []

    def bind(value: Any) -> str:
        params.append(value)
        return f"${start_index + len(params) - 1}"

    for name, condition in filter.items():
        if not isinstance(condition, Mapping):
            clauses.append(f"data @> {bind({name: normalize_value(condition)})}::jsonb")
            continue

        for operator, expected in condition.items():
            expected = normalize_value(expected)
            if operator == "$in":
                placeholder = bind([_text_form(item) for item in expected])
                clauses.append(f"data ->> '{name}' = ANY({placeholder}::text[])")
            elif operator == "$ne":
                clauses.append(f"NOT (data @> {bind({name: expected})}::jsonb)")
            elif operator == "$exists":
                present = f"(data ? '{name}' AND data -> '{name}' <> 'null'::jsonb)"
                clauses.append(present if expected else f"NOT {present}")
            else:
                sql_operator = {"$gt": ">", "$gte": ">=", "$lt": "<", "$lte": "<="}[
                    operator
                ]
                if isinstance(expected, str):
                    clauses.append(f"data ->> '{name}' {sql_operator} {bind(expected)}")
                elif isinstance(expected, (int, float)) and not isinstance(expected, bool):
                    clauses.append(
                        f"(data ->> '{name}')::numeric {sql_operator} {bind(expected)}"
                    )
                else:
                    raise ValidationError(
                        f"{operator} requires a numeric or string operand", field=name
                    )

    return (" AND ".join(clauses) or "TRUE"), params


@beartype
def compile_sort(sort: SortSpec | None) -> str:
    """Compile a sort spec to an ORDER BY clause."""
    if not sort:
        return "ORDER BY created_at, id"
    parts: list[str] = []
    for name, direction in sort:
        if not _FIELD_NAME.match(name):
            raise ValidationError(f"Invalid sort field name: {name!r}", field=name)
        if direction not in (ASCENDING, DESCENDING):
            raise ValidationError(f"Invalid sort direction for {name}: {direction}")
        order = "ASC" if direction == ASCENDING else "DESC"
        parts.append(f"data -> '{name}' {order} NULLS LAST")
    parts.append("id")
    return "ORDER BY " + ", ".join(parts)
