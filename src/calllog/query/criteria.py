"""Value objects describing what to read from or write to the call log.

FetchCriteria captures loosely-typed caller intent. Predicate and Mutation are
the backend-neutral shapes FilterBuilder produces from it: an ordered
conjunction of typed comparisons whose placeholders line up 1:1 with the
bound parameters. No value is ever rendered into the clause text.

Usage:
    from calllog.query.criteria import CallType, Comparison, Predicate

    predicate = Predicate(clauses=(Comparison("type", "=", CallType.MISSED),))
    predicate.where       # "type = ?"
    predicate.parameters  # (3,)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from calllog.core.errors import PredicateError

# Sentinels accepted wherever a call type or slot is expected
CALL_TYPE_ALL = -1
SLOT_ALL = -1

# Rows returned per fetch unless the dispatcher is configured otherwise
DEFAULT_LOG_LIMIT = 1000

# Columns a predicate may reference
CALL_COLUMNS = frozenset(
    {
        "id",
        "number",
        "cached_name",
        "type",
        "date",
        "duration",
        "account_id",
        "is_new",
        "is_read",
    }
)

OPERATORS = frozenset({"=", "!=", ">", ">=", "<", "<=", "LIKE"})

# Fixed row ordering for every fetch
DEFAULT_SORT_ORDER = "date DESC"


class CallType(IntEnum):
    """Type of a call log entry, as stored in the `type` column."""

    INCOMING = 1
    OUTGOING = 2
    MISSED = 3
    VOICEMAIL = 4
    REJECTED = 5
    BLOCKED = 6


@dataclass(frozen=True)
class FetchCriteria:
    """Caller-supplied filter for a call log fetch.

    Attributes:
        call_type: A CallType value, or CALL_TYPE_ALL
        newer_than: Only calls with date strictly after this (0 = no bound)
        older_than: Only calls with date at or before this (0 = no bound)
        slot: Account slot index, or SLOT_ALL
        new_only: Only calls still flagged as new
        filter_text: Free-text substring matched against number and name
        limit: Row cap; non-positive means the builder's default
    """

    call_type: int = CALL_TYPE_ALL
    newer_than: int = 0
    older_than: int = 0
    slot: int = SLOT_ALL
    new_only: bool = False
    filter_text: str | None = None
    limit: int = -1


@dataclass(frozen=True)
class Comparison:
    """A single `column operator ?` comparison with its bound value."""

    column: str
    operator: str
    value: Any

    def __post_init__(self) -> None:
        if self.column not in CALL_COLUMNS:
            raise PredicateError(
                f"Unknown call log column '{self.column}' in predicate. "
                f"Expected one of: {', '.join(sorted(CALL_COLUMNS))}"
            )
        if self.operator not in OPERATORS:
            raise PredicateError(
                f"Unsupported operator '{self.operator}' for column '{self.column}'. "
                f"Expected one of: {', '.join(sorted(OPERATORS))}"
            )
        if self.value is None:
            raise PredicateError(
                f"Comparison on '{self.column}' has no value; omit the clause instead"
            )

    def render(self) -> str:
        return f"{self.column} {self.operator} ?"

    def bind(self) -> tuple[Any, ...]:
        return (self.value,)


@dataclass(frozen=True)
class AnyOf:
    """A parenthesized OR of comparisons, treated as one clause."""

    comparisons: tuple[Comparison, ...]

    def __post_init__(self) -> None:
        if not self.comparisons:
            raise PredicateError("AnyOf clause needs at least one comparison")

    def render(self) -> str:
        return "(" + " OR ".join(c.render() for c in self.comparisons) + ")"

    def bind(self) -> tuple[Any, ...]:
        return tuple(value for c in self.comparisons for value in c.bind())


Clause = Comparison | AnyOf


@dataclass(frozen=True)
class Predicate:
    """Backend-neutral filter: clauses ANDed together, plus the row cap.

    Attributes:
        clauses: Ordered clauses; empty means "match everything"
        limit: Maximum rows to return (None for updates)
        ignored: Criteria that were requested but contributed no clause
    """

    clauses: tuple[Clause, ...] = ()
    limit: int | None = None
    ignored: tuple[str, ...] = field(default=())

    @property
    def where(self) -> str | None:
        """WHERE clause text with `?` placeholders, or None when unfiltered."""
        if not self.clauses:
            return None
        return " AND ".join(clause.render() for clause in self.clauses)

    @property
    def parameters(self) -> tuple[Any, ...]:
        """Bound values, positionally matching the placeholders in `where`."""
        return tuple(value for clause in self.clauses for value in clause.bind())


@dataclass(frozen=True)
class Mutation:
    """An update: set `values` on every row matching `predicate`."""

    predicate: Predicate
    values: tuple[tuple[str, Any], ...]

    def __post_init__(self) -> None:
        if not self.values:
            raise PredicateError("Mutation has no column values to set")
        for column, _ in self.values:
            if column not in CALL_COLUMNS:
                raise PredicateError(f"Cannot update unknown call log column '{column}'")
        if self.predicate.limit is not None:
            raise PredicateError("Updates are never row-limited; build the predicate without a limit")

    @property
    def set_clause(self) -> str:
        return ", ".join(f"{column} = ?" for column, _ in self.values)

    @property
    def parameters(self) -> tuple[Any, ...]:
        """SET values first, then WHERE parameters."""
        return tuple(value for _, value in self.values) + self.predicate.parameters
