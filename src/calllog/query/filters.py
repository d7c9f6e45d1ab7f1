"""Translate caller criteria into parameterized predicates and mutations.

FilterBuilder applies its rules as an ordered conjunction, and only active
criteria contribute a clause:

1. new_only          -> is_new = ?        (1)
2. specific type     -> type = ?
3. specific slot     -> account_id = ?    (first resolved account id)
4. newer_than > 0    -> date > ?
5. older_than > 0    -> date <= ?

Free-text search is a separate, mutually exclusive path that matches the
text against number and cached name. The text is always bound as a
parameter, never spliced into the clause.

Usage:
    from calllog.query.filters import FilterBuilder

    builder = FilterBuilder(slot_resolver=resolver)
    predicate = builder.build(FetchCriteria(call_type=CallType.MISSED))
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Protocol

from calllog.core.logging import get_logger
from calllog.query.criteria import (
    CALL_TYPE_ALL,
    DEFAULT_LOG_LIMIT,
    SLOT_ALL,
    AnyOf,
    CallType,
    Clause,
    Comparison,
    FetchCriteria,
    Mutation,
    Predicate,
)

logger = get_logger(__name__)


class SlotResolver(Protocol):
    """Resolves a physical account slot to backend account identifiers."""

    def resolve(self, slot: int) -> Sequence[str]:
        """Return the account ids for `slot`; may be empty."""
        ...


class ConfigSlotResolver:
    """SlotResolver backed by the `slots` section of the configuration."""

    def __init__(self, slots: Mapping[int, Sequence[str]]) -> None:
        self._slots = {int(slot): tuple(ids) for slot, ids in slots.items()}

    def resolve(self, slot: int) -> Sequence[str]:
        return self._slots.get(slot, ())


class FilterBuilder:
    """Builds predicates for call log fetches and updates.

    Attributes:
        effective_limit: Row cap applied to every fetch
    """

    def __init__(
        self,
        slot_resolver: SlotResolver | None = None,
        log_limit: int = -1,
    ) -> None:
        """Initialize the builder.

        Args:
            slot_resolver: Resolves slot indexes to account ids. Without one,
                every slot filter is ignored.
            log_limit: Row cap for fetches; non-positive selects DEFAULT_LOG_LIMIT
        """
        self._slot_resolver = slot_resolver
        self.effective_limit = log_limit if log_limit > 0 else DEFAULT_LOG_LIMIT

    def build(self, criteria: FetchCriteria) -> Predicate:
        """Build the predicate for a structured (non-text) fetch.

        Args:
            criteria: What the caller asked for

        Returns:
            Predicate with active clauses in rule order and the row cap
        """
        if criteria.filter_text is not None:
            return self.build_text(criteria.filter_text, limit=criteria.limit)

        clauses: list[Clause] = []
        ignored: list[str] = []

        if criteria.new_only:
            clauses.append(Comparison("is_new", "=", 1))

        if criteria.call_type > CALL_TYPE_ALL:
            clauses.append(Comparison("type", "=", int(criteria.call_type)))

        if criteria.slot > SLOT_ALL:
            account_ids = self._resolve_slot(criteria.slot)
            if account_ids:
                clauses.append(Comparison("account_id", "=", account_ids[0]))
            else:
                # No account behind this slot: fetch as if unfiltered
                ignored.append("slot")
                logger.info("slot_filter_ignored", slot=criteria.slot)

        if criteria.newer_than > 0:
            clauses.append(Comparison("date", ">", criteria.newer_than))

        if criteria.older_than > 0:
            clauses.append(Comparison("date", "<=", criteria.older_than))

        return Predicate(
            clauses=tuple(clauses),
            limit=self._limit_for(criteria.limit),
            ignored=tuple(ignored),
        )

    def build_text(self, filter_text: str, limit: int = -1) -> Predicate:
        """Build the predicate for a free-text search on number or cached name."""
        pattern = f"%{filter_text}%"
        clause = AnyOf(
            (
                Comparison("number", "LIKE", pattern),
                Comparison("cached_name", "LIKE", pattern),
            )
        )
        return Predicate(clauses=(clause,), limit=self._limit_for(limit))

    def mark_calls_old(self) -> Mutation:
        """Every call still flagged new becomes old."""
        return Mutation(
            predicate=Predicate(clauses=(Comparison("is_new", "=", 1),)),
            values=(("is_new", 0),),
        )

    def mark_voicemails_old(self) -> Mutation:
        """Every new voicemail becomes old."""
        return Mutation(
            predicate=Predicate(
                clauses=(
                    Comparison("is_new", "=", 1),
                    Comparison("type", "=", int(CallType.VOICEMAIL)),
                )
            ),
            values=(("is_new", 0),),
        )

    def mark_missed_read(self) -> Mutation:
        """Every unread missed call becomes read."""
        return Mutation(
            predicate=Predicate(
                clauses=(
                    Comparison("is_read", "=", 0),
                    Comparison("type", "=", int(CallType.MISSED)),
                )
            ),
            values=(("is_read", 1),),
        )

    def _limit_for(self, requested: int) -> int:
        return requested if requested > 0 else self.effective_limit

    def _resolve_slot(self, slot: int) -> Sequence[str]:
        if self._slot_resolver is None:
            return ()
        return self._slot_resolver.resolve(slot)
