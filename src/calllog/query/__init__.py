"""Filter construction for call log fetches and updates."""

from calllog.query.criteria import (
    CALL_TYPE_ALL,
    DEFAULT_LOG_LIMIT,
    SLOT_ALL,
    AnyOf,
    CallType,
    Comparison,
    FetchCriteria,
    Mutation,
    Predicate,
)
from calllog.query.filters import ConfigSlotResolver, FilterBuilder, SlotResolver

__all__ = [
    "CALL_TYPE_ALL",
    "DEFAULT_LOG_LIMIT",
    "SLOT_ALL",
    "AnyOf",
    "CallType",
    "Comparison",
    "FetchCriteria",
    "Mutation",
    "Predicate",
    "ConfigSlotResolver",
    "FilterBuilder",
    "SlotResolver",
]
