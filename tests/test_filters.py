"""Tests for predicate and mutation construction."""

import pytest

from calllog.core.errors import PredicateError
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
from calllog.query.filters import ConfigSlotResolver, FilterBuilder


@pytest.fixture
def builder() -> FilterBuilder:
    return FilterBuilder(slot_resolver=ConfigSlotResolver({0: ["acct-a", "acct-b"], 1: []}))


class TestBuild:
    """Tests for structured fetch predicates."""

    def test_no_active_filters_gives_empty_clause_and_default_limit(
        self, builder: FilterBuilder
    ) -> None:
        predicate = builder.build(FetchCriteria())

        assert predicate.where is None
        assert predicate.parameters == ()
        assert predicate.limit == DEFAULT_LOG_LIMIT == 1000

    def test_missed_calls(self, builder: FilterBuilder) -> None:
        predicate = builder.build(FetchCriteria(call_type=CallType.MISSED, newer_than=0))

        assert predicate.where == "type = ?"
        assert predicate.parameters == (CallType.MISSED,)
        assert predicate.limit == 1000

    def test_all_types_newer_than(self, builder: FilterBuilder) -> None:
        predicate = builder.build(
            FetchCriteria(call_type=CALL_TYPE_ALL, newer_than=1000, slot=SLOT_ALL)
        )

        assert predicate.where == "date > ?"
        assert predicate.parameters == (1000,)
        assert predicate.limit == 1000

    def test_all_rules_apply_in_order(self, builder: FilterBuilder) -> None:
        predicate = builder.build(
            FetchCriteria(
                call_type=CallType.INCOMING,
                newer_than=100,
                older_than=200,
                slot=0,
                new_only=True,
            )
        )

        assert predicate.where == (
            "is_new = ? AND type = ? AND account_id = ? AND date > ? AND date <= ?"
        )
        assert predicate.parameters == (1, 1, "acct-a", 100, 200)
        assert predicate.where.count("?") == len(predicate.parameters)

    def test_slot_uses_first_account_id(self, builder: FilterBuilder) -> None:
        predicate = builder.build(FetchCriteria(slot=0))

        assert predicate.where == "account_id = ?"
        assert predicate.parameters == ("acct-a",)
        assert predicate.ignored == ()

    def test_slot_without_accounts_is_ignored(self, builder: FilterBuilder) -> None:
        predicate = builder.build(FetchCriteria(call_type=CallType.OUTGOING, slot=1))

        assert predicate.where == "type = ?"
        assert predicate.ignored == ("slot",)

    def test_unknown_slot_is_ignored(self, builder: FilterBuilder) -> None:
        predicate = builder.build(FetchCriteria(slot=7))

        assert predicate.where is None
        assert predicate.ignored == ("slot",)

    def test_slot_without_resolver_is_ignored(self) -> None:
        predicate = FilterBuilder().build(FetchCriteria(slot=0))

        assert predicate.where is None
        assert predicate.ignored == ("slot",)

    def test_non_positive_dates_add_no_clause(self, builder: FilterBuilder) -> None:
        predicate = builder.build(FetchCriteria(newer_than=0, older_than=-5))

        assert predicate.where is None

    def test_criteria_with_text_takes_text_path(self, builder: FilterBuilder) -> None:
        predicate = builder.build(FetchCriteria(call_type=CallType.MISSED, filter_text="55"))

        assert predicate.where == "(number LIKE ? OR cached_name LIKE ?)"
        assert predicate.parameters == ("%55%", "%55%")


class TestBuildText:
    """Tests for free-text predicates."""

    def test_text_is_bound_not_concatenated(self, builder: FilterBuilder) -> None:
        first = builder.build_text("555")
        second = builder.build_text("Alice")

        assert first.where == second.where == "(number LIKE ? OR cached_name LIKE ?)"
        assert first.parameters == ("%555%", "%555%")
        assert second.parameters == ("%Alice%", "%Alice%")

    def test_hostile_text_never_reaches_clause(self, builder: FilterBuilder) -> None:
        hostile = "x' OR '1'='1"
        predicate = builder.build_text(hostile)

        assert hostile not in predicate.where
        assert "'" not in predicate.where
        assert predicate.parameters == (f"%{hostile}%", f"%{hostile}%")

    def test_text_fetch_is_limited(self, builder: FilterBuilder) -> None:
        assert builder.build_text("5").limit == 1000


class TestLimits:
    """Tests for the fetch row cap."""

    def test_configured_limit(self) -> None:
        builder = FilterBuilder(log_limit=50)

        assert builder.effective_limit == 50
        assert builder.build(FetchCriteria()).limit == 50

    @pytest.mark.parametrize("log_limit", [-1, 0])
    def test_non_positive_limit_falls_back_to_default(self, log_limit: int) -> None:
        assert FilterBuilder(log_limit=log_limit).effective_limit == 1000

    def test_criteria_limit_overrides(self) -> None:
        predicate = FilterBuilder(log_limit=50).build(FetchCriteria(limit=10))

        assert predicate.limit == 10


class TestMutations:
    """Tests for update builders."""

    def test_mark_calls_old(self, builder: FilterBuilder) -> None:
        mutation = builder.mark_calls_old()

        assert mutation.predicate.where == "is_new = ?"
        assert mutation.set_clause == "is_new = ?"
        assert mutation.parameters == (0, 1)
        assert mutation.predicate.limit is None

    def test_mark_voicemails_old(self, builder: FilterBuilder) -> None:
        mutation = builder.mark_voicemails_old()

        assert mutation.predicate.where == "is_new = ? AND type = ?"
        assert mutation.parameters == (0, 1, CallType.VOICEMAIL)

    def test_mark_missed_read(self, builder: FilterBuilder) -> None:
        mutation = builder.mark_missed_read()

        assert mutation.predicate.where == "is_read = ? AND type = ?"
        assert mutation.set_clause == "is_read = ?"
        assert mutation.parameters == (1, 0, CallType.MISSED)
        assert mutation.predicate.limit is None


class TestMalformedPredicates:
    """Malformed predicates are programming faults and raise immediately."""

    def test_unknown_column(self) -> None:
        with pytest.raises(PredicateError, match="Unknown call log column"):
            Comparison("number; DROP TABLE calls", "=", 1)

    def test_unknown_operator(self) -> None:
        with pytest.raises(PredicateError, match="Unsupported operator"):
            Comparison("date", "BETWEEN", 1)

    def test_missing_value(self) -> None:
        with pytest.raises(PredicateError):
            Comparison("date", ">", None)

    def test_empty_any_of(self) -> None:
        with pytest.raises(PredicateError):
            AnyOf(())

    def test_limited_mutation(self) -> None:
        with pytest.raises(PredicateError, match="never row-limited"):
            Mutation(
                predicate=Predicate(clauses=(Comparison("is_new", "=", 1),), limit=10),
                values=(("is_new", 0),),
            )

    def test_mutation_without_values(self) -> None:
        with pytest.raises(PredicateError):
            Mutation(predicate=Predicate(), values=())
