"""
Unit tests for length-bounded predicate building
"""

import re
import pytest
from datetime import date, datetime, timezone, timedelta
from core.exceptions import InputError, PredicateLengthError
from transfer.predicates import (
    Combinator,
    PredicateFragment,
    build_in_clauses,
    combine_clauses,
    join_fragments,
    value_to_literal
)

LITERAL = re.compile(r"'(V\d+)'")


def literals_in(clauses):
    found = []
    for clause in clauses:
        found.extend(LITERAL.findall(clause))
    return found


class TestValueToLiteral:
    """Test literal serialization"""

    def test_strings_are_quoted_and_escaped(self):
        assert value_to_literal("Acme") == "'Acme'"
        assert value_to_literal("O'Brien") == "'O\\'Brien'"
        assert value_to_literal("C:\\temp") == "'C:\\\\temp'"

    def test_scalars(self):
        assert value_to_literal(None) == "NULL"
        assert value_to_literal(True) == "true"
        assert value_to_literal(False) == "false"
        assert value_to_literal(42) == "42"
        assert value_to_literal(1.5) == "1.5"

    def test_dates_are_unquoted_iso(self):
        assert value_to_literal(date(2024, 1, 2)) == "2024-01-02"
        assert value_to_literal(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05Z"

    def test_aware_datetime_converted_to_utc(self):
        value = datetime(2024, 1, 2, 5, 0, 0, tzinfo=timezone(timedelta(hours=2)))
        assert value_to_literal(value) == "2024-01-02T03:00:00Z"


class TestBuildInClauses:
    """Test IN clause splitting"""

    def test_small_input_fits_one_expression(self):
        assert build_in_clauses("Id", ["a", "b"]) == ["Id IN ('a','b')"]

    def test_where_clause_conjoined_to_every_expression(self):
        clauses = build_in_clauses("Id", ["a", "b", "c"], where="IsDeleted = false", max_length=42)

        assert len(clauses) > 1
        for clause in clauses:
            assert clause.startswith("(IsDeleted = false) AND (Id IN (")
            assert clause.endswith("))")
            assert len(clause) <= 42

    def test_empty_input_yields_no_expressions(self):
        assert build_in_clauses("Id", []) == []

    def test_every_expression_within_budget_and_values_covered_once(self):
        values = [f"V{i:09d}" for i in range(1000)]

        clauses = build_in_clauses("Id", values, max_length=200)

        assert all(len(clause) <= 200 for clause in clauses)
        assert literals_in(clauses) == values

    def test_expressions_are_packed_greedily(self):
        # "Id IN (" + 'V000000000' + ")" = 20 chars, each extra literal adds 13
        values = [f"V{i:09d}" for i in range(5)]

        clauses = build_in_clauses("Id", values, max_length=33)

        assert [len(literals_in([clause])) for clause in clauses] == [2, 2, 1]

    def test_budget_smaller_than_one_literal_raises(self):
        with pytest.raises(PredicateLengthError) as exc_info:
            build_in_clauses("Id", ["a-rather-long-value"], max_length=15)

        assert isinstance(exc_info.value, InputError)
        assert exc_info.value.context["field"] == "Id"
        assert exc_info.value.context["max_length"] == 15

    def test_large_key_set(self):
        values = [f"V{i:09d}" for i in range(250_000)]

        clauses = build_in_clauses("Id", values, max_length=4000)

        # 307 quoted literals of 12 chars fit per 4000-char expression
        assert len(clauses) == 815
        assert all(len(clause) <= 4000 for clause in clauses)
        found = literals_in(clauses)
        assert len(found) == 250_000
        assert set(found) == set(values)


class TestCombineClauses:
    """Test combining pre-built clauses"""

    def test_and_and_or_are_distinct(self):
        anded = combine_clauses(["A = 1", "B = 2"], Combinator.AND)
        ored = combine_clauses(["A = 1", "B = 2"], Combinator.OR)

        assert anded == ["(A = 1) AND (B = 2)"]
        assert ored == ["(A = 1) OR (B = 2)"]
        assert anded != ored

    def test_split_by_length(self):
        clauses = combine_clauses(["A = 1", "B = 2", "C = 3"], Combinator.OR, max_length=20)

        assert clauses == ["(A = 1) OR (B = 2)", "(C = 3)"]

    def test_where_wraps_each_expression(self):
        clauses = combine_clauses(
            [PredicateFragment("A = 1"), PredicateFragment("B = 2")],
            Combinator.OR,
            where="IsDeleted = false"
        )

        assert clauses == ["(IsDeleted = false) AND ((A = 1) OR (B = 2))"]

    def test_clause_longer_than_budget_raises(self):
        with pytest.raises(PredicateLengthError):
            combine_clauses(["Name = 'far too long for this budget'"], max_length=10)


class TestJoinFragments:
    """Test left-to-right fragment rendering"""

    def test_mixed_combinators_are_grouped_explicitly(self):
        fragments = [
            PredicateFragment("A = 1"),
            PredicateFragment("B = 2", Combinator.OR),
            PredicateFragment("C = 3", Combinator.AND),
        ]

        assert join_fragments(fragments) == "(((A = 1) OR (B = 2)) AND (C = 3))"

    def test_single_fragment(self):
        assert join_fragments([PredicateFragment("A = 1", Combinator.OR)]) == "(A = 1)"

    def test_no_fragments(self):
        assert join_fragments([]) == ""
