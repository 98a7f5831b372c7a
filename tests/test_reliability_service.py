# tests/test_reliability_service.py
"""Unit tests for user reliability scoring and profile aggregation."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import math
import pytest
from unittest.mock import patch
from datetime import datetime
from loanwatch.services.reliability_service import (
    ReliabilityProfile,
    calculate_all_user_reliability,
    calculate_behavior_summary,
    calculate_loan_statistics,
    calculate_reliability_score,
    calculate_reservation_statistics,
    calculate_user_statistics,
    classify_user,
    get_flagged_users,
    get_most_reliable_users,
    get_repeat_offenders,
    get_top_borrowers,
    should_flag_user,
)
from loanwatch.utils.errors import NotFoundError
from conftest import add_no_show, db_failure, make_loan, make_reservation, make_user

NOW = datetime(2026, 1, 13, 12, 0)


class TestReliabilityScore:
    def test_extremes(self):
        assert calculate_reliability_score(1, 0) == 100
        assert calculate_reliability_score(0, 1) == 0
        assert calculate_reliability_score(0, 0) == 40

    def test_on_time_weight_is_sixty_points(self):
        assert calculate_reliability_score(1, 0) - calculate_reliability_score(0, 0) == 60

    def test_no_show_weight_is_forty_points(self):
        assert calculate_reliability_score(1, 0) - calculate_reliability_score(1, 1) == 40

    def test_result_is_bounded_integer(self):
        rates = [i / 20 for i in range(21)]
        for r in rates:
            for s in rates:
                score = calculate_reliability_score(r, s)
                assert isinstance(score, int)
                assert 0 <= score <= 100

    def test_monotonic_in_both_rates(self):
        rates = [i / 10 for i in range(11)]
        for fixed in rates:
            by_on_time = [calculate_reliability_score(r, fixed) for r in rates]
            by_no_show = [calculate_reliability_score(fixed, s) for s in rates]
            assert by_on_time == sorted(by_on_time)
            assert by_no_show == sorted(by_no_show, reverse=True)

    def test_out_of_range_inputs_are_clamped(self):
        assert calculate_reliability_score(1.5, -0.5) == 100
        assert calculate_reliability_score(-3, 7) == 0

    @pytest.mark.parametrize("bad", [None, math.nan, math.inf, "0.9", True])
    def test_invalid_inputs_count_as_zero(self, bad):
        assert calculate_reliability_score(bad, 0) == 40
        assert calculate_reliability_score(1, bad) == 100


class TestFlagAndClassification:
    @pytest.mark.parametrize("score,flagged", [(49, True), (49.99, True), (50, False), (50.01, False), (0, True)])
    def test_flag_boundary(self, score, flagged):
        assert should_flag_user(score) is flagged

    @pytest.mark.parametrize("bad", [None, "40", math.nan])
    def test_flag_invalid_input_is_false(self, bad):
        assert should_flag_user(bad) is False

    @pytest.mark.parametrize("score,expected", [
        (100, "excellent"), (90, "excellent"), (89, "good"), (70, "good"),
        (69, "fair"), (50, "fair"), (49, "poor"), (0, "poor"),
    ])
    def test_classification_bands(self, score, expected):
        assert classify_user(score) == expected

    def test_invalid_score_classified_fair(self):
        assert classify_user(None) == "fair"


class TestLoanStatistics:
    def test_empty_history_is_optimistic(self):
        assert calculate_loan_statistics([]) == {
            "total_loans": 0, "on_time_returns": 0, "late_returns": 0, "on_time_return_rate": 1.0,
        }

    def test_return_later_on_expected_day_is_on_time(self):
        stats = calculate_loan_statistics([{
            "status": "returned",
            "expected_return_date": datetime(2026, 1, 10, 9, 0),
            "actual_return_date": datetime(2026, 1, 10, 23, 30),
        }])
        assert stats["on_time_returns"] == 1
        assert stats["late_returns"] == 0

    def test_return_next_day_is_late(self):
        stats = calculate_loan_statistics([{
            "status": "returned",
            "expected_return_date": "2026-01-10T09:00:00",
            "actual_return_date": "2026-01-11T00:00:00",
        }])
        assert stats["late_returns"] == 1

    def test_missing_dates_count_as_on_time(self):
        stats = calculate_loan_statistics([{"status": "returned"}])
        assert stats["on_time_returns"] == 1

    def test_out_of_range_epoch_treated_as_missing(self):
        stats = calculate_loan_statistics([{
            "status": "returned",
            "expected_return_date": {"seconds": 1e20},
            "actual_return_date": 1e20,
        }])
        assert stats["on_time_returns"] == 1

    def test_overdue_always_late_and_other_statuses_ignored(self):
        loans = [
            {"status": "overdue", "expected_return_date": datetime(2030, 1, 1)},
            {"status": "borrowed"},
            {"status": "pending"},
            {"status": "returned"},
        ]
        stats = calculate_loan_statistics(loans)
        assert stats["total_loans"] == 2
        assert stats["late_returns"] == 1
        assert stats["total_loans"] == stats["on_time_returns"] + stats["late_returns"]
        assert stats["on_time_return_rate"] == 0.5


class TestReservationStatistics:
    def test_empty_history(self):
        assert calculate_reservation_statistics([])["no_show_rate"] == 0

    def test_counts_status_or_flag(self):
        reservations = [
            {"status": "no_show"},
            {"status": "completed", "is_no_show": True},
            {"status": "completed"},
            {"status": "cancelled"},
            {"status": "pending"},
            {"status": "expired", "is_no_show": True},
        ]
        stats = calculate_reservation_statistics(reservations)
        assert stats["total_reservations"] == 4
        assert stats["no_shows"] == 2
        assert stats["no_show_rate"] == 0.5


def profile(user_id, **fields):
    return ReliabilityProfile(user_id=user_id, **fields)


class TestRankings:
    def test_behavior_summary(self):
        profiles = [
            profile("a", reliability_score=95, classification="excellent"),
            profile("b", reliability_score=40, classification="poor", is_flagged=True, is_repeat_offender=True),
            profile("c", reliability_score=75, classification="good"),
        ]
        summary = calculate_behavior_summary(profiles)
        assert summary["total_users"] == 3
        assert summary["excellent_count"] == 1
        assert summary["good_count"] == 1
        assert summary["poor_count"] == 1
        assert summary["flagged_count"] == 1
        assert summary["repeat_offender_count"] == 1
        assert summary["average_reliability_score"] == 70

    def test_behavior_summary_empty(self):
        assert calculate_behavior_summary([])["average_reliability_score"] == 0

    def test_top_borrowers_skip_users_without_loans(self):
        profiles = [profile("a", total_loans=2), profile("b", total_loans=7), profile("c", total_loans=0)]
        assert [u["user_id"] for u in get_top_borrowers(profiles)] == ["b", "a"]

    def test_most_reliable_requires_minimum_loans(self):
        profiles = [
            profile("a", total_loans=2, reliability_score=100),
            profile("b", total_loans=3, reliability_score=80),
            profile("c", total_loans=9, reliability_score=90),
        ]
        assert [u["user_id"] for u in get_most_reliable_users(profiles)] == ["c", "b"]

    def test_flagged_worst_first_and_offenders_most_first(self):
        profiles = [
            profile("a", reliability_score=45, is_flagged=True, recent_no_shows=3, is_repeat_offender=True),
            profile("b", reliability_score=20, is_flagged=True, recent_no_shows=5, is_repeat_offender=True),
            profile("c", reliability_score=80),
        ]
        assert [u["user_id"] for u in get_flagged_users(profiles)] == ["b", "a"]
        assert [u["user_id"] for u in get_repeat_offenders(profiles)] == ["b", "a"]


class TestUserStatistics:
    def test_profile_from_history(self, db):
        make_user(db, "user-1")
        make_loan(db, "loan-1", status="returned", expected_return_date=datetime(2026, 1, 5),
                  actual_return_date=datetime(2026, 1, 5, 18, 0))
        make_loan(db, "loan-2", status="overdue", expected_return_date=datetime(2026, 1, 8))
        make_reservation(db, "res-1", status="completed")
        make_reservation(db, "res-2", status="no_show")
        add_no_show(db, "user-1", datetime(2026, 1, 2))

        p = calculate_user_statistics(db, "user-1", now=NOW)

        assert p.total_loans == 2
        assert p.on_time_return_rate == 0.5
        assert p.no_show_rate == 0.5
        assert p.reliability_score == 50
        assert p.classification == "fair"
        assert p.is_flagged is False
        assert p.recent_no_shows == 1
        assert p.is_repeat_offender is False
        assert p.to_dict()["last_calculated_at"] == NOW.isoformat()

    def test_unknown_user(self, db):
        with pytest.raises(NotFoundError):
            calculate_user_statistics(db, "ghost", now=NOW)

    def test_all_users(self, db):
        make_user(db, "user-1")
        make_user(db, "user-2", display_name="Malee", email="malee@example.com")
        result = calculate_all_user_reliability(db, now=NOW)
        assert result["calculated"] == 2
        assert result["errors"] == []
        assert {p.user_id for p in result["profiles"]} == {"user-1", "user-2"}

    def test_database_error_rolls_back_before_next_user(self, db, abort_transaction):
        make_user(db, "user-1")
        make_user(db, "user-2", display_name="Malee", email="malee@example.com")

        def failing_profile(session, user_id, now=None):
            if user_id == "user-1":
                abort_transaction()
                raise db_failure()
            return calculate_user_statistics(session, user_id, now=now)

        with patch("loanwatch.services.reliability_service.calculate_user_statistics", side_effect=failing_profile):
            result = calculate_all_user_reliability(db, now=NOW)

        assert result["calculated"] == 1
        assert [e["user_id"] for e in result["errors"]] == ["user-1"]
        assert result["profiles"][0].user_id == "user-2"
