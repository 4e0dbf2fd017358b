from datetime import datetime, timezone

import pytest

from lifecycle import (
    InvalidTransition,
    allowed_next,
    can_be_cancelled,
    can_be_rated,
    check_transition,
    overall_rating,
    running_average,
    transition_update,
)

AT = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_forward_one_step_at_a_time():
    assert allowed_next("pending") == ["confirmed", "cancelled"]
    assert allowed_next("ready") == ["on_way"]
    assert allowed_next("delivered") == ["refunded"]
    assert allowed_next("refunded") == []
    with pytest.raises(InvalidTransition):
        check_transition("pending", "preparing")
    with pytest.raises(InvalidTransition):
        check_transition("preparing", "cancelled")
    with pytest.raises(InvalidTransition):
        check_transition("delivered", "on_way")


def test_transition_update_stamps_timing():
    update = transition_update({"status": "ready"}, "on_way", AT, "driver-1")
    assert update["$set"]["status"] == "on_way"
    assert update["$set"]["timing.picked_up_at"] == AT
    assert update["$push"]["status_history"] == {"status": "on_way", "at": AT, "by": "driver-1"}
    assert "timing.prepared_at" not in transition_update({"status": "confirmed"}, "preparing", AT)["$set"]


def test_cancel_and_rate_guards():
    assert can_be_cancelled({"status": "confirmed"})
    assert not can_be_cancelled({"status": "preparing"})
    assert can_be_rated({"status": "delivered"})
    assert not can_be_rated({"status": "delivered", "rating": {"overall": 4}})
    assert not can_be_rated({"status": "on_way"})


def test_ratings_math():
    assert overall_rating(4, 5) == 5
    assert overall_rating(3, 4) == 4
    assert overall_rating(2, 2) == 2
    assert running_average(4.5, 2, 3) == {"average": 4.0, "count": 3}
    assert running_average(0, 0, 5) == {"average": 5.0, "count": 1}


def test_running_average_rounds_half_up():
    # 25 / 8 = 3.125
    assert running_average(3.0, 7, 4) == {"average": 3.13, "count": 8}
