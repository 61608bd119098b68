import pandas as pd
import pytest

from outbreak_incidence.errors import InvalidInput
from outbreak_incidence.series.intervals import MONDAY, SUNDAY, Interval, parse_interval


def test_integer_interval_is_days():
    iv = parse_interval(7)
    assert iv == Interval(7, "day")
    assert iv.is_fixed
    assert iv.days == 7


def test_named_intervals():
    assert parse_interval("week") == Interval(1, "week", MONDAY)
    assert parse_interval("2 weeks").days == 14
    assert parse_interval("epiweek").week_start == SUNDAY
    assert parse_interval("Month").unit == "month"
    assert parse_interval("quarterly").unit == "quarter"
    assert parse_interval(7.0) == Interval(7, "day")


@pytest.mark.parametrize("bad", [0, -3, 1.5, float("nan"), "0 days", "fortnight", True, None])
def test_invalid_intervals(bad):
    with pytest.raises(InvalidInput):
        parse_interval(bad)


def test_calendar_interval_has_no_fixed_days():
    iv = parse_interval("month")
    assert not iv.is_fixed
    with pytest.raises(InvalidInput):
        iv.days


def test_floor_snaps_to_unit_start():
    wed = pd.Timestamp("2024-01-03")
    assert parse_interval("week").floor(wed) == pd.Timestamp("2024-01-01")
    assert parse_interval("epiweek").floor(wed) == pd.Timestamp("2023-12-31")
    assert parse_interval("month").floor(wed) == pd.Timestamp("2024-01-01")
    assert parse_interval("quarter").floor(pd.Timestamp("2024-05-20")) == pd.Timestamp("2024-04-01")
    assert parse_interval(3).floor(wed) == wed


def test_edges_pad_the_last_bin():
    edges = parse_interval(7).edges(pd.Timestamp("2024-01-01"), pd.Timestamp("2024-01-09"))
    assert list(edges) == [
        pd.Timestamp("2024-01-01"),
        pd.Timestamp("2024-01-08"),
        pd.Timestamp("2024-01-15"),
    ]


def test_month_edges_are_anchored():
    edges = parse_interval("month").edges(pd.Timestamp("2024-01-31"), pd.Timestamp("2024-03-30"))
    # Anchored on Jan 31, not drifting to the 29th after February
    assert list(edges) == [
        pd.Timestamp("2024-01-31"),
        pd.Timestamp("2024-02-29"),
        pd.Timestamp("2024-03-31"),
    ]
