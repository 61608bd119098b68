import numpy as np
import pandas as pd
import pytest

from outbreak_incidence.errors import InvalidInput, NoValidSplit
from outbreak_incidence.fitting.growth_fit import FitFailure, FittedModel
from outbreak_incidence.fitting.split_optim import PER_GROUP, SHARED, SplitResult, fit_optimal_split
from outbreak_incidence.series.binning import as_incidence, incidence
from outbreak_incidence.series.operations import cumulate

PEAK_AT_5 = [2, 4, 8, 16, 32, 64, 32, 16, 8, 4, 2]
# 2 ** (10 - |t - peak|) for t = 0..10
PEAK_AT_3 = [128, 256, 512, 1024, 512, 256, 128, 64, 32, 16, 8]
PEAK_AT_7 = [8, 16, 32, 64, 128, 256, 512, 1024, 512, 256, 128]


def weekly_outbreak_dates():
    """
    100 onset dates over 60 days, growing then decaying with the peak week
    holding day 30.
    """
    weekly = [3, 5, 9, 16, 30, 18, 10, 6, 3]
    start = pd.Timestamp("2024-01-01")
    dates = []
    for week, n in enumerate(weekly):
        days_in_week = 4 if week == 8 else 7
        for j in range(n):
            dates.append(start + pd.Timedelta(days=7 * week + j % days_in_week))
    return dates


def test_known_breakpoint_is_found():
    series = as_incidence(PEAK_AT_5, "2024-01-01")
    result = fit_optimal_split(series, min_side_bins=3)

    assert isinstance(result, SplitResult)
    assert abs(result.split_index - 5) <= 1
    assert result.split == series.starts[result.split_index]
    assert result.mode == SHARED
    assert isinstance(result.before, FittedModel)
    assert result.before.rate > 0
    assert result.after.rate < 0
    assert result.score == pytest.approx(1.0)
    # candidates 3..8 all scored
    assert result.scores["split_index"].tolist() == [3, 4, 5, 6, 7, 8]


def test_weekly_outbreak_scenario():
    dates = weekly_outbreak_dates()
    assert len(dates) == 100
    assert dates[-1] - dates[0] < pd.Timedelta(days=60)

    series = incidence(dates, interval=7)
    assert series.n_bins == 9
    assert series.total == 100
    assert series.counts[:, 0].tolist() == [3, 5, 9, 16, 30, 18, 10, 6, 3]

    result = fit_optimal_split(series, min_side_bins=3)
    assert abs(result.split_index - 4) <= 1
    assert result.before.regime == "growth" and result.before.rate > 0
    assert result.after.regime == "decay" and result.after.rate < 0


def test_ties_go_to_the_earliest_split():
    # Flat counts fit perfectly on both sides of every candidate
    series = as_incidence([1] * 8, "2024-01-01")
    result = fit_optimal_split(series, min_side_bins=3)
    assert result.scores["score"].tolist() == [1.0, 1.0, 1.0]
    assert result.split_index == 3


def test_no_valid_split():
    sparse = as_incidence([0, 0, 0, 0, 0, 0, 3, 0], "2024-01-01")
    with pytest.raises(NoValidSplit):
        fit_optimal_split(sparse, min_side_bins=3)

    short = as_incidence([1, 2, 4, 2], "2024-01-01")
    with pytest.raises(NoValidSplit):
        fit_optimal_split(short, min_side_bins=3)


def test_invalid_arguments():
    series = as_incidence(PEAK_AT_5, "2024-01-01")
    with pytest.raises(InvalidInput):
        fit_optimal_split(series, min_side_bins=1)
    with pytest.raises(InvalidInput):
        fit_optimal_split(series, mode="both")
    with pytest.raises(InvalidInput):
        fit_optimal_split(cumulate(series))
    with pytest.raises(InvalidInput):
        fit_optimal_split(series, max_candidates=0)


def test_window_restricts_candidates():
    series = as_incidence(PEAK_AT_5, "2024-01-01")
    result = fit_optimal_split(series, window=("2024-01-08", None))
    assert result.split_index >= 7
    assert result.scores["split_index"].tolist() == [7, 8]


def test_max_candidates_truncates_search():
    series = as_incidence(PEAK_AT_5, "2024-01-01")
    result = fit_optimal_split(series, max_candidates=1)
    assert result.split_index == 3
    assert len(result.scores) == 1


def test_shared_split_across_groups():
    counts = np.column_stack([PEAK_AT_5, [3 * c for c in PEAK_AT_5]])
    series = as_incidence(counts, "2024-01-01", groups=["a", "b"])
    result = fit_optimal_split(series, mode=SHARED)

    assert abs(result.split_index - 5) <= 1
    assert set(result.before) == {"a", "b"}
    assert set(result.after) == {"a", "b"}
    for group in ("a", "b"):
        assert result.before[group].rate > 0
        assert result.after[group].rate < 0


def test_per_group_splits_are_independent():
    counts = np.column_stack([PEAK_AT_3, PEAK_AT_7, [0] * 10 + [5]])
    series = as_incidence(counts, "2024-01-01", groups=["early", "late", "empty"])
    results = fit_optimal_split(series, mode=PER_GROUP)

    assert abs(results["early"].split_index - 3) <= 1
    assert abs(results["late"].split_index - 7) <= 1
    assert results["early"].mode == PER_GROUP
    assert results["early"].before.group == "early"
    assert isinstance(results["empty"], FitFailure)
    assert isinstance(results["empty"].error, NoValidSplit)


def test_parallel_search_matches_sequential():
    series = as_incidence(PEAK_AT_5, "2024-01-01")
    seq = fit_optimal_split(series, n_jobs=1)
    par = fit_optimal_split(series, n_jobs=2)
    assert par.split_index == seq.split_index
    assert par.score == pytest.approx(seq.score)


def test_shared_split_leaves_out_groups_that_cannot_fit():
    # A single case in the "NA" group can never be fitted
    counts = np.column_stack([PEAK_AT_5, [3 * c for c in PEAK_AT_5], [0] * 10 + [1]])
    series = as_incidence(counts, "2024-01-01", groups=["a", "b", "NA"])
    result = fit_optimal_split(series, mode=SHARED)

    assert abs(result.split_index - 5) <= 1
    assert result.score == pytest.approx(1.0)
    assert result.before["a"].rate > 0 and result.after["a"].rate < 0
    assert result.before["b"].rate > 0 and result.after["b"].rate < 0
    assert isinstance(result.before["NA"], FitFailure)
    assert isinstance(result.after["NA"], FitFailure)
    assert (result.scores["groups_fitted"] == 2).all()


def test_shared_split_prefers_candidates_fitting_more_groups():
    # "b" only has enough non-zero bins on both sides when the split is at 5
    # so it wins over the better single-group fit of "a" at 7
    counts = np.column_stack([PEAK_AT_7, [0, 0, 1, 2, 4, 8, 4, 2, 0, 0, 0]])
    series = as_incidence(counts, "2024-01-01", groups=["a", "b"])
    result = fit_optimal_split(series, mode=SHARED)

    assert result.split_index == 5
    assert isinstance(result.before["b"], FittedModel)
    assert result.scores.set_index("split_index")["groups_fitted"].to_dict() == {
        3: 1, 4: 1, 5: 2, 6: 1, 7: 1, 8: 1,
    }


def test_shared_split_with_no_group_fitting():
    counts = np.column_stack([[0] * 10 + [1], [1] + [0] * 10])
    series = as_incidence(counts, "2024-01-01", groups=["a", "b"])
    with pytest.raises(NoValidSplit):
        fit_optimal_split(series, mode=SHARED)
