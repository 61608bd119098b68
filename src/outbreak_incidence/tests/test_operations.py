import math

import numpy as np
import pandas as pd
import pytest

from outbreak_incidence.errors import InvalidInput
from outbreak_incidence.series.binning import as_incidence, incidence
from outbreak_incidence.series.incidence_series import DEFAULT_GROUP
from outbreak_incidence.series.operations import (
    cumulate,
    pool,
    select_stride,
    slice_bins,
    slice_by_date,
    slice_groups,
    slice_series,
    to_table,
)


@pytest.fixture
def grouped():
    counts = [
        [1, 0, 2],
        [3, 1, 0],
        [0, 0, 0],
        [5, 2, 1],
        [2, 2, 2],
        [1, 0, 4],
        [0, 3, 1],
    ]
    return as_incidence(counts, "2024-01-01", interval=7, groups=["f", "m", "NA"])


def test_slice_bins_restricts_counts_and_keeps_edges(grouped):
    sub = slice_bins(grouped, 1, 4)
    assert sub.n_bins == 3
    assert np.array_equal(sub.counts, grouped.counts[1:4])
    assert sub.starts.equals(grouped.starts[1:4])
    assert sub.ends.equals(grouped.ends[1:4])
    # zero bin in the middle is kept
    assert sub.counts[1].sum() == 0
    # the original is untouched
    assert grouped.n_bins == 7


@pytest.mark.parametrize("rng", [(3, 3), (5, 2), (-1, 3), (0, 8)])
def test_slice_bins_out_of_range(grouped, rng):
    with pytest.raises(InvalidInput):
        slice_bins(grouped, *rng)


def test_slice_groups_keeps_requested_order(grouped):
    sub = slice_groups(grouped, ["m", "f"])
    assert sub.groups == ("m", "f")
    assert np.array_equal(sub.counts[:, 0], grouped.counts_for("m"))
    assert np.array_equal(sub.counts[:, 1], grouped.counts_for("f"))

    single = slice_groups(grouped, "NA")
    assert single.groups == ("NA",)

    with pytest.raises(InvalidInput):
        slice_groups(grouped, ["x"])


def test_slice_series_composes(grouped):
    sub = slice_series(grouped, bin_range=(2, None), groups=["f"])
    assert sub.n_bins == 5
    assert sub.groups == ("f",)
    assert sub.counts[:, 0].tolist() == [0, 5, 2, 1, 0]


def test_slice_by_date_keeps_overlapping_bins(grouped):
    # bins are [Jan 1, Jan 8), [Jan 8, Jan 15), [Jan 15, Jan 22) ...
    sub = slice_by_date(grouped, "2024-01-10", "2024-01-16")
    assert list(sub.starts) == [pd.Timestamp("2024-01-08"), pd.Timestamp("2024-01-15")]

    head = slice_by_date(grouped, to_date="2024-01-08")
    assert head.n_bins == 1

    tail = slice_by_date(grouped, from_date="2024-02-01")
    assert tail.starts[0] == pd.Timestamp("2024-01-29")

    with pytest.raises(InvalidInput):
        slice_by_date(grouped, "2025-01-01")


def test_stride_selection(grouped):
    n = grouped.n_bins
    sub = select_stride(grouped, 2)
    assert sub.n_bins == math.ceil(n / 2)
    assert np.array_equal(sub.counts, grouped.counts[::2])
    assert not sub.regular

    shifted = select_stride(grouped, 3, offset=1)
    assert np.array_equal(shifted.counts, grouped.counts[1::3])

    same = select_stride(grouped, 1)
    assert same.regular

    with pytest.raises(InvalidInput):
        select_stride(grouped, 0)


def test_pool_sums_groups_exactly(grouped):
    pooled = pool(grouped)
    assert pooled.groups == (DEFAULT_GROUP,)
    assert np.array_equal(pooled.counts[:, 0], grouped.counts.sum(axis=1))
    assert pooled.total == grouped.total
    assert pooled.starts.equals(grouped.starts)


def test_pool_of_binned_dates():
    dates = ["2024-01-01", "2024-01-01", "2024-01-03", "2024-01-04", None]
    groups = ["a", "b", None, "a", "b"]
    series = incidence(dates, groups=groups)
    pooled = pool(series)
    assert pooled.counts[:, 0].tolist() == [2, 0, 1, 1]
    assert pooled.n_missing == 1


def test_cumulate(grouped):
    cum = cumulate(grouped)
    assert cum.cumulative
    assert np.array_equal(cum.counts[-1], grouped.counts.sum(axis=0))
    assert cum.total == grouped.total
    with pytest.raises(InvalidInput):
        cumulate(cum)


def test_to_table_long(grouped):
    table = to_table(grouped)
    assert list(table.columns) == ["bin_start", "bin_end", "group", "count"]
    assert len(table) == grouped.n_bins * grouped.n_groups
    assert table["count"].sum() == grouped.total

    first = table.iloc[:3]
    assert first["group"].tolist() == ["f", "m", "NA"]
    assert first["count"].tolist() == [1, 0, 2]
    assert (first["bin_start"] == pd.Timestamp("2024-01-01")).all()
    assert (first["bin_end"] == pd.Timestamp("2024-01-08")).all()


def test_to_table_wide(grouped):
    table = to_table(grouped, wide=True)
    assert list(table.columns) == ["bin_start", "bin_end", "f", "m", "NA"]
    assert table["m"].tolist() == grouped.counts_for("m").tolist()
