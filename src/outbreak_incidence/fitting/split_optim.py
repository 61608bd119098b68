# src/outbreak_incidence/fitting/split_optim.py
"""
Find the bin that best splits an epidemic curve into a growth and a decay phase.

Every candidate split is scored by fitting a log-linear model on each side and
averaging the adjusted R-squared of the fits (two per group). In a grouped
series, groups that cannot be fitted on both sides of a candidate are left out
of its score, and candidates fitting more groups rank first. The search is
brute force over all candidates.
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Dict, Hashable, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from ..errors import InsufficientData, InvalidInput, ModelFitFailure, NoValidSplit
from ..series.incidence_series import IncidenceSeries
from ..series.binning import _parse_bound
from ..series.operations import slice_groups
from .growth_fit import FitFailure, GroupFit, _check_confidence, fit_log_linear

logger = logging.getLogger(__name__)

SHARED = "shared"
PER_GROUP = "per_group"


@dataclass(frozen=True, eq=False)
class SplitResult:
    """Best split of a series.

    ``split`` is the start date of the first bin of the 'after' segment and
    ``split_index`` its bin index. ``before`` and ``after`` are FittedModels,
    or dicts group -> FittedModel for a shared split of a grouped series, with
    a FitFailure for each side of a group that could not be fitted.
    ``scores`` lists every evaluated candidate (NaN score = invalid).
    """

    split: pd.Timestamp
    split_index: int
    before: GroupFit
    after: GroupFit
    score: float
    mode: str
    scores: pd.DataFrame


def _candidate_indices(series: IncidenceSeries, min_side_bins: int, window) -> List[int]:
    candidates = list(range(min_side_bins, series.n_bins - min_side_bins + 1))
    if window is not None:
        lo, hi = window
        lo = _parse_bound(lo, "window start")
        hi = _parse_bound(hi, "window end")
        candidates = [
            k for k in candidates
            if (lo is None or series.starts[k] >= lo) and (hi is None or series.starts[k] < hi)
        ]
    return candidates


def _evaluate_split(series: IncidenceSeries, k: int, confidence: float):
    """Score split ``k``: (score, n_fitted, before, after, left_out).

    A group counts towards the score when both of its sides fit with residual
    degrees of freedom left. Sides that cannot be fitted get a FitFailure
    marker. The score is NaN when no group counts.
    """
    before, after, adj, left_out = {}, {}, [], []
    for group in series.groups:
        for side, rng in ((before, (0, k)), (after, (k, series.n_bins))):
            try:
                side[group] = fit_log_linear(series, group, rng, confidence)
            except (InsufficientData, ModelFitFailure) as err:
                side[group] = FitFailure(group=group, segment_range=rng, error=err)
        pair = (before[group], after[group])
        if any(isinstance(m, FitFailure) or not np.isfinite(m.adj_r_squared) for m in pair):
            left_out.append(group)
            continue
        adj.extend(m.adj_r_squared for m in pair)

    if not adj:
        logger.debug("Split at bin %d rejected: no group fits on both sides", k)
        return float("nan"), 0, None, None, left_out
    if left_out:
        logger.debug("Split at bin %d: groups %s left out of the score", k, left_out)

    score = float(np.mean(adj))
    if series.n_groups == 1:
        return score, 1, before[series.groups[0]], after[series.groups[0]], left_out
    return score, len(adj) // 2, before, after, left_out


def _search(series, min_side_bins, confidence, window, n_jobs, max_candidates) -> SplitResult:
    candidates = _candidate_indices(series, min_side_bins, window)
    if max_candidates is not None and len(candidates) > max_candidates:
        logger.warning(
            "Split search truncated to the first %d of %d candidates", max_candidates, len(candidates)
        )
        candidates = candidates[:max_candidates]
    if not candidates:
        raise NoValidSplit(
            f"No split leaves {min_side_bins} bins on each side of a {series.n_bins}-bin series"
        )

    evaluated = Parallel(n_jobs=n_jobs)(
        delayed(_evaluate_split)(series, k, confidence) for k in candidates
    )

    best = None
    rows = []
    for k, (score, n_fitted, before, after, left_out) in zip(candidates, evaluated):
        rows.append({"split": series.starts[k], "split_index": k, "score": score, "groups_fitted": n_fitted})
        # Candidates fitting more groups rank first; strict comparison keeps the earliest of ties
        if not np.isnan(score) and (best is None or (n_fitted, score) > best[:2]):
            best = (n_fitted, score, k, before, after, left_out)

    scores = pd.DataFrame(rows, columns=["split", "split_index", "score", "groups_fitted"])
    if best is None:
        raise NoValidSplit(
            f"None of the {len(candidates)} candidate splits gave two valid fits for any group"
        )

    _, score, k, before, after, left_out = best
    if left_out:
        logger.warning("Groups %s could not be fitted on both sides of the split; left out of the score", left_out)
    logger.info("Best split at %s (bin %d), mean adjusted R2 %.4f", series.starts[k].date(), k, score)
    return SplitResult(
        split=series.starts[k],
        split_index=k,
        before=before,
        after=after,
        score=score,
        mode=SHARED,
        scores=scores,
    )


def fit_optimal_split(
    series: IncidenceSeries,
    min_side_bins: int = 3,
    confidence: float = 0.95,
    mode: str = SHARED,
    window: Optional[Tuple[object, object]] = None,
    n_jobs: int = 1,
    max_candidates: Optional[int] = None,
) -> Union[SplitResult, Dict[Hashable, Union[SplitResult, FitFailure]]]:
    """Search the split that maximises the mean adjusted R-squared.

    Args:
        series: incidence series (not cumulative).
        min_side_bins: minimum bins on each side of a candidate split, >= 2.
        confidence: confidence level of the returned models.
        mode: "shared" for one split across all groups, "per_group" for an
            independent search in every group.
        window: optional (from, to) dates; only splits starting in
            [from, to) are tried.
        n_jobs: joblib workers used to evaluate candidates.
        max_candidates: evaluate at most this many candidates, earliest first.

    Returns:
        SplitResult, or for "per_group" on a grouped series a dict
        group -> SplitResult, with a FitFailure for groups without a valid split.

    Raises:
        NoValidSplit: no candidate produced valid fits on both sides for any
            group.
    """
    if int(min_side_bins) != min_side_bins or min_side_bins < 2:
        raise InvalidInput(f"min_side_bins must be an integer >= 2, got {min_side_bins}")
    if max_candidates is not None and max_candidates < 1:
        raise InvalidInput(f"max_candidates must be >= 1, got {max_candidates}")
    if mode not in (SHARED, PER_GROUP):
        raise InvalidInput(f"mode must be '{SHARED}' or '{PER_GROUP}', got {mode!r}")
    if series.cumulative:
        raise InvalidInput("Cannot search a split on cumulative counts")
    confidence = _check_confidence(confidence)
    min_side_bins = int(min_side_bins)

    if mode == SHARED or series.n_groups == 1:
        result = _search(series, min_side_bins, confidence, window, n_jobs, max_candidates)
        if mode == PER_GROUP:
            result = _as_per_group(result)
        return result

    results = {}
    for group in series.groups:
        try:
            found = _search(
                slice_groups(series, [group]), min_side_bins, confidence, window, n_jobs, max_candidates
            )
            results[group] = _as_per_group(found)
        except NoValidSplit as err:
            logger.warning("No valid split for group %r: %s", group, err)
            results[group] = FitFailure(group=group, segment_range=(0, series.n_bins), error=err)
    return results


def _as_per_group(result: SplitResult) -> SplitResult:
    return dataclasses.replace(result, mode=PER_GROUP)
