#!/usr/bin/env python3
# src/outbreak_incidence/runner.py: command line runner over a CSV line list

import argparse
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import pandas as pd

from .errors import IncidenceError
from .fitting.growth_fit import FitFailure, fit
from .fitting.split_optim import SHARED, fit_optimal_split
from .series.binning import NAPolicy, incidence
from .series.incidence_series import IncidenceSeries
from .series.operations import to_table

logger = logging.getLogger(__name__)


@dataclass
class RunConfig:
    csv: str = "data/linelist.csv"
    date_col: str = "date"
    group_col: Optional[str] = None
    interval: str = "1"
    na_policy: NAPolicy = NAPolicy.RETAIN_AS_GROUP
    first_date: Optional[str] = None
    last_date: Optional[str] = None
    standard: bool = True
    confidence: float = 0.95


def parse_interval_arg(s: str):
    """'7' -> 7, anything else ('week', '2 weeks') is passed through."""
    s = s.strip()
    return int(s) if s.isdigit() else s


def parse_split_arg(s: Optional[str]):
    """'3' -> bin index 3, anything else is taken as a date."""
    if s is None:
        return None
    s = s.strip()
    return int(s) if s.isdigit() else s


def load_series(cfg: RunConfig) -> IncidenceSeries:
    """Read the line list and bin it."""
    path = Path(cfg.csv)
    if not path.exists():
        raise FileNotFoundError(f"Line list CSV not found: {cfg.csv}")
    df = pd.read_csv(path, dtype=str)
    missing = [c for c in (cfg.date_col, cfg.group_col) if c is not None and c not in df.columns]
    if missing:
        raise ValueError(f"Columns {missing} not found in {cfg.csv}")

    groups = df[cfg.group_col].tolist() if cfg.group_col else None
    return incidence(
        df[cfg.date_col].tolist(),
        interval=parse_interval_arg(cfg.interval),
        groups=groups,
        na_policy=cfg.na_policy,
        first_date=cfg.first_date,
        last_date=cfg.last_date,
        standard=cfg.standard,
    )


def format_model(model) -> str:
    if isinstance(model, FitFailure):
        return f"  {model.group}: fit failed ({model.message})"
    s = model.summary()
    line = f"  {s['group']}: bins {s['bins'][0]}-{s['bins'][1] - 1}, r = {s['rate']:.4f}/day"
    line += f" [{s['rate_lwr']:.4f}; {s['rate_upr']:.4f}]"
    if model.doubling_or_halving_time is not None:
        label = "doubling" if s["regime"] == "growth" else "halving"
        line += f", {label} time = {model.doubling_or_halving_time:.1f} days"
        line += f" [{s['time_lwr']:.1f}; {s['time_upr']:.1f}]"
    return line


def format_fit(result) -> List[str]:
    if isinstance(result, dict):
        return [format_model(m) for m in result.values()]
    return [format_model(result)]


def add_common_args(p: argparse.ArgumentParser):
    p.add_argument("--csv", required=True, metavar="PATH",
                   help="Line list CSV, one row per case")
    p.add_argument("--date-col", default="date", metavar="COL",
                   help="Column holding the case dates (default: date)")
    p.add_argument("--group-col", default=None, metavar="COL",
                   help="Optional column holding group labels")
    p.add_argument("--interval", default="1", metavar="INTERVAL",
                   help="Days per bin, or day/week/epiweek/month/quarter/year, e.g. '2 weeks' (default: 1)")
    p.add_argument("--exclude-na-group", action="store_true",
                   help="Drop cases with a missing group instead of counting them as 'NA'")
    p.add_argument("--first-date", default=None, metavar="DATE")
    p.add_argument("--last-date", default=None, metavar="DATE")
    p.add_argument("--no-standard", action="store_true",
                   help="Do not snap calendar bins to Monday / 1st of month etc.")
    p.add_argument("--confidence", type=float, default=0.95,
                   help="Confidence level of intervals (default: 0.95)")


def config_from_args(args) -> RunConfig:
    return RunConfig(
        csv=args.csv,
        date_col=args.date_col,
        group_col=args.group_col,
        interval=args.interval,
        na_policy=NAPolicy.EXCLUDE if args.exclude_na_group else NAPolicy.RETAIN_AS_GROUP,
        first_date=args.first_date,
        last_date=args.last_date,
        standard=not args.no_standard,
        confidence=args.confidence,
    )


def main(argv=None):
    p = argparse.ArgumentParser(description="Incidence curves and log-linear growth fits")
    sub = p.add_subparsers(dest="cmd", required=True)

    # ---------- incidence ----------
    inc_p = sub.add_parser("incidence", help="Bin case dates and write the incidence table")
    add_common_args(inc_p)
    inc_p.add_argument("--out", default="data/incidence.csv", metavar="PATH",
                       help="Output CSV path (default: data/incidence.csv)")
    inc_p.add_argument("--wide", action="store_true", help="One column per group")

    # ---------- fit ----------
    fit_p = sub.add_parser("fit", help="Fit a log-linear model, optionally around a split date")
    add_common_args(fit_p)
    fit_p.add_argument("--split", default=None, metavar="DATE|BIN",
                       help="Fit separate models before and after this date, or from this bin index on")
    fit_p.add_argument("--out", default=None, metavar="PATH",
                       help="Optional CSV of fitted values")

    # ---------- optim-split ----------
    opt_p = sub.add_parser("optim-split", help="Find the split date maximising the fit")
    add_common_args(opt_p)
    opt_p.add_argument("--min-side-bins", type=int, default=3,
                       help="Minimum bins on each side of a split (default: 3)")
    opt_p.add_argument("--mode", default=SHARED, choices=["shared", "per_group"])
    opt_p.add_argument("--n-jobs", type=int, default=1)
    opt_p.add_argument("--out", default=None, metavar="PATH",
                       help="Optional CSV of the score of every candidate split")

    args = p.parse_args(argv)
    t0 = time.perf_counter()
    cfg = config_from_args(args)
    logger.debug("Run config: %s", cfg)

    try:
        series = load_series(cfg)
    except (IncidenceError, OSError, ValueError) as err:
        p.error(str(err))

    print(series)

    if args.cmd == "incidence":
        out = Path(args.out)
        out.parent.mkdir(parents=True, exist_ok=True)
        to_table(series, wide=args.wide).to_csv(out, index=False)
        print("Incidence table ->", out)

    elif args.cmd == "fit":
        try:
            result = fit(series, split=parse_split_arg(args.split), confidence=cfg.confidence)
        except IncidenceError as err:
            p.error(str(err))
        if args.split is None:
            parts = [("all bins", result)]
        else:
            parts = [("before", result[0]), ("after", result[1])]
        frames = []
        for name, part in parts:
            print(f"{name}:")
            print("\n".join(format_fit(part)))
            models = part.values() if isinstance(part, dict) else [part]
            for m in models:
                if not isinstance(m, FitFailure):
                    frames.append(m.predictions.assign(group=m.group, segment=name))
        if args.out and frames:
            out = Path(args.out)
            out.parent.mkdir(parents=True, exist_ok=True)
            pd.concat(frames, ignore_index=True).to_csv(out, index=False)
            print("Fitted values ->", out)

    elif args.cmd == "optim-split":
        try:
            result = fit_optimal_split(
                series,
                min_side_bins=args.min_side_bins,
                confidence=cfg.confidence,
                mode=args.mode,
                n_jobs=args.n_jobs,
            )
        except IncidenceError as err:
            p.error(str(err))
        results = result if isinstance(result, dict) else {None: result}
        for group, res in results.items():
            if isinstance(res, FitFailure):
                print(f"{group}: no valid split ({res.message})")
                continue
            prefix = "" if group is None else f"{group}: "
            print(f"{prefix}split at {res.split.date()} (bin {res.split_index}), "
                  f"mean adjusted R2 = {res.score:.4f}")
            print("before:")
            print("\n".join(format_fit(res.before)))
            print("after:")
            print("\n".join(format_fit(res.after)))
            if args.out:
                out = Path(args.out)
                if group is not None:
                    out = out.with_name(f"{out.stem}_{group}{out.suffix}")
                out.parent.mkdir(parents=True, exist_ok=True)
                res.scores.to_csv(out, index=False)
                print("Split scores ->", out)

    print(f"Done in {time.perf_counter() - t0:.2f}s")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main()
