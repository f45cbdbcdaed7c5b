"""
Command-line tracker: simulate the tournament and print the probability
tables for one fixture (default: the first knockout match at AT&T Stadium).

    wcsim --match 78 --trials 10000 --seed 1
    wcsim --odds Germany Ecuador
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import pandas as pd

from wcsim.config import DEFAULT_RATING, TIE_BREAK_POLICIES, TRACKED_STADIUM, SimulationConfig
from wcsim.errors import (
    FixtureConfigError,
    MarketDataError,
    OverrideConflictError,
    SimulationCancelled,
    ThirdPlaceAssignmentError,
)
from wcsim.fixtures import GroupPosition, world_cup_2026
from wcsim.markets import MarketPrices
from wcsim.overrides import ActualResults
from wcsim.ratings import get_rating_snapshot
from wcsim.report import match_odds_frame
from wcsim.simulation import simulate

logger = logging.getLogger("wcsim")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wcsim", description="World Cup 2026 Monte Carlo venue tracker"
    )
    parser.add_argument("--match", type=int, default=None, help="fixture number to report on")
    parser.add_argument("--stadium", default=TRACKED_STADIUM, help="venue to follow")
    parser.add_argument("--trials", type=int, default=None)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--workers", type=int, default=None)
    parser.add_argument("--tie-break", choices=TIE_BREAK_POLICIES, default=None)
    parser.add_argument(
        "--dixon-coles",
        action="store_true",
        help="sample scorelines from the tau-corrected grid",
    )
    parser.add_argument("--offline", action="store_true", help="skip the live FIFA feed")
    parser.add_argument("--default-rating", type=float, default=DEFAULT_RATING)
    parser.add_argument("--group-results", default=None, help="CSV of played group matches")
    parser.add_argument("--knockout-results", default=None, help="CSV of played knockout matches")
    parser.add_argument("--markets", default=None, help="CSV of group market prices")
    parser.add_argument("--odds", nargs=2, metavar=("TEAM_A", "TEAM_B"), default=None)
    parser.add_argument("--top", type=int, default=16)
    parser.add_argument("--plot", default=None, help="save an advancement heatmap here")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def _pct(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    num = out.select_dtypes("number").columns.difference(["rating", "match_id"])
    out[num] = (out[num] * 100).round(1)
    return out


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )

    try:
        ratings = get_rating_snapshot(live=not args.offline, default_rating=args.default_rating)
        print(f"Ratings: {len(ratings)} teams ({ratings.source}, {ratings.last_updated})")

        if args.odds:
            print(match_odds_frame([tuple(args.odds)], ratings).round(3).to_string(index=False))
            return 0

        tournament = world_cup_2026()
        match_ids = tournament.matches_at(args.stadium)
        match_id = args.match or (match_ids[0] if match_ids else tournament.final_match_id)
        fixture = tournament.fixture(match_id)

        config = SimulationConfig.from_env(
            n_trials=args.trials,
            seed=args.seed,
            workers=args.workers,
            tie_break=args.tie_break,
            dixon_coles=args.dixon_coles or None,
        )
        overrides = None
        if args.group_results or args.knockout_results:
            overrides = ActualResults.from_csv(args.group_results, args.knockout_results)

        report = simulate(ratings, tournament, config, overrides=overrides)
    except KeyboardInterrupt:
        print("Simulation cancelled; no results reported.", file=sys.stderr)
        return 130
    except (
        FixtureConfigError,
        ThirdPlaceAssignmentError,
        OverrideConflictError,
        SimulationCancelled,
        FileNotFoundError,
        ValueError,
        KeyError,
    ) as exc:
        logger.error("Simulation could not run: %s", exc)
        return 1

    print(f"\n{fixture.describe()}")
    print(f"{fixture.date:%B %d, %Y} - {fixture.venue}" if fixture.date is not None else fixture.venue)
    print(f"Based on {report.n_trials:,} Monte Carlo simulations.\n")

    feeding_groups = sorted(
        {s.group for s in fixture.sources if isinstance(s, GroupPosition)}
    )
    for group in feeding_groups:
        print(f"Group {group} finishing positions (%):")
        print(_pct(report.group_positions(group)).to_string())
        print()

    print(f"Who plays in match {match_id} (%):")
    print(_pct(report.match_probabilities(match_id)).head(args.top).to_string(index=False))

    if args.stadium:
        venue = report.venue_probabilities(args.stadium)
        venue = venue[venue[args.stadium] > 0].head(args.top)
        print(f"\nChance of playing at {args.stadium} (%):")
        print(_pct(venue).to_string())

    print("\nAdvancement (%):")
    print(_pct(report.advancement()).head(args.top).to_string())

    champions = report.champion_odds().head(5)
    print("\nTitle favourites: " + ", ".join(f"{t} {p:.1%}" for t, p in champions.items()))

    if args.markets:
        try:
            markets = MarketPrices.from_csv(args.markets)
        except (MarketDataError, FileNotFoundError) as exc:
            logger.error("Market prices unavailable: %s", exc)
        else:
            print("\nMarket vs model (group stage, %):")
            print(_pct(markets.compare(report.group_positions())).to_string())

    if args.plot:
        import matplotlib

        matplotlib.use("Agg")
        from wcsim.viz import plot_advancement, plot_match

        ax = plot_advancement(report.advancement(), top_n=args.top)
        ax.figure.tight_layout()
        ax.figure.savefig(args.plot)
        logger.info("Saved advancement heatmap to %s", args.plot)

        match_path = Path(args.plot).with_name(f"{Path(args.plot).stem}_match_{match_id}.png")
        ax = plot_match(report.match_probabilities(match_id))
        ax.figure.tight_layout()
        ax.figure.savefig(match_path)
        logger.info("Saved match %d chart to %s", match_id, match_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
