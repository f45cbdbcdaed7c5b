from __future__ import annotations

from collections import Counter
from concurrent.futures import FIRST_COMPLETED, ProcessPoolExecutor, wait
from contextlib import ExitStack
from dataclasses import dataclass, field
from multiprocessing import Manager
from typing import Callable, List, Optional, Tuple
import logging
import time

import numpy as np

from wcsim.bracket import TrialResult, check_overrides, run_trial
from wcsim.config import SimulationConfig
from wcsim.errors import SimulationCancelled
from wcsim.fixtures import Tournament
from wcsim.model import DEFAULT_MODEL, GoalRateModel
from wcsim.overrides import ActualResults
from wcsim.ratings import RatingSnapshot
from wcsim.report import SimulationReport

logger = logging.getLogger(__name__)

CancelCheck = Callable[[], bool]
CANCEL_POLL_SECONDS = 0.2


@dataclass
class SimulationCounts:
    """Per-run tallies; every key counts trials, so merging is addition."""

    n_trials: int = 0
    positions: Counter = field(default_factory=Counter)  # (group, team, position)
    reached: Counter = field(default_factory=Counter)  # (team, deepest round)
    eliminated: Counter = field(default_factory=Counter)  # (team, stage label)
    appearances: Counter = field(default_factory=Counter)  # (match_id, team)
    wins: Counter = field(default_factory=Counter)  # (match_id, team)
    venues: Counter = field(default_factory=Counter)  # (stadium, team)
    third_place_slots: Counter = field(default_factory=Counter)  # (match_id, group)
    decided_by: Counter = field(default_factory=Counter)  # (match_id, "extra_time"|"penalties")

    def add(self, trial: TrialResult, tournament: Tournament) -> None:
        self.n_trials += 1
        for group, ranking in trial.group_rankings.items():
            for pos, st in enumerate(ranking, start=1):
                self.positions[(group, st.team, pos)] += 1
        for team, stage in trial.reached.items():
            self.reached[(team, stage)] += 1
        for team, label in trial.stage_of_elimination().items():
            self.eliminated[(team, label)] += 1
        for slot, record in trial.third_place.items():
            self.third_place_slots[(slot, record.group)] += 1

        seen_venue = set()
        for match_id, res in trial.matches.items():
            stadium = tournament.fixtures[match_id].stadium
            for team in (res.home_team, res.away_team):
                self.appearances[(match_id, team)] += 1
                if stadium:
                    seen_venue.add((stadium, team))
            self.wins[(match_id, res.winner)] += 1
            if res.went_penalties:
                self.decided_by[(match_id, "penalties")] += 1
            elif res.went_extra_time:
                self.decided_by[(match_id, "extra_time")] += 1
        for key in seen_venue:
            self.venues[key] += 1

    def merge(self, other: "SimulationCounts") -> "SimulationCounts":
        self.n_trials += other.n_trials
        self.positions.update(other.positions)
        self.reached.update(other.reached)
        self.eliminated.update(other.eliminated)
        self.appearances.update(other.appearances)
        self.wins.update(other.wins)
        self.venues.update(other.venues)
        self.third_place_slots.update(other.third_place_slots)
        self.decided_by.update(other.decided_by)
        return self


def run_chunk(
    ratings: RatingSnapshot,
    tournament: Tournament,
    n_trials: int,
    seed: np.random.SeedSequence,
    model: GoalRateModel = DEFAULT_MODEL,
    overrides: Optional[ActualResults] = None,
    tie_break: str = "input",
    dixon_coles: bool = False,
    cancel: Optional[CancelCheck] = None,
) -> SimulationCounts:
    rng = np.random.default_rng(seed)
    counts = SimulationCounts()
    for _ in range(n_trials):
        if cancel is not None and cancel():
            raise SimulationCancelled(f"Cancelled after {counts.n_trials} trials")
        trial = run_trial(
            ratings,
            tournament,
            rng,
            model=model,
            overrides=overrides,
            tie_break=tie_break,
            dixon_coles=dixon_coles,
        )
        counts.add(trial, tournament)
    return counts


def _run_chunk_until(stop, *args, **kwargs) -> SimulationCounts:
    return run_chunk(*args, cancel=stop.is_set if stop is not None else None, **kwargs)


def _chunks(n_trials: int, chunk_size: int) -> List[int]:
    full, rest = divmod(n_trials, chunk_size)
    return [chunk_size] * full + ([rest] if rest else [])


def simulate(
    ratings: RatingSnapshot,
    tournament: Tournament,
    config: Optional[SimulationConfig] = None,
    model: GoalRateModel = DEFAULT_MODEL,
    overrides: Optional[ActualResults] = None,
    cancel: Optional[CancelCheck] = None,
) -> SimulationReport:
    """
    Run config.n_trials independent trials and aggregate them. Chunk i always
    draws from child stream i of the root seed, so a seeded run gives the same
    report whatever the worker count. Recorded results are checked against the
    bracket before the first trial. Cancellation raises SimulationCancelled;
    partial tallies are discarded.
    """
    config = config or SimulationConfig()
    if overrides:
        check_overrides(
            ratings,
            tournament,
            overrides,
            model=model,
            tie_break=config.tie_break,
            dixon_coles=config.dixon_coles,
        )
    missing = ratings.missing(tournament.teams)
    if missing:
        logger.warning(
            "%d teams have no rating, using default %.1f: %s",
            len(missing),
            ratings.default_rating,
            missing,
        )

    sizes = _chunks(config.n_trials, config.chunk_size)
    seeds = np.random.SeedSequence(config.seed).spawn(len(sizes))
    jobs: List[Tuple[int, np.random.SeedSequence]] = list(zip(sizes, seeds))
    kwargs = dict(
        model=model,
        overrides=overrides,
        tie_break=config.tie_break,
        dixon_coles=config.dixon_coles,
    )

    start = time.perf_counter()
    counts = SimulationCounts()
    if config.workers == 1 or len(jobs) == 1:
        for size, seed in jobs:
            counts.merge(
                run_chunk(ratings, tournament, size, seed, cancel=cancel, **kwargs)
            )
    else:
        with ExitStack() as stack:
            # Workers cannot call the caller's cancel callable; they poll a
            # shared event instead. The manager must outlive the pool.
            stop = stack.enter_context(Manager()).Event() if cancel is not None else None
            pool = stack.enter_context(ProcessPoolExecutor(max_workers=config.workers))
            pending = {
                pool.submit(_run_chunk_until, stop, ratings, tournament, size, seed, **kwargs)
                for size, seed in jobs
            }
            try:
                while pending:
                    done, pending = wait(
                        pending, timeout=CANCEL_POLL_SECONDS, return_when=FIRST_COMPLETED
                    )
                    if cancel is not None and cancel():
                        raise SimulationCancelled(
                            f"Cancelled after {counts.n_trials} of {config.n_trials} trials"
                        )
                    for fut in done:
                        counts.merge(fut.result())
            except BaseException:
                if stop is not None:
                    stop.set()
                for fut in pending:
                    fut.cancel()
                raise

    logger.info(
        "Simulated %d trials in %.1fs (%d worker%s)",
        counts.n_trials,
        time.perf_counter() - start,
        config.workers,
        "" if config.workers == 1 else "s",
    )
    return SimulationReport(counts=counts, tournament=tournament, ratings=ratings, config=config)
