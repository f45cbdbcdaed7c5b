from __future__ import annotations

from itertools import combinations

import numpy as np
import pandas as pd
import pytest

from wcsim.config import SimulationConfig
from wcsim.errors import OverrideConflictError, SimulationCancelled
from wcsim.fixtures import world_cup_2026
from wcsim.overrides import ActualResults, KnockoutOverride, group_scores
from wcsim.ratings import RatingSnapshot, load_fallback_ratings
from wcsim.report import SimulationReport, match_odds_frame
from wcsim.simulation import SimulationCounts, run_chunk, simulate


@pytest.fixture(scope="module")
def tournament():
    return world_cup_2026()


@pytest.fixture(scope="module")
def ratings():
    return RatingSnapshot(load_fallback_ratings())


@pytest.fixture(scope="module")
def report(tournament, ratings):
    return simulate(ratings, tournament, SimulationConfig(n_trials=300, seed=2026, chunk_size=100))


class TestSimulate:
    def test_seeded_runs_are_identical(self, tournament, ratings) -> None:
        config = SimulationConfig(n_trials=60, seed=7, chunk_size=20)
        a = simulate(ratings, tournament, config)
        b = simulate(ratings, tournament, config)
        pd.testing.assert_frame_equal(a.group_positions(), b.group_positions())
        assert a.counts.wins == b.counts.wins

    def test_merge_is_order_independent(self, tournament, ratings) -> None:
        seeds = np.random.SeedSequence(11).spawn(3)
        parts = [run_chunk(ratings, tournament, 10, s) for s in seeds]
        forward = SimulationCounts()
        for p in parts:
            forward.merge(p)
        backward = SimulationCounts()
        for p in reversed(parts):
            backward.merge(p)
        assert forward.n_trials == backward.n_trials == 30
        assert forward.positions == backward.positions
        assert forward.venues == backward.venues

    def test_process_pool_matches_in_process(self, tournament, ratings) -> None:
        serial = simulate(ratings, tournament, SimulationConfig(n_trials=40, seed=3, chunk_size=10))
        pooled = simulate(
            ratings, tournament, SimulationConfig(n_trials=40, seed=3, chunk_size=10, workers=2)
        )
        assert serial.counts.positions == pooled.counts.positions
        assert serial.counts.wins == pooled.counts.wins

    def test_cancel_discards_run(self, tournament, ratings) -> None:
        calls = []

        def cancel():
            calls.append(1)
            return len(calls) > 5

        with pytest.raises(SimulationCancelled):
            simulate(ratings, tournament, SimulationConfig(n_trials=50, seed=1), cancel=cancel)

    def test_cancel_reaches_worker_processes(self, tournament, ratings) -> None:
        config = SimulationConfig(n_trials=400, seed=1, chunk_size=50, workers=2)
        with pytest.raises(SimulationCancelled):
            simulate(ratings, tournament, config, cancel=lambda: True)

    @pytest.mark.parametrize(
        "knockout",
        [
            {104: KnockoutOverride(104, winner="Germany")},
            {78: KnockoutOverride(78, winner="Brazil")},
            {74: KnockoutOverride(74, winner="Germany", home_team="Germany", away_team="Mexico")},
        ],
    )
    def test_bad_knockout_results_fail_before_any_trial(self, tournament, ratings, knockout) -> None:
        started = []

        def cancel():
            started.append(1)
            return False

        overrides = ActualResults(group_scores=_every_group_recorded(tournament), knockout=knockout)
        with pytest.raises(OverrideConflictError):
            simulate(ratings, tournament, SimulationConfig(n_trials=20, seed=1), overrides=overrides, cancel=cancel)
        assert started == []

    def test_knockout_results_need_group_stage(self, tournament, ratings) -> None:
        overrides = ActualResults(knockout={78: KnockoutOverride(78, winner="Ecuador")})
        with pytest.raises(OverrideConflictError):
            simulate(ratings, tournament, SimulationConfig(n_trials=20, seed=1), overrides=overrides)

    def test_recorded_third_place_slot_holds_every_trial(self, tournament, ratings) -> None:
        overrides = ActualResults(
            group_scores=_every_group_recorded(tournament),
            knockout={74: KnockoutOverride(74, winner="South Korea")},
        )
        rep = simulate(ratings, tournament, SimulationConfig(n_trials=30, seed=5), overrides=overrides)
        assert rep.counts.wins[(74, "South Korea")] == 30
        assert rep.counts.appearances[(74, "Germany")] == 30
        assert rep.counts.third_place_slots[(74, "A")] == 30
        assert all(n == 30 for (m, _), n in rep.counts.appearances.items() if m == 74)

    def test_fully_recorded_group_has_no_variance(self, tournament, ratings) -> None:
        overrides = ActualResults(
            group_scores=group_scores(
                "A",
                [
                    ("Mexico", "South Africa", 2, 0),
                    ("Mexico", "South Korea", 2, 0),
                    ("Mexico", "UEFA Playoff D", 2, 0),
                    ("South Korea", "South Africa", 1, 0),
                    ("South Korea", "UEFA Playoff D", 1, 0),
                    ("UEFA Playoff D", "South Africa", 1, 0),
                ],
            )
        )
        rep = simulate(
            ratings, tournament, SimulationConfig(n_trials=50, seed=4), overrides=overrides
        )
        table = rep.group_positions("A")
        assert table.loc[("A", "Mexico"), "1st"] == 1.0
        assert table.loc[("A", "South Korea"), "2nd"] == 1.0
        assert table.loc[("A", "UEFA Playoff D"), "3rd"] == 1.0
        assert table.loc[("A", "South Africa"), "4th"] == 1.0
        assert table.loc[("A", "South Africa"), "advance"] == 0.0

    def test_zero_trials_rejected(self) -> None:
        with pytest.raises(ValueError):
            SimulationConfig(n_trials=0)


class TestReport:
    def test_positions_are_distributions(self, report) -> None:
        df = report.group_positions()
        assert len(df) == 48
        np.testing.assert_allclose(df[["1st", "2nd", "3rd", "4th"]].sum(axis=1), 1.0)
        for group in "ABCDEFGHIJKL":
            cols = df.loc[group, ["1st", "2nd", "3rd", "4th"]].sum(axis=0)
            np.testing.assert_allclose(cols, 1.0)

    def test_thirty_two_advance_per_trial(self, report) -> None:
        df = report.group_positions()
        assert df["advance"].sum() == pytest.approx(32.0)
        assert (df["advance"] >= df["top_2"] - 1e-12).all()

    def test_advancement_is_monotone(self, report) -> None:
        adv = report.advancement()
        rounds = ["Round of 32", "Round of 16", "Quarterfinal", "Semifinal", "Final", "Champion"]
        assert adv["Champion"].sum() == pytest.approx(1.0)
        assert adv["Final"].sum() == pytest.approx(2.0)
        for a, b in zip(rounds, rounds[1:]):
            assert (adv[a] >= adv[b]).all()

    def test_match_probabilities(self, report) -> None:
        df = report.match_probabilities(78)
        assert df["p_play"].sum() == pytest.approx(2.0)
        assert df["p_win"].sum() == pytest.approx(1.0)
        assert set(df["group"]) <= {"E", "I"}
        assert "AT&T Stadium" in df.attrs["venue"]

    def test_third_place_slot_shares(self, report) -> None:
        df = report.third_place_slots()
        totals = df.groupby("match_id")["p"].sum()
        np.testing.assert_allclose(totals, 1.0)

    def test_venue_probabilities(self, report) -> None:
        df = report.venue_probabilities("AT&T Stadium")
        # Match 78 and 88 alone bring four teams to Arlington every trial.
        assert df["AT&T Stadium"].sum() >= 4.0
        assert (df["AT&T Stadium"] <= 1.0).all()

    def test_stage_of_elimination_rows_sum_to_one(self, report) -> None:
        df = report.stage_of_elimination()
        np.testing.assert_allclose(df.sum(axis=1), 1.0)

    def test_extra_time_rates(self, report) -> None:
        df = report.extra_time_rates()
        assert len(df) == 32
        assert ((df["extra_time"] + df["penalties"]) <= 1.0).all()

    def test_champion_odds(self, report) -> None:
        odds = report.champion_odds()
        assert odds.sum() == pytest.approx(1.0)
        assert (odds > 0).all()

    def test_match_win_probabilities(self, report) -> None:
        df = report.match_win_probabilities()
        assert set(df["match_id"]) == set(range(73, 105))
        np.testing.assert_allclose(df.groupby("match_id")["p_win"].sum(), 1.0)

    def test_report_requires_trials(self, tournament, ratings) -> None:
        with pytest.raises(ValueError):
            SimulationReport(SimulationCounts(), tournament, ratings)


def test_match_odds_frame(ratings) -> None:
    df = match_odds_frame([("France", "Haiti"), ("Haiti", "France")], ratings)
    assert df.loc[0, "p_win"] == pytest.approx(df.loc[1, "p_loss"])
    assert df.loc[0, "p_win"] > 0.8
    np.testing.assert_allclose(df[["p_win", "p_draw", "p_loss"]].sum(axis=1), 1.0)


def _every_group_recorded(tournament):
    scores = ()
    for group, teams in tournament.groups.items():
        scores += group_scores(group, [(a, b, 1, 0) for a, b in combinations(teams, 2)])
    return scores
