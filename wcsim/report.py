from __future__ import annotations

from typing import Dict, List, Optional

import pandas as pd

from wcsim.bracket import ELIMINATION_STAGES, ROUND_RANK, ROUNDS
from wcsim.fixtures import Tournament
from wcsim.model import DEFAULT_MODEL, GoalRateModel
from wcsim.ratings import RatingSnapshot

POSITION_COLUMNS = ["1st", "2nd", "3rd", "4th"]


class SimulationReport:
    """
    Empirical frequencies over a finished run. Every frame holds
    probabilities in [0, 1]; multiply by 100 for display.
    """

    def __init__(self, counts, tournament: Tournament, ratings: RatingSnapshot, config=None):
        if counts.n_trials <= 0:
            raise ValueError("A report needs at least one completed trial")
        self.counts = counts
        self.tournament = tournament
        self.ratings = ratings
        self.config = config

    @property
    def n_trials(self) -> int:
        return self.counts.n_trials

    @property
    def rating_source(self) -> str:
        return self.ratings.source

    def group_positions(self, group: Optional[str] = None) -> pd.DataFrame:
        groups = [group] if group else list(self.tournament.groups)
        rows = []
        for g in groups:
            for team in self.tournament.groups[g]:
                row = {"group": g, "team": team, "rating": self.ratings.get_rating(team)}
                for pos, col in enumerate(POSITION_COLUMNS, start=1):
                    row[col] = self.counts.positions[(g, team, pos)] / self.n_trials
                rows.append(row)
        df = pd.DataFrame(rows).set_index(["group", "team"])
        df["top_2"] = df["1st"] + df["2nd"]
        df["advance"] = [
            self.reach_probability(team, "Round of 32") for _, team in df.index
        ]
        return df

    def reach_probability(self, team: str, stage: str) -> float:
        floor = ROUND_RANK[stage]
        hits = sum(
            n for (t, r), n in self.counts.reached.items() if t == team and ROUND_RANK[r] >= floor
        )
        return hits / self.n_trials

    def advancement(self) -> pd.DataFrame:
        """P(team reaches at least each knockout round), sorted by title odds."""
        teams = self.tournament.teams
        data: Dict[str, List[float]] = {r: [] for r in ROUNDS[1:]}
        for team in teams:
            deepest = {r: self.counts.reached[(team, r)] for r in ROUNDS}
            running = 0
            cumulative = {}
            for r in reversed(ROUNDS):
                running += deepest[r]
                cumulative[r] = running / self.n_trials
            for r in ROUNDS[1:]:
                data[r].append(cumulative[r])
        df = pd.DataFrame(data, index=pd.Index(teams, name="team"))
        df.insert(0, "group", [self.tournament.group_of(t) for t in teams])
        return df.sort_values(["Champion", "Final", "Semifinal"], ascending=False)

    def champion_odds(self) -> pd.Series:
        s = self.advancement()["Champion"]
        s.name = "champion"
        return s[s > 0]

    def stage_of_elimination(self) -> pd.DataFrame:
        labels = sorted(ELIMINATION_STAGES.values())
        df = pd.DataFrame(0.0, index=pd.Index(self.tournament.teams, name="team"), columns=labels)
        for (team, label), n in self.counts.eliminated.items():
            if team in df.index:
                df.loc[team, label] = n / self.n_trials
        return df

    def match_probabilities(self, match_id: int) -> pd.DataFrame:
        fixture = self.tournament.fixture(match_id)
        rows = []
        for (m, team), n in self.counts.appearances.items():
            if m != match_id:
                continue
            wins = self.counts.wins[(m, team)]
            rows.append(
                {
                    "team": team,
                    "group": self.tournament.team_group.get(team),
                    "p_play": n / self.n_trials,
                    "p_win": wins / self.n_trials,
                    "p_win_given_play": wins / n,
                }
            )
        df = pd.DataFrame(rows, columns=["team", "group", "p_play", "p_win", "p_win_given_play"])
        df = df.sort_values("p_play", ascending=False).reset_index(drop=True)
        df.attrs["match"] = fixture.describe()
        df.attrs["venue"] = fixture.venue
        return df

    def match_win_probabilities(self) -> pd.DataFrame:
        rows = []
        for (m, team), n in self.counts.appearances.items():
            fixture = self.tournament.fixtures[m]
            rows.append(
                {
                    "match_id": m,
                    "stage": fixture.stage,
                    "team": team,
                    "p_play": n / self.n_trials,
                    "p_win": self.counts.wins[(m, team)] / self.n_trials,
                }
            )
        df = pd.DataFrame(rows, columns=["match_id", "stage", "team", "p_play", "p_win"])
        return df.sort_values(["match_id", "p_win"], ascending=[True, False]).reset_index(drop=True)

    def venue_probabilities(self, stadium: Optional[str] = None) -> pd.DataFrame:
        """P(team plays at least one knockout match at each stadium)."""
        stadiums = [stadium] if stadium else self.tournament.stadiums()
        df = pd.DataFrame(
            0.0, index=pd.Index(self.tournament.teams, name="team"), columns=stadiums
        )
        for (s, team), n in self.counts.venues.items():
            if s in df.columns and team in df.index:
                df.loc[team, s] = n / self.n_trials
        return df.sort_values(stadiums[0], ascending=False) if stadiums else df

    def third_place_slots(self) -> pd.DataFrame:
        slots = self.tournament.third_place_slots
        rows = []
        for slot in sorted(slots):
            for group in sorted(slots[slot]):
                rows.append(
                    {
                        "match_id": slot,
                        "group": group,
                        "p": self.counts.third_place_slots[(slot, group)] / self.n_trials,
                    }
                )
        return pd.DataFrame(rows, columns=["match_id", "group", "p"])

    def extra_time_rates(self) -> pd.DataFrame:
        rows = []
        for m in sorted(self.tournament.fixtures):
            rows.append(
                {
                    "match_id": m,
                    "stage": self.tournament.fixtures[m].stage,
                    "extra_time": self.counts.decided_by[(m, "extra_time")] / self.n_trials,
                    "penalties": self.counts.decided_by[(m, "penalties")] / self.n_trials,
                }
            )
        return pd.DataFrame(rows).set_index("match_id")


def match_odds_frame(
    pairs, ratings: RatingSnapshot, model: GoalRateModel = DEFAULT_MODEL
) -> pd.DataFrame:
    """Analytical win/draw/loss for (team_a, team_b) pairs, independent of any simulation."""
    rows = []
    for team_a, team_b in pairs:
        odds = model.match_odds(ratings.get_rating(team_a), ratings.get_rating(team_b))
        rows.append(
            {
                "team_a": team_a,
                "team_b": team_b,
                "rating_a": odds.rating_a,
                "rating_b": odds.rating_b,
                "xg_a": odds.lam_a,
                "xg_b": odds.lam_b,
                "p_win": odds.p_win,
                "p_draw": odds.p_draw,
                "p_loss": odds.p_loss,
                "likely_score": f"{odds.likely_score[0]}-{odds.likely_score[1]}",
            }
        )
    return pd.DataFrame(rows)
