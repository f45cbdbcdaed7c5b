from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from wcsim.model import DEFAULT_MODEL, GoalRateModel, sample_match


@dataclass
class KnockoutResult:
    home_team: str
    away_team: str
    home_score: int
    away_score: int
    winner: str
    match_id: Optional[int] = None
    stage: Optional[str] = None
    home_score_90: Optional[int] = None
    away_score_90: Optional[int] = None
    went_extra_time: bool = False
    went_penalties: bool = False
    overridden: bool = False

    @property
    def loser(self) -> str:
        return self.away_team if self.winner == self.home_team else self.home_team


def resolve_knockout(
    home_team: str,
    away_team: str,
    home_rating: float,
    away_rating: float,
    rng: np.random.Generator,
    model: GoalRateModel = DEFAULT_MODEL,
    match_id: Optional[int] = None,
    stage: Optional[str] = None,
    dixon_coles: bool = False,
) -> KnockoutResult:
    """
    Regulation, then extra time at a reduced scoring rate, then a shootout
    weighted slightly towards the higher-rated side. Always yields a winner.
    """
    lam_h, lam_a = model.rates(home_rating, away_rating)
    home_90, away_90 = sample_match(lam_h, lam_a, rng, dixon_coles=dixon_coles, rho=model.rho)

    if home_90 != away_90:
        return KnockoutResult(
            home_team=home_team,
            away_team=away_team,
            home_score=home_90,
            away_score=away_90,
            winner=home_team if home_90 > away_90 else away_team,
            match_id=match_id,
            stage=stage,
            home_score_90=home_90,
            away_score_90=away_90,
        )

    lam_h_et, lam_a_et = model.extra_time_rates(home_rating, away_rating)
    home_et, away_et = sample_match(
        lam_h_et, lam_a_et, rng, dixon_coles=dixon_coles, rho=model.rho
    )
    home_120 = home_90 + home_et
    away_120 = away_90 + away_et

    if home_120 != away_120:
        return KnockoutResult(
            home_team=home_team,
            away_team=away_team,
            home_score=home_120,
            away_score=away_120,
            winner=home_team if home_120 > away_120 else away_team,
            match_id=match_id,
            stage=stage,
            home_score_90=home_90,
            away_score_90=away_90,
            went_extra_time=True,
        )

    p_home_pen = model.shootout_win_prob(home_rating, away_rating)
    pen_winner = home_team if rng.random() < p_home_pen else away_team
    return KnockoutResult(
        home_team=home_team,
        away_team=away_team,
        home_score=home_120,
        away_score=away_120,
        winner=pen_winner,
        match_id=match_id,
        stage=stage,
        home_score_90=home_90,
        away_score_90=away_90,
        went_extra_time=True,
        went_penalties=True,
    )
