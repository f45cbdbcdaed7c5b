from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple
import math

import numpy as np
from scipy.optimize import minimize_scalar


MAX_GOALS = 10
MU = math.log(1.26)
BETA = 0.0022
RHO = -0.05
EXTRA_TIME_MULT = 1.0 / 3.0
SHOOTOUT_RATING_COEF = 0.0002
MAX_EXP_ARG = 50.0

_LOG_FACT = np.array([math.lgamma(k + 1.0) for k in range(MAX_GOALS + 1)], dtype=float)


def safe_exp(x: float) -> float:
    return math.exp(min(max(float(x), -MAX_EXP_ARG), MAX_EXP_ARG))


def log_factorial(n: int) -> float:
    return math.lgamma(n + 1.0)


def poisson_pmf(lam: float, max_goals: int = MAX_GOALS) -> np.ndarray:
    if lam <= 0.0:
        pmf = np.zeros(max_goals + 1, dtype=float)
        pmf[0] = 1.0
        return pmf
    if max_goals == MAX_GOALS:
        log_fact = _LOG_FACT
    else:
        log_fact = np.array([log_factorial(k) for k in range(max_goals + 1)], dtype=float)
    k = np.arange(max_goals + 1, dtype=float)
    log_p = -lam + k * np.log(lam) - log_fact
    return np.exp(log_p)


def dixon_coles_tau(lam_a: float, lam_b: float, rho: float = RHO) -> np.ndarray:
    """
    2x2 low-score correction, indexed [goals_a, goals_b]. Scorelines outside
    {0, 1} x {0, 1} are left untouched (tau = 1).
    """
    tau = np.array(
        [
            [1.0 - lam_a * lam_b * rho, 1.0 + lam_a * rho],
            [1.0 + lam_b * rho, 1.0 - rho],
        ],
        dtype=float,
    )
    return np.maximum(tau, 0.0)


def score_matrix(
    lam_a: float,
    lam_b: float,
    rho: float = RHO,
    max_goals: int = MAX_GOALS,
) -> np.ndarray:
    """
    Normalised joint scoreline probabilities; rows are side A's goals,
    columns side B's goals, both truncated at max_goals.
    """
    joint = np.outer(poisson_pmf(lam_a, max_goals), poisson_pmf(lam_b, max_goals))
    if rho != 0.0:
        joint[:2, :2] *= dixon_coles_tau(lam_a, lam_b, rho)
    total = float(joint.sum())
    if total <= 0.0:
        raise ValueError(f"Degenerate score grid for lambdas ({lam_a}, {lam_b})")
    return joint / total


def outcome_probs(
    lam_a: float,
    lam_b: float,
    rho: float = RHO,
    max_goals: int = MAX_GOALS,
) -> Tuple[float, float, float]:
    joint = score_matrix(lam_a, lam_b, rho=rho, max_goals=max_goals)
    p_win = float(np.tril(joint, k=-1).sum())
    p_draw = float(np.trace(joint))
    p_loss = float(np.triu(joint, k=1).sum())
    total = p_win + p_draw + p_loss
    return p_win / total, p_draw / total, p_loss / total


def sample_score(lam: float, rng: np.random.Generator) -> int:
    return int(rng.poisson(lam)) if lam > 0.0 else 0


def sample_match(
    lam_a: float,
    lam_b: float,
    rng: np.random.Generator,
    dixon_coles: bool = False,
    rho: float = RHO,
) -> Tuple[int, int]:
    if not dixon_coles:
        return sample_score(lam_a, rng), sample_score(lam_b, rng)
    joint = score_matrix(lam_a, lam_b, rho=rho)
    idx = int(rng.choice(joint.size, p=joint.ravel()))
    goals_a, goals_b = divmod(idx, joint.shape[1])
    return goals_a, goals_b


@dataclass(frozen=True)
class MatchOdds:
    rating_a: float
    rating_b: float
    lam_a: float
    lam_b: float
    p_win: float
    p_draw: float
    p_loss: float
    likely_score: Tuple[int, int]

    @property
    def expected_score(self) -> float:
        return self.p_win + 0.5 * self.p_draw


@dataclass(frozen=True)
class GoalRateModel:
    """
    mu:              log of the baseline goals per team per match
    beta:            log-rate shift per rating point of difference
    rho:             Dixon-Coles low-score dependence (negative favours draws)
    extra_time_mult: scoring-rate fraction for the 30 minutes of extra time
    shootout_coef:   shootout edge per rating point, around a coin flip
    """

    mu: float = MU
    beta: float = BETA
    rho: float = RHO
    extra_time_mult: float = EXTRA_TIME_MULT
    shootout_coef: float = SHOOTOUT_RATING_COEF

    def rates(
        self, rating_a: float, rating_b: float, mult: float = 1.0
    ) -> Tuple[float, float]:
        diff = float(rating_a) - float(rating_b)
        shift = math.log(mult) if mult != 1.0 else 0.0
        lam_a = safe_exp(self.mu + self.beta * diff + shift)
        lam_b = safe_exp(self.mu - self.beta * diff + shift)
        return lam_a, lam_b

    def extra_time_rates(self, rating_a: float, rating_b: float) -> Tuple[float, float]:
        return self.rates(rating_a, rating_b, mult=self.extra_time_mult)

    def outcome_probs(self, rating_a: float, rating_b: float) -> Tuple[float, float, float]:
        lam_a, lam_b = self.rates(rating_a, rating_b)
        return outcome_probs(lam_a, lam_b, rho=self.rho)

    def shootout_win_prob(self, rating_a: float, rating_b: float) -> float:
        p = 0.5 + self.shootout_coef * (float(rating_a) - float(rating_b))
        return float(np.clip(p, 0.0, 1.0))

    def match_odds(self, rating_a: float, rating_b: float) -> MatchOdds:
        lam_a, lam_b = self.rates(rating_a, rating_b)
        joint = score_matrix(lam_a, lam_b, rho=self.rho)
        p_win, p_draw, p_loss = outcome_probs(lam_a, lam_b, rho=self.rho)
        best = np.unravel_index(int(np.argmax(joint)), joint.shape)
        return MatchOdds(
            rating_a=float(rating_a),
            rating_b=float(rating_b),
            lam_a=lam_a,
            lam_b=lam_b,
            p_win=p_win,
            p_draw=p_draw,
            p_loss=p_loss,
            likely_score=(int(best[0]), int(best[1])),
        )


DEFAULT_MODEL = GoalRateModel()


def elo_expected_score(diff: float, scale: float = 400.0) -> float:
    return 1.0 / (1.0 + 10.0 ** (-diff / scale))


def calibrate_beta(
    mu: float = MU,
    rho: float = RHO,
    elo_scale: float = 400.0,
    max_diff: float = 800.0,
    n_points: int = 33,
    bounds: Tuple[float, float] = (1e-5, 0.02),
    diffs: Optional[np.ndarray] = None,
) -> float:
    """
    Fit beta so the Poisson expected score (win + half a draw) tracks the Elo
    logistic expectancy over rating gaps 0..max_diff, by least squares.
    """
    if diffs is None:
        diffs = np.linspace(0.0, max_diff, n_points)
    targets = np.array([elo_expected_score(d, elo_scale) for d in diffs], dtype=float)

    def loss(beta: float) -> float:
        resid = np.empty_like(targets)
        for i, d in enumerate(diffs):
            lam_a = safe_exp(mu + beta * d)
            lam_b = safe_exp(mu - beta * d)
            p_win, p_draw, _ = outcome_probs(lam_a, lam_b, rho=rho)
            resid[i] = p_win + 0.5 * p_draw - targets[i]
        return float(np.sum(resid ** 2))

    res = minimize_scalar(loss, bounds=bounds, method="bounded", options={"xatol": 1e-7})
    return float(res.x)
