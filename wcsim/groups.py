from __future__ import annotations

from dataclasses import dataclass
from itertools import combinations
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from wcsim.model import DEFAULT_MODEL, GoalRateModel, sample_match
from wcsim.overrides import GroupScore
from wcsim.ratings import RatingSnapshot

WIN_POINTS = 3
DRAW_POINTS = 1


@dataclass
class Standing:
    team: str
    group: Optional[str] = None
    points: int = 0
    gf: int = 0
    ga: int = 0
    w: int = 0
    d: int = 0
    l: int = 0

    @property
    def gd(self) -> int:
        return self.gf - self.ga

    @property
    def played(self) -> int:
        return self.w + self.d + self.l

    def sort_key(self) -> Tuple[int, int, int]:
        return (self.points, self.gd, self.gf)

    def record(self, scored: int, conceded: int) -> None:
        self.gf += scored
        self.ga += conceded
        if scored > conceded:
            self.points += WIN_POINTS
            self.w += 1
        elif scored < conceded:
            self.l += 1
        else:
            self.points += DRAW_POINTS
            self.d += 1


@dataclass(frozen=True)
class GroupMatch:
    home_team: str
    away_team: str
    home_score: int
    away_score: int
    overridden: bool = False


def _apply(table: Dict[str, Standing], match: GroupMatch) -> None:
    table[match.home_team].record(match.home_score, match.away_score)
    table[match.away_team].record(match.away_score, match.home_score)


def play_group_matches(
    teams: Sequence[str],
    ratings: RatingSnapshot,
    rng: np.random.Generator,
    model: GoalRateModel = DEFAULT_MODEL,
    prior_results: Optional[Mapping[FrozenSet[str], GroupScore]] = None,
    dixon_coles: bool = False,
) -> List[GroupMatch]:
    prior_results = prior_results or {}
    team_set = set(teams)
    for pair in prior_results:
        if not pair.issubset(team_set):
            raise ValueError(f"Recorded result {sorted(pair)} is not a fixture of this group")

    matches: List[GroupMatch] = []
    for home, away in combinations(teams, 2):
        known = prior_results.get(frozenset((home, away)))
        if known is not None:
            hs, as_ = known.goals_for(home)
            matches.append(GroupMatch(home, away, hs, as_, overridden=True))
            continue
        lam_h, lam_a = model.rates(ratings.get_rating(home), ratings.get_rating(away))
        hs, as_ = sample_match(lam_h, lam_a, rng, dixon_coles=dixon_coles, rho=model.rho)
        matches.append(GroupMatch(home, away, hs, as_))
    return matches


def build_table(
    teams: Sequence[str], matches: Sequence[GroupMatch], group: Optional[str] = None
) -> Dict[str, Standing]:
    table = {t: Standing(team=t, group=group) for t in teams}
    for m in matches:
        _apply(table, m)
    return table


def _tied_blocks(ordered: List[Standing], key) -> List[List[Standing]]:
    blocks: List[List[Standing]] = []
    for st in ordered:
        if blocks and key(blocks[-1][0]) == key(st):
            blocks[-1].append(st)
        else:
            blocks.append([st])
    return blocks


def _head_to_head_rank(
    tied: List[Standing],
    matches: Sequence[GroupMatch],
    rng: Optional[np.random.Generator],
) -> List[Standing]:
    names = [st.team for st in tied]
    mini = build_table(names, [m for m in matches if m.home_team in names and m.away_team in names])
    ranked = sorted(tied, key=lambda st: mini[st.team].sort_key(), reverse=True)

    # Drawing of lots for any remaining ties (fair play not modeled).
    final_order: List[Standing] = []
    for block in _tied_blocks(ranked, lambda st: mini[st.team].sort_key()):
        if len(block) > 1 and rng is not None:
            block = [block[i] for i in rng.permutation(len(block))]
        final_order.extend(block)
    return final_order


def rank_standings(
    standings: Sequence[Standing],
    matches: Sequence[GroupMatch] = (),
    rng: Optional[np.random.Generator] = None,
    tie_break: str = "input",
) -> List[Standing]:
    """
    Sort by points, goal difference, goals scored. Under "input" any tie left
    after those three keys keeps roster order; "head_to_head" re-ranks each
    such block on the matches among its teams, then draws lots.
    """
    ranked = sorted(standings, key=Standing.sort_key, reverse=True)
    if tie_break == "input":
        return ranked
    if tie_break != "head_to_head":
        raise ValueError(f"Unknown tie-break policy: {tie_break}")
    result: List[Standing] = []
    for block in _tied_blocks(ranked, Standing.sort_key):
        if len(block) == 1:
            result.extend(block)
        else:
            result.extend(_head_to_head_rank(block, matches, rng))
    return result


def resolve_group(
    teams: Sequence[str],
    ratings: RatingSnapshot,
    rng: np.random.Generator,
    model: GoalRateModel = DEFAULT_MODEL,
    prior_results: Optional[Mapping[FrozenSet[str], GroupScore]] = None,
    group: Optional[str] = None,
    tie_break: str = "input",
    dixon_coles: bool = False,
) -> List[Standing]:
    """
    Play the round robin (recorded results applied as-is, the rest sampled)
    and return the final standings in rank order 1st..4th.
    """
    teams = list(teams)
    if len(teams) < 2 or len(set(teams)) != len(teams):
        raise ValueError(f"Group {group or ''} needs at least two distinct teams: {teams}")
    matches = play_group_matches(
        teams, ratings, rng, model=model, prior_results=prior_results, dixon_coles=dixon_coles
    )
    table = build_table(teams, matches, group=group)
    return rank_standings(
        [table[t] for t in teams], matches=matches, rng=rng, tie_break=tie_break
    )
