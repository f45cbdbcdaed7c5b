from __future__ import annotations

from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, List, Optional

import numpy as np

from wcsim.errors import OverrideConflictError
from wcsim.fixtures import (
    FINAL,
    QUARTERFINAL,
    ROUND_OF_16,
    ROUND_OF_32,
    SEMIFINAL,
    THIRD_PLACE,
    BestThird,
    Fixture,
    GroupPosition,
    MatchLoser,
    MatchWinner,
    Source,
    Tournament,
)
from wcsim.groups import Standing, resolve_group
from wcsim.knockout import KnockoutResult, resolve_knockout
from wcsim.model import DEFAULT_MODEL, GoalRateModel
from wcsim.overrides import ActualResults, KnockoutOverride
from wcsim.ratings import RatingSnapshot
from wcsim.third_place import ThirdPlaceRecord, assign_third_place

GROUP = "Group"
CHAMPION = "Champion"

# Deepest round a team can reach; the third-place match does not move a
# semifinalist forward.
ROUNDS = (GROUP, ROUND_OF_32, ROUND_OF_16, QUARTERFINAL, SEMIFINAL, FINAL, CHAMPION)
ROUND_RANK = {r: i for i, r in enumerate(ROUNDS)}

ELIMINATION_STAGES = {
    GROUP: "1. Group",
    ROUND_OF_32: "2. Round of 32",
    ROUND_OF_16: "3. Round of 16",
    QUARTERFINAL: "4. Quarterfinal",
    "Fourth place": "5. Fourth place",
    THIRD_PLACE: "6. Third place",
    FINAL: "7. Final",
    CHAMPION: "8. Champion",
}


@dataclass
class TrialResult:
    group_rankings: Dict[str, List[Standing]]
    third_place: Dict[int, ThirdPlaceRecord]
    matches: Dict[int, KnockoutResult]
    reached: Dict[str, str]
    champion: str
    third_place_winner: Optional[str] = None
    winners: Dict[int, str] = field(default_factory=dict)

    def position_of(self, team: str) -> int:
        for ranking in self.group_rankings.values():
            for pos, st in enumerate(ranking, start=1):
                if st.team == team:
                    return pos
        raise KeyError(team)

    def stage_of_elimination(self) -> Dict[str, str]:
        stages: Dict[str, str] = {}
        third_place_match = next(
            (r for r in self.matches.values() if r.stage == THIRD_PLACE), None
        )
        for team, reached in self.reached.items():
            stage = reached
            if reached == SEMIFINAL and third_place_match is not None:
                stage = THIRD_PLACE if third_place_match.winner == team else "Fourth place"
            stages[team] = ELIMINATION_STAGES[stage]
        return stages


def _advance(reached: Dict[str, str], team: str, stage: str) -> None:
    if stage not in ROUND_RANK:
        return
    if ROUND_RANK[stage] > ROUND_RANK[reached.get(team, GROUP)]:
        reached[team] = stage


def run_trial(
    ratings: RatingSnapshot,
    tournament: Tournament,
    rng: np.random.Generator,
    model: GoalRateModel = DEFAULT_MODEL,
    overrides: Optional[ActualResults] = None,
    tie_break: str = "input",
    dixon_coles: bool = False,
) -> TrialResult:
    """
    One full sample: every group, the third-place slot draw, then every
    knockout fixture in feeder-first order, each resolved exactly once.
    """
    overrides = overrides or ActualResults()

    group_rankings: Dict[str, List[Standing]] = {}
    for group, teams in tournament.groups.items():
        group_rankings[group] = resolve_group(
            teams,
            ratings,
            rng,
            model=model,
            prior_results=overrides.for_group(group),
            group=group,
            tie_break=tie_break,
            dixon_coles=dixon_coles,
        )

    slots = tournament.third_place_slots
    third_place: Dict[int, ThirdPlaceRecord] = {}
    if slots:
        thirds = [
            ThirdPlaceRecord.from_standing(ranking[2], group=group)
            for group, ranking in group_rankings.items()
        ]
        third_place = assign_third_place(
            thirds,
            slots,
            rng=rng,
            fixed=_third_place_pins(tournament, overrides, group_rankings),
            draw_lots=tie_break == "head_to_head",
        )

    reached: Dict[str, str] = {t: GROUP for t in tournament.teams}
    results: Dict[int, KnockoutResult] = {}

    def participant(fixture: Fixture, source: Source) -> str:
        if isinstance(source, GroupPosition):
            return group_rankings[source.group][source.position - 1].team
        if isinstance(source, BestThird):
            return third_place[fixture.match_id].team
        if isinstance(source, MatchWinner):
            return results[source.match_id].winner
        if isinstance(source, MatchLoser):
            return results[source.match_id].loser
        raise TypeError(f"Unsupported participant source: {source!r}")

    for match_id in tournament.order:
        fixture = tournament.fixtures[match_id]
        home = participant(fixture, fixture.home)
        away = participant(fixture, fixture.away)
        recorded = overrides.knockout_result(match_id)
        if recorded is not None:
            res = _recorded_result(fixture, home, away, recorded)
        else:
            res = resolve_knockout(
                home,
                away,
                ratings.get_rating(home),
                ratings.get_rating(away),
                rng,
                model=model,
                match_id=match_id,
                stage=fixture.stage,
                dixon_coles=dixon_coles,
            )
        results[match_id] = res
        _advance(reached, res.home_team, fixture.stage)
        _advance(reached, res.away_team, fixture.stage)

    final = results[tournament.final_match_id]
    _advance(reached, final.winner, CHAMPION)
    third = next((r for r in results.values() if r.stage == THIRD_PLACE), None)

    return TrialResult(
        group_rankings=group_rankings,
        third_place=third_place,
        matches=results,
        reached=reached,
        champion=final.winner,
        third_place_winner=third.winner if third else None,
        winners={m: r.winner for m, r in results.items()},
    )


def _pinned_third(tournament: Tournament, fixture: Fixture, recorded: KnockoutOverride) -> Optional[str]:
    """The third-placed team a recorded result puts into a round-of-32 slot, if it names one."""
    other = fixture.away if isinstance(fixture.home, BestThird) else fixture.home
    other_group = other.group if isinstance(other, GroupPosition) else None
    named = [t for t in (recorded.home_team, recorded.away_team) if t]
    if named:
        thirds = [t for t in named if tournament.team_group.get(t) != other_group]
        if len(thirds) > 1:
            raise OverrideConflictError(
                f"Match {fixture.match_id} is recorded between {named[0]} and {named[1]}, "
                f"but only one side comes from the group {other_group} placing"
            )
        return thirds[0] if thirds else None
    # A winner from outside the group-placing side can only be the third.
    if tournament.team_group.get(recorded.winner) != other_group:
        return recorded.winner
    return None


def _third_place_pins(
    tournament: Tournament,
    overrides: ActualResults,
    group_rankings: Dict[str, List[Standing]],
) -> Dict[int, str]:
    """slot -> group for the third-place slots already decided by recorded results."""
    pins: Dict[int, str] = {}
    for slot, pool in tournament.third_place_slots.items():
        recorded = overrides.knockout_result(slot)
        if recorded is None:
            continue
        team = _pinned_third(tournament, tournament.fixtures[slot], recorded)
        if team is None:
            continue
        group = tournament.team_group.get(team)
        if group is None or group not in pool:
            raise OverrideConflictError(
                f"{team} cannot be the third-placed team in match {slot} "
                f"(pool {'/'.join(sorted(pool))})"
            )
        if group_rankings[group][2].team != team:
            raise OverrideConflictError(
                f"{team} is recorded in match {slot} as third in group {group}, "
                f"but finished {[s.team for s in group_rankings[group]].index(team) + 1}"
            )
        pins[slot] = group
    return pins


def _recorded_result(
    fixture: Fixture, home: str, away: str, recorded: KnockoutOverride
) -> KnockoutResult:
    named = {t for t in (recorded.home_team, recorded.away_team) if t}
    if not named.issubset((home, away)) or recorded.winner not in (home, away):
        raise OverrideConflictError(
            f"Match {fixture.match_id} is recorded as won by {recorded.winner}"
            + (f" against {'/'.join(sorted(named))}" if named else "")
            + f", but the trial resolved {home} v {away}"
        )
    home_score = recorded.home_score
    away_score = recorded.away_score
    if home_score is None or away_score is None:
        home_score, away_score = (1, 0) if recorded.winner == home else (0, 1)
    elif recorded.home_team == away or recorded.away_team == home:
        home_score, away_score = away_score, home_score
    return KnockoutResult(
        home_team=home,
        away_team=away,
        home_score=home_score,
        away_score=away_score,
        winner=recorded.winner,
        match_id=fixture.match_id,
        stage=fixture.stage,
        overridden=True,
    )


def check_overrides(
    ratings: RatingSnapshot,
    tournament: Tournament,
    overrides: ActualResults,
    model: GoalRateModel = DEFAULT_MODEL,
    tie_break: str = "input",
    dixon_coles: bool = False,
) -> None:
    """
    Reject recorded results that cannot hold in every trial, before any trial
    runs. Knockout results need the whole group stage and every feeding
    knockout match recorded; one dry trial then confirms the recorded
    participants and winners line up with the bracket.
    """
    for score in overrides.group_scores:
        teams = tournament.groups.get(score.group)
        if teams is None or not score.pair.issubset(teams):
            raise OverrideConflictError(
                f"{score.home_team} v {score.away_team} is not a group {score.group} fixture"
            )
    if not overrides.knockout:
        return

    unknown = sorted(set(overrides.knockout).difference(tournament.fixtures))
    if unknown:
        raise OverrideConflictError(f"Knockout results recorded for unknown matches {unknown}")
    for group, teams in tournament.groups.items():
        played = overrides.for_group(group)
        unplayed = [
            f"{a} v {b}" for a, b in combinations(teams, 2) if frozenset((a, b)) not in played
        ]
        if unplayed:
            raise OverrideConflictError(
                f"Knockout results are recorded but group {group} has unplayed matches: {unplayed}"
            )
    for match_id in overrides.knockout:
        missing = [m for m in tournament.fixtures[match_id].feeders if m not in overrides.knockout]
        if missing:
            raise OverrideConflictError(
                f"Match {match_id} is recorded but its feeding matches {missing} are not"
            )
    run_trial(
        ratings,
        tournament,
        np.random.default_rng(0),
        model=model,
        overrides=overrides,
        tie_break=tie_break,
        dixon_coles=dixon_coles,
    )
