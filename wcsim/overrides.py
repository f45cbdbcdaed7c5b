from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

import pandas as pd


@dataclass(frozen=True)
class GroupScore:
    group: str
    home_team: str
    away_team: str
    home_score: int
    away_score: int

    def __post_init__(self):
        if self.home_team == self.away_team:
            raise ValueError(f"Group result pairs {self.home_team} with itself")
        if self.home_score < 0 or self.away_score < 0:
            raise ValueError(
                f"Negative score in {self.home_team} v {self.away_team}"
            )

    @property
    def pair(self) -> FrozenSet[str]:
        return frozenset((self.home_team, self.away_team))

    def goals_for(self, team: str) -> Tuple[int, int]:
        """(scored, conceded) from team's point of view."""
        if team == self.home_team:
            return self.home_score, self.away_score
        if team == self.away_team:
            return self.away_score, self.home_score
        raise KeyError(team)


@dataclass(frozen=True)
class KnockoutOverride:
    """
    Recorded knockout outcome. home_team/away_team, when given, also fix the
    participants (the third-place slot draw can otherwise pair differently).
    """

    match_id: int
    winner: str
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    home_score: Optional[int] = None
    away_score: Optional[int] = None

    def __post_init__(self):
        if not self.winner:
            raise ValueError(f"Knockout result for match {self.match_id} has no winner")
        teams = {t for t in (self.home_team, self.away_team) if t}
        if len(teams) == 2 and self.winner not in teams:
            raise ValueError(
                f"Winner {self.winner} did not play match {self.match_id}"
            )


@dataclass(frozen=True)
class ActualResults:
    group_scores: Tuple[GroupScore, ...] = ()
    knockout: Dict[int, KnockoutOverride] = field(default_factory=dict)

    def __post_init__(self):
        seen = set()
        for score in self.group_scores:
            key = (score.group, score.pair)
            if key in seen:
                raise ValueError(
                    f"Duplicate result for {score.home_team} v {score.away_team} "
                    f"in group {score.group}"
                )
            seen.add(key)

    def for_group(self, group: str) -> Dict[FrozenSet[str], GroupScore]:
        return {s.pair: s for s in self.group_scores if s.group == group}

    def knockout_result(self, match_id: int) -> Optional[KnockoutOverride]:
        return self.knockout.get(int(match_id))

    def __bool__(self) -> bool:
        return bool(self.group_scores) or bool(self.knockout)

    @classmethod
    def from_frames(
        cls,
        group_results: Optional[pd.DataFrame] = None,
        knockout_results: Optional[pd.DataFrame] = None,
    ) -> "ActualResults":
        scores = []
        if group_results is not None and not group_results.empty:
            required = {"group", "home_team", "away_team", "home_score", "away_score"}
            missing = required.difference(group_results.columns)
            if missing:
                raise ValueError(f"Group results missing columns: {sorted(missing)}")
            for row in group_results.itertuples(index=False):
                scores.append(
                    GroupScore(
                        group=str(row.group).strip(),
                        home_team=str(row.home_team).strip(),
                        away_team=str(row.away_team).strip(),
                        home_score=int(row.home_score),
                        away_score=int(row.away_score),
                    )
                )
        knockout: Dict[int, KnockoutOverride] = {}
        if knockout_results is not None and not knockout_results.empty:
            required = {"match_id", "winner"}
            missing = required.difference(knockout_results.columns)
            if missing:
                raise ValueError(f"Knockout results missing columns: {sorted(missing)}")
            for row in knockout_results.to_dict(orient="records"):
                match_id = int(row["match_id"])
                if match_id in knockout:
                    raise ValueError(f"Duplicate knockout result for match {match_id}")
                knockout[match_id] = KnockoutOverride(
                    match_id=match_id,
                    winner=str(row["winner"]).strip(),
                    home_team=_optional_str(row.get("home_team")),
                    away_team=_optional_str(row.get("away_team")),
                    home_score=_optional_int(row.get("home_score")),
                    away_score=_optional_int(row.get("away_score")),
                )
        return cls(group_scores=tuple(scores), knockout=knockout)

    @classmethod
    def from_csv(
        cls,
        group_path: Optional[Path] = None,
        knockout_path: Optional[Path] = None,
    ) -> "ActualResults":
        group_df = pd.read_csv(group_path) if group_path else None
        knockout_df = pd.read_csv(knockout_path) if knockout_path else None
        return cls.from_frames(group_df, knockout_df)


def _optional_str(val) -> Optional[str]:
    if val is None or (isinstance(val, float) and pd.isna(val)):
        return None
    text = str(val).strip()
    return text or None


def _optional_int(val) -> Optional[int]:
    if val is None or pd.isna(val):
        return None
    return int(val)


def group_scores(
    group: str, rows: Iterable[Tuple[str, str, int, int]]
) -> Tuple[GroupScore, ...]:
    return tuple(GroupScore(group, h, a, hs, as_) for h, a, hs, as_ in rows)
