from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple, Union
import functools
import re
from types import MappingProxyType

import pandas as pd

from wcsim.config import KNOCKOUT_MATCHES_PATH, WORLD_CUP_2026_GROUPS_PATH
from wcsim.errors import FixtureConfigError
from wcsim.third_place import N_QUALIFYING_THIRDS, unmatchable_combinations

GROUPS = tuple(chr(ord("A") + i) for i in range(12))
GROUP_SIZE = 4

ROUND_OF_32 = "Round of 32"
ROUND_OF_16 = "Round of 16"
QUARTERFINAL = "Quarterfinal"
SEMIFINAL = "Semifinal"
THIRD_PLACE = "Third place"
FINAL = "Final"

STAGE_ORDER = {
    ROUND_OF_32: 1,
    ROUND_OF_16: 2,
    QUARTERFINAL: 3,
    SEMIFINAL: 4,
    THIRD_PLACE: 5,
    FINAL: 5,
}


@dataclass(frozen=True)
class GroupPosition:
    group: str
    position: int

    def label(self) -> str:
        prefix = "Winner" if self.position == 1 else "Runner-up"
        return f"{prefix} Group {self.group}"


@dataclass(frozen=True)
class BestThird:
    pool: FrozenSet[str]

    def label(self) -> str:
        return "3rd Group " + "/".join(sorted(self.pool))


@dataclass(frozen=True)
class MatchWinner:
    match_id: int

    def label(self) -> str:
        return f"Winner Match {self.match_id}"


@dataclass(frozen=True)
class MatchLoser:
    match_id: int

    def label(self) -> str:
        return f"Loser Match {self.match_id}"


Source = Union[GroupPosition, BestThird, MatchWinner, MatchLoser]

_GROUP_LABEL = re.compile(r"^(Winner|Runner-up) Group ([A-Z])$")
_THIRD_LABEL = re.compile(r"^3rd Group ([A-Z](?:/[A-Z])*)$")
_MATCH_LABEL = re.compile(r"^(Winner|Loser) Match (\d+)$")


def parse_source(label: str) -> Source:
    label = str(label).strip()
    m = _GROUP_LABEL.match(label)
    if m:
        return GroupPosition(group=m.group(2), position=1 if m.group(1) == "Winner" else 2)
    m = _THIRD_LABEL.match(label)
    if m:
        return BestThird(pool=frozenset(m.group(1).split("/")))
    m = _MATCH_LABEL.match(label)
    if m:
        match_id = int(m.group(2))
        return MatchWinner(match_id) if m.group(1) == "Winner" else MatchLoser(match_id)
    raise FixtureConfigError(f"Unrecognized participant label: {label}")


@dataclass(frozen=True)
class Fixture:
    match_id: int
    stage: str
    home: Source
    away: Source
    date: Optional[pd.Timestamp] = None
    stadium: str = ""
    city: str = ""
    country: str = ""

    @property
    def sources(self) -> Tuple[Source, Source]:
        return (self.home, self.away)

    @property
    def feeders(self) -> Tuple[int, ...]:
        return tuple(
            s.match_id for s in self.sources if isinstance(s, (MatchWinner, MatchLoser))
        )

    @property
    def third_place_pool(self) -> Optional[FrozenSet[str]]:
        for s in self.sources:
            if isinstance(s, BestThird):
                return s.pool
        return None

    @property
    def venue(self) -> str:
        if self.stadium and self.city:
            return f"{self.stadium}, {self.city}"
        return self.stadium or self.city

    def describe(self) -> str:
        return f"Match {self.match_id} - {self.stage}: {self.home.label()} vs {self.away.label()}"


def topological_order(fixtures: Mapping[int, Fixture]) -> List[int]:
    """
    Match ids ordered so every fixture follows its feeders. Raises on
    dangling references and cycles.
    """
    for f in fixtures.values():
        for feeder in f.feeders:
            if feeder not in fixtures:
                raise FixtureConfigError(
                    f"Match {f.match_id} refers to unknown match {feeder}"
                )

    order: List[int] = []
    state: Dict[int, int] = {}

    for root in sorted(fixtures):
        if state.get(root) == 2:
            continue
        stack = [(root, iter(fixtures[root].feeders))]
        state[root] = 1
        while stack:
            node, it = stack[-1]
            nxt = next(it, None)
            if nxt is None:
                stack.pop()
                state[node] = 2
                order.append(node)
                continue
            mark = state.get(nxt)
            if mark == 1:
                raise FixtureConfigError(f"Fixture graph has a cycle through match {nxt}")
            if mark is None:
                state[nxt] = 1
                stack.append((nxt, iter(fixtures[nxt].feeders)))
    return order


@dataclass(frozen=True)
class Tournament:
    """
    Immutable group rosters and knockout fixtures. Built through
    Tournament.build, which validates everything before any trial runs.
    """

    groups: Mapping[str, Tuple[str, ...]]
    fixtures: Mapping[int, Fixture]
    order: Tuple[int, ...]
    team_group: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # world_cup_2026() hands out one cached instance; keep it read-only.
        for name in ("groups", "fixtures", "team_group"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    def __reduce__(self):
        return (
            self.__class__,
            (dict(self.groups), dict(self.fixtures), self.order, dict(self.team_group)),
        )

    @classmethod
    def build(
        cls,
        groups: Mapping[str, List[str]],
        fixtures: List[Fixture],
        check_third_place_combinations: bool = True,
    ) -> "Tournament":
        groups = {str(g): tuple(ts) for g, ts in groups.items()}
        by_id: Dict[int, Fixture] = {}
        for f in fixtures:
            if f.match_id in by_id:
                raise FixtureConfigError(f"Duplicate fixture for match {f.match_id}")
            by_id[f.match_id] = f
        _validate_groups(groups)
        team_group = {t: g for g, ts in groups.items() for t in ts}
        _validate_fixtures(groups, by_id)
        order = topological_order(by_id)
        if check_third_place_combinations:
            _validate_third_place(groups, by_id)
        return cls(groups=groups, fixtures=by_id, order=tuple(order), team_group=team_group)

    @property
    def teams(self) -> List[str]:
        return [t for ts in self.groups.values() for t in ts]

    @property
    def final_match_id(self) -> int:
        finals = [f.match_id for f in self.fixtures.values() if f.stage == FINAL]
        return finals[0]

    @property
    def third_place_slots(self) -> Dict[int, FrozenSet[str]]:
        return {
            f.match_id: f.third_place_pool
            for f in self.fixtures.values()
            if f.third_place_pool is not None
        }

    def fixture(self, match_id: int) -> Fixture:
        if match_id not in self.fixtures:
            raise KeyError(f"Unknown match {match_id}")
        return self.fixtures[match_id]

    def group_of(self, team: str) -> str:
        return self.team_group[team]

    def stadiums(self) -> List[str]:
        return sorted({f.stadium for f in self.fixtures.values() if f.stadium})

    def matches_at(self, stadium: str) -> List[int]:
        return sorted(m for m, f in self.fixtures.items() if f.stadium == stadium)

    def fixtures_frame(self) -> pd.DataFrame:
        rows = [
            {
                "match_id": f.match_id,
                "stage": f.stage,
                "date": f.date,
                "home": f.home.label(),
                "away": f.away.label(),
                "stadium": f.stadium,
                "city": f.city,
                "country": f.country,
            }
            for f in (self.fixtures[m] for m in sorted(self.fixtures))
        ]
        return pd.DataFrame(rows)


def _validate_groups(groups: Mapping[str, Tuple[str, ...]]) -> None:
    for g, ts in groups.items():
        if not re.fullmatch(r"[A-Z]", g):
            raise FixtureConfigError(f"Invalid group name: {g}")
        if len(ts) != GROUP_SIZE:
            raise FixtureConfigError(f"Group {g} must have {GROUP_SIZE} teams, has {len(ts)}")
    all_teams = [t for ts in groups.values() for t in ts]
    dupes = sorted({t for t in all_teams if all_teams.count(t) > 1})
    if dupes:
        raise FixtureConfigError(f"Teams listed in more than one group slot: {dupes}")


def _validate_fixtures(groups: Mapping[str, Tuple[str, ...]], fixtures: Mapping[int, Fixture]) -> None:
    if not fixtures:
        raise FixtureConfigError("No knockout fixtures defined")
    finals = [f.match_id for f in fixtures.values() if f.stage == FINAL]
    if len(finals) != 1:
        raise FixtureConfigError(f"Expected exactly one final, found {len(finals)}")

    used_positions = set()
    for f in fixtures.values():
        if f.stage not in STAGE_ORDER:
            raise FixtureConfigError(f"Match {f.match_id} has unknown stage {f.stage!r}")
        for s in f.sources:
            if isinstance(s, (GroupPosition, BestThird)):
                if f.stage != ROUND_OF_32:
                    raise FixtureConfigError(
                        f"Match {f.match_id} ({f.stage}) cannot take group placings"
                    )
            if isinstance(s, GroupPosition):
                if s.group not in groups:
                    raise FixtureConfigError(
                        f"Match {f.match_id} refers to unknown group {s.group}"
                    )
                if (s.group, s.position) in used_positions:
                    raise FixtureConfigError(f"{s.label()} feeds more than one match")
                used_positions.add((s.group, s.position))
            elif isinstance(s, BestThird):
                unknown = sorted(s.pool.difference(groups))
                if unknown or not s.pool:
                    raise FixtureConfigError(
                        f"Match {f.match_id} has an invalid third-place pool {s.label()}"
                    )
            elif isinstance(s, MatchLoser):
                if f.stage != THIRD_PLACE:
                    raise FixtureConfigError(
                        f"Match {f.match_id} ({f.stage}) cannot take a losing team"
                    )
            if isinstance(s, (MatchWinner, MatchLoser)) and s.match_id in fixtures:
                feeder = fixtures[s.match_id]
                if STAGE_ORDER[feeder.stage] >= STAGE_ORDER[f.stage]:
                    raise FixtureConfigError(
                        f"Match {f.match_id} ({f.stage}) is fed by match "
                        f"{feeder.match_id} of a later or equal round ({feeder.stage})"
                    )
        if all(isinstance(s, BestThird) for s in f.sources):
            raise FixtureConfigError(f"Match {f.match_id} pairs two third-placed teams")


def _validate_third_place(groups: Mapping[str, Tuple[str, ...]], fixtures: Mapping[int, Fixture]) -> None:
    slots = {
        f.match_id: f.third_place_pool
        for f in fixtures.values()
        if f.third_place_pool is not None
    }
    if not slots:
        return
    if len(slots) > len(groups):
        raise FixtureConfigError(
            f"{len(slots)} third-place slots but only {len(groups)} groups"
        )
    failures = unmatchable_combinations(slots, sorted(groups))
    if failures:
        raise FixtureConfigError(
            f"{len(failures)} qualifying combinations cannot be assigned to "
            f"third-place slots, e.g. {failures[:5]}"
        )


def load_groups(path: Optional[Path] = None) -> Dict[str, List[str]]:
    path = Path(path) if path else WORLD_CUP_2026_GROUPS_PATH
    if not path.exists():
        raise FileNotFoundError(f"Missing groups file: {path}")
    df = pd.read_csv(path)
    if not {"group", "team"}.issubset(df.columns):
        raise ValueError("Groups CSV must include 'group' and 'team' columns")
    df["group"] = df["group"].astype(str).str.strip()
    df["team"] = df["team"].astype(str).str.strip()
    groups: Dict[str, List[str]] = {}
    for row in df.itertuples(index=False):
        groups.setdefault(row.group, []).append(row.team)
    return groups


def load_knockout_matches(path: Optional[Path] = None) -> List[Fixture]:
    path = Path(path) if path else KNOCKOUT_MATCHES_PATH
    if not path.exists():
        raise FileNotFoundError(f"Missing knockout matches file: {path}")
    df = pd.read_csv(path)
    required = {"match_id", "stage", "home", "away"}
    missing = required.difference(df.columns)
    if missing:
        raise ValueError(f"Knockout matches file missing columns: {sorted(missing)}")
    df["match_id"] = pd.to_numeric(df["match_id"], errors="raise").astype(int)
    df["stage"] = df["stage"].astype(str).str.strip()
    df["home"] = df["home"].astype(str).str.strip()
    df["away"] = df["away"].astype(str).str.strip()
    if "date" in df.columns:
        df["date"] = pd.to_datetime(df["date"], errors="raise")
    for col in ("stadium", "city", "country"):
        df[col] = df[col].fillna("").astype(str).str.strip() if col in df.columns else ""

    fixtures = []
    for row in df.sort_values("match_id").itertuples(index=False):
        fixtures.append(
            Fixture(
                match_id=int(row.match_id),
                stage=row.stage,
                home=parse_source(row.home),
                away=parse_source(row.away),
                date=getattr(row, "date", None),
                stadium=row.stadium,
                city=row.city,
                country=row.country,
            )
        )
    return fixtures


def load_tournament(
    groups_path: Optional[Path] = None,
    matches_path: Optional[Path] = None,
    check_third_place_combinations: bool = True,
) -> Tournament:
    return Tournament.build(
        load_groups(groups_path),
        load_knockout_matches(matches_path),
        check_third_place_combinations=check_third_place_combinations,
    )


@functools.lru_cache(maxsize=1)
def world_cup_2026() -> Tournament:
    """The shipped 2026 configuration: 12 groups, matches 73-104."""
    tournament = load_tournament()
    if len(tournament.groups) != len(GROUPS) or len(tournament.third_place_slots) != N_QUALIFYING_THIRDS:
        raise FixtureConfigError("Reference data does not describe the 48-team format")
    return tournament
