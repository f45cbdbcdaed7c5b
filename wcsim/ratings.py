from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional
import datetime as dt
import logging

import pandas as pd
import requests

from wcsim.config import DEFAULT_RATING, FALLBACK_RATINGS_DATE, FALLBACK_RATINGS_PATH

logger = logging.getLogger(__name__)

# Undocumented XHR endpoint behind fifa.com's ranking page. Each dateId is a
# ranking release; the newest ones are tried first.
FIFA_API_BASE = "https://www.fifa.com/api/ranking-overview"
FIFA_API_DATE_IDS = ("id13974", "id13973", "id13972")
FIFA_API_TIMEOUT = 5.0
MIN_LIVE_TEAMS = 50
USER_AGENT = "Mozilla/5.0 (compatible; WC2026Tracker/1.0)"

SOURCE_LIVE = "fifa-api"
SOURCE_FALLBACK = "fallback"

ALIASES = (("USA", "United States"),)


@dataclass(frozen=True)
class RatingSnapshot:
    """
    Immutable team -> rating table for one simulation run. Lookups are exact
    string matches; unknown names get default_rating.
    """

    ratings: Dict[str, float] = field(default_factory=dict)
    default_rating: float = DEFAULT_RATING
    source: str = SOURCE_FALLBACK
    rating_system: str = "fifa-points"
    last_updated: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(
            self, "ratings", {str(k): float(v) for k, v in dict(self.ratings).items()}
        )

    def get_rating(self, team: str) -> float:
        rating = self.ratings.get(team)
        if rating is None:
            logger.debug("No rating for %r, using default %.2f", team, self.default_rating)
            return float(self.default_rating)
        return rating

    def __contains__(self, team: object) -> bool:
        return team in self.ratings

    def __len__(self) -> int:
        return len(self.ratings)

    def missing(self, teams: Iterable[str]) -> list:
        return sorted(t for t in teams if t not in self.ratings)

    def with_ratings(self, updates: Mapping[str, float]) -> "RatingSnapshot":
        merged = {**self.ratings, **{k: float(v) for k, v in updates.items()}}
        return RatingSnapshot(
            ratings=merged,
            default_rating=self.default_rating,
            source=self.source,
            rating_system=self.rating_system,
            last_updated=self.last_updated,
        )


def _add_aliases(teams: Dict[str, float]) -> Dict[str, float]:
    for a, b in ALIASES:
        if a in teams and b not in teams:
            teams[b] = teams[a]
        if b in teams and a not in teams:
            teams[a] = teams[b]
    return teams


def parse_fifa_rankings(payload: Mapping) -> Dict[str, float]:
    rankings = payload.get("rankings") if isinstance(payload, Mapping) else None
    if not isinstance(rankings, list):
        return {}
    teams: Dict[str, float] = {}
    for entry in rankings:
        item = entry.get("rankingItem") if isinstance(entry, Mapping) else None
        if not isinstance(item, Mapping):
            continue
        name = item.get("name")
        points = item.get("totalPoints")
        if name and isinstance(points, (int, float)) and not isinstance(points, bool):
            teams[str(name)] = float(points)
    return teams


def fetch_fifa_rankings(
    session: Optional[requests.Session] = None,
    date_ids: Iterable[str] = FIFA_API_DATE_IDS,
    timeout: float = FIFA_API_TIMEOUT,
) -> Optional[Dict[str, float]]:
    """
    Return team -> FIFA points from the first release that answers with a
    plausible table, or None when every release fails.
    """
    http = session or requests.Session()
    for date_id in date_ids:
        try:
            resp = http.get(
                FIFA_API_BASE,
                params={"locale": "en", "dateId": date_id},
                headers={"User-Agent": USER_AGENT},
                timeout=timeout,
            )
            if not resp.ok:
                logger.info("FIFA ranking %s returned HTTP %s", date_id, resp.status_code)
                continue
            teams = parse_fifa_rankings(resp.json())
        except (requests.RequestException, ValueError) as exc:
            logger.warning("FIFA ranking %s unavailable: %s", date_id, exc)
            continue
        if len(teams) > MIN_LIVE_TEAMS:
            return _add_aliases(teams)
        logger.info("FIFA ranking %s only listed %d teams", date_id, len(teams))
    return None


def load_fallback_ratings(path: Optional[Path] = None) -> Dict[str, float]:
    path = Path(path) if path else FALLBACK_RATINGS_PATH
    if not path.exists():
        raise FileNotFoundError(f"Missing fallback ratings file: {path}")
    df = pd.read_csv(path)
    if not {"team", "points"}.issubset(df.columns):
        raise ValueError("Fallback ratings file must include 'team' and 'points' columns")
    df["team"] = df["team"].astype(str).str.strip()
    df["points"] = pd.to_numeric(df["points"], errors="raise").astype(float)
    return _add_aliases(dict(zip(df["team"], df["points"])))


def get_rating_snapshot(
    live: bool = True,
    default_rating: float = DEFAULT_RATING,
    session: Optional[requests.Session] = None,
    fallback_path: Optional[Path] = None,
) -> RatingSnapshot:
    """
    Fetch ratings once, eagerly. Live FIFA points are preferred; the shipped
    table is used when the feed is disabled or unreachable.
    """
    teams = fetch_fifa_rankings(session=session) if live else None
    if teams:
        logger.info("Loaded %d live FIFA ratings", len(teams))
        return RatingSnapshot(
            ratings=teams,
            default_rating=default_rating,
            source=SOURCE_LIVE,
            last_updated=dt.date.today().isoformat(),
        )
    if live:
        logger.warning("Live FIFA ratings unavailable, using fallback table")
    return RatingSnapshot(
        ratings=load_fallback_ratings(fallback_path),
        default_rating=default_rating,
        source=SOURCE_FALLBACK,
        last_updated=FALLBACK_RATINGS_DATE,
    )
