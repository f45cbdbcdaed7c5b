from __future__ import annotations

import requests
import pytest

from wcsim import ratings as ratings_mod
from wcsim.ratings import (
    SOURCE_FALLBACK,
    SOURCE_LIVE,
    RatingSnapshot,
    fetch_fifa_rankings,
    get_rating_snapshot,
    load_fallback_ratings,
    parse_fifa_rankings,
)


def _payload(n_teams: int, include_usa: bool = True) -> dict:
    rankings = [
        {"rankingItem": {"name": f"Team {i}", "totalPoints": 1000.0 + i}} for i in range(n_teams)
    ]
    if include_usa:
        rankings.append({"rankingItem": {"name": "USA", "totalPoints": 1681.88}})
    return {"rankings": rankings}


class FakeResponse:
    def __init__(self, payload=None, status_code=200, bad_json=False):
        self._payload = payload
        self.status_code = status_code
        self.ok = status_code < 400
        self._bad_json = bad_json

    def json(self):
        if self._bad_json:
            raise ValueError("not json")
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append((url, params, timeout))
        resp = self.responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp


class TestParse:
    def test_parse_skips_malformed_entries(self) -> None:
        payload = {
            "rankings": [
                {"rankingItem": {"name": "Spain", "totalPoints": 1876.4}},
                {"rankingItem": {"name": "Nowhere"}},
                {"rankingItem": {"name": "Flag", "totalPoints": True}},
                {"other": 1},
                "junk",
            ]
        }
        assert parse_fifa_rankings(payload) == {"Spain": 1876.4}

    def test_parse_missing_rankings(self) -> None:
        assert parse_fifa_rankings({}) == {}
        assert parse_fifa_rankings([]) == {}


class TestFetch:
    def test_first_good_release_wins_and_aliases_usa(self) -> None:
        session = FakeSession([FakeResponse(_payload(60))])
        teams = fetch_fifa_rankings(session=session)
        assert teams["United States"] == teams["USA"] == pytest.approx(1681.88)
        assert len(session.calls) == 1
        url, params, timeout = session.calls[0]
        assert params == {"locale": "en", "dateId": "id13974"}
        assert timeout == 5.0

    def test_falls_through_failed_releases(self) -> None:
        session = FakeSession(
            [
                requests.ConnectionError("down"),
                FakeResponse(status_code=503),
                FakeResponse(_payload(55)),
            ]
        )
        teams = fetch_fifa_rankings(session=session)
        assert teams is not None
        assert [c[1]["dateId"] for c in session.calls] == ["id13974", "id13973", "id13972"]

    def test_small_or_broken_tables_are_rejected(self) -> None:
        session = FakeSession(
            [
                FakeResponse(_payload(10)),
                FakeResponse(bad_json=True),
                FakeResponse(_payload(49, include_usa=True)),
            ]
        )
        assert fetch_fifa_rankings(session=session) is None


class TestSnapshot:
    def test_live_snapshot(self) -> None:
        snap = get_rating_snapshot(session=FakeSession([FakeResponse(_payload(60))]))
        assert snap.source == SOURCE_LIVE
        assert "Team 0" in snap

    def test_fallback_when_feed_fails(self, caplog) -> None:
        session = FakeSession([requests.Timeout("slow")] * 3)
        snap = get_rating_snapshot(session=session)
        assert snap.source == SOURCE_FALLBACK
        assert snap.last_updated == "2026-01-19"
        assert snap.get_rating("Argentina") == pytest.approx(1867.25)
        assert "fallback" in caplog.text

    def test_offline_never_touches_network(self, monkeypatch) -> None:
        def boom(*args, **kwargs):
            raise AssertionError("network used")

        monkeypatch.setattr(ratings_mod, "fetch_fifa_rankings", boom)
        snap = get_rating_snapshot(live=False)
        assert snap.source == SOURCE_FALLBACK
        assert snap.get_rating("USA") == snap.get_rating("United States")

    def test_unknown_team_gets_default(self) -> None:
        snap = RatingSnapshot({"Spain": 1876.0}, default_rating=1350.0)
        assert snap.get_rating("Atlantis") == 1350.0
        assert snap.missing(["Spain", "Atlantis"]) == ["Atlantis"]

    def test_with_ratings_leaves_original_untouched(self) -> None:
        snap = RatingSnapshot({"Spain": 1876.0})
        updated = snap.with_ratings({"Spain": 1900, "Peru": 1500})
        assert snap.get_rating("Spain") == 1876.0
        assert updated.get_rating("Spain") == 1900.0
        assert len(updated) == 2


def test_fallback_table_covers_2026_field() -> None:
    from wcsim.fixtures import world_cup_2026

    table = load_fallback_ratings()
    assert [t for t in world_cup_2026().teams if t not in table] == []
