from __future__ import annotations

import pandas as pd
import pytest

from wcsim.overrides import ActualResults, GroupScore, KnockoutOverride


def test_goals_for_is_oriented() -> None:
    s = GroupScore("A", "Mexico", "South Africa", 2, 1)
    assert s.goals_for("Mexico") == (2, 1)
    assert s.goals_for("South Africa") == (1, 2)
    with pytest.raises(KeyError):
        s.goals_for("Brazil")


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(group="A", home_team="X", away_team="X", home_score=0, away_score=0),
        dict(group="A", home_team="X", away_team="Y", home_score=-1, away_score=0),
    ],
)
def test_invalid_group_scores(kwargs) -> None:
    with pytest.raises(ValueError):
        GroupScore(**kwargs)


def test_knockout_winner_must_have_played() -> None:
    with pytest.raises(ValueError):
        KnockoutOverride(78, winner="Brazil", home_team="Ecuador", away_team="Norway")
    with pytest.raises(ValueError):
        KnockoutOverride(78, winner="")


def test_duplicate_group_result_rejected() -> None:
    with pytest.raises(ValueError, match="Duplicate"):
        ActualResults(
            group_scores=(
                GroupScore("A", "Mexico", "South Africa", 2, 1),
                GroupScore("A", "South Africa", "Mexico", 0, 0),
            )
        )


def test_from_frames() -> None:
    groups = pd.DataFrame(
        {
            "group": ["A", "B"],
            "home_team": ["Mexico", "Canada"],
            "away_team": ["South Africa", "Qatar"],
            "home_score": [2, 1],
            "away_score": [0, 1],
        }
    )
    knockout = pd.DataFrame(
        {
            "match_id": [73, 78],
            "winner": ["Canada", "Ecuador"],
            "home_team": [None, "Ecuador"],
            "away_team": [None, "Norway"],
            "home_score": [None, 2],
            "away_score": [None, 1],
        }
    )
    results = ActualResults.from_frames(groups, knockout)
    assert bool(results)
    assert set(results.for_group("A")) == {frozenset(("Mexico", "South Africa"))}
    assert results.knockout_result(73).home_team is None
    assert results.knockout_result(78).home_score == 2
    assert results.knockout_result(99) is None


def test_from_frames_missing_columns() -> None:
    with pytest.raises(ValueError):
        ActualResults.from_frames(pd.DataFrame({"group": ["A"], "home_team": ["Mexico"]}))


def test_empty_results_are_falsy() -> None:
    assert not ActualResults()
    assert not ActualResults.from_frames(None, None)
