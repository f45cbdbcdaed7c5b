from __future__ import annotations

import pandas as pd
import pytest

from wcsim.errors import MarketDataError
from wcsim.markets import MarketPrices, fetch_kalshi_markets


def _tickers() -> pd.DataFrame:
    return pd.DataFrame(
        [
            ("WCGRPE-GER", "E", "Germany", "win_group"),
            ("WCGRPE-ECU", "E", "Ecuador", "win_group"),
            ("WCQUAL-ECU", "E", "Ecuador", "qualify"),
        ],
        columns=["ticker", "group", "team", "kind"],
    )


def test_missing_api_key_raises(monkeypatch) -> None:
    monkeypatch.delenv("KALSHI_API_KEY", raising=False)
    with pytest.raises(MarketDataError, match="not configured"):
        fetch_kalshi_markets()


def test_fetch_sends_bearer_token(monkeypatch) -> None:
    seen = {}

    class Resp:
        def raise_for_status(self):
            return None

        def json(self):
            return {"markets": []}

    class Session:
        def get(self, url, headers=None, params=None, timeout=None):
            seen.update(headers=headers, timeout=timeout)
            return Resp()

    monkeypatch.setenv("KALSHI_API_KEY", "secret")
    assert fetch_kalshi_markets(session=Session()) == {"markets": []}
    assert seen["headers"]["Authorization"] == "Bearer secret"
    assert seen["timeout"] == 5.0


def test_from_kalshi_prices_and_normalises() -> None:
    payload = {
        "markets": [
            {"ticker": "WCGRPE-GER", "yes_bid": 60, "yes_ask": 66},
            {"ticker": "WCGRPE-ECU", "last_price": 44},
            {"ticker": "WCQUAL-ECU", "yes_bid": 70, "yes_ask": 74},
            {"ticker": "UNRELATED", "last_price": 10},
            {"ticker": "WCGRPE-GER-STALE"},
        ]
    }
    prices = MarketPrices.from_kalshi(payload, _tickers())
    table = prices.group_table("E")
    assert table.loc[("E", "Germany"), "win_group"] == pytest.approx(0.63 / 1.07)
    assert table["win_group"].sum() == pytest.approx(1.0)
    assert table.loc[("E", "Ecuador"), "qualify"] == pytest.approx(0.72)


def test_from_kalshi_without_mapped_markets() -> None:
    with pytest.raises(MarketDataError):
        MarketPrices.from_kalshi({"markets": [{"ticker": "X", "last_price": 5}]}, _tickers())


def test_compare_against_simulation() -> None:
    prices = MarketPrices(
        pd.DataFrame({"group": ["E", "E"], "team": ["Germany", "Ecuador"], "win_group": [0.6, 0.4]})
    )
    sim = pd.DataFrame(
        {"1st": [0.5, 0.3], "advance": [0.9, 0.8]},
        index=pd.MultiIndex.from_tuples([("E", "Germany"), ("E", "Ecuador")], names=["group", "team"]),
    )
    out = prices.compare(sim)
    assert out.loc[("E", "Germany"), "win_group_edge"] == pytest.approx(0.1)
    assert "qualify_edge" not in out.columns


def test_prices_need_a_market_column() -> None:
    with pytest.raises(MarketDataError):
        MarketPrices(pd.DataFrame({"group": ["E"], "team": ["Germany"]}))
