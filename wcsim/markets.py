from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional
import logging
import os

import pandas as pd
import requests

from wcsim.errors import MarketDataError

logger = logging.getLogger(__name__)

KALSHI_MARKETS_URL = "https://api.elections.kalshi.com/trade-api/v2/markets"
KALSHI_TIMEOUT = 5.0
MARKET_KINDS = ("win_group", "qualify")


def fetch_kalshi_markets(
    api_key: Optional[str] = None,
    session: Optional[requests.Session] = None,
    timeout: float = KALSHI_TIMEOUT,
    params: Optional[Mapping[str, str]] = None,
) -> dict:
    """Raw market listing; the key defaults to the KALSHI_API_KEY variable."""
    api_key = api_key or os.environ.get("KALSHI_API_KEY")
    if not api_key:
        raise MarketDataError("Kalshi API key not configured")
    http = session or requests.Session()
    try:
        resp = http.get(
            KALSHI_MARKETS_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            params=dict(params or {}),
            timeout=timeout,
        )
        resp.raise_for_status()
        return resp.json()
    except (requests.RequestException, ValueError) as exc:
        raise MarketDataError(f"Kalshi markets unavailable: {exc}") from exc


def _price(market: Mapping) -> Optional[float]:
    """Implied probability from a market quote in cents."""
    bid = market.get("yes_bid")
    ask = market.get("yes_ask")
    if isinstance(bid, (int, float)) and isinstance(ask, (int, float)) and ask > 0:
        return (float(bid) + float(ask)) / 200.0
    last = market.get("last_price")
    if isinstance(last, (int, float)) and last > 0:
        return float(last) / 100.0
    return None


@dataclass(frozen=True, eq=False)
class MarketPrices:
    """
    Externally observed group-stage probabilities, one row per team:
    group, team, win_group, qualify. Never used by the knockout simulation.
    """

    frame: pd.DataFrame

    def __post_init__(self):
        required = {"group", "team"}
        missing = required.difference(self.frame.columns)
        if missing:
            raise MarketDataError(f"Market prices missing columns: {sorted(missing)}")
        if not set(MARKET_KINDS).intersection(self.frame.columns):
            raise MarketDataError(f"Market prices need one of {MARKET_KINDS}")

    @classmethod
    def from_csv(cls, path: Path) -> "MarketPrices":
        return cls(pd.read_csv(path))

    @classmethod
    def from_kalshi(cls, payload: Mapping, tickers: pd.DataFrame) -> "MarketPrices":
        """
        tickers maps each market ticker to (group, team, kind), kind being
        "win_group" or "qualify". Markets not listed there are ignored.
        """
        required = {"ticker", "group", "team", "kind"}
        missing = required.difference(tickers.columns)
        if missing:
            raise MarketDataError(f"Ticker map missing columns: {sorted(missing)}")
        lookup = {row.ticker: row for row in tickers.itertuples(index=False)}
        values: Dict[tuple, Dict[str, float]] = {}
        for market in payload.get("markets", []) or []:
            row = lookup.get(market.get("ticker"))
            if row is None or row.kind not in MARKET_KINDS:
                continue
            p = _price(market)
            if p is None:
                logger.info("No usable quote for %s", market.get("ticker"))
                continue
            values.setdefault((row.group, row.team), {})[row.kind] = p
        if not values:
            raise MarketDataError("No mapped World Cup group markets in payload")
        frame = pd.DataFrame(
            [{"group": g, "team": t, **kinds} for (g, t), kinds in values.items()]
        )
        return cls(frame)

    def group_table(self, group: Optional[str] = None) -> pd.DataFrame:
        """
        Market probabilities with the overround removed from group-winner
        prices (they sum to 1 within a group). Qualify prices stay as quoted.
        """
        df = self.frame.copy()
        if group:
            df = df[df["group"] == group]
        if "win_group" in df.columns:
            totals = df.groupby("group")["win_group"].transform("sum")
            df["win_group"] = df["win_group"].where(totals <= 0, df["win_group"] / totals)
        return df.set_index(["group", "team"]).sort_index()

    def compare(self, simulated: pd.DataFrame) -> pd.DataFrame:
        """Join against SimulationReport.group_positions(); market minus model."""
        table = self.group_table()
        joined = table.join(simulated[["1st", "advance"]], how="left")
        if "win_group" in joined.columns:
            joined["win_group_edge"] = joined["win_group"] - joined["1st"]
        if "qualify" in joined.columns:
            joined["qualify_edge"] = joined["qualify"] - joined["advance"]
        return joined
