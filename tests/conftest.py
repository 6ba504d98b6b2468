import sys
from pathlib import Path

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from crypto_tracker.clients.coingecko import build_client  # noqa: E402
from crypto_tracker.config import Settings  # noqa: E402


COINS = {
    "bitcoin": {"symbol": "btc", "name": "Bitcoin", "price": 5_000_000.0, "cap": 9.8e13, "vol": 2.1e12},
    "ethereum": {"symbol": "eth", "name": "Ethereum", "price": 250_000.0, "cap": 3.0e13, "vol": 1.1e12},
}

DAY_MS = 86_400_000
START_MS = 1_700_000_000_000


class FakeCoinGecko:
    """Stand-in for the CoinGecko v3 API served through ``httpx.MockTransport``."""

    def __init__(self, coins=None):
        self.coins = dict(COINS if coins is None else coins)
        self.calls: list[httpx.Request] = []
        self.failing_charts: set[str] = set()
        # (coin_id, "detail" | "chart") -> raw 200 body, served as-is
        self.raw_bodies: dict[tuple[str, str], bytes] = {}

    def chart_days(self) -> list[tuple[str, int]]:
        return [
            (r.url.path.split("/")[-2], int(r.url.params["days"]))
            for r in self.calls
            if r.url.path.endswith("/market_chart")
        ]

    def detail_ids(self) -> list[str]:
        return [
            r.url.path[len("/api/v3/coins/"):]
            for r in self.calls
            if not r.url.path.endswith("/market_chart")
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        parts = request.url.path[len("/api/v3/coins/"):].split("/")
        coin_id = parts[0]
        kind = "chart" if parts[1:] == ["market_chart"] else "detail"
        if (coin_id, kind) in self.raw_bodies:
            return httpx.Response(200, content=self.raw_bodies[coin_id, kind],
                                  headers={"Content-Type": "application/json"})
        coin = self.coins.get(coin_id)
        if coin is None:
            return httpx.Response(404, json={"error": "coin not found"})
        vs = request.url.params.get("vs_currency", "inr")
        if len(parts) == 2 and parts[1] == "market_chart":
            if coin_id in self.failing_charts:
                return httpx.Response(500, text="boom")
            days = int(request.url.params["days"])
            step = DAY_MS if days > 1 else DAY_MS // 24
            points = days if days > 1 else 24
            # newest first so callers have to sort
            prices = [[START_MS + i * step, coin["price"] + i] for i in reversed(range(points + 1))]
            return httpx.Response(200, json={"prices": prices, "market_caps": [], "total_volumes": []})
        return httpx.Response(200, json={
            "id": coin_id,
            "symbol": coin["symbol"],
            "name": coin["name"],
            "market_data": {
                "current_price": {vs: coin["price"], "usd": coin["price"] / 80},
                "market_cap": {vs: coin["cap"]},
                "total_volume": {vs: coin["vol"]},
            },
        })


@pytest.fixture
def cfg() -> Settings:
    return Settings(_env_file=None, vs_currency="inr", max_concurrency=3, upstream_timeout=2.0)


@pytest.fixture
def fake_api() -> FakeCoinGecko:
    return FakeCoinGecko()


@pytest.fixture
def make_client(cfg: Settings):
    def _make(handler) -> httpx.AsyncClient:
        return build_client(cfg, transport=httpx.MockTransport(handler))
    return _make
