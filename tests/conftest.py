import asyncio
from collections import Counter
from typing import Dict, Optional

import httpx
import pytest
import pytest_asyncio

from app.ingestion.sources.coinpaprika import CoinPaprikaClient
from app.services.market_data import MarketDataService

BASE_URL = "https://coinpaprika.test/v1"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeCoinPaprika:
    """In-memory CoinPaprika serving /coins, /tickers, /coins/{id} and /tickers/{id}."""

    def __init__(self):
        self.coins = [
            {"id": "btc", "name": "Bitcoin", "symbol": "BTC", "rank": 1, "type": "coin", "is_active": True},
            {"id": "eth", "name": "Ethereum", "symbol": "ETH", "rank": 2, "type": "coin", "is_active": True},
            {"id": "usdt", "name": "Tether", "symbol": "USDT", "rank": 3, "type": "token", "is_active": True},
        ]
        self.tickers = [
            {
                "id": "btc", "rank": 1, "circulating_supply": 19700000, "max_supply": 21000000,
                "quotes": {
                    "USD": {"price": 65000, "percent_change_24h": -1.8, "percent_change_1h": 0.1,
                            "percent_change_7d": 4.2, "market_cap": 1.28e12, "volume_24h": 3.1e10},
                    "EUR": {"price": 60000, "percent_change_24h": -1.5},
                },
            },
            {"id": "eth", "rank": 2, "quotes": {"USD": {"price": 3200, "percent_change_24h": -0.6}}},
            {"id": "usdt", "rank": 3, "max_supply": 0, "quotes": {"USD": {"price": 1, "percent_change_24h": 0}}},
        ]
        self.calls: Counter = Counter()
        self.params: Dict[str, list] = {}
        self.fail: Dict[str, int] = {}
        self.gate: Optional[asyncio.Event] = None

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path[len("/v1"):]
        self.calls[path] += 1
        self.params.setdefault(path, []).append(dict(request.url.params))

        if self.gate is not None:
            await self.gate.wait()

        if path in self.fail:
            return httpx.Response(self.fail[path], json={"error": "upstream failure"})

        quotes = request.url.params.get("quotes", "USD").split(",")

        if path == "/coins":
            return httpx.Response(200, json=self.coins)
        if path == "/tickers":
            return httpx.Response(200, json=[self._ticker_for(t, quotes) for t in self.tickers])
        if path.startswith("/coins/"):
            coin = self._find(self.coins, path[len("/coins/"):])
            if coin is None:
                return httpx.Response(404, json={"error": "id not found"})
            return httpx.Response(200, json={**coin, "description": f"{coin['name']} description"})
        if path.startswith("/tickers/"):
            ticker = self._find(self.tickers, path[len("/tickers/"):])
            if ticker is None:
                return httpx.Response(404, json={"error": "id not found"})
            return httpx.Response(200, json=self._ticker_for(ticker, quotes))
        return httpx.Response(404, json={"error": "unknown path"})

    def set_price(self, coin_id: str, currency: str, price: float):
        ticker = self._find(self.tickers, coin_id)
        ticker["quotes"].setdefault(currency, {})["price"] = price

    @staticmethod
    def _find(items, coin_id):
        return next((item for item in items if item["id"] == coin_id), None)

    @staticmethod
    def _ticker_for(ticker, quotes):
        selected = {cur: q for cur, q in ticker["quotes"].items() if cur in quotes}
        return {**ticker, "quotes": selected}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upstream():
    return FakeCoinPaprika()


@pytest_asyncio.fixture
async def client(upstream):
    client = CoinPaprikaClient(BASE_URL, transport=httpx.MockTransport(upstream.handler))
    yield client
    await client.close()


@pytest_asyncio.fixture
async def service(client, clock):
    service = MarketDataService(client, clock=clock)
    yield service
    await service.close()
