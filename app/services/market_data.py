"""
Market data service: the only component that reads from CoinPaprika.
Serves listings, coin detail and favorites lookups from the refreshing caches.
"""
import asyncio
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from app.core.config import Settings
from app.core.errors import MarketDataError, QueryValidationError
from app.core.logging_config import get_logger
from app.ingestion.sources.coinpaprika import CoinPaprikaClient
from app.schemas.crypto import (
    Coin,
    CryptoDetail,
    CryptoListItem,
    CryptoListResponse,
    ListCryptoQuery,
    SortKey,
    Ticker,
)
from app.schemas.data import Pagination
from app.services.cache import CacheEntry, RefreshingCache
from app.services.listing import (
    ListSnapshot,
    create_logo_url,
    filter_records,
    paginate,
    resolve_quote,
    to_list_item,
)

logger = get_logger("market_data")

ALL_COINS = "all"
DEFAULT_LOGO_URL_TEMPLATE = "https://static.coinpaprika.com/coin/{coin_id}/logo.png"


class MarketDataService:

    def __init__(
        self,
        client: CoinPaprikaClient,
        base_currency: str = "USD",
        supported_currencies: Iterable[str] = ("USD", "EUR", "BRL", "GBP"),
        coins_ttl: float = 300,
        tickers_ttl: float = 120,
        detail_ttl: float = 60,
        backoff: float = 10,
        detail_max_entries: Optional[int] = 1024,
        logo_url_template: str = DEFAULT_LOGO_URL_TEMPLATE,
        warmup_sort_keys: Sequence[SortKey] = (SortKey.PRICE_DESC,),
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.base_currency = base_currency.upper()
        self.supported_currencies = {c.upper() for c in supported_currencies} | {self.base_currency}
        self.logo_url_template = logo_url_template
        self.warmup_sort_keys = list(warmup_sort_keys)

        self.coins: RefreshingCache[str, List[Coin]] = RefreshingCache(
            "coins", self._load_coins, ttl=coins_ttl, backoff=backoff, clock=clock
        )
        self.tickers: RefreshingCache[str, Dict[str, Ticker]] = RefreshingCache(
            "tickers", self._load_tickers, ttl=tickers_ttl, backoff=backoff, clock=clock
        )
        self.details: RefreshingCache[Tuple[str, str], CryptoDetail] = RefreshingCache(
            "detail", self._load_detail, ttl=detail_ttl, backoff=backoff, clock=clock,
            max_entries=detail_max_entries,
        )

        self._snapshots: Dict[str, ListSnapshot] = {}
        self._coin_index: Optional[Tuple[int, Dict[str, Coin]]] = None

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[CoinPaprikaClient] = None) -> "MarketDataService":
        if client is None:
            client = CoinPaprikaClient(settings.COINPAPRIKA_BASE_URL, timeout=settings.UPSTREAM_TIMEOUT_SECONDS)
        try:
            warmup_sort_keys = [SortKey(key) for key in settings.WARMUP_SORT_KEYS]
        except ValueError as e:
            raise ValueError(f"Invalid WARMUP_SORT_KEYS: {e}") from e
        return cls(
            client,
            base_currency=settings.BASE_CURRENCY,
            supported_currencies=settings.SUPPORTED_CURRENCIES,
            coins_ttl=settings.COINS_TTL_SECONDS,
            tickers_ttl=settings.TICKERS_TTL_SECONDS,
            detail_ttl=settings.DETAIL_TTL_SECONDS,
            backoff=settings.BACKOFF_SECONDS,
            detail_max_entries=settings.DETAIL_CACHE_MAX_ENTRIES,
            logo_url_template=settings.LOGO_URL_TEMPLATE,
            warmup_sort_keys=warmup_sort_keys,
        )

    # --- Loaders ---

    async def _load_coins(self, _key: str) -> List[Coin]:
        return await self.client.get_coins()

    async def _load_tickers(self, currency: str) -> Dict[str, Ticker]:
        tickers = await self.client.get_tickers(self._quotes_param(currency))
        return {ticker.id: ticker for ticker in tickers}

    async def _load_detail(self, key: Tuple[str, str]) -> CryptoDetail:
        coin_id, currency = key
        coin, ticker = await asyncio.gather(
            self.client.get_coin(coin_id),
            self.client.get_ticker(coin_id, self._quotes_param(currency)),
        )
        quote = resolve_quote(ticker, currency, self.base_currency)

        return CryptoDetail(
            id=coin.id,
            name=coin.name,
            symbol=coin.symbol,
            rank=coin.rank,
            type=coin.type,
            currency=currency,
            description=coin.description,
            price=quote.price if quote else None,
            market_cap=quote.market_cap if quote else None,
            volume_24h=quote.volume_24h if quote else None,
            percent_change_1h=quote.percent_change_1h if quote else None,
            percent_change_24h=quote.percent_change_24h if quote else None,
            percent_change_7d=quote.percent_change_7d if quote else None,
            circulating_supply=ticker.circulating_supply if ticker.circulating_supply is not None else coin.circulating_supply,
            max_supply=ticker.max_supply if ticker.max_supply is not None else coin.max_supply,
            logo_url=create_logo_url(coin.id, self.logo_url_template),
        )

    def _quotes_param(self, currency: str) -> str:
        if currency == self.base_currency:
            return currency
        return f"{currency},{self.base_currency}"

    # --- Helpers ---

    def _normalize_currency(self, currency: Optional[str]) -> str:
        if currency is None:
            return self.base_currency
        normalized = currency.strip().upper()
        if not normalized:
            return self.base_currency
        if normalized not in self.supported_currencies:
            raise QueryValidationError(
                f"Unsupported currency: {currency}",
                details=[{"field": "currency", "allowed": sorted(self.supported_currencies)}],
            )
        return normalized

    def _parse_query(self, query: Union[ListCryptoQuery, Mapping[str, Any], None]) -> ListCryptoQuery:
        if isinstance(query, ListCryptoQuery):
            return query
        try:
            return ListCryptoQuery.model_validate(dict(query or {}))
        except ValidationError as e:
            raise QueryValidationError(
                "Invalid list query",
                details=[{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()],
            ) from e

    async def _market(self, currency: str) -> Tuple[CacheEntry[List[Coin]], CacheEntry[Dict[str, Ticker]]]:
        coins, tickers = await asyncio.gather(self.coins.get(ALL_COINS), self.tickers.get(currency))
        return coins, tickers

    def _snapshot(self, currency: str, coins: CacheEntry[List[Coin]], tickers: CacheEntry[Dict[str, Ticker]]) -> ListSnapshot:
        snapshot = self._snapshots.get(currency)
        if snapshot is None or not snapshot.is_current(coins.generation, tickers.generation):
            snapshot = ListSnapshot(
                currency,
                coins.value,
                tickers.value,
                base_currency=self.base_currency,
                coins_generation=coins.generation,
                tickers_generation=tickers.generation,
            )
            self._snapshots[currency] = snapshot
            logger.debug("snapshot_rebuilt", currency=currency, records=len(snapshot.records))
        return snapshot

    def _index(self, coins: CacheEntry[List[Coin]]) -> Dict[str, Coin]:
        if self._coin_index is None or self._coin_index[0] != coins.generation:
            self._coin_index = (coins.generation, {coin.id: coin for coin in coins.value})
        return self._coin_index[1]

    # --- Operations ---

    async def list(
        self,
        query: Union[ListCryptoQuery, Mapping[str, Any], None] = None,
        currency: Optional[str] = None,
    ) -> CryptoListResponse:
        parsed = self._parse_query(query)
        currency = self._normalize_currency(currency)

        coins, tickers = await self._market(currency)
        snapshot = self._snapshot(currency, coins, tickers)

        filtered = filter_records(snapshot.sorted_by(parsed.sort), parsed)
        page = paginate(filtered, parsed.page, parsed.limit)

        return CryptoListResponse(
            data=[to_list_item(record.coin, record.quote, self.logo_url_template) for record in page],
            pagination=Pagination(page=parsed.page, limit=parsed.limit, total=len(filtered)),
        )

    async def get_by_id(self, coin_id: str, currency: Optional[str] = None) -> CryptoDetail:
        normalized = (coin_id or "").strip()
        if not normalized:
            raise QueryValidationError("Coin id is required", details=[{"field": "id"}])
        currency = self._normalize_currency(currency)

        entry = await self.details.get((normalized, currency))
        return entry.value

    async def get_by_ids(self, ids: Sequence[str], currency: Optional[str] = None) -> List[CryptoListItem]:
        if not ids:
            return []
        currency = self._normalize_currency(currency)

        coins, tickers = await self._market(currency)
        coin_by_id = self._index(coins)

        items = []
        for coin_id in ids:
            coin = coin_by_id.get(coin_id)
            if coin is None:
                continue
            quote = resolve_quote(tickers.value.get(coin_id), currency, self.base_currency)
            items.append(to_list_item(coin, quote, self.logo_url_template))
        return items

    async def has_coin_id(self, coin_id: str) -> bool:
        normalized = (coin_id or "").strip()
        if not normalized:
            return False
        coins = await self.coins.get(ALL_COINS)
        return normalized in self._index(coins)

    async def warmup(self, currency: Optional[str] = None) -> bool:
        start_time = time.time()
        try:
            currency = self._normalize_currency(currency)
            coins, tickers = await self._market(currency)
            snapshot = self._snapshot(currency, coins, tickers)
            for sort in self.warmup_sort_keys:
                snapshot.sorted_by(sort)
        except MarketDataError as e:
            logger.warning("warmup_failed", currency=currency, error=e.message)
            return False

        logger.info(
            "warmup_complete",
            currency=currency,
            coins=len(coins.value),
            tickers=len(tickers.value),
            duration_ms=int((time.time() - start_time) * 1000),
        )
        return True

    async def close(self):
        for cache in (self.coins, self.tickers, self.details):
            await cache.close()
        await self.client.close()
