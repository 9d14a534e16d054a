"""
Async client for the CoinPaprika REST API.
Translates upstream failures into NotFound / UpstreamUnavailable and validates payloads on the way in.
"""
import time
from urllib.parse import quote
from typing import Any, Dict, List, Optional

import httpx
from pydantic import TypeAdapter, ValidationError
from prometheus_client import Counter, Histogram

from app.core.errors import NotFoundError, UpstreamUnavailableError
from app.core.logging_config import get_logger
from app.schemas.crypto import Coin, CoinDetails, Ticker

logger = get_logger("coinpaprika")

UPSTREAM_REQUESTS = Counter('upstream_requests_total', 'Requests sent to CoinPaprika', ['endpoint', 'status'])
UPSTREAM_LATENCY = Histogram('upstream_request_duration_seconds', 'CoinPaprika request latency', ['endpoint'])

_coins_adapter = TypeAdapter(List[Coin])
_tickers_adapter = TypeAdapter(List[Ticker])


class CoinPaprikaClient:
    """Thin wrapper over the four CoinPaprika endpoints the cache depends on."""

    def __init__(self, base_url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def fetch_json(
        self,
        path: str,
        endpoint: str,
        params: Optional[Dict[str, str]] = None,
        missing_is_not_found: bool = False,
    ) -> Any:
        """
        GETs `path` and decodes the JSON body.
        A 404 means "no such coin" only on per-coin paths (`missing_is_not_found`);
        on the bulk endpoints it is an upstream fault like any other status.
        """
        start_time = time.time()
        try:
            response = await self.client.get(path, params=params)
        except httpx.HTTPError as e:
            UPSTREAM_REQUESTS.labels(endpoint=endpoint, status="error").inc()
            logger.error("fetch_error", source="coinpaprika", path=path, error=str(e))
            raise UpstreamUnavailableError(f"CoinPaprika request failed: {e.__class__.__name__}") from e
        finally:
            UPSTREAM_LATENCY.labels(endpoint=endpoint).observe(time.time() - start_time)

        UPSTREAM_REQUESTS.labels(endpoint=endpoint, status=str(response.status_code)).inc()

        if response.status_code == 404 and missing_is_not_found:
            raise NotFoundError("Cryptocurrency not found", details={"path": path})
        if not response.is_success:
            logger.warning("upstream_status", source="coinpaprika", path=path, status=response.status_code)
            raise UpstreamUnavailableError(
                f"CoinPaprika request failed ({response.status_code})",
                upstream_status=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            logger.error("invalid_json", source="coinpaprika", path=path, error=str(e))
            raise UpstreamUnavailableError("CoinPaprika returned malformed JSON", upstream_status=response.status_code) from e

    async def get_coins(self) -> List[Coin]:
        payload = await self.fetch_json("/coins", endpoint="coins")
        return _validate(_coins_adapter, payload, "/coins")

    async def get_tickers(self, quotes: str) -> List[Ticker]:
        payload = await self.fetch_json("/tickers", endpoint="tickers", params={"quotes": quotes})
        return _validate(_tickers_adapter, payload, "/tickers")

    async def get_coin(self, coin_id: str) -> CoinDetails:
        payload = await self.fetch_json(f"/coins/{quote(coin_id, safe='')}", endpoint="coin", missing_is_not_found=True)
        return _validate(CoinDetails, payload, "/coins/{id}")

    async def get_ticker(self, coin_id: str, quotes: str) -> Ticker:
        payload = await self.fetch_json(f"/tickers/{quote(coin_id, safe='')}", endpoint="ticker", params={"quotes": quotes}, missing_is_not_found=True)
        return _validate(Ticker, payload, "/tickers/{id}")

    async def close(self):
        await self.client.aclose()


def _validate(schema, payload: Any, path: str):
    try:
        if isinstance(schema, TypeAdapter):
            return schema.validate_python(payload)
        return schema.model_validate(payload)
    except ValidationError as e:
        logger.error("payload_validation_error", source="coinpaprika", path=path, errors=e.error_count())
        raise UpstreamUnavailableError(f"CoinPaprika returned an unexpected payload for {path}") from e
