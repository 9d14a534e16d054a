import httpx
import pytest

from app.core.errors import NotFoundError, UpstreamUnavailableError
from app.ingestion.sources.coinpaprika import CoinPaprikaClient

BASE_URL = "https://coinpaprika.test/v1"


def client_for(handler):
    return CoinPaprikaClient(BASE_URL, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_fetches_and_validates_coins(client, upstream):
    coins = await client.get_coins()

    assert [c.id for c in coins] == ["btc", "eth", "usdt"]
    assert coins[2].type == "token"


@pytest.mark.asyncio
async def test_tickers_request_quotes(client, upstream):
    tickers = await client.get_tickers("EUR,USD")

    btc = tickers[0]
    assert set(btc.quotes) == {"USD", "EUR"}
    assert btc.quotes["USD"].percent_change_1h == 0.1
    assert tickers[1].quotes["USD"].market_cap is None
    assert upstream.params["/tickers"] == [{"quotes": "EUR,USD"}]


@pytest.mark.asyncio
async def test_404_is_not_found(client):
    with pytest.raises(NotFoundError):
        await client.get_coin("ghost")


@pytest.mark.asyncio
async def test_coin_id_is_path_escaped():
    seen = []

    def handler(request):
        seen.append(request.url.raw_path)
        return httpx.Response(404)

    client = client_for(handler)
    with pytest.raises(NotFoundError):
        await client.get_ticker("a/b", "USD")

    assert seen[0].startswith(b"/v1/tickers/a%2Fb")
    await client.close()


@pytest.mark.asyncio
async def test_server_error_is_bad_gateway():
    client = client_for(lambda request: httpx.Response(429, json={"error": "rate limited"}))

    with pytest.raises(UpstreamUnavailableError) as exc_info:
        await client.get_coins()

    assert exc_info.value.upstream_status == 429
    assert exc_info.value.status_code == 502
    await client.close()


@pytest.mark.asyncio
async def test_transport_error_is_bad_gateway():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    client = client_for(handler)

    with pytest.raises(UpstreamUnavailableError) as exc_info:
        await client.get_tickers("USD")

    assert exc_info.value.upstream_status is None
    await client.close()


@pytest.mark.asyncio
async def test_unexpected_payload_is_bad_gateway():
    client = client_for(lambda request: httpx.Response(200, json={"not": "a list"}))

    with pytest.raises(UpstreamUnavailableError):
        await client.get_coins()
    await client.close()


@pytest.mark.asyncio
async def test_malformed_json_is_bad_gateway():
    client = client_for(lambda request: httpx.Response(200, content=b"<html>maintenance</html>"))

    with pytest.raises(UpstreamUnavailableError):
        await client.get_coin("btc")
    await client.close()


@pytest.mark.asyncio
async def test_404_on_bulk_endpoint_is_bad_gateway():
    client = client_for(lambda request: httpx.Response(404))

    with pytest.raises(UpstreamUnavailableError) as exc_info:
        await client.get_coins()
    assert exc_info.value.upstream_status == 404

    with pytest.raises(UpstreamUnavailableError):
        await client.get_tickers("USD")
    await client.close()
