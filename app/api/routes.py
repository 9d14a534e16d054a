"""
Handles API requests for crypto listings and coin detail.
Serves as the gateway for the frontend to access cached CoinPaprika market data.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from app.schemas.crypto import CryptoDetail, CryptoListItem, CryptoListResponse
from app.schemas.data import ItemsResponse
from app.services.market_data import MarketDataService

router = APIRouter()

def get_market_service(request: Request) -> MarketDataService:
    return request.app.state.market_service

@router.get("/crypto", response_model=CryptoListResponse)
async def list_crypto(
    search: Optional[str] = Query(None, description="Case-insensitive match on name or symbol"),
    type: Optional[str] = Query(None, description="coin or token"),
    sort: Optional[str] = Query(None, description="e.g. price_desc, change24h_asc, name_asc, rank_asc"),
    page: Optional[str] = Query(None, description="1-based page number"),
    limit: Optional[str] = Query(None, description="Page size, 1-100"),
    currency: Optional[str] = Query(None, description="Quote currency, defaults to USD"),
    service: MarketDataService = Depends(get_market_service)
):
    """
    Sorted, filtered and paginated listing.
    Parameters arrive as raw strings; MarketDataService validates them and answers 400 on bad input.
    """
    params = {"search": search, "type": type, "sort": sort, "page": page, "limit": limit}
    return await service.list({k: v for k, v in params.items() if v is not None}, currency)

@router.get("/crypto/batch", response_model=ItemsResponse[CryptoListItem])
async def get_crypto_batch(
    ids: str = Query("", description="Comma separated coin ids"),
    currency: Optional[str] = Query(None),
    service: MarketDataService = Depends(get_market_service)
):
    """
    Bulk lookup used to render favorites. Unknown ids are dropped.
    """
    coin_ids = [i.strip() for i in ids.split(",") if i.strip()]
    data = await service.get_by_ids(coin_ids, currency)
    return ItemsResponse[CryptoListItem](data=data)

@router.get("/crypto/{coin_id}", response_model=CryptoDetail)
async def get_crypto(
    coin_id: str,
    currency: Optional[str] = Query(None),
    service: MarketDataService = Depends(get_market_service)
):
    return await service.get_by_id(coin_id, currency)
