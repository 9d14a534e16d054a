"""
Defines the CoinPaprika payload shapes and the projections served to the frontend.
Upstream models are permissive (every metric optional) so a missing field reads as unknown, never zero.
"""
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.data import PaginatedResponse


class CryptoType(str, Enum):
    COIN = "coin"
    TOKEN = "token"


class SortKey(str, Enum):
    PRICE_DESC = "price_desc"
    PRICE_ASC = "price_asc"
    CHANGE_24H_DESC = "change24h_desc"
    CHANGE_24H_ASC = "change24h_asc"
    NAME_ASC = "name_asc"
    NAME_DESC = "name_desc"
    RANK_ASC = "rank_asc"


# --- Upstream (CoinPaprika) ---

class Coin(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    name: str
    symbol: str
    rank: Optional[int] = None
    type: str = CryptoType.COIN.value


class Quote(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    price: Optional[float] = None
    market_cap: Optional[float] = None
    volume_24h: Optional[float] = None
    percent_change_1h: Optional[float] = None
    percent_change_24h: Optional[float] = None
    percent_change_7d: Optional[float] = None


class Ticker(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    rank: Optional[int] = None
    circulating_supply: Optional[float] = None
    total_supply: Optional[float] = None
    max_supply: Optional[float] = None
    quotes: Optional[Dict[str, Quote]] = None


class CoinDetails(Coin):
    description: Optional[str] = None
    circulating_supply: Optional[float] = None
    max_supply: Optional[float] = None


# --- Query ---

class ListCryptoQuery(BaseModel):
    model_config = ConfigDict(extra="ignore")

    search: Optional[str] = Field(None, description="Case-insensitive match on name or symbol")
    type: Optional[CryptoType] = Field(None, description="coin or token")
    sort: SortKey = Field(SortKey.PRICE_DESC, description="Ordering of the listing")
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)

    @field_validator("search")
    @classmethod
    def blank_search_is_none(cls, v):
        if v is None:
            return None
        v = v.strip()
        return v or None


# --- Projections ---

def to_camel(name: str) -> str:
    # percent_change_24h -> percentChange24h, volume_24h -> volume24h
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CryptoListItem(CamelModel):
    id: str
    name: str
    symbol: str
    rank: Optional[int] = None
    type: str
    price: Optional[float] = None
    percent_change_24h: Optional[float] = None
    logo_url: str


class CryptoDetail(CamelModel):
    id: str
    name: str
    symbol: str
    rank: Optional[int] = None
    type: str
    currency: str
    description: Optional[str] = None
    price: Optional[float] = None
    market_cap: Optional[float] = None
    volume_24h: Optional[float] = None
    percent_change_1h: Optional[float] = None
    percent_change_24h: Optional[float] = None
    percent_change_7d: Optional[float] = None
    circulating_supply: Optional[float] = None
    max_supply: Optional[float] = None
    logo_url: str


CryptoListResponse = PaginatedResponse[CryptoListItem]
