"""
In-memory listing pipeline over a coins + tickers snapshot: sort, filter, paginate, project.
"""
import math
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from app.schemas.crypto import Coin, CryptoListItem, ListCryptoQuery, Quote, SortKey, Ticker


@dataclass(frozen=True)
class ListRecord:
    coin: Coin
    quote: Optional[Quote]
    name_lower: str
    symbol_lower: str


# SortKey -> (quote attribute, descending); None attribute sorts by name
_SORT_FIELDS: Dict[SortKey, Tuple[Optional[str], bool]] = {
    SortKey.PRICE_DESC: ("price", True),
    SortKey.PRICE_ASC: ("price", False),
    SortKey.CHANGE_24H_DESC: ("percent_change_24h", True),
    SortKey.CHANGE_24H_ASC: ("percent_change_24h", False),
    SortKey.NAME_ASC: (None, False),
    SortKey.NAME_DESC: (None, True),
}


def resolve_quote(ticker: Optional[Ticker], currency: str, base_currency: str) -> Optional[Quote]:
    """Quote for currency, falling back to the base currency quote of the same ticker."""
    if ticker is None or not ticker.quotes:
        return None
    quote = ticker.quotes.get(currency)
    if quote is None and currency != base_currency:
        quote = ticker.quotes.get(base_currency)
    return quote


def create_logo_url(coin_id: str, template: str) -> str:
    return template.format(coin_id=coin_id)


def _finite(value: Optional[float]) -> Optional[float]:
    if value is None or not math.isfinite(value):
        return None
    return value


def _cmp_missing_last(a, b, descending: bool = False) -> int:
    if a is None and b is None:
        return 0
    if a is None:
        return 1
    if b is None:
        return -1
    if a == b:
        return 0
    result = -1 if a < b else 1
    return -result if descending else result


def compare_records(a: ListRecord, b: ListRecord, sort: SortKey) -> int:
    attr, descending = _SORT_FIELDS.get(sort, (None, False))

    if sort != SortKey.RANK_ASC:
        if attr is None:
            primary = _cmp_missing_last(a.name_lower, b.name_lower, descending)
        else:
            primary = _cmp_missing_last(
                _finite(getattr(a.quote, attr, None)),
                _finite(getattr(b.quote, attr, None)),
                descending,
            )
        if primary:
            return primary

    by_rank = _cmp_missing_last(a.coin.rank, b.coin.rank)
    if by_rank:
        return by_rank
    return _cmp_missing_last(a.name_lower, b.name_lower)


class ListSnapshot:
    """Records for one currency, built from a specific coins/tickers generation pair."""

    def __init__(
        self,
        currency: str,
        coins: Sequence[Coin],
        tickers: Mapping[str, Ticker],
        base_currency: str,
        coins_generation: int,
        tickers_generation: int,
    ):
        self.currency = currency
        self.coins_generation = coins_generation
        self.tickers_generation = tickers_generation
        self.records: List[ListRecord] = [
            ListRecord(
                coin=coin,
                quote=resolve_quote(tickers.get(coin.id), currency, base_currency),
                name_lower=coin.name.lower(),
                symbol_lower=coin.symbol.lower(),
            )
            for coin in coins
        ]
        self._sorted_by: Dict[SortKey, List[ListRecord]] = {}

    def is_current(self, coins_generation: int, tickers_generation: int) -> bool:
        return self.coins_generation == coins_generation and self.tickers_generation == tickers_generation

    def sorted_by(self, sort: SortKey) -> List[ListRecord]:
        ordered = self._sorted_by.get(sort)
        if ordered is None:
            ordered = sorted(self.records, key=cmp_to_key(lambda a, b: compare_records(a, b, sort)))
            self._sorted_by[sort] = ordered
        return ordered


def filter_records(records: Sequence[ListRecord], query: ListCryptoQuery) -> List[ListRecord]:
    type_filter = query.type.value if query.type else None
    search = query.search.lower() if query.search else None

    result = []
    for record in records:
        if type_filter and record.coin.type != type_filter:
            continue
        if search and search not in record.name_lower and search not in record.symbol_lower:
            continue
        result.append(record)
    return result


def paginate(records: Sequence[ListRecord], page: int, limit: int) -> Sequence[ListRecord]:
    offset = (page - 1) * limit
    return records[offset:offset + limit]


def to_list_item(coin: Coin, quote: Optional[Quote], logo_template: str) -> CryptoListItem:
    return CryptoListItem(
        id=coin.id,
        name=coin.name,
        symbol=coin.symbol,
        rank=coin.rank,
        type=coin.type,
        price=quote.price if quote else None,
        percent_change_24h=quote.percent_change_24h if quote else None,
        logo_url=create_logo_url(coin.id, logo_template),
    )
