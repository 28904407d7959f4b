"""
Normalized account, position and price records.

Records are built fresh on every fetch and carry the display currency the
caller asked for. Exchange-reported numbers stay strings; only the currency
converter parses them.

Serialization uses camelCase keys so the HTTP layer can emit the records as
they appear on the wire::

    >>> Balance(currency="BTC", balance="1", available="1", frozen="0").to_dict()
    {'currency': 'BTC', 'balance': '1', 'available': '1', 'frozen': '0', 'equity': None}
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .wire import RawCloseOrderAlgo, RawPosition, RawPositionHistory


class Currency(str, Enum):
    """Display currencies supported by the gateway."""

    CNY = "CNY"
    USD = "USD"
    USDT = "USDT"
    BTC = "BTC"

    @property
    def symbol(self) -> str:
        return _CURRENCY_SYMBOLS[self]

    @property
    def display_name(self) -> str:
        return _CURRENCY_NAMES[self]

    @classmethod
    def parse(cls, value: str) -> "Currency":
        """Case-insensitive lookup; raises ``ValueError`` for unsupported codes."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"unsupported currency: {value}") from None


_CURRENCY_SYMBOLS = {
    Currency.CNY: "¥",
    Currency.USD: "$",
    Currency.USDT: "₮",
    Currency.BTC: "₿",
}

_CURRENCY_NAMES = {
    Currency.CNY: "Chinese Yuan",
    Currency.USD: "US Dollar",
    Currency.USDT: "Tether",
    Currency.BTC: "Bitcoin",
}


class TimePeriod(str, Enum):
    """Look-back windows for profit/loss reporting."""

    DAY = "1d"
    WEEK = "1w"
    MONTH = "1m"
    HALF_YEAR = "6m"

    @property
    def duration(self) -> timedelta:
        return _PERIOD_DAYS[self]

    @property
    def label(self) -> str:
        return _PERIOD_LABELS[self]

    @classmethod
    def parse(cls, value: str) -> "TimePeriod":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip())
        except ValueError:
            raise ValueError(f"unsupported period: {value}") from None

    @classmethod
    def parse_list(cls, value: str) -> List["TimePeriod"]:
        """Parse a comma separated list, skipping unknown entries.

        Falls back to every supported period when nothing valid remains.
        """
        periods = []
        for part in value.split(","):
            try:
                periods.append(cls.parse(part))
            except ValueError:
                continue
        return periods or list(cls)


_PERIOD_DAYS = {
    TimePeriod.DAY: timedelta(days=1),
    TimePeriod.WEEK: timedelta(days=7),
    TimePeriod.MONTH: timedelta(days=30),
    TimePeriod.HALF_YEAR: timedelta(days=180),
}

_PERIOD_LABELS = {
    TimePeriod.DAY: "1 day",
    TimePeriod.WEEK: "1 week",
    TimePeriod.MONTH: "1 month",
    TimePeriod.HALF_YEAR: "6 months",
}

SUPPORTED_CURRENCIES = list(Currency)
SUPPORTED_PERIODS = list(TimePeriod)


class Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class Balance(Record):
    currency: str
    balance: str
    available: str
    frozen: str
    equity: Optional[str] = None


class AccountBalance(Record):
    total_equity: str
    currency: Currency
    last_update_time: datetime
    details: List[Balance] = Field(default_factory=list)


class CloseOrderAlgo(RawCloseOrderAlgo):
    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class Position(RawPosition):
    """A live position, tagged with display currency and decoded times."""

    close_order_algo: List[CloseOrderAlgo] = Field(default_factory=list)
    currency: Currency
    create_time: datetime
    update_time: datetime

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class PositionHistory(RawPositionHistory):
    """A closed (or partially closed) position from the history endpoint."""

    currency: Currency
    create_time: datetime
    update_time: datetime

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class PositionsResponse(Record):
    positions: List[Position] = Field(default_factory=list)
    currency: Currency


class PositionsHistoryResponse(Record):
    """One page of position history.

    ``has_more`` is a heuristic: it is true when the page is full (100
    records), which only means another page *may* exist.
    """

    positions: List[PositionHistory] = Field(default_factory=list)
    has_more: bool = False
    currency: Currency


class ProfitLoss(Record):
    period: TimePeriod
    profit_amount: str
    profit_percent: str
    currency: Currency
    is_profit: bool
    start_time: datetime
    end_time: datetime


class AccountSummary(Record):
    balance: AccountBalance
    profit_loss: List[ProfitLoss] = Field(default_factory=list)
    currency: Currency
    update_time: datetime


class PriceSnapshot(Record):
    """A point-in-time ticker summary pushed to subscribers."""

    symbol: str
    price: str
    change24h: str = Field("", alias="change24h")
    change_percent24h: str = Field("", alias="changePercent24h")
    volume24h: str = Field("", alias="volume24h")
    high24h: str = Field("", alias="high24h")
    low24h: str = Field("", alias="low24h")
    timestamp: int


@dataclass
class PositionsRequest:
    """Filters for the live positions endpoint, passed through verbatim."""
    inst_type: str = ""
    inst_id: str = ""
    pos_id: str = ""

    def to_query(self) -> Dict[str, str]:
        return _non_empty({
            "instType": self.inst_type,
            "instId": self.inst_id,
            "posId": self.pos_id,
        })


@dataclass
class PositionsHistoryRequest:
    """Filters and pagination for the positions-history endpoint."""
    inst_type: str = ""
    inst_id: str = ""
    mgn_mode: str = ""
    type: str = ""
    pos_id: str = ""
    after: str = ""
    before: str = ""
    limit: str = ""

    def to_query(self) -> Dict[str, str]:
        query = _non_empty({
            "instType": self.inst_type,
            "instId": self.inst_id,
            "mgnMode": self.mgn_mode,
            "type": self.type,
            "posId": self.pos_id,
            "after": self.after,
            "before": self.before,
        })
        query["limit"] = self.limit or str(HISTORY_PAGE_SIZE)
        return query


HISTORY_PAGE_SIZE = 100


def _non_empty(params: Dict[str, str]) -> Dict[str, str]:
    return {k: v for k, v in params.items() if v}
