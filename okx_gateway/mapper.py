"""Pure transformations from raw OKX payloads to normalized records.

Nothing here performs I/O. A bad timestamp degrades to a default value and
never fails the whole mapping.
"""
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from .errors import ConversionError
from .logging_setup import logger
from .models import (
    HISTORY_PAGE_SIZE,
    AccountBalance,
    Balance,
    Currency,
    Position,
    PositionHistory,
    PositionsHistoryResponse,
    PositionsResponse,
)
from .wire import RawAccountBalance, RawPosition, RawPositionHistory

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

Converter = Callable[[str, str, str], str]


def parse_millis(value: str, default: Optional[datetime] = None) -> datetime:
    """Decode an epoch-millisecond string (truncated to whole seconds).

    Returns ``default`` (the epoch when not given) for empty or invalid input.
    """
    fallback = default if default is not None else EPOCH
    if not value:
        return fallback
    try:
        millis = int(value)
    except (TypeError, ValueError):
        return fallback
    try:
        return datetime.fromtimestamp(millis // 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return fallback


def is_zero_balance(bal: str, avail_bal: str) -> bool:
    return bal == "0" and avail_bal == "0"


def map_account_balance(raw: RawAccountBalance, currency: Currency, convert: Converter, *, now: Optional[datetime] = None) -> AccountBalance:
    """Build the display balance.

    Total equity is reported by OKX in USDT and converted to ``currency``;
    a failure there propagates. Per-coin equity is best effort: a coin with no
    rate keeps ``equity=None``.
    """
    now = now or datetime.now(timezone.utc)
    total_equity = convert(raw.total_eq, Currency.USDT, currency)

    details = []
    for detail in raw.details:
        if is_zero_balance(detail.bal, detail.avail_bal):
            continue
        try:
            equity = convert(detail.bal, detail.ccy, currency)
        except ConversionError as e:
            logger.warning(f"No equity conversion for balance line | ccy={detail.ccy} to={currency.value} error={e}")
            equity = None
        details.append(Balance(
            currency=detail.ccy,
            balance=detail.bal,
            available=detail.avail_bal,
            frozen=detail.frozen_bal,
            equity=equity,
        ))

    return AccountBalance(
        total_equity=total_equity,
        currency=currency,
        last_update_time=parse_millis(raw.u_time, now),
        details=details,
    )


def map_position(raw: RawPosition, currency: Currency) -> Position:
    return Position(
        **raw.model_dump(),
        currency=currency,
        create_time=parse_millis(raw.c_time),
        update_time=parse_millis(raw.u_time),
    )


def map_positions(raws: Iterable[RawPosition], currency: Currency) -> PositionsResponse:
    return PositionsResponse(
        positions=[map_position(raw, currency) for raw in raws],
        currency=currency,
    )


def map_position_history(raw: RawPositionHistory, currency: Currency) -> PositionHistory:
    return PositionHistory(
        **raw.model_dump(),
        currency=currency,
        create_time=parse_millis(raw.c_time),
        update_time=parse_millis(raw.u_time),
    )


def map_positions_history(raws: Iterable[RawPositionHistory], currency: Currency) -> PositionsHistoryResponse:
    """Map one history page.

    ``has_more`` is only a hint: OKX caps a page at 100 records, so a full
    page means more records may exist. It is not a cursor.
    """
    positions: List[PositionHistory] = [map_position_history(raw, currency) for raw in raws]
    return PositionsHistoryResponse(
        positions=positions,
        has_more=len(positions) == HISTORY_PAGE_SIZE,
        currency=currency,
    )
