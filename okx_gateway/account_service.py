"""
Account, position and profit/loss queries against OKX.

``AccountService`` composes the synchronization core: every private call goes
through the ``RequestExecutor`` (clock sync, signing, retry), raw payloads go
through the mapper, and balances are converted with the ``CurrencyConverter``.
All collaborators are injected; use ``AccountService.build`` to wire the
default set from a config and credentials.

Historical equity is not backed by any data source. It is modelled as an
explicit collaborator, ``HistoricalEquitySource``, whose default
implementation reports the data as unavailable. Profit/loss periods without
historical data are left out of the result rather than guessed.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List, Optional, Sequence

from .clock_sync import ClockSync
from .errors import ConfigError, GatewayError, HistoricalDataUnavailable
from .executor import RequestExecutor
from .logging_setup import logger
from .mapper import map_account_balance, map_positions, map_positions_history
from .models import (
    AccountBalance,
    AccountSummary,
    Currency,
    PositionsHistoryRequest,
    PositionsHistoryResponse,
    PositionsRequest,
    PositionsResponse,
    ProfitLoss,
    TimePeriod,
)
from .public_client import OKXPublicClient
from .rates import CurrencyConverter, RateSource
from .secrets import OKXCredentials
from .signer import RequestSigner
from .wire import RawAccountBalance, RawInstrument, RawPosition, RawPositionHistory, parse_records

BALANCE_PATH = "/api/v5/account/balance"
POSITIONS_PATH = "/api/v5/account/positions"
POSITIONS_HISTORY_PATH = "/api/v5/account/positions-history"


class HistoricalEquitySource(ABC):
    """Provides the account equity at the start of a look-back period."""

    @abstractmethod
    def get_equity(self, currency: Currency, period: TimePeriod) -> Decimal:
        """Return equity in ``currency`` as of ``now - period.duration``.

        Raises:
            HistoricalDataUnavailable: when no data exists for the period
        """
        pass


class UnavailableEquitySource(HistoricalEquitySource):
    """Placeholder until historical equity is recorded somewhere."""

    def get_equity(self, currency: Currency, period: TimePeriod) -> Decimal:
        raise HistoricalDataUnavailable(
            f"historical equity for {period.value} is not available; no history store is configured"
        )


@dataclass
class PositionWithHistory:
    """A position's current state (if still open) plus its closed history."""
    pos_id: str
    current_position: Optional[dict]
    current_u_time: Optional[str]
    history: PositionsHistoryResponse

    def to_dict(self) -> dict:
        data = {
            "posId": self.pos_id,
            "currentPosition": self.current_position,
            "history": [p.to_dict() for p in self.history.positions],
            "hasMore": self.history.has_more,
            "currency": self.history.currency.value,
        }
        if self.current_u_time is not None:
            data["currentUTime"] = self.current_u_time
        return data


class AccountService:
    def __init__(
        self,
        credentials: OKXCredentials,
        executor: RequestExecutor,
        converter: CurrencyConverter,
        public_client: OKXPublicClient,
        *,
        clock_sync: Optional[ClockSync] = None,
        equity_source: Optional[HistoricalEquitySource] = None,
        default_currency: Currency = Currency.USDT,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.credentials = credentials
        self.executor = executor
        self.converter = converter
        self.public_client = public_client
        self.clock_sync = clock_sync
        self.equity_source = equity_source or UnavailableEquitySource()
        self._default_currency = default_currency
        self._now = now

    @classmethod
    def build(cls, credentials: OKXCredentials, config=None) -> "AccountService":
        """Wire the default collaborators from a ``GatewayConfig``."""
        from .config import GatewayConfig

        config = config or GatewayConfig.default()
        ex, sync = config.exchange, config.sync
        public_client = OKXPublicClient(ex.base_url, timeout=ex.public_timeout)
        clock = ClockSync(public_client.get_system_time, cooldown_seconds=sync.clock_cooldown_seconds)
        signer = RequestSigner(credentials, clock)
        executor = RequestExecutor(
            signer,
            base_url=ex.base_url,
            timeout=ex.private_timeout,
            max_attempts=ex.max_attempts,
            backoff_seconds=ex.retry_backoff_seconds,
        )
        rate_source = RateSource(
            public_client,
            pairs=sync.ticker_pairs,
            fiat_apis=sync.fiat_apis,
            fallback_cny_rate=sync.fallback_cny_rate,
        )
        converter = CurrencyConverter(
            rate_source.fetch,
            cooldown_seconds=sync.rates_cooldown_seconds,
            bridge=sync.bridge_currency,
        )
        return cls(
            credentials,
            executor,
            converter,
            public_client,
            clock_sync=clock,
            default_currency=Currency.parse(config.server.default_currency),
        )

    @property
    def default_currency(self) -> Currency:
        return self._default_currency

    @default_currency.setter
    def default_currency(self, currency: Currency) -> None:
        self._default_currency = Currency.parse(currency)
        logger.info(f"Default display currency set | currency={self._default_currency.value}")

    def _require_credentials(self) -> None:
        if not self.credentials.is_complete():
            raise ConfigError(
                "OKX API credentials are incomplete; set OKX_API_KEY, OKX_SECRET_KEY and OKX_PASSPHRASE"
            )

    def _presync(self) -> None:
        if self.clock_sync is None:
            return
        try:
            self.clock_sync.sync()
        except GatewayError as e:
            logger.warning(f"Clock sync failed before request, continuing with last offset | error={e}")

    def get_account_balance(self, currency: Optional[Currency] = None) -> AccountBalance:
        currency = currency or self._default_currency
        self._require_credentials()

        try:
            self.converter.refresh_rates()
        except GatewayError as e:
            logger.warning(f"Exchange rate refresh failed | error={e}")

        envelope = self.executor.get(BALANCE_PATH)
        accounts = parse_records(RawAccountBalance, envelope.data)
        if not accounts:
            raise GatewayError("no account data returned; check API key permissions and account status")

        return map_account_balance(accounts[0], currency, self.converter.convert, now=self._now())

    def get_positions(self, request: Optional[PositionsRequest] = None, currency: Optional[Currency] = None) -> PositionsResponse:
        currency = currency or self._default_currency
        self._require_credentials()
        self._presync()

        request = request or PositionsRequest()
        envelope = self.executor.get(POSITIONS_PATH, request.to_query())
        return map_positions(parse_records(RawPosition, envelope.data), currency)

    def get_positions_history(
        self,
        request: Optional[PositionsHistoryRequest] = None,
        currency: Optional[Currency] = None,
        *,
        from_current_positions: bool = False,
    ) -> PositionsHistoryResponse:
        """Fetch one page of closed positions.

        With ``from_current_positions`` and no explicit ``before``, the page
        is anchored at the latest open position's ``uTime`` (best effort).
        """
        currency = currency or self._default_currency
        self._require_credentials()
        self._presync()

        request = request or PositionsHistoryRequest()
        if from_current_positions and not request.before:
            try:
                current = self.get_positions(PositionsRequest(inst_type=request.inst_type, inst_id=request.inst_id), currency)
            except GatewayError as e:
                logger.warning(f"Could not anchor history at current positions | error={e}")
            else:
                if current.positions:
                    request = replace(request, before=current.positions[0].u_time)

        envelope = self.executor.get(POSITIONS_HISTORY_PATH, request.to_query())
        return map_positions_history(parse_records(RawPositionHistory, envelope.data), currency)

    def get_position_with_history(
        self,
        pos_id: str,
        currency: Optional[Currency] = None,
        *,
        limit: str = "100",
        include_current: bool = False,
    ) -> PositionWithHistory:
        if not pos_id:
            raise ValueError("pos_id must not be empty")
        currency = currency or self._default_currency

        current = self.get_positions(PositionsRequest(pos_id=pos_id), currency)
        history_request = PositionsHistoryRequest(pos_id=pos_id, limit=limit)

        current_position = None
        current_u_time = None
        if current.positions:
            current_position = current.positions[0].to_dict()
            current_u_time = current.positions[0].u_time
            if not include_current:
                history_request.before = current_u_time

        history = self.get_positions_history(history_request, currency)
        return PositionWithHistory(pos_id, current_position, current_u_time, history)

    def get_profit_loss(self, currency: Optional[Currency] = None, periods: Optional[Sequence[TimePeriod]] = None) -> List[ProfitLoss]:
        currency = currency or self._default_currency
        periods = list(periods) if periods else list(TimePeriod)

        balance = self.get_account_balance(currency)
        try:
            current_equity = Decimal(balance.total_equity)
        except InvalidOperation:
            current_equity = Decimal(0)

        results = []
        for period in periods:
            try:
                historical = Decimal(self.equity_source.get_equity(currency, period))
            except HistoricalDataUnavailable as e:
                logger.info(f"Skipping profit/loss period | period={period.value} reason={e}")
                continue

            profit = current_equity - historical
            percent = profit / historical * 100 if historical != 0 else Decimal(0)
            end = self._now()
            results.append(ProfitLoss(
                period=period,
                profit_amount=f"{profit:.2f}",
                profit_percent=f"{percent:.2f}",
                currency=currency,
                is_profit=profit >= 0,
                start_time=end - period.duration,
                end_time=end,
            ))
        return results

    def get_account_summary(self, currency: Optional[Currency] = None) -> AccountSummary:
        currency = currency or self._default_currency
        balance = self.get_account_balance(currency)
        profit_loss = self.get_profit_loss(currency, list(TimePeriod))
        return AccountSummary(
            balance=balance,
            profit_loss=profit_loss,
            currency=currency,
            update_time=self._now(),
        )

    def get_exchange_rates(self) -> Dict[str, float]:
        self.converter.refresh_rates()
        return self.converter.rates()

    def get_instruments(self, inst_type: str = "SPOT") -> List[RawInstrument]:
        return self.public_client.get_instruments(inst_type)
