"""Raw OKX v5 payload models.

Field names are snake_case in Python and camelCase on the wire. Every
numeric field stays a string exactly as OKX reports it.
"""
import json
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .errors import DecodeError, ExchangeAPIError


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )


class Envelope(WireModel):
    """Top-level ``{code, msg, data}`` response wrapper."""
    code: str = ""
    msg: str = ""
    data: List[Any] = Field(default_factory=list)

    @field_validator("data", mode="before")
    @classmethod
    def _null_data(cls, value):
        return [] if value is None else value

    @property
    def ok(self) -> bool:
        return self.code == "0"


class RawBalanceDetail(WireModel):
    ccy: str = ""
    bal: str = ""
    avail_bal: str = ""
    frozen_bal: str = ""


class RawAccountBalance(WireModel):
    total_eq: str = ""
    u_time: str = ""
    details: List[RawBalanceDetail] = Field(default_factory=list)


class RawCloseOrderAlgo(WireModel):
    algo_id: str = ""
    sl_trigger_px: str = ""
    sl_trigger_px_type: str = ""
    tp_trigger_px: str = ""
    tp_trigger_px_type: str = ""
    close_fraction: str = ""


class RawPosition(WireModel):
    inst_type: str = ""
    inst_id: str = ""
    mgn_mode: str = ""
    pos_id: str = ""
    pos_side: str = ""
    pos: str = ""
    base_bal: str = ""
    quote_bal: str = ""
    base_borrowed: str = ""
    base_interest: str = ""
    quote_borrowed: str = ""
    quote_interest: str = ""
    pos_ccy: str = ""
    avail_pos: str = ""
    avg_px: str = ""
    non_settle_avg_px: str = ""
    upl: str = ""
    upl_ratio: str = ""
    upl_last_px: str = ""
    upl_ratio_last_px: str = ""
    lever: str = ""
    liq_px: str = ""
    mark_px: str = ""
    imr: str = ""
    margin: str = ""
    mgn_ratio: str = ""
    mmr: str = ""
    liab: str = ""
    liab_ccy: str = ""
    interest: str = ""
    trade_id: str = ""
    opt_val: str = ""
    pending_close_ord_liab_val: str = ""
    notional_usd: str = ""
    adl: str = ""
    ccy: str = ""
    last: str = ""
    idx_px: str = ""
    usd_px: str = ""
    be_px: str = ""
    delta_bs: str = Field("", alias="deltaBS")
    delta_pa: str = Field("", alias="deltaPA")
    gamma_bs: str = Field("", alias="gammaBS")
    gamma_pa: str = Field("", alias="gammaPA")
    theta_bs: str = Field("", alias="thetaBS")
    theta_pa: str = Field("", alias="thetaPA")
    vega_bs: str = Field("", alias="vegaBS")
    vega_pa: str = Field("", alias="vegaPA")
    spot_in_use_amt: str = ""
    spot_in_use_ccy: str = ""
    cl_spot_in_use_amt: str = ""
    max_spot_in_use_amt: str = ""
    realized_pnl: str = ""
    settled_pnl: str = ""
    pnl: str = ""
    fee: str = ""
    funding_fee: str = ""
    liq_penalty: str = ""
    close_order_algo: List[RawCloseOrderAlgo] = Field(default_factory=list)
    c_time: str = ""
    u_time: str = ""
    biz_ref_id: str = ""
    biz_ref_type: str = ""


class RawPositionHistory(WireModel):
    inst_type: str = ""
    inst_id: str = ""
    mgn_mode: str = ""
    type: str = ""
    c_time: str = ""
    u_time: str = ""
    open_avg_px: str = ""
    non_settle_avg_px: str = ""
    close_avg_px: str = ""
    pos_id: str = ""
    open_max_pos: str = ""
    close_total_pos: str = ""
    realized_pnl: str = ""
    settled_pnl: str = ""
    pnl_ratio: str = ""
    fee: str = ""
    funding_fee: str = ""
    liq_penalty: str = ""
    pnl: str = ""
    pos_side: str = ""
    lever: str = ""
    direction: str = ""
    trigger_px: str = ""
    uly: str = ""
    ccy: str = ""


class RawTicker(WireModel):
    inst_type: str = ""
    inst_id: str = ""
    last: str = ""
    last_sz: str = ""
    ask_px: str = ""
    ask_sz: str = ""
    bid_px: str = ""
    bid_sz: str = ""
    open24h: str = Field("", alias="open24h")
    high24h: str = Field("", alias="high24h")
    low24h: str = Field("", alias="low24h")
    vol24h: str = Field("", alias="vol24h")
    vol_ccy24h: str = Field("", alias="volCcy24h")
    sod_utc0: str = Field("", alias="sodUtc0")
    sod_utc8: str = Field("", alias="sodUtc8")
    ts: str = ""


class RawServerTime(WireModel):
    ts: str = ""


class RawInstrument(WireModel):
    inst_type: str = ""
    inst_id: str = ""
    inst_family: str = ""
    base_ccy: str = ""
    quote_ccy: str = ""
    settle_ccy: str = ""
    ct_val: str = ""
    ct_mult: str = ""
    ct_val_ccy: str = ""
    opt_type: str = ""
    stk: str = ""
    list_time: str = ""
    exp_time: str = ""
    tick_sz: str = ""
    lot_sz: str = ""
    min_sz: str = ""
    max_sz: str = ""
    uly: str = ""
    category: str = ""
    state: str = ""


def decode_envelope(text: str) -> Envelope:
    """Parse a response body into an ``Envelope``.

    Raises:
        DecodeError: body is not JSON or not an envelope object
    """
    try:
        payload = json.loads(text)
    except ValueError as e:
        raise DecodeError(f"invalid JSON response: {e}") from e
    if not isinstance(payload, dict):
        raise DecodeError(f"unexpected response type: {type(payload).__name__}")
    try:
        return Envelope.model_validate(payload)
    except ValidationError as e:
        raise DecodeError(f"malformed response envelope: {e}") from e


def check_envelope(envelope: Envelope) -> Envelope:
    """Raise ``ExchangeAPIError`` unless the envelope carries ``code == "0"``."""
    if not envelope.ok:
        raise ExchangeAPIError(envelope.code, envelope.msg)
    return envelope


def parse_records(model, data: List[Any]) -> list:
    """Validate each element of an envelope's ``data`` list against ``model``."""
    try:
        return [model.model_validate(item) for item in data]
    except ValidationError as e:
        raise DecodeError(f"malformed {model.__name__} payload: {e}") from e

