"""Data model shared by the gate, executor, position manager and ledger."""

from __future__ import annotations

import enum
import uuid
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, replace
from types import MappingProxyType
from typing import Any

from config import ScalpConfig
from monitor.dexscreener import PairSnapshot
from monitor.token_scorer import ScoreBreakdown


class ExitReason(str, enum.Enum):
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"
    TRAILING_STOP = "TRAILING_STOP"
    MAX_HOLD_TIME = "MAX_HOLD_TIME"
    MANUAL = "MANUAL"


class TradeStatus(str, enum.Enum):
    BUILDING = "BUILDING"
    EXECUTING = "EXECUTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class TradeSide(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class Opportunity:
    token_address: str
    symbol: str
    chain: str
    price_usd: float
    liquidity_usd: float
    volume_24h: float
    price_change_5m: float
    price_change_1h: float
    buy_ratio: float
    score: int
    breakdown: Mapping[str, int]
    slippage_pct: float
    is_trending: bool
    buys_24h: int = 0
    sells_24h: int = 0
    volume_1h: float = 0.0
    pair_address: str = ""
    name: str = ""
    round_trip_cost_pct: float | None = None
    net_expected_pct: float | None = None

    @classmethod
    def from_pair(
        cls,
        pair: PairSnapshot,
        breakdown: ScoreBreakdown,
        *,
        slippage_pct: float,
        is_trending: bool,
    ) -> "Opportunity":
        return cls(
            token_address=pair.token_address,
            symbol=pair.symbol,
            chain=pair.chain_id,
            price_usd=pair.price_usd,
            liquidity_usd=pair.liquidity_usd,
            volume_24h=pair.volume_24h,
            price_change_5m=pair.price_change_5m,
            price_change_1h=pair.price_change_1h,
            buy_ratio=pair.buy_ratio,
            score=breakdown.total,
            breakdown=MappingProxyType(dict(breakdown.parts)),
            slippage_pct=slippage_pct,
            is_trending=is_trending,
            buys_24h=pair.buys_24h,
            sells_24h=pair.sells_24h,
            volume_1h=pair.volume_1h,
            pair_address=pair.pair_address,
            name=pair.name,
        )

    @property
    def txns_24h(self) -> int:
        return self.buys_24h + self.sells_24h

    @property
    def sell_ratio(self) -> float:
        return self.sells_24h / (self.txns_24h or 1)

    def with_round_trip(self, cost_pct: float, net_pct: float) -> "Opportunity":
        return replace(self, round_trip_cost_pct=cost_pct, net_expected_pct=net_pct)


@dataclass(frozen=True)
class ExitRules:
    """Exit thresholds captured when a position opens."""

    stop_loss_pct: float
    take_profit_pct: float
    trailing_activate_pct: float
    trailing_distance_pct: float
    max_hold_seconds: float

    @classmethod
    def from_config(cls, cfg: ScalpConfig) -> "ExitRules":
        return cls(
            stop_loss_pct=cfg.stop_loss_pct,
            take_profit_pct=cfg.take_profit_pct,
            trailing_activate_pct=cfg.trailing_activate_pct,
            trailing_distance_pct=cfg.trailing_distance_pct,
            max_hold_seconds=cfg.max_hold_seconds,
        )


@dataclass
class Position:
    token_address: str
    symbol: str
    entry_price: float
    entry_time: float
    size_usd: float
    rules: ExitRules
    peak_price: float = 0.0
    token_amount_raw: int = 0
    tx_ref: str = ""
    position_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])

    def __post_init__(self) -> None:
        if self.peak_price < self.entry_price:
            self.peak_price = self.entry_price

    def observe(self, price: float) -> None:
        if price > self.peak_price:
            self.peak_price = price

    def pnl_pct(self, price: float) -> float:
        return (price - self.entry_price) / self.entry_price * 100.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> "Position":
        data = dict(row)
        data["rules"] = ExitRules(**data["rules"])
        return cls(**data)


@dataclass(frozen=True)
class ClosedTrade:
    position_id: str
    token_address: str
    symbol: str
    entry_price: float
    entry_time: float
    size_usd: float
    peak_price: float
    rules: ExitRules
    exit_price: float
    exit_reason: ExitReason
    pnl_pct: float
    pnl_usd: float
    closed_at: float
    sell_ok: bool = True
    tx_ref: str = ""

    @classmethod
    def from_position(
        cls,
        position: Position,
        *,
        exit_price: float,
        reason: ExitReason,
        closed_at: float,
        sell_ok: bool = True,
        tx_ref: str = "",
    ) -> "ClosedTrade":
        pnl_pct = position.pnl_pct(exit_price)
        return cls(
            position_id=position.position_id,
            token_address=position.token_address,
            symbol=position.symbol,
            entry_price=position.entry_price,
            entry_time=position.entry_time,
            size_usd=position.size_usd,
            peak_price=position.peak_price,
            rules=position.rules,
            exit_price=exit_price,
            exit_reason=ExitReason(reason),
            pnl_pct=pnl_pct,
            pnl_usd=position.size_usd * pnl_pct / 100.0,
            closed_at=closed_at,
            sell_ok=sell_ok,
            tx_ref=tx_ref,
        )

    def to_dict(self) -> dict[str, Any]:
        row = asdict(self)
        row["exit_reason"] = self.exit_reason.value
        return row

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> "ClosedTrade":
        data = dict(row)
        data["rules"] = ExitRules(**data["rules"])
        data["exit_reason"] = ExitReason(data["exit_reason"])
        return cls(**data)


@dataclass
class LossRecord:
    losses: int
    last_loss_time: float
