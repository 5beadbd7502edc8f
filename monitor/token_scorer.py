"""Opportunity scoring for scalp candidates."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from config import ScalpConfig
from monitor.dexscreener import PairSnapshot


@dataclass(frozen=True)
class ScoreBreakdown:
    total: int
    parts: dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> dict[str, int]:
        return {**self.parts, "total": self.total}


class TokenScorer:
    def __init__(self, cfg: ScalpConfig) -> None:
        self.cfg = cfg

    def score(self, pair: PairSnapshot, trending: set[str] | frozenset[str] = frozenset()) -> ScoreBreakdown:
        parts = {
            "liquidity": self._score_liquidity(pair.liquidity_usd),
            "volume": self._score_volume(pair.volume_24h),
            "momentum_5m": self._score_momentum_5m(pair.price_change_5m),
            "momentum_1h": self._score_momentum_1h(pair.price_change_1h),
            "buy_pressure": 10 if pair.buy_ratio > 0.55 else 0,
            "activity": 10 if pair.txns_24h > 100 else 0,
            "trending": 15 if pair.token_address in trending else 0,
            "turnover": self._score_turnover(pair.volume_24h, pair.liquidity_usd),
        }
        return ScoreBreakdown(total=sum(parts.values()), parts=parts)

    def _score_liquidity(self, liquidity: float) -> int:
        if liquidity <= 0:
            return 0
        if self.cfg.min_liquidity_usd <= liquidity <= self.cfg.max_liquidity_usd:
            return 15
        if self.cfg.min_liquidity_usd * 0.5 <= liquidity < self.cfg.min_liquidity_usd:
            return 5
        return 0

    def _score_volume(self, volume_24h: float) -> int:
        return 15 if volume_24h >= self.cfg.min_volume_24h_usd else 0

    def _score_momentum_5m(self, change_5m: float) -> int:
        if self.cfg.min_price_change_5m <= change_5m <= self.cfg.max_price_change_5m:
            # Bonus is truncated to whole points so the total stays an integer.
            return 20 + int(min(change_5m, 20.0))
        if change_5m > 0:
            return 10
        return 0

    @staticmethod
    def _score_momentum_1h(change_1h: float) -> int:
        return 15 if 5.0 < change_1h < 100.0 else 0

    @staticmethod
    def _score_turnover(volume_24h: float, liquidity: float) -> int:
        return 10 if volume_24h / (liquidity or 1.0) > 1.0 else 0


def rank_key(pair: PairSnapshot, breakdown: ScoreBreakdown) -> tuple[int, float, str]:
    """Score desc, then 24h volume desc, then token address asc."""
    return (-breakdown.total, -pair.volume_24h, pair.token_address)


def rank(scored: Iterable[tuple[PairSnapshot, ScoreBreakdown]]) -> list[tuple[PairSnapshot, ScoreBreakdown]]:
    return sorted(scored, key=lambda item: rank_key(item[0], item[1]))
