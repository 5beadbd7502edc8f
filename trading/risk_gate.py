"""Pre-trade risk gate: regime, cooldown, flow and honeypot checks, then a quoted round trip."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Iterable, Protocol

import config
from config import ScalpConfig
from monitor.market_regime import MarketRegimeFilter
from trading.loss_memory import LossMemory
from trading.models import Opportunity
from trading.swap_router import NoRouteError, QuoteUnavailableError, SwapQuote
from utils.log_contracts import DecisionLog

logger = logging.getLogger(__name__)


class QuoteProvider(Protocol):
    async def quote(self, token_in: str, token_out: str, amount_in: int) -> SwapQuote: ...


class RejectReason(str, enum.Enum):
    MARKET_REGIME = "market_regime"
    COOLDOWN = "cooldown"
    WEAK_BUY_PRESSURE = "weak_buy_pressure"
    HONEYPOT_SELLS = "honeypot_sells"
    LOW_SELL_RATIO = "low_sell_ratio"
    WEAK_MOMENTUM = "weak_momentum"
    NO_VOLUME_SPIKE = "no_volume_spike"
    NO_ROUTE = "no_route"
    NO_SELL_ROUTE = "no_sell_route"
    QUOTE_UNAVAILABLE = "quote_unavailable"
    ROUND_TRIP = "round_trip"
    OUT_OF_PROBE_WINDOW = "out_of_probe_window"


@dataclass(frozen=True)
class GateDecision:
    opportunity: Opportunity
    reason: RejectReason | None = None
    detail: str = ""

    @property
    def admitted(self) -> bool:
        return self.reason is None


@dataclass(frozen=True)
class RoundTrip:
    buy_impact_pct: float
    sell_impact_pct: float

    @property
    def total_cost_pct(self) -> float:
        return abs(self.buy_impact_pct) + abs(self.sell_impact_pct)


def volume_spike(volume_24h: float, volume_1h: float) -> float:
    expected_5m = volume_24h / 288.0
    actual_5m = volume_1h / 12.0
    return actual_5m / (expected_5m or 1.0)


class RiskGate:
    def __init__(
        self,
        cfg: ScalpConfig,
        loss_memory: LossMemory,
        regime: MarketRegimeFilter,
        quotes: QuoteProvider,
        decisions: DecisionLog | None = None,
    ) -> None:
        self.cfg = cfg
        self.loss_memory = loss_memory
        self.regime = regime
        self.quotes = quotes
        self.decisions = decisions

    def static_check(self, opp: Opportunity) -> GateDecision:
        """Checks 2 to 6, in order. First failure wins."""
        cfg = self.cfg
        if self.loss_memory.is_on_cooldown(opp.token_address):
            return GateDecision(opp, RejectReason.COOLDOWN)
        if opp.buy_ratio < cfg.min_buy_ratio:
            return GateDecision(opp, RejectReason.WEAK_BUY_PRESSURE, f"buy_ratio={opp.buy_ratio:.2f}")
        if opp.sells_24h < cfg.min_sells_required:
            return GateDecision(opp, RejectReason.HONEYPOT_SELLS, f"sells={opp.sells_24h}")
        if opp.sell_ratio < cfg.min_sell_ratio:
            return GateDecision(opp, RejectReason.LOW_SELL_RATIO, f"sell_ratio={opp.sell_ratio:.2f}")
        if opp.price_change_5m < cfg.min_price_change_5m:
            return GateDecision(opp, RejectReason.WEAK_MOMENTUM, f"m5={opp.price_change_5m:.2f}")
        spike = volume_spike(opp.volume_24h, opp.volume_1h)
        if spike < cfg.min_volume_spike:
            return GateDecision(opp, RejectReason.NO_VOLUME_SPIKE, f"spike={spike:.2f}")
        return GateDecision(opp)

    async def probe_round_trip(self, token_address: str, amount_in: int) -> RoundTrip:
        """Forward quote native->token, then reverse quote of the forward output.

        Raises NoRouteError (detail `no_sell_route` on the reverse leg) or QuoteUnavailableError.
        """
        buy = await self.quotes.quote(config.WETH_ADDRESS, token_address, amount_in)
        try:
            sell = await self.quotes.quote(token_address, config.WETH_ADDRESS, buy.amount_out)
        except (NoRouteError, QuoteUnavailableError) as exc:
            raise NoRouteError(f"no_sell_route: {exc}") from exc
        return RoundTrip(buy_impact_pct=buy.price_impact_pct, sell_impact_pct=sell.price_impact_pct)

    async def round_trip_check(self, opp: Opportunity, amount_in: int) -> GateDecision:
        try:
            rt = await self.probe_round_trip(opp.token_address, amount_in)
        except NoRouteError as exc:
            reason = RejectReason.NO_SELL_ROUTE if "no_sell_route" in str(exc) else RejectReason.NO_ROUTE
            return GateDecision(opp, reason, str(exc))
        except QuoteUnavailableError as exc:
            return GateDecision(opp, RejectReason.QUOTE_UNAVAILABLE, str(exc))
        net = opp.price_change_5m - rt.total_cost_pct
        checked = opp.with_round_trip(rt.total_cost_pct, net)
        if net < self.cfg.min_profit_buffer_pct:
            return GateDecision(checked, RejectReason.ROUND_TRIP, f"cost={rt.total_cost_pct:.2f} net={net:.2f}")
        return GateDecision(checked, detail=f"cost={rt.total_cost_pct:.2f} net={net:.2f}")

    async def admit(self, ranked: Iterable[Opportunity], probe_amount_in: int) -> list[Opportunity]:
        """Return admitted opportunities in the given (score) order."""
        candidates = list(ranked)
        if not candidates:
            return []
        verdict = await self.regime.check()
        if not verdict.ok:
            for opp in candidates:
                self._reject(GateDecision(opp, RejectReason.MARKET_REGIME, verdict.reason))
            return []

        survivors: list[Opportunity] = []
        for opp in candidates:
            decision = self.static_check(opp)
            if decision.admitted:
                survivors.append(opp)
            else:
                self._reject(decision)

        top = survivors[: self.cfg.roundtrip_top_k]
        for opp in survivors[self.cfg.roundtrip_top_k :]:
            self._reject(GateDecision(opp, RejectReason.OUT_OF_PROBE_WINDOW))
        results = await asyncio.gather(*(self.round_trip_check(opp, probe_amount_in) for opp in top))
        admitted: list[Opportunity] = []
        for decision in results:
            if decision.admitted:
                admitted.append(decision.opportunity)
                logger.info(
                    "GATE_ADMIT token=%s score=%s %s",
                    decision.opportunity.symbol,
                    decision.opportunity.score,
                    decision.detail,
                )
            else:
                self._reject(decision)
        logger.info("GATE_SUMMARY candidates=%s probed=%s admitted=%s", len(candidates), len(top), len(admitted))
        return admitted

    def _reject(self, decision: GateDecision) -> None:
        opp = decision.opportunity
        reason = decision.reason.value if decision.reason else ""
        logger.info("GATE_REJECT token=%s score=%s reason=%s %s", opp.symbol, opp.score, reason, decision.detail)
        if self.decisions is not None:
            self.decisions.write(
                decision_stage="gate",
                decision="reject",
                reason=reason,
                symbol=opp.symbol,
                token_address=opp.token_address,
                score=opp.score,
                detail=decision.detail,
            )
