"""Open-position lifecycle: exit evaluation, closing, loss recording."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterable

from monitor.alerter import TelegramNotifier
from trading.executor import ExecutionCoordinator
from trading.loss_memory import LossMemory
from trading.models import ClosedTrade, ExitReason, Position
from trading.trade_ledger import TradeLedger
from utils.addressing import normalize_address
from utils.log_contracts import DecisionLog

logger = logging.getLogger(__name__)

PriceFetcher = Callable[[str], Awaitable["float | None"]]


def evaluate_exit(position: Position, price: float, now: float) -> ExitReason | None:
    """Update the peak, then return the first exit that fires in priority order."""
    position.observe(price)
    rules = position.rules
    pnl = position.pnl_pct(price)
    if pnl <= -rules.stop_loss_pct:
        return ExitReason.STOP_LOSS
    if pnl >= rules.take_profit_pct:
        return ExitReason.TAKE_PROFIT
    if pnl >= rules.trailing_activate_pct:
        from_peak = (price - position.peak_price) / position.peak_price * 100.0
        if from_peak <= -rules.trailing_distance_pct:
            return ExitReason.TRAILING_STOP
    if now - position.entry_time >= rules.max_hold_seconds:
        return ExitReason.MAX_HOLD_TIME
    return None


class PositionManager:
    def __init__(
        self,
        executor: ExecutionCoordinator,
        loss_memory: LossMemory,
        ledger: TradeLedger,
        notifier: TelegramNotifier,
        price_fetcher: PriceFetcher,
        *,
        decisions: DecisionLog | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.executor = executor
        self.loss_memory = loss_memory
        self.ledger = ledger
        self.notifier = notifier
        self.price_fetcher = price_fetcher
        self.decisions = decisions
        self._clock = clock
        self.open_positions: dict[str, Position] = {}

    def __len__(self) -> int:
        return len(self.open_positions)

    def holds(self, token_address: str) -> bool:
        return normalize_address(token_address) in self.open_positions

    def add(self, position: Position) -> None:
        key = normalize_address(position.token_address)
        if key in self.open_positions:
            raise ValueError(f"position already open for {key}")
        self.open_positions[key] = position

    def restore(self, positions: Iterable[Position]) -> None:
        self.open_positions = {normalize_address(p.token_address): p for p in positions}

    async def _fetch_price(self, token_address: str) -> float | None:
        try:
            price = await self.price_fetcher(token_address)
        except Exception as exc:
            logger.warning("AUTO_SELL price fetch failed token=%s err=%s", token_address, exc)
            return None
        if price is None or price <= 0:
            return None
        return float(price)

    async def process_open_positions(self) -> list[ClosedTrade]:
        """Evaluate every open position once. Positions without a price are skipped this cycle."""
        if not self.open_positions:
            return []
        positions = list(self.open_positions.values())
        prices = await asyncio.gather(*(self._fetch_price(p.token_address) for p in positions))
        closed: list[ClosedTrade] = []
        now = self._clock()
        for position, price in zip(positions, prices):
            if price is None:
                logger.info("AUTO_SELL skip token=%s reason=no_price", position.symbol)
                continue
            reason = evaluate_exit(position, price, now)
            if reason is None:
                logger.debug(
                    "POSITION hold token=%s pnl=%.2f%% peak=%.10g",
                    position.symbol,
                    position.pnl_pct(price),
                    position.peak_price,
                )
                continue
            closed.append(await self.close(position, price, reason))
        return closed

    async def close(self, position: Position, price: float, reason: ExitReason) -> ClosedTrade:
        """Sell and release the slot. A failed sell still releases it, priced at the observed price."""
        outcome = await self.executor.execute_sell(position, price)
        trade = ClosedTrade.from_position(
            position,
            exit_price=outcome.exit_price,
            reason=reason,
            closed_at=self._clock(),
            sell_ok=outcome.success,
            tx_ref=outcome.tx_ref,
        )
        self.open_positions.pop(normalize_address(position.token_address), None)
        if trade.pnl_usd < 0:
            self.loss_memory.record_loss(position.token_address)
        self.ledger.record_close(trade)
        logger.info(
            "AUTO_SELL %s SELL token=%s reason=%s pnl=%.2f%% ($%.2f) sell_ok=%s attempts=%s",
            "Paper" if self.executor.paper else "Live",
            position.symbol,
            reason.value,
            trade.pnl_pct,
            trade.pnl_usd,
            outcome.success,
            outcome.attempts,
        )
        if self.decisions is not None:
            self.decisions.write(
                decision_stage="exit",
                decision="close",
                reason=reason.value,
                symbol=position.symbol,
                token_address=position.token_address,
                pnl_pct=round(trade.pnl_pct, 4),
                pnl_usd=round(trade.pnl_usd, 4),
                sell_ok=outcome.success,
            )
        await self.notifier.sell_closed(trade)
        return trade

    async def close_all(self, reason: ExitReason = ExitReason.MANUAL) -> list[ClosedTrade]:
        closed: list[ClosedTrade] = []
        for position in list(self.open_positions.values()):
            price = await self._fetch_price(position.token_address)
            closed.append(await self.close(position, price if price is not None else position.entry_price, reason))
        return closed
