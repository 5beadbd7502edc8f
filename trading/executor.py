"""Execution coordinator: sizing, swap build/submit with a bounded slippage retry, ledger rows."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

from config import ScalpConfig
from monitor.alerter import TelegramNotifier
from trading.models import ExitRules, Opportunity, Position, TradeSide, TradeStatus
from trading.swap_router import (
    NoRouteError,
    QuoteUnavailableError,
    SubmitErrorKind,
    SubmitResult,
    SwapPayload,
    UniswapV2Router,
    classify_submit_error,
)
from trading.trade_ledger import TradeLedger
from utils.log_contracts import DecisionLog

logger = logging.getLogger(__name__)


class Wallet(Protocol):
    async def sign_and_submit(self, payload: SwapPayload) -> SubmitResult: ...


@dataclass(frozen=True)
class SellOutcome:
    success: bool
    exit_price: float
    tx_ref: str = ""
    error: str = ""
    attempts: int = 0


class ExecutionCoordinator:
    def __init__(
        self,
        cfg: ScalpConfig,
        router: UniswapV2Router,
        wallet: Wallet,
        ledger: TradeLedger,
        notifier: TelegramNotifier,
        *,
        paper: bool,
        native_price: Callable[[], float],
        native_balance: Callable[[], Awaitable[float]] | None = None,
        decisions: DecisionLog | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.cfg = cfg
        self.router = router
        self.wallet = wallet
        self.ledger = ledger
        self.notifier = notifier
        self.paper = paper
        self.native_price = native_price
        self.native_balance = native_balance
        self.decisions = decisions
        self._clock = clock
        self._sleep = sleep

    async def available_balance(self) -> float:
        if self.paper or self.native_balance is None:
            return self.ledger.balance_usd
        return await self.native_balance() * self.native_price()

    def position_size(self, balance_usd: float) -> float:
        return balance_usd * self.cfg.position_size_pct / 100.0

    async def _submit_with_retry(
        self,
        attempt_id: int,
        symbol: str,
        build: Callable[[], Awaitable[SwapPayload]],
    ) -> tuple[SubmitResult, int]:
        """Build a fresh payload per attempt; only slippage failures are retried."""
        max_attempts = max(1, self.cfg.max_swap_attempts)
        for attempt in range(1, max_attempts + 1):
            try:
                payload = await build()
            except (NoRouteError, QuoteUnavailableError) as exc:
                kind = SubmitErrorKind.NO_ROUTE if isinstance(exc, NoRouteError) else SubmitErrorKind.TIMEOUT
                return SubmitResult(success=False, error=str(exc), error_kind=kind), attempt
            self.ledger.mark(attempt_id, TradeStatus.EXECUTING, attempts=attempt)
            result = await self.wallet.sign_and_submit(payload)
            if result.success:
                return result, attempt
            kind = result.error_kind or classify_submit_error(result.error)
            result.error_kind = kind
            if kind is not SubmitErrorKind.SLIPPAGE or attempt >= max_attempts:
                return result, attempt
            logger.warning(
                "SWAP_RETRY side=%s token=%s attempt=%s/%s kind=%s delay=%.1fs",
                payload.side,
                symbol,
                attempt,
                max_attempts,
                kind.value,
                self.cfg.swap_retry_delay_seconds,
            )
            await self._sleep(self.cfg.swap_retry_delay_seconds)
        return SubmitResult.failed("retry budget exhausted"), max_attempts

    async def execute_buy(self, opp: Opportunity) -> Position | None:
        balance = await self.available_balance()
        size_usd = self.position_size(balance)
        if size_usd < self.cfg.min_position_usd:
            logger.info("AUTO_BUY skip token=%s size=$%.2f below dust=$%.2f", opp.symbol, size_usd, self.cfg.min_position_usd)
            return None

        attempt_id = self.ledger.open_attempt(
            TradeSide.BUY,
            token_address=opp.token_address,
            symbol=opp.symbol,
            size_usd=size_usd,
            price_usd=opp.price_usd,
            slippage_pct=opp.slippage_pct,
        )
        amount_in = self.router.usd_to_wei(size_usd, self.native_price())

        async def build() -> SwapPayload:
            return await self.router.build_swap("BUY", opp.token_address, amount_in, opp.slippage_pct)

        result, attempts = await self._submit_with_retry(attempt_id, opp.symbol, build)
        if not result.success:
            self.ledger.mark(
                attempt_id,
                TradeStatus.FAILED,
                error=result.error[:500],
                error_kind=result.error_kind,
                tx_ref=result.tx_ref or None,
                attempts=attempts,
            )
            logger.warning(
                "AUTO_BUY failed token=%s attempts=%s kind=%s err=%s",
                opp.symbol,
                attempts,
                getattr(result.error_kind, "value", ""),
                result.error,
            )
            self._decision("execute", "buy_fail", opp.symbol, opp.token_address, error=result.error)
            await self.notifier.trade_failed(TradeSide.BUY, opp.symbol, result.error, attempts)
            return None

        entry_price = opp.price_usd
        if self.paper:
            entry_price = opp.price_usd * (1.0 + self.cfg.simulated_entry_slippage_pct / 100.0)
        position = Position(
            token_address=opp.token_address,
            symbol=opp.symbol,
            entry_price=entry_price,
            entry_time=self._clock(),
            size_usd=size_usd,
            rules=ExitRules.from_config(self.cfg),
            token_amount_raw=int(result.amount_out_raw),
            tx_ref=result.tx_ref,
        )
        self.ledger.debit(size_usd)
        self.ledger.mark(
            attempt_id,
            TradeStatus.COMPLETED,
            tx_ref=result.tx_ref,
            attempts=attempts,
            position_id=position.position_id,
            price_usd=entry_price,
        )
        logger.info(
            "AUTO_BUY %s BUY token=%s address=%s size=$%.2f entry=%.10g score=%s attempts=%s tx=%s",
            "Paper" if self.paper else "Live",
            opp.symbol,
            opp.token_address,
            size_usd,
            entry_price,
            opp.score,
            attempts,
            result.tx_ref,
        )
        self._decision("execute", "buy_paper" if self.paper else "buy_live", opp.symbol, opp.token_address)
        await self.notifier.buy_opened(opp, position)
        return position

    async def execute_sell(self, position: Position, current_price: float) -> SellOutcome:
        """Sell the whole position. Failures are reported in the outcome, never raised."""
        attempt_id = self.ledger.open_attempt(
            TradeSide.SELL,
            token_address=position.token_address,
            symbol=position.symbol,
            size_usd=position.size_usd,
            price_usd=current_price,
            slippage_pct=self.cfg.sell_slippage_pct,
            position_id=position.position_id,
        )

        async def build() -> SwapPayload:
            return await self.router.build_swap(
                "SELL", position.token_address, position.token_amount_raw, self.cfg.sell_slippage_pct
            )

        result, attempts = await self._submit_with_retry(attempt_id, position.symbol, build)
        if not result.success:
            self.ledger.mark(
                attempt_id,
                TradeStatus.FAILED,
                error=result.error[:500],
                error_kind=result.error_kind,
                tx_ref=result.tx_ref or None,
                attempts=attempts,
            )
            logger.warning("AUTO_SELL failed token=%s attempts=%s err=%s", position.symbol, attempts, result.error)
            self._decision("execute", "sell_fail", position.symbol, position.token_address, error=result.error)
            return SellOutcome(False, current_price, error=result.error, attempts=attempts)

        if self.paper:
            exit_price = current_price * (1.0 - self.cfg.simulated_exit_slippage_pct / 100.0)
        else:
            received_usd = self.router.wei_to_native(result.amount_out_raw) * self.native_price()
            exit_price = position.entry_price * received_usd / position.size_usd if position.size_usd > 0 else current_price
        self.ledger.mark(
            attempt_id,
            TradeStatus.COMPLETED,
            tx_ref=result.tx_ref,
            attempts=attempts,
            price_usd=exit_price,
        )
        return SellOutcome(True, exit_price, tx_ref=result.tx_ref, attempts=attempts)

    def _decision(self, stage: str, reason: str, symbol: str, token_address: str, **extra: object) -> None:
        if self.decisions is None:
            return
        self.decisions.write(
            decision_stage=stage,
            decision=reason,
            reason=reason,
            symbol=symbol,
            token_address=token_address,
            **extra,
        )
