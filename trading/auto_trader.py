"""Scan-cycle orchestrator: exits first, then collect, score, gate and at most one buy."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

import config
from config import ScalpConfig
from database.db import TradeDatabase
from monitor.alerter import TelegramNotifier
from monitor.dexscreener import DexScreenerFeed, PairSnapshot
from monitor.market_regime import MarketRegimeFilter
from monitor.token_scorer import ScoreBreakdown, TokenScorer, rank
from trading import auto_trader_state
from trading.executor import ExecutionCoordinator
from trading.live_executor import LiveWallet, PaperWallet
from trading.loss_memory import LossMemory
from trading.models import ClosedTrade, Opportunity, Position
from trading.position_manager import PositionManager
from trading.risk_gate import RiskGate
from trading.swap_router import UniswapV2Router
from trading.trade_ledger import TradeLedger
from utils.log_contracts import DecisionLog

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    closed: list[ClosedTrade] = field(default_factory=list)
    collected: int = 0
    scored: int = 0
    admitted: int = 0
    bought: Position | None = None
    skipped: str = ""


class AutoTrader:
    def __init__(
        self,
        cfg: ScalpConfig,
        *,
        feed: DexScreenerFeed,
        scorer: TokenScorer,
        regime: MarketRegimeFilter,
        gate: RiskGate,
        router: UniswapV2Router,
        executor: ExecutionCoordinator,
        positions: PositionManager,
        ledger: TradeLedger,
        loss_memory: LossMemory,
        notifier: TelegramNotifier,
        state_file: str = config.SESSION_STATE_FILE,
        paper: bool = True,
    ) -> None:
        self.cfg = cfg
        self.feed = feed
        self.scorer = scorer
        self.regime = regime
        self.gate = gate
        self.router = router
        self.executor = executor
        self.positions = positions
        self.ledger = ledger
        self.loss_memory = loss_memory
        self.notifier = notifier
        self.state_file = state_file
        self.paper = paper
        self.excluded_symbols = {s.upper() for s in config.EXCLUDED_SYMBOLS}
        self.cycles = 0

    @classmethod
    def create(cls, cfg: ScalpConfig) -> "AutoTrader":
        paper = bool(config.PAPER_MODE)
        decisions = DecisionLog(config.DECISIONS_LOG_FILE, run_tag=config.RUN_TAG)
        feed = DexScreenerFeed()
        loss_memory = LossMemory(cfg)
        regime = MarketRegimeFilter(feed, cfg)
        db = TradeDatabase(config.TRADES_DATABASE_URL)
        db.init_db()
        ledger = TradeLedger(
            db,
            start_balance_usd=config.PAPER_START_BALANCE_USD,
            paper=paper,
            closed_keep=config.SESSION_CLOSED_TRADES_KEEP,
        )
        notifier = TelegramNotifier()
        if paper:
            router = UniswapV2Router()
            wallet: PaperWallet | LiveWallet = PaperWallet()
            native_balance = None
        else:
            live = LiveWallet()
            router, wallet, native_balance = live.router, live, live.native_balance
        executor = ExecutionCoordinator(
            cfg,
            router,
            wallet,
            ledger,
            notifier,
            paper=paper,
            native_price=regime.native_price_usd,
            native_balance=native_balance,
            decisions=decisions,
        )
        positions = PositionManager(executor, loss_memory, ledger, notifier, feed.get_price, decisions=decisions)
        return cls(
            cfg,
            feed=feed,
            scorer=TokenScorer(cfg),
            regime=regime,
            gate=RiskGate(cfg, loss_memory, regime, router, decisions=decisions),
            router=router,
            executor=executor,
            positions=positions,
            ledger=ledger,
            loss_memory=loss_memory,
            notifier=notifier,
            paper=paper,
        )

    def load_state(self) -> bool:
        return auto_trader_state.load_state(self)

    def save_state(self) -> bool:
        return auto_trader_state.save_state(self)

    def _score_candidates(
        self, pairs: list[PairSnapshot], trending: set[str]
    ) -> list[tuple[PairSnapshot, ScoreBreakdown]]:
        scored: list[tuple[PairSnapshot, ScoreBreakdown]] = []
        for pair in pairs[: self.cfg.max_scan_candidates]:
            if pair.symbol.upper() in self.excluded_symbols or self.positions.holds(pair.token_address):
                continue
            breakdown = self.scorer.score(pair, trending)
            if breakdown.total < self.cfg.min_score:
                logger.debug("SCORE skip token=%s total=%s min=%s", pair.symbol, breakdown.total, self.cfg.min_score)
                continue
            logger.debug("SCORE token=%s total=%s parts=%s", pair.symbol, breakdown.total, breakdown.parts)
            scored.append((pair, breakdown))
        return rank(scored)

    def _to_opportunity(self, pair: PairSnapshot, breakdown: ScoreBreakdown, trending: set[str]) -> Opportunity:
        return Opportunity.from_pair(
            pair,
            breakdown,
            slippage_pct=self.cfg.slippage_for_liquidity(pair.liquidity_usd),
            is_trending=pair.token_address in trending,
        )

    async def run_cycle(self, stop_event: asyncio.Event | None = None) -> CycleReport:
        def stopping() -> bool:
            return stop_event is not None and stop_event.is_set()

        self.cycles += 1
        report = CycleReport()
        started = time.monotonic()

        report.closed = await self.positions.process_open_positions()
        if report.closed:
            self.save_state()
        if stopping():
            report.skipped = "stopping"
            return report
        if len(self.positions) >= self.cfg.max_positions:
            report.skipped = "max_positions"
            logger.info("SCAN_CYCLE n=%s skipped=max_positions open=%s", self.cycles, len(self.positions))
            return report

        pairs, trending = await asyncio.gather(self.feed.collect_candidates(), self.feed.get_trending())
        report.collected = len(pairs)
        ranked = self._score_candidates(pairs, trending)
        report.scored = len(ranked)
        opportunities = [self._to_opportunity(pair, bd, trending) for pair, bd in ranked]
        if stopping():
            report.skipped = "stopping"
            return report

        await self.regime.check()
        probe_amount_in = self.router.usd_to_wei(self.cfg.roundtrip_probe_usd, self.regime.native_price_usd())
        admitted = await self.gate.admit(opportunities, probe_amount_in)
        report.admitted = len(admitted)

        if admitted and not stopping():
            position = await self.executor.execute_buy(admitted[0])
            if position is not None:
                self.positions.add(position)
                report.bought = position
                self.save_state()

        logger.info(
            "SCAN_CYCLE n=%s closed=%s collected=%s scored=%s admitted=%s bought=%s open=%s cooldowns=%s balance=$%.2f took=%.2fs",
            self.cycles,
            len(report.closed),
            report.collected,
            report.scored,
            report.admitted,
            report.bought.symbol if report.bought else "-",
            len(self.positions),
            len(self.loss_memory),
            self.ledger.balance_usd,
            time.monotonic() - started,
        )
        return report

    def strategy_summary(self) -> dict[str, object]:
        cfg = self.cfg
        return {
            "scan": f"{cfg.scan_interval_seconds:g}s",
            "size": f"{cfg.position_size_pct:g}% x {cfg.max_positions}",
            "tp/sl": f"+{cfg.take_profit_pct:g}% / -{cfg.stop_loss_pct:g}%",
            "trail": f"{cfg.trailing_activate_pct:g}% / {cfg.trailing_distance_pct:g}%",
            "max_hold": f"{cfg.max_hold_seconds:g}s",
            "min_score": cfg.min_score,
        }

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        await self.notifier.startup(await self.executor.available_balance(), self.strategy_summary())
        while not stop_event.is_set():
            try:
                await self.run_cycle(stop_event)
            except Exception:
                logger.exception("SCAN_CYCLE failed n=%s", self.cycles)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.cfg.scan_interval_seconds)
            except asyncio.TimeoutError:
                continue
        await self.shutdown()

    async def close_all(self) -> list[ClosedTrade]:
        closed = await self.positions.close_all()
        self.save_state()
        return closed

    async def shutdown(self, reason: str = "shutdown") -> None:
        summary = self.ledger.summary()
        logger.info(
            "AUTOTRADER_SHUTDOWN reason=%s open=%s trades=%s wins=%s losses=%s realized=$%.2f cooldowns=%s",
            reason,
            len(self.positions),
            summary["trades"],
            summary["wins"],
            summary["losses"],
            summary["realized_pnl_usd"],
            self.loss_memory.stats()["tokens_on_cooldown"],
        )
        self.save_state()
        await self.notifier.shutdown(summary)
        await self.feed.close()
