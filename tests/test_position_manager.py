from __future__ import annotations

import unittest
from typing import Any

from config import ScalpConfig
from sqlalchemy.exc import OperationalError

from database.db import TradeDatabase
from trading.executor import SellOutcome
from trading.loss_memory import LossMemory
from trading.models import ExitReason, ExitRules, Position
from trading.position_manager import PositionManager, evaluate_exit
from trading.trade_ledger import TradeLedger

TOKEN = "0x1111111111111111111111111111111111111111"
OTHER = "0x2222222222222222222222222222222222222222"

RULES = ExitRules(
    stop_loss_pct=5.0,
    take_profit_pct=6.0,
    trailing_activate_pct=4.0,
    trailing_distance_pct=2.0,
    max_hold_seconds=120.0,
)


def _position(token: str = TOKEN, *, entry: float = 100.0, opened: float = 1_000.0, rules: ExitRules = RULES) -> Position:
    return Position(token_address=token, symbol="AAA", entry_price=entry, entry_time=opened, size_usd=4.0, rules=rules)


class EvaluateExitTests(unittest.TestCase):
    def test_stop_loss_fires_exactly_at_threshold(self) -> None:
        self.assertEqual(evaluate_exit(_position(), 95.0, 1_001.0), ExitReason.STOP_LOSS)
        self.assertIsNone(evaluate_exit(_position(), 95.01, 1_001.0))

    def test_take_profit(self) -> None:
        self.assertEqual(evaluate_exit(_position(), 106.0, 1_001.0), ExitReason.TAKE_PROFIT)
        self.assertIsNone(evaluate_exit(_position(), 105.99, 1_001.0))

    def test_stop_loss_outranks_max_hold(self) -> None:
        self.assertEqual(evaluate_exit(_position(), 90.0, 5_000.0), ExitReason.STOP_LOSS)

    def test_take_profit_outranks_max_hold(self) -> None:
        self.assertEqual(evaluate_exit(_position(), 110.0, 5_000.0), ExitReason.TAKE_PROFIT)

    def test_trailing_stop_after_activation(self) -> None:
        wide_tp = ExitRules(5.0, 20.0, 4.0, 2.0, 120.0)
        pos = _position(rules=wide_tp)
        self.assertIsNone(evaluate_exit(pos, 110.0, 1_010.0))
        self.assertIsNone(evaluate_exit(pos, 108.0, 1_020.0))
        self.assertEqual(evaluate_exit(pos, 107.0, 1_030.0), ExitReason.TRAILING_STOP)
        self.assertEqual(pos.peak_price, 110.0)

    def test_trailing_stop_needs_activation(self) -> None:
        wide_tp = ExitRules(5.0, 20.0, 4.0, 2.0, 120.0)
        pos = _position(rules=wide_tp)
        evaluate_exit(pos, 110.0, 1_010.0)
        self.assertIsNone(evaluate_exit(pos, 103.0, 1_020.0))

    def test_max_hold_is_inclusive(self) -> None:
        self.assertIsNone(evaluate_exit(_position(), 101.0, 1_119.9))
        self.assertEqual(evaluate_exit(_position(), 101.0, 1_120.0), ExitReason.MAX_HOLD_TIME)

    def test_peak_never_decreases(self) -> None:
        pos = _position(rules=ExitRules(50.0, 90.0, 80.0, 2.0, 10_000.0))
        peaks = []
        for price in (101.0, 104.0, 99.0, 103.0, 107.0, 70.0):
            evaluate_exit(pos, price, 1_001.0)
            peaks.append(pos.peak_price)
        self.assertEqual(peaks, sorted(peaks))
        self.assertEqual(pos.peak_price, 107.0)

    def test_peak_starts_at_entry(self) -> None:
        pos = _position()
        evaluate_exit(pos, 97.0, 1_001.0)
        self.assertEqual(pos.peak_price, 100.0)

    def test_rules_captured_at_open_are_used(self) -> None:
        pos = _position(rules=ExitRules.from_config(ScalpConfig(stop_loss_pct=10.0)))
        self.assertIsNone(evaluate_exit(pos, 95.0, 1_001.0))


class StubExecutor:
    paper = True

    def __init__(self, success: bool = True) -> None:
        self.success = success
        self.sells: list[tuple[str, float]] = []

    async def execute_sell(self, position: Position, current_price: float) -> SellOutcome:
        self.sells.append((position.token_address, current_price))
        if self.success:
            return SellOutcome(True, current_price, tx_ref="paper-sell-1", attempts=1)
        return SellOutcome(False, current_price, error="execution reverted", attempts=1)


class StubNotifier:
    def __init__(self) -> None:
        self.closed: list[Any] = []

    async def sell_closed(self, trade: Any) -> bool:
        self.closed.append(trade)
        return True


class LockedClosedTradeDatabase(TradeDatabase):
    def insert_closed_trade(self, trade: dict) -> bool:
        raise OperationalError("INSERT INTO closed_trades", {}, Exception("database is locked"))


class PositionManagerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.now = 1_010.0
        self.prices: dict[str, float | None] = {}
        db = TradeDatabase("sqlite://")
        db.init_db()
        self.ledger = TradeLedger(db, start_balance_usd=96.0)
        self.memory = LossMemory(ScalpConfig(), clock=lambda: self.now)
        self.notifier = StubNotifier()

    def _manager(self, executor: StubExecutor) -> PositionManager:
        async def fetch(token: str) -> float | None:
            return self.prices.get(token)

        return PositionManager(executor, self.memory, self.ledger, self.notifier, fetch, clock=lambda: self.now)

    async def test_missing_price_skips_position(self) -> None:
        executor = StubExecutor()
        manager = self._manager(executor)
        manager.add(_position())
        self.prices[TOKEN] = None
        self.assertEqual(await manager.process_open_positions(), [])
        self.assertTrue(manager.holds(TOKEN))
        self.assertEqual(executor.sells, [])

    async def test_losing_close_records_loss_and_releases_slot(self) -> None:
        manager = self._manager(StubExecutor())
        manager.add(_position())
        self.prices[TOKEN] = 94.0
        closed = await manager.process_open_positions()
        self.assertEqual(len(closed), 1)
        self.assertEqual(closed[0].exit_reason, ExitReason.STOP_LOSS)
        self.assertAlmostEqual(closed[0].pnl_usd, -0.24)
        self.assertEqual(len(manager), 0)
        self.assertTrue(self.memory.is_on_cooldown(TOKEN))
        self.assertEqual(self.ledger.losses, 1)
        self.assertAlmostEqual(self.ledger.balance_usd, 99.76)
        self.assertEqual(len(self.notifier.closed), 1)

    async def test_winning_close_leaves_loss_memory_untouched(self) -> None:
        manager = self._manager(StubExecutor())
        manager.add(_position())
        self.prices[TOKEN] = 106.0
        closed = await manager.process_open_positions()
        self.assertEqual(closed[0].exit_reason, ExitReason.TAKE_PROFIT)
        self.assertEqual(len(self.memory), 0)
        self.assertEqual(self.ledger.wins, 1)

    async def test_failed_sell_still_releases_slot(self) -> None:
        manager = self._manager(StubExecutor(success=False))
        manager.add(_position())
        self.prices[TOKEN] = 94.0
        closed = await manager.process_open_positions()
        self.assertFalse(closed[0].sell_ok)
        self.assertEqual(closed[0].exit_price, 94.0)
        self.assertFalse(manager.holds(TOKEN))
        self.assertTrue(self.memory.is_on_cooldown(TOKEN))

    async def test_only_triggered_positions_close(self) -> None:
        executor = StubExecutor()
        manager = self._manager(executor)
        manager.add(_position(TOKEN))
        manager.add(_position(OTHER))
        self.prices[TOKEN] = 101.0
        self.prices[OTHER] = 107.0
        closed = await manager.process_open_positions()
        self.assertEqual([t.token_address for t in closed], [OTHER])
        self.assertTrue(manager.holds(TOKEN))

    async def test_duplicate_token_is_rejected(self) -> None:
        manager = self._manager(StubExecutor())
        manager.add(_position())
        with self.assertRaises(ValueError):
            manager.add(_position(TOKEN.upper().replace("0X", "0x")))

    async def test_close_all_uses_manual_reason(self) -> None:
        manager = self._manager(StubExecutor())
        manager.add(_position(TOKEN))
        manager.add(_position(OTHER))
        self.prices[TOKEN] = 102.0
        closed = await manager.close_all()
        self.assertEqual({t.exit_reason for t in closed}, {ExitReason.MANUAL})
        self.assertEqual([t.exit_price for t in closed], [102.0, 100.0])
        self.assertEqual(len(manager), 0)

    async def test_ledger_write_failure_does_not_stop_the_cycle(self) -> None:
        db = LockedClosedTradeDatabase("sqlite://")
        db.init_db()
        self.ledger = TradeLedger(db, start_balance_usd=96.0)
        manager = self._manager(StubExecutor())
        manager.add(_position(TOKEN))
        manager.add(_position(OTHER))
        self.prices[TOKEN] = 94.0
        self.prices[OTHER] = 94.0
        with self.assertLogs("trading.trade_ledger", level="WARNING"):
            closed = await manager.process_open_positions()
        self.assertEqual(len(closed), 2)
        self.assertEqual(len(manager), 0)
        self.assertEqual(len(self.notifier.closed), 2)
        self.assertAlmostEqual(self.ledger.balance_usd, 96.0 + 2 * 3.76)
        self.assertTrue(self.memory.is_on_cooldown(OTHER))


if __name__ == "__main__":
    unittest.main()
