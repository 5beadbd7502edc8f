from __future__ import annotations

import json
import os
import tempfile
import unittest
from types import SimpleNamespace

from config import ScalpConfig
from database.db import TradeDatabase
from trading import auto_trader_state
from trading.loss_memory import LossMemory
from trading.models import ClosedTrade, ExitReason, ExitRules, Position
from trading.position_manager import PositionManager
from trading.trade_ledger import TradeLedger

TOKEN = "0x1111111111111111111111111111111111111111"
RULES = ExitRules(5.0, 6.0, 4.0, 2.0, 120.0)


class SessionStateTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._tmp.name, "session.json")
        self.now = 50_000.0

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _trader(self, paper: bool = True) -> SimpleNamespace:
        cfg = ScalpConfig()
        db = TradeDatabase("sqlite://")
        db.init_db()
        memory = LossMemory(cfg, clock=lambda: self.now)
        ledger = TradeLedger(db, start_balance_usd=100.0, paper=paper)
        positions = PositionManager(None, memory, ledger, None, None, clock=lambda: self.now)  # type: ignore[arg-type]
        return SimpleNamespace(state_file=self.path, paper=paper, positions=positions, ledger=ledger, loss_memory=memory)

    def test_roundtrip_restores_positions_ledger_and_cooldowns(self) -> None:
        trader = self._trader()
        position = Position(TOKEN, "AAA", 0.001, 49_990.0, 4.0, RULES, peak_price=0.00104)
        trader.positions.add(position)
        trader.ledger.debit(4.0)
        loser = Position("0x2222222222222222222222222222222222222222", "BBB", 0.002, 49_000.0, 4.0, RULES)
        trader.ledger.record_close(
            ClosedTrade.from_position(loser, exit_price=0.0019, reason=ExitReason.STOP_LOSS, closed_at=49_100.0)
        )
        trader.loss_memory.record_loss(loser.token_address)
        self.assertTrue(auto_trader_state.save_state(trader))

        restored = self._trader()
        self.assertTrue(auto_trader_state.load_state(restored))
        self.assertTrue(restored.positions.holds(TOKEN))
        again = restored.positions.open_positions[TOKEN]
        self.assertEqual(again.position_id, position.position_id)
        self.assertEqual(again.peak_price, 0.00104)
        self.assertEqual(again.rules, RULES)
        self.assertAlmostEqual(restored.ledger.balance_usd, trader.ledger.balance_usd)
        self.assertEqual(restored.ledger.losses, 1)
        self.assertTrue(restored.loss_memory.is_on_cooldown(loser.token_address))

    def test_missing_file_is_a_clean_start(self) -> None:
        self.assertFalse(auto_trader_state.load_state(self._trader()))

    def test_mode_mismatch_is_ignored(self) -> None:
        paper = self._trader(paper=True)
        paper.ledger.debit(10.0)
        auto_trader_state.save_state(paper)
        live = self._trader(paper=False)
        self.assertFalse(auto_trader_state.load_state(live))
        self.assertAlmostEqual(live.ledger.balance_usd, 100.0)

    def test_corrupt_file_is_ignored(self) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("{")
        self.assertFalse(auto_trader_state.load_state(self._trader()))

    def test_malformed_position_is_skipped(self) -> None:
        trader = self._trader()
        trader.positions.add(Position(TOKEN, "AAA", 0.001, 49_990.0, 4.0, RULES))
        auto_trader_state.save_state(trader)
        with open(self.path, "r", encoding="utf-8") as f:
            payload = json.load(f)
        payload["open_positions"].append({"symbol": "BROKEN"})
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(payload, f)
        restored = self._trader()
        self.assertTrue(auto_trader_state.load_state(restored))
        self.assertEqual(len(restored.positions), 1)


if __name__ == "__main__":
    unittest.main()
