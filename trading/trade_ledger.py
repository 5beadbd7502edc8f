"""Trade ledger: attempt rows, closed trades, running balance and realized P&L."""

from __future__ import annotations

import logging
from collections import deque
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from database.db import TradeDatabase
from trading.models import ClosedTrade, TradeSide, TradeStatus

logger = logging.getLogger(__name__)

# Returned by open_attempt when the row could not be written; mark() skips it.
UNRECORDED_ATTEMPT = -1


class TradeLedger:
    def __init__(
        self,
        db: TradeDatabase,
        *,
        start_balance_usd: float,
        paper: bool = True,
        closed_keep: int = 500,
    ) -> None:
        self.db = db
        self.paper = paper
        self.start_balance_usd = float(start_balance_usd)
        self.balance_usd = float(start_balance_usd)
        self.realized_pnl_usd = 0.0
        self.closed_trades: deque[ClosedTrade] = deque(maxlen=max(1, int(closed_keep)))
        self._applied_ids: set[str] = set()
        self.wins = 0
        self.losses = 0

    # Attempt rows

    def open_attempt(
        self,
        side: TradeSide,
        *,
        token_address: str,
        symbol: str,
        size_usd: float,
        price_usd: float | None = None,
        slippage_pct: float | None = None,
        position_id: str | None = None,
    ) -> int:
        try:
            return self.db.create_attempt(
                side=TradeSide(side).value,
                status=TradeStatus.BUILDING.value,
                token_address=token_address,
                symbol=symbol,
                position_id=position_id,
                size_usd=float(size_usd),
                price_usd=price_usd,
                slippage_pct=slippage_pct,
                paper=self.paper,
            )
        except SQLAlchemyError as exc:
            logger.warning("LEDGER write failed op=open_attempt side=%s token=%s err=%s", side, token_address, exc)
            return UNRECORDED_ATTEMPT

    def mark(self, attempt_id: int, status: TradeStatus, **fields: Any) -> None:
        if "error_kind" in fields and fields["error_kind"] is not None:
            fields["error_kind"] = str(getattr(fields["error_kind"], "value", fields["error_kind"]))
        if attempt_id == UNRECORDED_ATTEMPT:
            return
        try:
            self.db.update_attempt(attempt_id, status=TradeStatus(status).value, **fields)
        except SQLAlchemyError as exc:
            logger.warning("LEDGER write failed op=mark attempt=%s status=%s err=%s", attempt_id, status, exc)

    # Balance

    def debit(self, amount_usd: float) -> None:
        self.balance_usd -= float(amount_usd)

    def record_close(self, trade: ClosedTrade) -> bool:
        """Apply a closed trade to the aggregates once. Replaying the same trade is a no-op."""
        if trade.position_id in self._applied_ids:
            logger.info("LEDGER duplicate close ignored position=%s", trade.position_id)
            return False
        self._applied_ids.add(trade.position_id)
        self.balance_usd += trade.size_usd + trade.pnl_usd
        self.realized_pnl_usd += trade.pnl_usd
        if trade.pnl_usd >= 0:
            self.wins += 1
        else:
            self.losses += 1
        self.closed_trades.append(trade)
        try:
            self.db.insert_closed_trade(trade.to_dict())
        except SQLAlchemyError as exc:
            logger.warning("LEDGER write failed op=record_close position=%s err=%s", trade.position_id, exc)
        return True

    def summary(self) -> dict[str, Any]:
        total = self.wins + self.losses
        return {
            "trades": total,
            "wins": self.wins,
            "losses": self.losses,
            "win_rate": round(self.wins / total * 100.0, 1) if total else 0.0,
            "realized_pnl_usd": round(self.realized_pnl_usd, 4),
            "balance_usd": round(self.balance_usd, 4),
        }

    # Session snapshot

    def to_dict(self) -> dict[str, Any]:
        return {
            "balance_usd": self.balance_usd,
            "realized_pnl_usd": self.realized_pnl_usd,
            "wins": self.wins,
            "losses": self.losses,
            "applied_ids": sorted(self._applied_ids),
            "closed_trades": [t.to_dict() for t in self.closed_trades],
        }

    def load(self, payload: dict[str, Any] | None) -> None:
        if not payload:
            return
        self.balance_usd = float(payload.get("balance_usd", self.balance_usd))
        self.realized_pnl_usd = float(payload.get("realized_pnl_usd", 0.0))
        self.wins = int(payload.get("wins", 0))
        self.losses = int(payload.get("losses", 0))
        self._applied_ids = {str(x) for x in payload.get("applied_ids", [])}
        self.closed_trades.clear()
        for row in payload.get("closed_trades", []):
            try:
                trade = ClosedTrade.from_dict(row)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("LEDGER skip malformed closed trade err=%s", exc)
                continue
            self.closed_trades.append(trade)
            self._applied_ids.add(trade.position_id)
