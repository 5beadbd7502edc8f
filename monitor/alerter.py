"""Trade notifications over Telegram. Best-effort: delivery failures never reach the caller."""

from __future__ import annotations

import logging
from html import escape
from typing import Any

from telegram import Bot

import config
from trading.models import ClosedTrade, Opportunity, Position, TradeSide

logger = logging.getLogger(__name__)


class TelegramNotifier:
    def __init__(self, bot: Any | None = None, chat_id: str | int | None = None) -> None:
        token = config.TELEGRAM_BOT_TOKEN
        self.chat_id = chat_id if chat_id is not None else config.TELEGRAM_CHAT_ID
        self.bot = bot if bot is not None else (Bot(token=token) if token else None)
        self.mode = "PAPER" if config.PAPER_MODE else "LIVE"
        self.sent = 0
        self.failed = 0

    @property
    def enabled(self) -> bool:
        return self.bot is not None and bool(self.chat_id)

    async def send(self, text: str) -> bool:
        if not self.enabled:
            logger.debug("NOTIFY disabled text=%s", text.splitlines()[0] if text else "")
            return False
        try:
            await self.bot.send_message(
                chat_id=self.chat_id,
                text=text,
                parse_mode="HTML",
                disable_web_page_preview=True,
            )
            self.sent += 1
            return True
        except Exception as exc:
            self.failed += 1
            logger.warning("NOTIFY send failed chat_id=%s err=%s", self.chat_id, exc)
            return False

    async def buy_opened(self, opp: Opportunity, position: Position) -> bool:
        rt = ""
        if opp.round_trip_cost_pct is not None:
            rt = f"\nRound trip: {opp.round_trip_cost_pct:.2f}% | Net exp: {opp.net_expected_pct or 0.0:+.2f}%"
        return await self.send(
            f"\U0001F7E2 <b>{self.mode} BUY {escape(opp.symbol)}</b>\n"
            f"Size: ${position.size_usd:,.2f} @ ${position.entry_price:.8g}\n"
            f"Score: {opp.score} | 5m: {opp.price_change_5m:+.1f}% | Liq: ${opp.liquidity_usd:,.0f}\n"
            f"Slippage: {opp.slippage_pct:.1f}%{rt}\n"
            f"<code>{escape(opp.token_address)}</code>"
        )

    async def sell_closed(self, trade: ClosedTrade) -> bool:
        icon = "✅" if trade.pnl_usd >= 0 else "\U0001F534"
        warn = "" if trade.sell_ok else "\n⚠️ On-chain sell failed, slot released"
        hold = max(0.0, trade.closed_at - trade.entry_time)
        return await self.send(
            f"{icon} <b>{self.mode} SELL {escape(trade.symbol)}</b> ({trade.exit_reason.value})\n"
            f"P&amp;L: {trade.pnl_pct:+.2f}% (${trade.pnl_usd:+,.2f})\n"
            f"Entry ${trade.entry_price:.8g} -> Exit ${trade.exit_price:.8g} | Hold {hold:.0f}s{warn}"
        )

    async def trade_failed(self, side: TradeSide, symbol: str, error: str, attempts: int) -> bool:
        return await self.send(
            f"❌ <b>{self.mode} {TradeSide(side).value} FAILED {escape(symbol)}</b>\n"
            f"Attempts: {attempts}\nError: {escape(error[:300])}"
        )

    async def startup(self, balance_usd: float, strategy: dict[str, Any]) -> bool:
        lines = "\n".join(f"{escape(str(k))}: {escape(str(v))}" for k, v in strategy.items())
        return await self.send(
            f"\U0001F680 <b>Scalper started ({self.mode}, {escape(config.CHAIN_NAME)})</b>\nBalance: ${balance_usd:,.2f}\n{lines}"
        )

    async def shutdown(self, summary: dict[str, Any]) -> bool:
        return await self.send(
            f"\U0001F6D1 <b>Scalper stopped ({self.mode})</b>\n"
            f"Trades: {summary.get('trades', 0)} | Wins: {summary.get('wins', 0)} | "
            f"Losses: {summary.get('losses', 0)}\n"
            f"Realized P&amp;L: ${float(summary.get('realized_pnl_usd', 0.0)):+,.2f}\n"
            f"Balance: ${float(summary.get('balance_usd', 0.0)):,.2f}"
        )
