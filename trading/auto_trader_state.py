"""Session persistence for AutoTrader: open positions, ledger aggregates, loss memory."""

from __future__ import annotations

import logging
import time
from typing import Any

from trading.models import Position
from utils.state_file import StateFileCorruptError, StateFileLockError, read_json_locked, write_json_atomic_locked

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def build_payload(trader: Any) -> dict[str, Any]:
    return {
        "version": STATE_VERSION,
        "saved_at": time.time(),
        "paper": bool(trader.paper),
        "open_positions": [p.to_dict() for p in trader.positions.open_positions.values()],
        "ledger": trader.ledger.to_dict(),
        "loss_memory": trader.loss_memory.to_dict(),
    }


def save_state(trader: Any) -> bool:
    try:
        write_json_atomic_locked(trader.state_file, build_payload(trader))
    except (StateFileLockError, OSError, TypeError, ValueError) as exc:
        logger.warning("AutoTrade state save failed path=%s err=%s", trader.state_file, exc)
        return False
    return True


def load_state(trader: Any) -> bool:
    try:
        payload = read_json_locked(trader.state_file)
    except (StateFileLockError, StateFileCorruptError, OSError) as exc:
        logger.warning("AutoTrade state load failed path=%s err=%s", trader.state_file, exc)
        return False
    if not isinstance(payload, dict):
        return False
    if bool(payload.get("paper", trader.paper)) != bool(trader.paper):
        logger.warning("AutoTrade state mode mismatch, ignoring path=%s", trader.state_file)
        return False

    positions: list[Position] = []
    for row in payload.get("open_positions", []) or []:
        try:
            positions.append(Position.from_dict(row))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("AutoTrade skip malformed position err=%s", exc)
    trader.positions.restore(positions)
    trader.ledger.load(payload.get("ledger"))
    trader.loss_memory.load(payload.get("loss_memory"))
    logger.info(
        "AutoTrade state loaded open=%s closed=%s balance=$%.2f cooldowns=%s",
        len(trader.positions),
        len(trader.ledger.closed_trades),
        trader.ledger.balance_usd,
        len(trader.loss_memory),
    )
    return True
