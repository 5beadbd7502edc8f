"""Database helpers and CRUD operations for the trade ledger."""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from database.models import Base, ClosedTradeRow, TradeAttempt


def _utc(ts: float) -> datetime:
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).replace(tzinfo=None)


class TradeDatabase:
    def __init__(self, url: str) -> None:
        kwargs: dict[str, Any] = {"future": True}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, **kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)

    def init_db(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def get_db(self) -> Session:
        return self.SessionLocal()

    def create_attempt(self, **fields: Any) -> int:
        db = self.get_db()
        try:
            row = TradeAttempt(**fields)
            db.add(row)
            db.commit()
            db.refresh(row)
            return int(row.id)
        finally:
            db.close()

    def update_attempt(self, attempt_id: int, **fields: Any) -> Optional[TradeAttempt]:
        db = self.get_db()
        try:
            row = db.get(TradeAttempt, attempt_id)
            if row is None:
                return None
            for key, value in fields.items():
                setattr(row, key, value)
            db.commit()
            db.refresh(row)
            return row
        finally:
            db.close()

    def get_attempt(self, attempt_id: int) -> Optional[TradeAttempt]:
        db = self.get_db()
        try:
            return db.get(TradeAttempt, attempt_id)
        finally:
            db.close()

    def list_attempts(self, status: str | None = None) -> list[TradeAttempt]:
        db = self.get_db()
        try:
            query = db.query(TradeAttempt)
            if status:
                query = query.filter(TradeAttempt.status == status)
            return query.order_by(TradeAttempt.id).all()
        finally:
            db.close()

    def insert_closed_trade(self, trade: dict[str, Any]) -> bool:
        """Insert a closed trade once. Returns False if the position was already recorded."""
        db = self.get_db()
        try:
            exists = db.query(ClosedTradeRow).filter(ClosedTradeRow.position_id == trade["position_id"]).first()
            if exists:
                return False
            db.add(
                ClosedTradeRow(
                    position_id=trade["position_id"],
                    token_address=trade["token_address"],
                    symbol=trade.get("symbol"),
                    entry_price=trade["entry_price"],
                    exit_price=trade["exit_price"],
                    size_usd=trade["size_usd"],
                    exit_reason=trade["exit_reason"],
                    pnl_pct=trade["pnl_pct"],
                    pnl_usd=trade["pnl_usd"],
                    sell_ok=bool(trade.get("sell_ok", True)),
                    opened_at=_utc(trade["entry_time"]),
                    closed_at=_utc(trade["closed_at"]),
                )
            )
            db.commit()
            return True
        finally:
            db.close()

    def count_closed_trades(self) -> int:
        db = self.get_db()
        try:
            return db.query(ClosedTradeRow).count()
        finally:
            db.close()
