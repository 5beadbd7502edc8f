"""SQLAlchemy models."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, JSON, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class TradeAttempt(Base):
    """One row per buy or sell attempt, updated in place BUILDING -> EXECUTING -> COMPLETED/FAILED."""

    __tablename__ = "trade_attempts"

    id = Column(Integer, primary_key=True)
    side = Column(String, nullable=False)
    status = Column(String, nullable=False, index=True)
    token_address = Column(String, nullable=False, index=True)
    symbol = Column(String, nullable=True)
    position_id = Column(String, nullable=True, index=True)
    size_usd = Column(Float, default=0.0, nullable=False)
    price_usd = Column(Float, nullable=True)
    slippage_pct = Column(Float, nullable=True)
    attempts = Column(Integer, default=0, nullable=False)
    paper = Column(Boolean, default=True, nullable=False)
    tx_ref = Column(String, nullable=True)
    error = Column(String, nullable=True)
    error_kind = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class ClosedTradeRow(Base):
    __tablename__ = "closed_trades"

    id = Column(Integer, primary_key=True)
    position_id = Column(String, unique=True, nullable=False, index=True)
    token_address = Column(String, nullable=False, index=True)
    symbol = Column(String, nullable=True)
    entry_price = Column(Float, nullable=False)
    exit_price = Column(Float, nullable=False)
    size_usd = Column(Float, nullable=False)
    exit_reason = Column(String, nullable=False)
    pnl_pct = Column(Float, nullable=False)
    pnl_usd = Column(Float, nullable=False)
    sell_ok = Column(Boolean, default=True, nullable=False)
    opened_at = Column(DateTime, nullable=False)
    closed_at = Column(DateTime, nullable=False)
