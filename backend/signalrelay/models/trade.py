from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String
from signalrelay.core.database import Base
from signalrelay.models.base import IdMixin, TimestampMixin


class Trade(Base, IdMixin, TimestampMixin):
    """
    Paired entry/exit trades. Written by the trade-pairing collaborator,
    read here for strategy performance snapshots.
    """
    __tablename__ = "trades"

    user_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    strategy_id = Column(Integer, ForeignKey("strategies.id"), nullable=False, index=True)
    symbol = Column(String(40), nullable=False)
    direction = Column(String(10), nullable=False)  # long, short
    status = Column(String(20), nullable=False, default="open")  # open, closed, cancelled
    entry_price = Column(Numeric(24, 8), nullable=False)
    entry_time = Column(DateTime, nullable=False)
    exit_price = Column(Numeric(24, 8))
    exit_time = Column(DateTime)
    pnl = Column(Numeric(24, 8))
    pnl_percent = Column(Numeric(12, 6))
