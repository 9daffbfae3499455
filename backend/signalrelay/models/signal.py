from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from signalrelay.core.database import Base
from signalrelay.models.base import IdMixin, TimestampMixin

class Signal(Base, IdMixin, TimestampMixin):
    """
    Accepted trading signals. ``created_at`` is the receipt time.
    """
    __tablename__ = "signals"
    __table_args__ = (
        UniqueConstraint("strategy_id", "alert_id", name="uq_signals_strategy_alert"),
        Index("ix_signals_strategy_symbol_created", "strategy_id", "symbol", "created_at"),
        Index("ix_signals_user_created", "user_id", "created_at"),
    )

    user_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    strategy_id = Column(Integer, ForeignKey("strategies.id"), nullable=False)
    api_key_id = Column(Integer, ForeignKey("api_keys.id"), nullable=True)
    signal_type = Column(String(10), nullable=False)  # BUY, SELL, LONG, SHORT, CLOSE
    symbol = Column(String(40), nullable=False)
    price = Column(Numeric(24, 8), nullable=False)
    signal_time = Column(DateTime, nullable=False)
    interval = Column(String(20))
    alert_id = Column(String(200))
    raw_payload = Column(JSON)
    processed_at = Column(DateTime)
