from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
from signalrelay.core.database import Base
from signalrelay.models.base import IdMixin, TimestampMixin


class DeliveryLog(Base, IdMixin, TimestampMixin):
    """
    One dispatch attempt of a signal to a channel.
    Created as ``pending`` and moved to ``success`` or ``error``.
    """
    __tablename__ = "alert_logs"
    __table_args__ = (
        Index("ix_alert_logs_status_created", "status", "created_at"),
        Index("ix_alert_logs_signal_integration", "signal_id", "integration_id"),
    )

    user_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    strategy_id = Column(Integer, ForeignKey("strategies.id"), nullable=False)
    signal_id = Column(Integer, ForeignKey("signals.id"), nullable=False)
    integration_id = Column(Integer, ForeignKey("integrations.id"), nullable=False)
    integration_type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="pending")  # pending, success, error
    message = Column(String(500))
    response_status = Column(Integer)
    response_body = Column(Text)  # truncated
    error_message = Column(String(500))
    attempt = Column(Integer, nullable=False, default=1)
    retryable = Column(Boolean, nullable=False, default=True)
    retried_at = Column(DateTime)
    delivered_at = Column(DateTime)
