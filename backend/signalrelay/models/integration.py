from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String
from signalrelay.core.database import Base
from signalrelay.models.base import IdMixin, TimestampMixin


class Integration(Base, IdMixin, TimestampMixin):
    """
    Configured notification channel.

    Bound to one strategy, or to the whole account when ``strategy_id`` is null.
    ``config`` holds the type-specific settings (webhook URL, bot token, ...).
    """
    __tablename__ = "integrations"

    user_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    strategy_id = Column(Integer, ForeignKey("strategies.id"), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    type = Column(String(20), nullable=False)  # discord, slack, telegram, email, webhook
    enabled = Column(Boolean, nullable=False, default=True)
    status = Column(String(20), nullable=False, default="active")  # active, paused, error, deleted
    config = Column(JSON, nullable=False, default=dict)
    error_message = Column(String(500))
    last_delivery_at = Column(DateTime)
    error_count = Column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<Integration(id={self.id}, type={self.type}, status={self.status})>"
