from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String
from signalrelay.core.database import Base
from signalrelay.models.base import IdMixin, TimestampMixin


class ApiKey(Base, IdMixin, TimestampMixin):
    """
    Account-scoped credential for the programmatic ingestion flow.

    Carries its own payload mapping, default values and per-minute limit.
    When ``strategy_id`` is null the account's oldest active strategy is used.
    """
    __tablename__ = "api_keys"

    user_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    strategy_id = Column(Integer, ForeignKey("strategies.id"), nullable=True)
    name = Column(String(200), nullable=False)
    api_key = Column(String(128), unique=True, nullable=False)
    payload_mapping = Column(JSON, nullable=False, default=dict)
    default_values = Column(JSON, nullable=False, default=dict)
    rate_limit_per_minute = Column(Integer, nullable=False, default=60)
    integration_ids = Column(JSON, nullable=True)  # optional channel filter
    is_active = Column(Boolean, nullable=False, default=True)
    last_used_at = Column(DateTime)
    request_count = Column(Integer, nullable=False, default=0)
