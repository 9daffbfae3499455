from sqlalchemy import Column, String
from signalrelay.core.database import Base
from signalrelay.models.base import IdMixin, TimestampMixin


class Account(Base, IdMixin, TimestampMixin):
    """
    Owner of strategies, API keys and notification channels.
    The plan tier drives the default ingestion rate limit.
    """
    __tablename__ = "accounts"

    email = Column(String(255), unique=True, nullable=False)
    plan = Column(String(20), nullable=False, default="FREE")  # FREE, PRO, ELITE
