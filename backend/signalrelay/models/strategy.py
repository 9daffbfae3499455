from sqlalchemy import Boolean, Column, ForeignKey, Integer, String
from signalrelay.core.database import Base
from signalrelay.models.base import IdMixin, TimestampMixin


class Strategy(Base, IdMixin, TimestampMixin):
    """
    Logical grouping that signals are filed under.
    Its secret token authenticates the webhook flow.
    """
    __tablename__ = "strategies"

    user_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    secret_token = Column(String(128), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    is_deleted = Column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Strategy(id={self.id}, name={self.name}, deleted={self.is_deleted})>"
