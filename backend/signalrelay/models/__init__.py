# Base
from signalrelay.models.base import TimestampMixin, IdMixin

# Ownership & credentials
from signalrelay.models.account import Account
from signalrelay.models.strategy import Strategy
from signalrelay.models.api_key import ApiKey

# Signals
from signalrelay.models.signal import Signal
from signalrelay.models.trade import Trade

# Notification
from signalrelay.models.integration import Integration
from signalrelay.models.delivery_log import DeliveryLog

__all__ = [
    "TimestampMixin",
    "IdMixin",
    "Account",
    "Strategy",
    "ApiKey",
    "Signal",
    "Trade",
    "Integration",
    "DeliveryLog",
]
