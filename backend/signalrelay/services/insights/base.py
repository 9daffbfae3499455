from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class PerformanceSnapshot:
    """Closed-trade statistics for a strategy."""
    win_rate: float  # percent, 0-100
    total_trades: int

    def describe(self) -> str:
        return f"{self.win_rate:.0f}% win rate over {self.total_trades} closed trades"


@dataclass
class InsightRequest:
    direction: str
    symbol: str
    price: float
    strategy_name: str
    performance: Optional[PerformanceSnapshot] = None


class InsightProvider(ABC):
    """Abstract base class for short natural-language signal commentary."""

    @abstractmethod
    async def generate(self, request: InsightRequest) -> Optional[str]:
        """
        Return a short insight, or None when none could be produced.

        Raises DependencyError when the upstream service cannot be reached.
        """
        raise NotImplementedError
