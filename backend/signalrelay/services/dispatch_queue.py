"""
Dispatch submission.

The ingestion path hands each stored signal to a ``DispatchQueue`` and
returns to its caller without waiting. Two backends:

- ``InProcessDispatchQueue``: bounded asyncio.Queue drained by a fixed set
  of worker tasks inside the API process. ``join()`` lets tests await
  completion.
- ``StreamDispatchQueue``: XADD to the ``signal-dispatch`` Redis stream,
  consumed by ``DispatchConsumer`` in a separate process.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from signalrelay.core.config import settings
from signalrelay.core.errors import NotFoundError
from signalrelay.core.redis import StreamNames, get_async_redis
from signalrelay.services.dispatcher import ChannelDispatcher

logger = logging.getLogger(__name__)


class DispatchQueue(ABC):
    """Fire-and-forget submission of stored signals for dispatch."""

    @abstractmethod
    async def submit(self, signal_id: int, strategy_id: int) -> None:
        raise NotImplementedError

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass


class InProcessDispatchQueue(DispatchQueue):

    def __init__(
        self,
        dispatcher: Optional[ChannelDispatcher] = None,
        workers: Optional[int] = None,
        maxsize: Optional[int] = None,
    ):
        self.dispatcher = dispatcher or ChannelDispatcher()
        self.worker_count = workers or settings.DISPATCH_WORKERS
        self.maxsize = maxsize or settings.DISPATCH_QUEUE_SIZE
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []

    @property
    def queue(self) -> asyncio.Queue:
        # Created lazily so it binds to the running event loop
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.maxsize)
        return self._queue

    async def start(self) -> None:
        if self._workers:
            return
        for i in range(self.worker_count):
            self._workers.append(asyncio.create_task(self._worker(i), name=f"dispatch-worker-{i}"))
        logger.info(f"Started {self.worker_count} dispatch workers")

    async def submit(self, signal_id: int, strategy_id: int) -> None:
        if not self._workers:
            await self.start()
        try:
            self.queue.put_nowait((signal_id, strategy_id))
        except asyncio.QueueFull:
            logger.error(
                f"Dispatch queue full ({self.maxsize}), signal {signal_id} not dispatched"
            )

    async def join(self) -> None:
        """Wait until every submitted signal has been dispatched."""
        await self.queue.join()

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Dispatch workers stopped")

    async def _worker(self, index: int) -> None:
        while True:
            item: Tuple[int, int] = await self.queue.get()
            signal_id, strategy_id = item
            try:
                await self.dispatcher.dispatch(signal_id, strategy_id)
            except NotFoundError as e:
                logger.warning(f"Dispatch skipped for signal {signal_id}: {e.error}")
            except Exception:
                logger.exception(f"Dispatch worker {index} failed on signal {signal_id}")
            finally:
                self.queue.task_done()


class StreamDispatchQueue(DispatchQueue):

    def __init__(self, stream_name: str = StreamNames.SIGNAL_DISPATCH):
        self.stream_name = stream_name

    async def submit(self, signal_id: int, strategy_id: int) -> None:
        redis = await get_async_redis()
        await redis.xadd(self.stream_name, {
            "event_type": "signal_stored",
            "signal_id": str(signal_id),
            "strategy_id": str(strategy_id),
        })
        logger.debug(f"Queued signal {signal_id} on {self.stream_name}")


def create_dispatch_queue(backend: Optional[str] = None) -> DispatchQueue:
    backend = backend or settings.DISPATCH_BACKEND
    if backend == "stream":
        return StreamDispatchQueue()
    if backend == "inline":
        return InProcessDispatchQueue()
    raise ValueError(f"Unknown dispatch backend: {backend}")
