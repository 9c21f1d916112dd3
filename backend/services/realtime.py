"""
Realtime change notifications.

Writes publish coarse "refresh" signals to the accounts they affect; clients
listening on the websocket re-fetch the named aggregate (inbox, request list,
feed) instead of applying row deltas. Signals carry no row data and no
ordering guarantee, so receiving one for data already on screen is just a
redundant refresh.
"""
import asyncio
from collections import defaultdict
from typing import Iterable

import structlog

logger = structlog.get_logger(__name__)

# Per-connection buffer; a full queue already holds a pending refresh
QUEUE_SIZE = 100


class ChangeBroker:
    """
    Fans refresh signals out to the connections of each account.

    Queues are bound to the event loop that subscribed them, and publishing
    goes through ``call_soon_threadsafe`` so writes made from worker threads
    are delivered safely.
    """

    def __init__(self):
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._loops: dict[asyncio.Queue, asyncio.AbstractEventLoop] = {}

    def subscribe(self, account_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_SIZE)
        self._loops[queue] = asyncio.get_running_loop()
        self._subscribers[account_id].add(queue)
        logger.info("Realtime subscriber connected", user_id=account_id)
        return queue

    def unsubscribe(self, account_id: str, queue: asyncio.Queue) -> None:
        self._loops.pop(queue, None)
        queues = self._subscribers.get(account_id)
        if queues is None:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[account_id]
        logger.info("Realtime subscriber disconnected", user_id=account_id)

    def subscriber_count(self, account_id: str) -> int:
        return len(self._subscribers.get(account_id, ()))

    def publish(self, table: str, account_ids: Iterable[str], event: str = "*") -> int:
        """
        Notify every connection of the given accounts that ``table`` changed.

        Returns:
            Number of connections the signal was handed to.
        """
        signal = {"type": "refresh", "table": table, "event": event}
        delivered = 0
        for account_id in set(account_ids):
            for queue in list(self._subscribers.get(account_id, ())):
                loop = self._loops.get(queue)
                if loop is None or loop.is_closed():
                    continue
                loop.call_soon_threadsafe(_offer, queue, signal)
                delivered += 1
        return delivered


def _offer(queue: asyncio.Queue, signal: dict) -> None:
    try:
        queue.put_nowait(signal)
    except asyncio.QueueFull:
        logger.debug("Realtime queue full, dropping signal", table=signal["table"])


broker = ChangeBroker()
