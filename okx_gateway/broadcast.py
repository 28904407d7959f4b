"""
Fan-out of live price snapshots to WebSocket subscribers.

``PriceBroadcastManager`` is a small actor: one control task owns the
subscriber set and consumes a single command queue. Everything that touches
the set (register, unregister, broadcast, the per-subscriber welcome
snapshot) goes through that queue, so commands are applied one at a time and
a subscriber is never written to after it has been removed.

A poll task fetches a snapshot every ``poll_interval`` seconds and publishes
it. Publishing never blocks: when ``max_pending`` broadcasts are already
queued the new tick is dropped, so a slow subscriber delays prices rather
than piling them up.

Subscribers only need ``send_str``, ``close`` and async iteration, which is
what ``aiohttp.web.WebSocketResponse`` provides.
"""
import asyncio
import json
from typing import Any, Awaitable, Callable, NamedTuple, Optional, Set

from aiohttp import WSMsgType

from .logging_setup import logger

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_PENDING = 1
DEFAULT_SEND_TIMEOUT = 10.0

REGISTER = "register"
UNREGISTER = "unregister"
BROADCAST = "broadcast"
DIRECT = "direct"


class _Command(NamedTuple):
    kind: str
    subscriber: Any = None
    payload: Optional[str] = None


def encode_snapshot(snapshot) -> str:
    if isinstance(snapshot, str):
        return snapshot
    if hasattr(snapshot, "to_dict"):
        snapshot = snapshot.to_dict()
    return json.dumps(snapshot)


class PriceBroadcastManager:
    def __init__(
        self,
        fetch_snapshot: Callable[[], Awaitable[Any]],
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_pending: int = DEFAULT_MAX_PENDING,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
    ):
        self._fetch_snapshot = fetch_snapshot
        self.poll_interval = poll_interval
        self.max_pending = max_pending
        self.send_timeout = send_timeout

        # Built on first use inside the running loop; on 3.9 a queue binds to
        # the loop current at construction and run_app starts a new one.
        self._commands: Optional[asyncio.Queue] = None
        self._stop_requests: Optional[asyncio.Queue] = None
        self._subscribers: Set[Any] = set()
        self._pending = 0

        self._loop_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._snapshot_tasks: Set[asyncio.Task] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def pending_broadcasts(self) -> int:
        return self._pending

    def _command_queue(self) -> asyncio.Queue:
        if self._commands is None:
            self._commands = asyncio.Queue()
        return self._commands

    def _stop_queue(self) -> asyncio.Queue:
        if self._stop_requests is None:
            self._stop_requests = asyncio.Queue(maxsize=1)
        return self._stop_requests

    def start(self, *, poll: bool = True) -> None:
        """Start the control task and (optionally) the poller. Idempotent."""
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._run())
        if poll and (self._poll_task is None or self._poll_task.done()):
            self._poll_task = asyncio.create_task(self._poll())
        logger.info(f"Price broadcast started | poll={poll} interval={self.poll_interval}s")

    async def close(self) -> None:
        """Stop every task and close the remaining subscribers."""
        tasks = [t for t in (self._poll_task, self._loop_task, *self._snapshot_tasks) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._poll_task = None
        self._loop_task = None
        self._snapshot_tasks.clear()
        self._commands = None
        self._stop_requests = None
        self._pending = 0

        for subscriber in list(self._subscribers):
            await self._remove(subscriber)
        logger.info("Price broadcast closed")

    async def register(self, subscriber) -> None:
        """Add a subscriber and send it the latest snapshot as soon as it is fetched."""
        await self._command_queue().put(_Command(REGISTER, subscriber))
        task = asyncio.create_task(self._send_welcome(subscriber))
        self._snapshot_tasks.add(task)
        task.add_done_callback(self._snapshot_tasks.discard)

    async def unregister(self, subscriber) -> None:
        await self._command_queue().put(_Command(UNREGISTER, subscriber))

    def publish(self, payload: str) -> bool:
        """Queue a broadcast without waiting.

        Returns False (and drops the payload) when the pending limit is hit.
        Must be called from the event loop thread.
        """
        if self._pending >= self.max_pending:
            logger.debug(f"Broadcast dropped, queue busy | pending={self._pending}")
            return False
        self._pending += 1
        self._command_queue().put_nowait(_Command(BROADCAST, payload=payload))
        return True

    def stop_polling(self) -> None:
        """Ask the poller to exit. A request already in flight absorbs this one."""
        try:
            self._stop_queue().put_nowait(True)
        except asyncio.QueueFull:
            pass

    async def serve(self, subscriber) -> None:
        """Drain inbound frames until the subscriber goes away, then unregister it."""
        try:
            async for msg in subscriber:
                if msg.type == WSMsgType.ERROR:
                    logger.warning(f"Subscriber connection error | error={subscriber.exception()}")
                    break
        finally:
            await self.unregister(subscriber)

    async def _run(self) -> None:
        while True:
            command = await self._command_queue().get()
            if command.kind == REGISTER:
                self._subscribers.add(command.subscriber)
                logger.info(f"Subscriber joined | subscribers={len(self._subscribers)}")
            elif command.kind == UNREGISTER:
                if await self._remove(command.subscriber):
                    logger.info(f"Subscriber left | subscribers={len(self._subscribers)}")
            elif command.kind == BROADCAST:
                self._pending -= 1
                for subscriber in list(self._subscribers):
                    await self._send(subscriber, command.payload)
            elif command.kind == DIRECT:
                if command.subscriber in self._subscribers:
                    await self._send(command.subscriber, command.payload)

    async def _send(self, subscriber, payload: str) -> None:
        try:
            await asyncio.wait_for(subscriber.send_str(payload), timeout=self.send_timeout)
        except Exception as e:
            logger.warning(f"Write to subscriber failed, dropping it | error={e!r}")
            await self._remove(subscriber)
            logger.info(f"Subscriber left | subscribers={len(self._subscribers)}")

    async def _remove(self, subscriber) -> bool:
        if subscriber not in self._subscribers:
            return False
        self._subscribers.discard(subscriber)
        try:
            await asyncio.wait_for(subscriber.close(), timeout=self.send_timeout)
        except Exception as e:
            logger.debug(f"Subscriber close failed | error={e!r}")
        return True

    async def _fetch_payload(self) -> Optional[str]:
        try:
            snapshot = await self._fetch_snapshot()
        except Exception as e:
            logger.warning(f"Price snapshot fetch failed | error={e}")
            return None
        return encode_snapshot(snapshot)

    async def _send_welcome(self, subscriber) -> None:
        payload = await self._fetch_payload()
        if payload is not None:
            await self._command_queue().put(_Command(DIRECT, subscriber, payload))

    async def _poll(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._stop_queue().get(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
            else:
                logger.info("Price polling stopped")
                return

            payload = await self._fetch_payload()
            if payload is not None:
                self.publish(payload)
