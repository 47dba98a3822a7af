"""
Notification hub — live batch progress over WebSockets.

Connections register on connect but only receive updates for batches they
explicitly subscribe to. Every batch mutation is fanned out as a reduced
snapshot to all subscribers at once; a send that fails or does not finish
within ``send_timeout`` prunes that connection.

Liveness: any inbound frame marks a connection alive. A heartbeat sweep runs
every interval and counts the intervals a connection stayed silent; after
``max_missed_heartbeats`` of them in a row it is closed and dropped from
every subscriber set. Clients ping once per interval, so a ping landing
just late of a sweep boundary does not get a healthy connection closed.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any, Protocol

from pydantic import ValidationError

from app.core.errors import ProtocolError
from app.core.logging import get_logger
from app.schemas.schemas import (
    BatchSnapshot,
    BatchUpdateMessage,
    PingMessage,
    PongMessage,
    SubscribeBatchMessage,
    client_message_adapter,
)

logger = get_logger(__name__)

_connection_ids = itertools.count(1)


class Channel(Protocol):
    """The part of a WebSocket the hub relies on."""

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


class Subscriber:
    def __init__(self, channel: Channel) -> None:
        self.id = next(_connection_ids)
        self.channel = channel
        self.is_alive = True
        self.missed_heartbeats = 0

    def mark_alive(self) -> None:
        self.is_alive = True
        self.missed_heartbeats = 0

    async def send(self, message: dict) -> None:
        await self.channel.send_json(message)

    def __repr__(self) -> str:
        return f"Subscriber(id={self.id}, alive={self.is_alive}, missed={self.missed_heartbeats})"


class NotificationHub:
    def __init__(
        self,
        heartbeat_interval: float = 30.0,
        max_missed_heartbeats: int = 2,
        send_timeout: float = 5.0,
    ) -> None:
        self.heartbeat_interval = heartbeat_interval
        self.max_missed_heartbeats = max_missed_heartbeats
        self.send_timeout = send_timeout
        self._connections: set[Subscriber] = set()
        self._subscriptions: dict[int, set[Subscriber]] = {}
        self._lock = asyncio.Lock()
        self._heartbeat_task: asyncio.Task | None = None

    # ── Connection bookkeeping ──────────────────────────────
    async def register(self, channel: Channel) -> Subscriber:
        subscriber = Subscriber(channel)
        async with self._lock:
            self._connections.add(subscriber)
        logger.info("ws_connected", connection_id=subscriber.id)
        return subscriber

    async def subscribe(self, subscriber: Subscriber, batch_id: int) -> None:
        async with self._lock:
            self._subscriptions.setdefault(batch_id, set()).add(subscriber)
        logger.info("ws_subscribed", connection_id=subscriber.id, batch_id=batch_id)

    async def unregister(self, subscriber: Subscriber) -> None:
        async with self._lock:
            self._drop(subscriber)
        logger.info("ws_disconnected", connection_id=subscriber.id)

    def _drop(self, subscriber: Subscriber) -> None:
        """Remove from every set. Caller holds the lock."""
        self._connections.discard(subscriber)
        for batch_id in list(self._subscriptions):
            members = self._subscriptions[batch_id]
            members.discard(subscriber)
            if not members:
                del self._subscriptions[batch_id]

    def subscriber_count(self, batch_id: int) -> int:
        return len(self._subscriptions.get(batch_id, ()))

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # ── Inbound protocol ────────────────────────────────────
    @staticmethod
    def parse_message(raw: str | bytes | dict) -> SubscribeBatchMessage | PingMessage:
        try:
            if isinstance(raw, dict):
                return client_message_adapter.validate_python(raw)
            return client_message_adapter.validate_json(raw)
        except ValidationError as e:
            raise ProtocolError(f"Unsupported subscriber message: {e.errors()[0]['msg']}") from e

    async def handle_message(self, subscriber: Subscriber, raw: str | bytes | dict) -> None:
        """Apply one client frame. Raises ProtocolError for anything off-protocol."""
        subscriber.mark_alive()
        message = self.parse_message(raw)
        if isinstance(message, PingMessage):
            await subscriber.send(PongMessage().model_dump())
        else:
            await self.subscribe(subscriber, message.batch_id)

    # ── Fan-out ─────────────────────────────────────────────
    async def _deliver(self, subscriber: Subscriber, message: dict, batch_id: int) -> bool:
        try:
            await asyncio.wait_for(subscriber.send(message), timeout=self.send_timeout)
        except TimeoutError:
            logger.warning(
                "ws_send_timed_out",
                connection_id=subscriber.id,
                batch_id=batch_id,
                timeout=self.send_timeout,
            )
            return False
        except Exception as e:
            logger.warning(
                "ws_send_failed",
                connection_id=subscriber.id,
                batch_id=batch_id,
                error=str(e),
            )
            return False
        return True

    async def publish(self, batch) -> int:
        """Push the batch's snapshot to its subscribers. Returns deliveries made."""
        message = BatchUpdateMessage(data=BatchSnapshot.from_batch(batch)).to_wire()
        async with self._lock:
            targets = list(self._subscriptions.get(batch.id, ()))
        if not targets:
            return 0

        # A stalled socket costs at most send_timeout, never the whole fan-out.
        outcomes = await asyncio.gather(
            *(self._deliver(subscriber, message, batch.id) for subscriber in targets)
        )
        unreachable = [s for s, ok in zip(targets, outcomes) if not ok]
        if unreachable:
            async with self._lock:
                for subscriber in unreachable:
                    self._drop(subscriber)
            for subscriber in unreachable:
                await self._close(subscriber, code=1011, reason="Send failed")
        return len(targets) - len(unreachable)

    # ── Liveness ────────────────────────────────────────────
    async def sweep(self) -> int:
        """Close connections silent for ``max_missed_heartbeats`` intervals. Returns how many."""
        async with self._lock:
            stale = []
            for subscriber in self._connections:
                if subscriber.is_alive:
                    subscriber.missed_heartbeats = 0
                else:
                    subscriber.missed_heartbeats += 1
                subscriber.is_alive = False
                if subscriber.missed_heartbeats >= self.max_missed_heartbeats:
                    stale.append(subscriber)
            for subscriber in stale:
                self._drop(subscriber)

        for subscriber in stale:
            logger.info(
                "ws_stale_connection_closed",
                connection_id=subscriber.id,
                missed_heartbeats=subscriber.missed_heartbeats,
            )
            await self._close(subscriber, code=1001, reason="Heartbeat timeout")
        return len(stale)

    async def _close(self, subscriber: Subscriber, code: int, reason: str) -> None:
        try:
            await asyncio.wait_for(
                subscriber.channel.close(code=code, reason=reason), timeout=self.send_timeout
            )
        except Exception as e:
            logger.debug("ws_close_failed", connection_id=subscriber.id, error=str(e))

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            await self.sweep()

    def start(self) -> None:
        if self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._heartbeat(), name="ws-heartbeat")
            logger.info("ws_heartbeat_started", interval=self.heartbeat_interval)

    async def stop(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None
