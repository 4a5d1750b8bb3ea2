"""
Real-time notification delivery over WebSockets.

`ConnectionRegistry` tracks the sockets connected to this process and the
per-user channel each one has joined. `RedisNotifier` publishes events to a
Redis pub/sub channel instead, and every process forwards what it receives to
its own registry, so sockets can be spread across worker processes.

Frames sent to clients are `{"event": <name>, "data": <payload>}`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, Awaitable, Optional, Protocol

import redis.asyncio as aioredis
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)

NEW_CAMPAIGN = "new_campaign"
NEW_BACKING = "new_backing"

RECONNECT_DELAY_SECONDS = 2.0


class SocketConnection(Protocol):
    async def send_json(self, data: Any) -> None:
        ...


class Notifier(Protocol):
    async def broadcast(self, event: str, data: dict) -> None:
        ...

    async def emit(self, room: str, event: str, data: dict) -> None:
        ...


class ConnectionRegistry:
    """In-process table of connected sockets and their channels."""

    def __init__(self):
        self.connections: set[SocketConnection] = set()
        self.rooms: dict[str, set[SocketConnection]] = defaultdict(set)
        self._room_of: dict[SocketConnection, str] = {}

    def connect(self, connection: SocketConnection) -> None:
        self.connections.add(connection)

    def join(self, connection: SocketConnection, room: str) -> None:
        # A connection belongs to at most one channel.
        previous = self._room_of.get(connection)
        if previous is not None and previous != room:
            self._leave(connection, previous)
        self.connections.add(connection)
        self.rooms[room].add(connection)
        self._room_of[connection] = room

    def disconnect(self, connection: SocketConnection) -> None:
        self.connections.discard(connection)
        room = self._room_of.pop(connection, None)
        if room is not None:
            self._leave(connection, room)

    def _leave(self, connection: SocketConnection, room: str) -> None:
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(connection)
        if not members:
            del self.rooms[room]

    def room_of(self, connection: SocketConnection) -> Optional[str]:
        return self._room_of.get(connection)

    def members(self, room: str) -> list[SocketConnection]:
        return list(self.rooms.get(room, ()))

    async def broadcast(self, event: str, data: dict) -> None:
        await self._send(list(self.connections), event, data)

    async def emit(self, room: str, event: str, data: dict) -> None:
        await self._send(self.members(room), event, data)

    async def _send(
        self, targets: list[SocketConnection], event: str, data: dict
    ) -> None:
        frame = {"event": event, "data": data}
        for connection in targets:
            try:
                await connection.send_json(frame)
            except Exception:
                logger.warning(
                    "Dropping socket after failed %s delivery", event, exc_info=True
                )
                self.disconnect(connection)


class RedisNotifier:
    """Publishes events through Redis so every process can deliver them."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        url: str,
        channel: str = "crowdspark:notifications",
    ):
        self.registry = registry
        self.channel = channel
        self.client = aioredis.Redis.from_url(url)

    async def broadcast(self, event: str, data: dict) -> None:
        await self._publish(None, event, data)

    async def emit(self, room: str, event: str, data: dict) -> None:
        await self._publish(room, event, data)

    async def _publish(self, room: Optional[str], event: str, data: dict) -> None:
        envelope = {"room": room, "event": event, "data": data}
        await self.client.publish(self.channel, json.dumps(envelope, default=str))

    async def deliver(self, raw: bytes | str) -> None:
        """Forward one published envelope to the local registry."""
        try:
            envelope = json.loads(raw)
            event = envelope["event"]
            data = envelope["data"]
        except (ValueError, KeyError, TypeError):
            logger.warning("Ignoring malformed notification envelope: %r", raw)
            return
        room = envelope.get("room")
        if room is None:
            await self.registry.broadcast(event, data)
        else:
            await self.registry.emit(room, event, data)

    async def listen(self) -> None:
        """Subscribe to the channel until cancelled, resubscribing after any Redis error."""
        while True:
            pubsub = self.client.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                logger.info("Subscribed to notification channel %s", self.channel)
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    await self.deliver(message["data"])
            except redis_exceptions.ConnectionError:
                logger.warning(
                    "Lost Redis subscription, retrying in %.1fs",
                    RECONNECT_DELAY_SECONDS,
                )
                await asyncio.sleep(RECONNECT_DELAY_SECONDS)
            except redis_exceptions.RedisError:
                logger.exception(
                    "Redis subscription failed, retrying in %.1fs",
                    RECONNECT_DELAY_SECONDS,
                )
                await asyncio.sleep(RECONNECT_DELAY_SECONDS)
            finally:
                await pubsub.aclose()

    async def close(self) -> None:
        await self.client.aclose()


async def publish_quietly(send: Awaitable[None], description: str) -> None:
    """Await a notification send; delivery failures are logged, never raised."""
    try:
        await send
    except Exception:
        logger.exception("Failed to deliver %s notification", description)
