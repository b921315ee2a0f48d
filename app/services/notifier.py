"""Per-session subscriber registry for push delivery of query state changes."""
from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Protocol

from app.models.events import PushEvent
from app.models.state import QueryState
from app.services import logger as log_service
from app.services import streaming


class Channel(Protocol):
    async def send(self, event: PushEvent) -> None: ...


class QueueChannel:
    """Channel that buffers events for a consumer such as an SSE response."""

    def __init__(self, maxsize: int = 0):
        self.queue: asyncio.Queue[PushEvent] = asyncio.Queue(maxsize=maxsize)

    async def send(self, event: PushEvent) -> None:
        self.queue.put_nowait(event)

    async def receive(self) -> PushEvent:
        return await self.queue.get()


class NotificationHub:
    def __init__(self) -> None:
        self._channels: dict[str, list[Channel]] = defaultdict(list)

    def subscribers(self, session_id: str) -> list[Channel]:
        return list(self._channels.get(session_id, []))

    async def subscribe(self, session_id: str, channel: Channel, current: QueryState) -> bool:
        """Register ``channel`` and send it the current snapshot.

        Returns False when the snapshot could not be delivered, in which case
        the channel is not registered.
        """
        for event in streaming.snapshot(current):
            if not await self._deliver(session_id, channel, event):
                return False
        if channel not in self._channels[session_id]:
            self._channels[session_id].append(channel)
        log_service.log_event(
            event_type="channel_subscribed",
            message="Push channel subscribed",
            session_id=session_id,
            subscribers=len(self._channels[session_id]),
        )
        return True

    def unsubscribe(self, session_id: str, channel: Channel) -> None:
        channels = self._channels.get(session_id)
        if not channels:
            return
        if channel in channels:
            channels.remove(channel)
        if not channels:
            self._channels.pop(session_id, None)

    async def broadcast(self, session_id: str, state: QueryState) -> None:
        """Send the state change (and results when complete) to every subscriber."""
        events = streaming.snapshot(state)
        for channel in self.subscribers(session_id):
            for event in events:
                if not await self._deliver(session_id, channel, event):
                    break

    async def _deliver(self, session_id: str, channel: Channel, event: PushEvent) -> bool:
        try:
            await channel.send(event)
        except Exception as e:
            self.unsubscribe(session_id, channel)
            log_service.log_event(
                event_type="channel_dropped",
                message="Push delivery failed; channel removed",
                session_id=session_id,
                error=str(e),
            )
            return False
        return True
