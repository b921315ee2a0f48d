from __future__ import annotations

import pytest

from app.models.artwork import AnnotatedArtwork, ArtworkAnnotations
from app.models.events import EventType
from app.models.state import ProcessingStage, QueryState
from app.services import streaming
from app.services.notifier import NotificationHub, QueueChannel
from conftest import BrokenChannel, RecordingChannel

SESSION = "art/push"


def _complete_state() -> QueryState:
    work = AnnotatedArtwork(
        id="artwork-1-0",
        title="The Return of the Prodigal Son",
        artist="Rembrandt",
        year=1669,
        image_url="https://images.example.org/1.jpg",
        annotations=ArtworkAnnotations(),
    )
    return QueryState().merged(
        {
            "current_query": "The Prodigal Son",
            "processing_stage": ProcessingStage.COMPLETE,
            "selected_works": [work],
        }
    )


@pytest.mark.asyncio
async def test_late_subscriber_gets_state_and_results():
    hub = NotificationHub()
    channel = RecordingChannel()

    assert await hub.subscribe(SESSION, channel, _complete_state())

    assert [e.event for e in channel.events] == [EventType.STATE, EventType.RESULTS]
    assert channel.events[0].data["processingStage"] == "complete"
    assert channel.events[1].data["artworks"][0]["imageUrl"] == "https://images.example.org/1.jpg"


@pytest.mark.asyncio
async def test_broken_channel_is_removed_and_others_still_served():
    hub = NotificationHub()
    healthy = RecordingChannel()
    await hub.subscribe(SESSION, healthy, QueryState())
    hub._channels[SESSION].insert(0, BrokenChannel())

    await hub.broadcast(SESSION, QueryState().merged({"processing_stage": ProcessingStage.RESEARCHING}))

    assert len(hub.subscribers(SESSION)) == 1
    assert healthy.stages() == ["idle", "researching"]


@pytest.mark.asyncio
async def test_failed_snapshot_does_not_register():
    hub = NotificationHub()
    assert not await hub.subscribe(SESSION, BrokenChannel(), QueryState())
    assert hub.subscribers(SESSION) == []


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery():
    hub = NotificationHub()
    channel = RecordingChannel()
    await hub.subscribe(SESSION, channel, QueryState())
    hub.unsubscribe(SESSION, channel)

    await hub.broadcast(SESSION, QueryState().merged({"processing_stage": ProcessingStage.ANALYZING}))

    assert channel.stages() == ["idle"]


@pytest.mark.asyncio
async def test_queue_channel_buffers_events():
    hub = NotificationHub()
    channel = QueueChannel()
    await hub.subscribe(SESSION, channel, QueryState())

    event = await channel.receive()
    assert event.event == EventType.STATE
    assert event.format_sse()["event"] == "state"


def test_error_event_shape():
    event = streaming.error("Failed to process message", "Unsupported message type: ping")
    assert event.to_json() == (
        '{"type": "error", "data": {"message": "Failed to process message", '
        '"error": "Unsupported message type: ping"}}'
    )


def test_state_event_omits_empty_fields():
    event = streaming.state_changed(QueryState())
    assert set(event.data) == {"processingStage", "lastUpdated"}
