from __future__ import annotations

from typing import Any

from app.models.events import EventType, PushEvent
from app.models.state import QueryState


def state_changed(state: QueryState) -> PushEvent:
    """Emit the current stage snapshot."""
    data: dict[str, Any] = {
        "processingStage": state.processing_stage.value,
        "lastUpdated": state.last_updated,
    }
    if state.current_query is not None:
        data["query"] = state.current_query
    if state.error is not None:
        data["error"] = state.error
    return PushEvent(event=EventType.STATE, data=data)


def results_ready(state: QueryState) -> PushEvent:
    return PushEvent(
        event=EventType.RESULTS,
        data={
            "query": state.current_query,
            "artworks": [work.to_wire() for work in state.selected_works or []],
        },
    )


def snapshot(state: QueryState) -> list[PushEvent]:
    """Events that describe ``state`` in full: its stage, then results once complete."""
    events = [state_changed(state)]
    if state.is_complete and state.selected_works is not None:
        events.append(results_ready(state))
    return events


def error(message: str, detail: str | None = None) -> PushEvent:
    data: dict[str, Any] = {"message": message}
    if detail:
        data["error"] = detail
    return PushEvent(event=EventType.ERROR, data=data)
