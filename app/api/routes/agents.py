from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from app.api.deps import get_gateway, service_info, session_key
from app.models.events import PushEvent
from app.models.schemas import (
    NotReadyResponse,
    QueryAcceptedResponse,
    ResultsResponse,
    ServiceInfoResponse,
    StatusResponse,
)
from app.services import logger as log_service
from app.services.gateway import SessionGateway
from app.services.notifier import QueueChannel

router = APIRouter(prefix="/agents/{agent}/{session_id}", tags=["agents"])


class WebSocketChannel:
    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send(self, event: PushEvent) -> None:
        await self.websocket.send_text(event.to_json())


@router.post("/query", response_model=QueryAcceptedResponse, response_model_exclude_none=True)
async def submit_query(
    agent: str,
    session_id: str,
    request: Request,
    gateway: SessionGateway = Depends(get_gateway),
):
    """Submit a narrative query; starts the pipeline unless the result is cached."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

    query = payload.get("query") if isinstance(payload, dict) else None
    if not isinstance(query, str) or not query.strip():
        return JSONResponse({"error": "No query provided"}, status_code=400)

    try:
        return await gateway.submit(session_key(agent, session_id), query)
    except Exception as e:
        log_service.log_event(
            event_type="query_error",
            message="Error processing query",
            session_id=session_key(agent, session_id),
            error=str(e),
        )
        return JSONResponse({"error": "Failed to process query"}, status_code=500)


@router.get("/status", response_model=StatusResponse)
async def get_status(
    agent: str,
    session_id: str,
    gateway: SessionGateway = Depends(get_gateway),
):
    return await gateway.status(session_key(agent, session_id))


@router.get("/results", response_model=ResultsResponse | NotReadyResponse)
async def get_results(
    agent: str,
    session_id: str,
    gateway: SessionGateway = Depends(get_gateway),
):
    """Annotated artworks once complete; otherwise a not-ready message with the stage."""
    return await gateway.results(session_key(agent, session_id))


@router.get("/stream")
async def stream_state(
    agent: str,
    session_id: str,
    request: Request,
    gateway: SessionGateway = Depends(get_gateway),
):
    """SSE variant of the push channel: state and results events, server to client only."""
    key = session_key(agent, session_id)
    channel = QueueChannel()
    subscribed = await gateway.subscribe(key, channel)

    async def event_generator():
        if not subscribed:
            return
        try:
            while not await request.is_disconnected():
                event = await channel.receive()
                yield event.format_sse()
        finally:
            gateway.unsubscribe(key, channel)

    return EventSourceResponse(event_generator())


async def _serve_push_channel(websocket: WebSocket, key: str) -> None:
    gateway = get_gateway(websocket)
    await websocket.accept()
    channel = WebSocketChannel(websocket)
    if not await gateway.subscribe(key, channel):
        return
    try:
        while True:
            raw = await websocket.receive_text()
            await gateway.handle_message(key, channel, raw)
    except WebSocketDisconnect:
        log_service.log_event(
            event_type="channel_closed",
            message="Push channel disconnected",
            session_id=key,
        )
    finally:
        gateway.unsubscribe(key, channel)


@router.websocket("")
async def push_channel(websocket: WebSocket, agent: str, session_id: str):
    await _serve_push_channel(websocket, session_key(agent, session_id))


@router.websocket("/ws")
async def push_channel_ws(websocket: WebSocket, agent: str, session_id: str):
    await _serve_push_channel(websocket, session_key(agent, session_id))


@router.get("", response_model=ServiceInfoResponse)
@router.get("/{rest:path}", response_model=ServiceInfoResponse)
async def describe(agent: str, session_id: str, rest: str = ""):
    return service_info()
