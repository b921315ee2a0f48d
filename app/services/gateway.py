from __future__ import annotations

import asyncio
import json
from uuid import uuid4

from pydantic import ValidationError

from app.agents.orchestrator import ArtPipelineOrchestrator
from app.errors import SupersededRunError
from app.llm_client import TextCompletionClient
from app.models.schemas import (
    ClientMessage,
    NotReadyResponse,
    QueryAcceptedResponse,
    ResultsResponse,
    StatusResponse,
)
from app.models.state import ProcessingStage
from app.services import logger as log_service
from app.services import streaming
from app.services.notifier import Channel, NotificationHub
from app.services.result_cache import ResultCache, normalize_query
from app.services.state_store import QueryStateStore
from app.tools.image_search import ImageResolver

ENDPOINTS = ["/query", "/status", "/results"]

_RESET_FIELDS = {"selected_works": None, "search_results": None, "error": None}


class SessionGateway:
    """Request/poll and subscribe surface over sessions.

    ``submit`` resets the session and either serves the cached result set or
    starts a pipeline run in the background; ``status`` and ``results`` are
    lock-free reads of the current state.
    """

    def __init__(
        self,
        store: QueryStateStore,
        orchestrator: ArtPipelineOrchestrator,
        cache: ResultCache | None = None,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.cache = cache
        self._tasks: set[asyncio.Task] = set()

    async def submit(self, session_id: str, query: str) -> QueryAcceptedResponse:
        """Accept a query for the session.

        The run's generation is reserved before the cache is consulted, so
        submissions take over the session in the order they arrive; a cache
        hit or pipeline launch belonging to a superseded submission is dropped.
        """
        if not isinstance(query, str) or not query.strip():
            raise ValueError("No query provided")

        state = await self.store.begin(
            session_id,
            {
                **_RESET_FIELDS,
                "current_query": query,
                "processing_stage": ProcessingStage.ANALYZING,
            },
        )
        generation = state.generation

        cached = await self._lookup_cache(query)
        if cached:
            try:
                await self.store.set(
                    session_id,
                    {"processing_stage": ProcessingStage.COMPLETE, "selected_works": cached},
                    generation=generation,
                )
            except SupersededRunError as e:
                log_service.log_pipeline_step(session_id, "cache", "superseded", {"detail": str(e)})
            else:
                log_service.log_event(
                    event_type="query_cached",
                    message="Query served from cache",
                    session_id=session_id,
                    query=query[:100],
                )
            return QueryAcceptedResponse(
                message="Query results retrieved from cache",
                query_id=str(uuid4()),
                cached=True,
            )

        if self.store.peek(session_id).generation == generation:
            self._launch(session_id, query, generation)
            log_service.log_event(
                event_type="query_started",
                message="Query received and processing started",
                session_id=session_id,
                generation=generation,
                query=query[:100],
            )
        else:
            log_service.log_pipeline_step(
                session_id, "run", "superseded", {"generation": generation}
            )
        return QueryAcceptedResponse(
            message="Query received and processing started",
            query_id=str(uuid4()),
        )

    async def status(self, session_id: str) -> StatusResponse:
        state = await self.store.get(session_id)
        return StatusResponse(**state.status_payload())

    async def results(self, session_id: str) -> ResultsResponse | NotReadyResponse:
        state = await self.store.get(session_id)
        if not state.is_complete:
            return NotReadyResponse(state=state.processing_stage.value, error=state.error)
        return ResultsResponse(
            query=state.current_query,
            artworks=[work.to_wire() for work in state.selected_works or []],
        )

    async def subscribe(self, session_id: str, channel: Channel) -> bool:
        return await self.store.subscribe(session_id, channel)

    def unsubscribe(self, session_id: str, channel: Channel) -> None:
        self.store.unsubscribe(session_id, channel)

    async def handle_message(self, session_id: str, channel: Channel, raw: str) -> None:
        """Handle one client message from a push channel.

        Only ``{"type": "query", "query": ...}`` is understood; anything else is
        answered with an error event to the sending channel alone.
        """
        try:
            message = ClientMessage.model_validate(json.loads(raw))
            if message.type != "query":
                raise ValueError(f"Unsupported message type: {message.type}")
            await self.submit(session_id, message.query or "")
        except (json.JSONDecodeError, ValidationError, ValueError, TypeError) as e:
            log_service.log_event(
                event_type="push_message_rejected",
                message="Failed to process message",
                session_id=session_id,
                error=str(e),
            )
            await channel.send(streaming.error("Failed to process message", str(e)))
        except Exception as e:
            log_service.logger.exception(f"Unexpected failure handling push message for session {session_id}")
            await channel.send(streaming.error("Failed to process message", str(e) or type(e).__name__))

    def _launch(self, session_id: str, query: str, generation: int) -> None:
        task = asyncio.create_task(
            self.orchestrator.run(session_id, query, generation=generation),
            name=f"pipeline:{session_id}:{generation}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _lookup_cache(self, query: str):
        if self.cache is None:
            return None
        key = normalize_query(query)
        try:
            return await self.cache.lookup(key)
        except Exception as e:
            log_service.log_cache_operation("lookup", key, "failed", error=str(e))
            return None

    async def wait_idle(self) -> None:
        """Wait for every in-flight pipeline run to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.orchestrator.images.close()


def build_gateway() -> SessionGateway:
    """Wire the default collaborators from settings."""
    store = QueryStateStore(NotificationHub())
    cache = ResultCache()
    orchestrator = ArtPipelineOrchestrator(
        store,
        completion=TextCompletionClient(),
        image_resolver=ImageResolver(),
        cache=cache,
    )
    return SessionGateway(store, orchestrator, cache)
