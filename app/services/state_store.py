from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from hashlib import sha256
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from app.config import settings
from app.errors import SupersededRunError
from app.models.state import QueryState
from app.services import logger as log_service
from app.services.notifier import Channel, NotificationHub


class QueryStateStore:
    """Single-writer state cells addressed by session id.

    ``set`` is the only mutation path. Writes to one session are serialized by
    a per-session lock, and each write is broadcast to the session's push
    subscribers before ``set`` returns, so subscribers see mutations in order.
    Reads through ``peek``/``get`` take no lock and return immutable snapshots.
    """

    def __init__(self, notifier: NotificationHub | None = None, persist_dir: str | None = None):
        self.notifier = notifier or NotificationHub()
        persist = settings.state_persist_dir if persist_dir is None else persist_dir
        self.persist_dir = Path(persist) if persist else None
        self._states: dict[str, QueryState] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def peek(self, session_id: str) -> QueryState:
        return self._states.get(session_id) or QueryState()

    async def get(self, session_id: str) -> QueryState:
        if session_id not in self._states and self.persist_dir is not None:
            restored = await asyncio.to_thread(self._restore, session_id)
            if restored is not None:
                self._states.setdefault(session_id, restored)
        return self.peek(session_id)

    async def set(
        self,
        session_id: str,
        patch: dict[str, Any],
        *,
        generation: int | None = None,
    ) -> QueryState:
        """Merge ``patch`` into the session state.

        When ``generation`` is given and no longer matches the session's
        current run, the write is rejected with ``SupersededRunError``.
        """
        async with self._locks[session_id]:
            current = await self.get(session_id)
            if generation is not None and generation != current.generation:
                raise SupersededRunError(session_id, generation, current.generation)
            return await self._commit(session_id, current.merged(patch))

    async def begin(self, session_id: str, patch: dict[str, Any]) -> QueryState:
        """Start a new run: bump the generation and apply ``patch``."""
        async with self._locks[session_id]:
            current = await self.get(session_id)
            return await self._commit(
                session_id,
                current.merged({**patch, "generation": current.generation + 1}),
            )

    async def subscribe(self, session_id: str, channel: Channel) -> bool:
        async with self._locks[session_id]:
            current = await self.get(session_id)
            return await self.notifier.subscribe(session_id, channel, current)

    def unsubscribe(self, session_id: str, channel: Channel) -> None:
        self.notifier.unsubscribe(session_id, channel)

    async def _commit(self, session_id: str, state: QueryState) -> QueryState:
        self._states[session_id] = state
        if self.persist_dir is not None:
            try:
                await asyncio.to_thread(self._persist, session_id, state)
            except OSError as e:
                log_service.log_event(
                    event_type="state_persist_error",
                    message="Failed to persist query state",
                    session_id=session_id,
                    error=str(e),
                )
        await self.notifier.broadcast(session_id, state)
        return state

    def _path_for(self, session_id: str) -> Path:
        assert self.persist_dir is not None
        digest = sha256(session_id.encode("utf-8")).hexdigest()
        return self.persist_dir / f"{digest}.json"

    def _persist(self, session_id: str, state: QueryState) -> None:
        path = self._path_for(session_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"session_id": session_id, "generation": state.generation, "state": state.to_wire()}
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, ensure_ascii=True), encoding="utf-8")
        tmp_path.replace(path)

    def _restore(self, session_id: str) -> QueryState | None:
        path = self._path_for(session_id)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            state = QueryState.model_validate(payload["state"])
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValidationError) as e:
            log_service.log_event(
                event_type="state_restore_error",
                message="Ignoring unreadable query state snapshot",
                session_id=session_id,
                error=str(e),
            )
            return None
        return state.model_copy(update={"generation": int(payload.get("generation", 0))})
