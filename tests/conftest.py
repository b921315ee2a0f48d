from __future__ import annotations

import json
from typing import Any, Awaitable, Callable

import pytest

from app.agents.orchestrator import ArtPipelineOrchestrator
from app.models.events import PushEvent
from app.services.gateway import SessionGateway
from app.services.notifier import NotificationHub
from app.services.result_cache import ResultCache
from app.services.state_store import QueryStateStore

LAST_SUPPER_WORKS = [
    {"title": "The Last Supper", "artist": "Leonardo da Vinci", "year": 1498, "period": "High Renaissance", "location": "Santa Maria delle Grazie, Milan"},
    {"title": "The Last Supper", "artist": "Tintoretto", "year": 1594, "period": "Mannerism", "location": "San Giorgio Maggiore, Venice"},
    {"title": "Last Supper", "artist": "Dieric Bouts", "year": 1467, "period": "Early Netherlandish", "location": "St. Peter's Church, Leuven"},
    {"title": "The Last Supper", "artist": "Domenico Ghirlandaio", "year": 1480, "period": "Early Renaissance", "location": "Ognissanti, Florence"},
    {"title": "The Sacrament of the Last Supper", "artist": "Salvador Dali", "year": 1955, "period": "Surrealism", "location": "National Gallery of Art, Washington"},
]

ANNOTATION_PAYLOAD = {
    "historicalContext": "Painted for the refectory of a Dominican convent.",
    "artisticStyle": "Linear perspective draws the eye to Christ.",
    "biblicalNarrative": "The moment Jesus announces one disciple will betray him.",
    "interestingDetails": ["Judas clutches a purse", "Spilled salt", "Three windows", "Grouped in threes", "Peter holds a knife"],
    "uniqueInterpretation": "Captures the emotional reaction rather than the Eucharist.",
}


def research_reply(works: list[dict[str, Any]]) -> str:
    return "Here are some significant works:\n" + json.dumps(works, indent=2) + "\nLet me know if you need more."


def annotation_reply(payload: dict[str, Any] | None = None) -> str:
    return "```json\n" + json.dumps(payload or ANNOTATION_PAYLOAD) + "\n```"


Responder = Callable[[str, str], Awaitable[str]]


class FakeCompletion:
    """Stands in for TextCompletionClient; replies are chosen per caller."""

    def __init__(self, responder: Responder | None = None, *, works: list[dict[str, Any]] | None = None):
        self.works = LAST_SUPPER_WORKS if works is None else works
        self.responder = responder
        self.calls: list[tuple[str, str]] = []

    async def complete(self, prompt: str, *, system: str = "", caller: str = "pipeline") -> str:
        self.calls.append((caller, prompt))
        if self.responder is not None:
            return await self.responder(prompt, caller)
        if caller == "research":
            return research_reply(self.works)
        return annotation_reply()


class FakeResolver:
    """Stands in for ImageResolver; ``failures`` holds phrases that raise."""

    def __init__(self, *, failures: set[str] | None = None, misses: set[str] | None = None):
        self.failures = failures or set()
        self.misses = misses or set()
        self.phrases: list[str] = []
        self.closed = False

    async def resolve(self, phrase: str) -> str | None:
        self.phrases.append(phrase)
        if any(marker in phrase for marker in self.failures):
            raise RuntimeError("browser crashed")
        if any(marker in phrase for marker in self.misses):
            return None
        return f"https://images.example.org/{len(self.phrases)}.jpg"

    async def close(self) -> None:
        self.closed = True


class RecordingChannel:
    def __init__(self) -> None:
        self.events: list[PushEvent] = []

    async def send(self, event: PushEvent) -> None:
        self.events.append(event)

    def stages(self) -> list[str]:
        return [e.data["processingStage"] for e in self.events if e.event.value == "state"]


class BrokenChannel:
    async def send(self, event: PushEvent) -> None:
        raise ConnectionError("socket closed")


@pytest.fixture
def store() -> QueryStateStore:
    return QueryStateStore(NotificationHub(), persist_dir="")


@pytest.fixture
def cache(tmp_path) -> ResultCache:
    return ResultCache(str(tmp_path / "cache"), ttl_days=30, enabled=True)


@pytest.fixture
def completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture
def orchestrator(store, completion, resolver, cache) -> ArtPipelineOrchestrator:
    return ArtPipelineOrchestrator(
        store,
        completion=completion,
        image_resolver=resolver,
        cache=cache,
        completion_timeout=5,
        image_timeout=5,
    )


@pytest.fixture
def gateway(store, orchestrator, cache) -> SessionGateway:
    return SessionGateway(store, orchestrator, cache)
