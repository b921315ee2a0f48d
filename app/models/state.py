from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import Field

from app.models.artwork import AnnotatedArtwork, ArtworkCandidate, CamelModel


class ProcessingStage(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    RESEARCHING = "researching"
    FETCHING = "fetching"
    ANNOTATING = "annotating"
    COMPLETE = "complete"
    ERROR = "error"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class QueryState(CamelModel):
    """The single mutable record kept per session.

    ``generation`` tags the pipeline run that owns the record; a new
    submission bumps it so writes from the superseded run can be rejected.
    """

    current_query: str | None = None
    processing_stage: ProcessingStage = ProcessingStage.IDLE
    search_results: list[ArtworkCandidate] | None = None
    selected_works: list[AnnotatedArtwork] | None = None
    error: str | None = None
    last_updated: str | None = None
    generation: int = Field(default=0, exclude=True)

    @property
    def is_complete(self) -> bool:
        return self.processing_stage == ProcessingStage.COMPLETE

    def merged(self, patch: dict[str, Any]) -> "QueryState":
        """Return a copy with ``patch`` applied and ``last_updated`` refreshed."""
        unknown = set(patch) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown query state fields: {sorted(unknown)}")
        data = self.model_dump()
        data["generation"] = self.generation
        data.update(patch)
        data["last_updated"] = utc_now_iso()
        return QueryState.model_validate(data)

    def status_payload(self) -> dict[str, Any]:
        return {
            "state": self.processing_stage.value,
            "lastUpdated": self.last_updated,
            "query": self.current_query,
            "error": self.error,
        }
