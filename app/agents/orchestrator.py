from __future__ import annotations

import asyncio
import re
import time
from typing import Any

from app.config import settings
from app.errors import (
    AnnotationFailure,
    ImageResolutionFailure,
    ResearchFailure,
    SupersededRunError,
)
from app.llm_client import TextCompletionClient
from app.models.artwork import (
    ANNOTATION_UNAVAILABLE,
    AnnotatedArtwork,
    ArtworkAnnotations,
    ArtworkCandidate,
    ArtworkWithImage,
)
from app.models.state import ProcessingStage
from app.services import logger as log_service
from app.services.extraction import extract
from app.services.prompt_store import render_prompt
from app.services.result_cache import ResultCache, normalize_query
from app.services.state_store import QueryStateStore
from app.tools.image_search import ImageResolver, build_search_phrase, placeholder_image_url

RESEARCH_FAILED_MESSAGE = "Failed to research artworks for the biblical narrative"

_YEAR_PATTERN = re.compile(r"-?\d{1,4}")


def _coerce_year(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value == value and abs(value) < 10_000 else 0
    if isinstance(value, str):
        match = _YEAR_PATTERN.search(value)
        if match:
            return int(match.group(0))
    return 0


def _text_or(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def build_candidates(items: list[dict[str, Any]], *, run_stamp: int | None = None) -> list[ArtworkCandidate]:
    """Turn extracted research items into candidates with generated ids and field defaults."""
    stamp = run_stamp if run_stamp is not None else int(time.time() * 1000)
    candidates: list[ArtworkCandidate] = []
    for index, item in enumerate(items):
        candidates.append(
            ArtworkCandidate(
                id=f"artwork-{stamp}-{index}",
                title=_text_or(item.get("title"), "Untitled"),
                artist=_text_or(item.get("artist"), "Unknown artist"),
                year=_coerce_year(item.get("year")),
                period=_text_or(item.get("period"), "Unknown"),
                location=_text_or(item.get("location"), "Unknown"),
            )
        )
    return candidates


def build_annotations(payload: dict[str, Any]) -> ArtworkAnnotations:
    """Map an extracted annotation object onto the five fields, each with its own fallback."""
    raw_details = payload.get("interestingDetails")
    if isinstance(raw_details, str):
        raw_details = [raw_details]
    if not isinstance(raw_details, list):
        raw_details = []
    details = [d.strip() for d in raw_details if isinstance(d, str) and d.strip()]

    return ArtworkAnnotations(
        historical_context=_text_or(payload.get("historicalContext"), ANNOTATION_UNAVAILABLE),
        artistic_style=_text_or(payload.get("artisticStyle"), ANNOTATION_UNAVAILABLE),
        biblical_narrative=_text_or(payload.get("biblicalNarrative"), ANNOTATION_UNAVAILABLE),
        interesting_details=details or [ANNOTATION_UNAVAILABLE],
        unique_interpretation=_text_or(payload.get("uniqueInterpretation"), ANNOTATION_UNAVAILABLE),
    )


class ArtPipelineOrchestrator:
    """Drives one query through research, image resolution, annotation and completion.

    Flow:
      1. Research: ask the completion model for candidate artworks (fatal on failure)
      2. Fetch: resolve an image per candidate, one at a time (placeholder on failure)
      3. Annotate: generate annotations per artwork, bounded parallelism (placeholder on failure)
      4. Complete: publish the ordered result set and write it to the result cache

    Every stage transition is written through the state store tagged with the
    run's generation; once a newer submission takes over the session the run
    stops at its next write or checkpoint.
    """

    def __init__(
        self,
        store: QueryStateStore,
        *,
        completion: TextCompletionClient | None = None,
        image_resolver: ImageResolver | None = None,
        cache: ResultCache | None = None,
        artwork_count: int | None = None,
        annotation_max_parallel: int | None = None,
        completion_timeout: float | None = None,
        image_timeout: float | None = None,
    ):
        self.store = store
        self.completion = completion or TextCompletionClient()
        self.images = image_resolver or ImageResolver()
        self.cache = cache
        self.artwork_count = max(int(artwork_count or settings.research_artwork_count), 1)
        self.annotation_max_parallel = max(
            int(annotation_max_parallel or settings.annotation_max_parallel), 1
        )
        self.completion_timeout = float(completion_timeout or settings.completion_timeout_seconds)
        self.image_timeout = float(image_timeout or settings.image_timeout_seconds)

    async def run(self, session_id: str, query: str, *, generation: int | None = None) -> None:
        if generation is None:
            generation = self.store.peek(session_id).generation
        started = time.monotonic()
        try:
            candidates = await self.research(session_id, query, generation)
            with_images = await self.fetch_images(session_id, candidates, generation)
            annotated = await self.annotate(session_id, with_images, query, generation)
            await self.complete(session_id, query, annotated, generation)
        except SupersededRunError as e:
            log_service.log_pipeline_step(session_id, "run", "superseded", {"detail": str(e)})
            return
        except ResearchFailure as e:
            await self._fail(session_id, str(e), generation)
            return
        except Exception as e:
            log_service.logger.exception(f"Unexpected pipeline failure for session {session_id}")
            await self._fail(session_id, f"Unexpected pipeline error: {e}", generation)
            return

        log_service.log_pipeline_step(
            session_id,
            "run",
            "completed",
            {"runtime_ms": int((time.monotonic() - started) * 1000), "artworks": len(annotated)},
        )

    async def research(self, session_id: str, query: str, generation: int) -> list[ArtworkCandidate]:
        await self._transition(session_id, ProcessingStage.RESEARCHING, generation)

        try:
            text = await asyncio.wait_for(
                self.completion.complete(
                    render_prompt("research.user_prompt", count=self.artwork_count, narrative=query),
                    system=render_prompt("research.system_prompt"),
                    caller="research",
                ),
                timeout=self.completion_timeout,
            )
            items = extract(text, "array")
        except Exception as e:
            log_service.log_pipeline_step(
                session_id, "researching", "failed", {"error": str(e) or type(e).__name__}
            )
            raise ResearchFailure(RESEARCH_FAILED_MESSAGE) from e

        candidates = build_candidates(items)
        if not candidates:
            raise ResearchFailure(RESEARCH_FAILED_MESSAGE)

        log_service.log_pipeline_step(
            session_id, "researching", "completed", {"candidates": len(candidates)}
        )
        return candidates

    async def fetch_images(
        self,
        session_id: str,
        candidates: list[ArtworkCandidate],
        generation: int,
    ) -> list[ArtworkWithImage]:
        await self._transition(
            session_id,
            ProcessingStage.FETCHING,
            generation,
            search_results=candidates,
        )

        # Serial on purpose: the resolver shares one browser session.
        results: list[ArtworkWithImage] = []
        for candidate in candidates:
            self._ensure_current(session_id, generation)
            phrase = build_search_phrase(candidate.artist, candidate.title)
            try:
                image_url = await asyncio.wait_for(
                    self.images.resolve(phrase), timeout=self.image_timeout
                )
                if not image_url:
                    raise ImageResolutionFailure(f"No image found for '{phrase}'")
            except Exception as e:
                log_service.log_pipeline_step(
                    session_id,
                    "fetching",
                    "degraded",
                    {"artwork_id": candidate.id, "error": str(e) or type(e).__name__},
                )
                image_url = placeholder_image_url(candidate.title)
            results.append(ArtworkWithImage(**candidate.model_dump(), image_url=image_url))
        return results

    async def annotate(
        self,
        session_id: str,
        artworks: list[ArtworkWithImage],
        narrative: str,
        generation: int,
    ) -> list[AnnotatedArtwork]:
        await self._transition(session_id, ProcessingStage.ANNOTATING, generation)
        semaphore = asyncio.Semaphore(self.annotation_max_parallel)

        async def annotate_one(artwork: ArtworkWithImage) -> AnnotatedArtwork:
            async with semaphore:
                self._ensure_current(session_id, generation)
                try:
                    annotations = await self._annotate_artwork(artwork, narrative)
                except AnnotationFailure as e:
                    log_service.log_pipeline_step(
                        session_id,
                        "annotating",
                        "degraded",
                        {"artwork_id": artwork.id, "error": str(e)},
                    )
                    annotations = ArtworkAnnotations.unavailable()
                return AnnotatedArtwork(**artwork.model_dump(), annotations=annotations)

        outcomes = await asyncio.gather(
            *(annotate_one(artwork) for artwork in artworks),
            return_exceptions=True,
        )
        annotated: list[AnnotatedArtwork] = []
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
            annotated.append(outcome)
        return annotated

    async def _annotate_artwork(self, artwork: ArtworkWithImage, narrative: str) -> ArtworkAnnotations:
        try:
            prompt = render_prompt(
                "annotation.user_prompt",
                title=artwork.title,
                artist=artwork.artist,
                year=artwork.year,
                period=artwork.period,
                narrative=narrative,
            )
            text = await asyncio.wait_for(
                self.completion.complete(
                    prompt,
                    system=render_prompt("annotation.system_prompt"),
                    caller="annotation",
                ),
                timeout=self.completion_timeout,
            )
            payload = extract(text, "object")
        except Exception as e:
            raise AnnotationFailure(
                f"Failed to annotate '{artwork.title}': {str(e) or type(e).__name__}"
            ) from e
        return build_annotations(payload)

    async def complete(
        self,
        session_id: str,
        query: str,
        annotated: list[AnnotatedArtwork],
        generation: int,
    ) -> None:
        await self.store.set(
            session_id,
            {
                "processing_stage": ProcessingStage.COMPLETE,
                "selected_works": annotated,
                "error": None,
            },
            generation=generation,
        )
        log_service.log_pipeline_step(session_id, "complete", "completed", {"artworks": len(annotated)})

        if self.cache is None or not annotated:
            return
        try:
            await self.cache.store(normalize_query(query), annotated)
        except Exception as e:
            log_service.log_cache_operation("store", normalize_query(query), "failed", error=str(e))

    async def _transition(
        self,
        session_id: str,
        stage: ProcessingStage,
        generation: int,
        **fields: Any,
    ) -> None:
        await self.store.set(session_id, {"processing_stage": stage, **fields}, generation=generation)
        log_service.log_pipeline_step(session_id, stage.value, "started")

    def _ensure_current(self, session_id: str, generation: int) -> None:
        current = self.store.peek(session_id).generation
        if current != generation:
            raise SupersededRunError(session_id, generation, current)

    async def _fail(self, session_id: str, message: str, generation: int) -> None:
        try:
            await self.store.set(
                session_id,
                {"processing_stage": ProcessingStage.ERROR, "error": message},
                generation=generation,
            )
        except SupersededRunError as e:
            log_service.log_pipeline_step(session_id, "run", "superseded", {"detail": str(e)})
            return
        log_service.log_pipeline_step(session_id, "error", "failed", {"error": message})
