"""Failure taxonomy for the artwork pipeline.

Only ``ResearchFailure`` ends a run in the ``error`` stage. Image and
annotation failures are recovered per item with placeholder content, and
cache failures are logged and ignored.
"""
from __future__ import annotations


class PipelineError(Exception):
    """Base class for pipeline failures."""


class ExtractionError(PipelineError):
    """Generated text held no parseable JSON block of the expected shape."""


class ResearchFailure(PipelineError):
    """The research stage could not produce any artwork candidates."""


class ImageResolutionFailure(PipelineError):
    """No image could be resolved for one artwork."""


class AnnotationFailure(PipelineError):
    """Annotations could not be generated for one artwork."""


class CacheUnavailable(PipelineError):
    """The result cache could not be read or written."""


class SupersededRunError(PipelineError):
    """A pipeline run tried to write state after a newer submission replaced it."""

    def __init__(self, session_id: str, generation: int, current: int):
        super().__init__(
            f"Run generation {generation} for session {session_id} superseded by {current}"
        )
        self.session_id = session_id
        self.generation = generation
        self.current = current
