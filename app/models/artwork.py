from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ANNOTATION_UNAVAILABLE = "Information could not be generated at this time."


class CamelModel(BaseModel):
    """Base model that serializes with the camelCase keys clients expect."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ArtworkCandidate(CamelModel):
    id: str
    title: str
    artist: str
    year: int = 0
    period: str = "Unknown"
    location: str = "Unknown"
    relevance_score: float | None = None


class ArtworkWithImage(ArtworkCandidate):
    image_url: str = Field(min_length=1)


class ArtworkAnnotations(CamelModel):
    historical_context: str = ANNOTATION_UNAVAILABLE
    artistic_style: str = ANNOTATION_UNAVAILABLE
    biblical_narrative: str = ANNOTATION_UNAVAILABLE
    interesting_details: list[str] = Field(default_factory=lambda: [ANNOTATION_UNAVAILABLE])
    unique_interpretation: str = ANNOTATION_UNAVAILABLE

    @classmethod
    def unavailable(cls) -> "ArtworkAnnotations":
        return cls()


class AnnotatedArtwork(ArtworkWithImage):
    annotations: ArtworkAnnotations
