from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from app.models.artwork import CamelModel


# --- Requests ---


class ClientMessage(BaseModel):
    type: str
    query: str | None = None


# --- Responses ---


class QueryAcceptedResponse(CamelModel):
    message: str
    query_id: str
    cached: bool | None = None


class StatusResponse(CamelModel):
    state: str
    last_updated: str | None = None
    query: str | None = None
    error: str | None = None


class ResultsResponse(BaseModel):
    query: str | None
    artworks: list[dict[str, Any]]


class NotReadyResponse(BaseModel):
    message: str = "Results not ready yet"
    state: str
    error: str | None = None


class ServiceInfoResponse(BaseModel):
    message: str
    endpoints: list[str]
