from __future__ import annotations

from starlette.requests import HTTPConnection

from app.config import settings
from app.models.schemas import ServiceInfoResponse
from app.services.gateway import ENDPOINTS, SessionGateway


def get_gateway(connection: HTTPConnection) -> SessionGateway:
    """Return the gateway attached to the running app (HTTP or WebSocket)."""
    return connection.app.state.gateway


def session_key(agent: str, session_id: str) -> str:
    return f"{agent}/{session_id}"


def service_info() -> ServiceInfoResponse:
    return ServiceInfoResponse(message=settings.service_name, endpoints=list(ENDPOINTS))
