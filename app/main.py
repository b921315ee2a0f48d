from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.deps import service_info
from app.api.routes import agents
from app.config import settings
from app.models.schemas import ServiceInfoResponse
from app.services.gateway import SessionGateway, build_gateway


def create_app(gateway: SessionGateway | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.gateway.shutdown()

    app = FastAPI(
        title="Christian Art Explorer",
        description="Annotated artworks for biblical narratives",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.gateway = gateway or build_gateway()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(agents.router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "service": "artexplorer"}

    @app.get("/", response_model=ServiceInfoResponse)
    async def root():
        return service_info()

    return app


app = create_app()
