from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from hashlib import sha256
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from app.config import settings
from app.errors import CacheUnavailable
from app.models.artwork import AnnotatedArtwork
from app.services import logger as log_service

CACHE_VERSION = 1


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_query(query: str, *, normalize: bool | None = None) -> str:
    """Build the cache key for a query: trimmed, whitespace collapsed, lowercased."""
    if normalize is None:
        normalize = settings.cache_key_normalize
    if not normalize:
        return query
    return " ".join(query.split()).lower()


class ResultCache:
    """File-backed cache of completed result sets keyed by normalized query.

    Entries are written whole and replaced whole; an expired entry reads as a
    miss. I/O failures surface as ``CacheUnavailable``.
    """

    def __init__(
        self,
        cache_dir: str | None = None,
        *,
        ttl_days: int | None = None,
        enabled: bool | None = None,
    ):
        self.cache_dir = Path(cache_dir or settings.result_cache_dir)
        self.ttl = timedelta(days=max(int(ttl_days if ttl_days is not None else settings.result_cache_ttl_days), 0))
        self.enabled = settings.result_cache_enabled if enabled is None else bool(enabled)

    def path_for(self, query_key: str) -> Path:
        digest = sha256(f"v{CACHE_VERSION}|query:{query_key}".encode("utf-8")).hexdigest()
        return self.cache_dir / f"{digest}.json"

    async def lookup(self, query_key: str) -> list[AnnotatedArtwork] | None:
        if not self.enabled:
            return None
        return await asyncio.to_thread(self._load, query_key)

    async def store(
        self,
        query_key: str,
        artworks: list[AnnotatedArtwork],
        ttl: timedelta | None = None,
    ) -> None:
        if not self.enabled or not artworks:
            return
        await asyncio.to_thread(self._save, query_key, artworks, ttl or self.ttl)

    def _load(self, query_key: str) -> list[AnnotatedArtwork] | None:
        path = self.path_for(query_key)
        try:
            if not path.exists():
                return None
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CacheUnavailable(f"Failed to read cache entry for '{query_key}': {exc}") from exc

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            log_service.log_cache_operation("lookup", query_key, "corrupt")
            return None

        expires_at = _parse_expiry(payload.get("expires_at"))
        if expires_at is None or _utc_now() >= expires_at:
            log_service.log_cache_operation("lookup", query_key, "expired")
            return None

        raw_artworks = payload.get("artworks")
        if not isinstance(raw_artworks, list) or not raw_artworks:
            return None
        try:
            artworks = [AnnotatedArtwork.model_validate(item) for item in raw_artworks]
        except ValidationError:
            log_service.log_cache_operation("lookup", query_key, "corrupt")
            return None

        log_service.log_cache_operation("lookup", query_key, "hit")
        return artworks

    def _save(self, query_key: str, artworks: list[AnnotatedArtwork], ttl: timedelta) -> None:
        path = self.path_for(query_key)
        payload: dict[str, Any] = {
            "version": CACHE_VERSION,
            "query_key": query_key,
            "expires_at": (_utc_now() + ttl).isoformat(),
            "artworks": [artwork.to_wire() for artwork in artworks],
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(payload, ensure_ascii=True), encoding="utf-8")
            tmp_path.replace(path)
        except OSError as exc:
            raise CacheUnavailable(f"Failed to write cache entry for '{query_key}': {exc}") from exc
        log_service.log_cache_operation("store", query_key, "stored")


def _parse_expiry(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
