from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from app.errors import CacheUnavailable
from app.models.artwork import AnnotatedArtwork, ArtworkAnnotations
from app.services.result_cache import ResultCache, normalize_query


def _artwork(idx: int) -> AnnotatedArtwork:
    return AnnotatedArtwork(
        id=f"artwork-1-{idx}",
        title=f"Work {idx}",
        artist="Caravaggio",
        year=1600,
        period="Baroque",
        location="Rome",
        image_url=f"https://images.example.org/{idx}.jpg",
        annotations=ArtworkAnnotations(historical_context="Counter-Reformation"),
    )


def test_normalize_query_trims_collapses_and_lowercases():
    assert normalize_query("  The   Last\tSupper ", normalize=True) == "the last supper"
    assert normalize_query("  The Last Supper ", normalize=False) == "  The Last Supper "


@pytest.mark.asyncio
async def test_store_then_lookup_round_trips_artworks(cache):
    works = [_artwork(0), _artwork(1)]
    await cache.store("the calling of saint matthew", works)

    loaded = await cache.lookup("the calling of saint matthew")

    assert loaded == works
    assert loaded[0].annotations.historical_context == "Counter-Reformation"


@pytest.mark.asyncio
async def test_lookup_miss_returns_none(cache):
    assert await cache.lookup("never stored") is None


@pytest.mark.asyncio
async def test_expired_entry_reads_as_miss(cache):
    await cache.store("jonah", [_artwork(0)], ttl=timedelta(seconds=-1))
    assert await cache.lookup("jonah") is None


@pytest.mark.asyncio
async def test_corrupt_entry_reads_as_miss(cache):
    path = cache.path_for("noah")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("{not json", encoding="utf-8")
    assert await cache.lookup("noah") is None


@pytest.mark.asyncio
async def test_new_store_replaces_entry(cache):
    await cache.store("exodus", [_artwork(0)])
    await cache.store("exodus", [_artwork(1), _artwork(2)])

    loaded = await cache.lookup("exodus")
    assert [w.id for w in loaded] == ["artwork-1-1", "artwork-1-2"]


@pytest.mark.asyncio
async def test_entry_written_with_expiry(cache):
    await cache.store("ruth", [_artwork(0)])
    payload = json.loads(cache.path_for("ruth").read_text(encoding="utf-8"))
    expires_at = datetime.fromisoformat(payload["expires_at"])
    remaining = expires_at - datetime.now(timezone.utc)
    assert timedelta(days=29) < remaining <= timedelta(days=30)
    assert payload["artworks"][0]["imageUrl"] == "https://images.example.org/0.jpg"


@pytest.mark.asyncio
async def test_disabled_cache_never_hits(tmp_path):
    cache = ResultCache(str(tmp_path), enabled=False)
    await cache.store("esther", [_artwork(0)])
    assert await cache.lookup("esther") is None
    assert not list(tmp_path.iterdir())


@pytest.mark.asyncio
async def test_unwritable_directory_raises_cache_unavailable(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    cache = ResultCache(str(blocker / "nested"), enabled=True)

    with pytest.raises(CacheUnavailable):
        await cache.store("daniel", [_artwork(0)])
