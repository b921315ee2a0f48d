"""Christian Art Explorer

Simple CLI for running a narrative query through the artwork pipeline.
"""

import argparse
import asyncio

from app.agents.orchestrator import ArtPipelineOrchestrator
from app.config import settings
from app.llm_client import TextCompletionClient
from app.models.events import EventType, PushEvent
from app.services.gateway import SessionGateway
from app.services.notifier import NotificationHub
from app.services.result_cache import ResultCache
from app.services.state_store import QueryStateStore
from app.tools.image_search import ImageResolver

CLI_SESSION = f"{settings.agent_name}/local"


class ConsoleChannel:
    """Prints push events as they arrive."""

    async def send(self, event: PushEvent) -> None:
        data = event.data
        if event.event == EventType.STATE:
            print(f"[~] Stage: {data.get('processingStage')}")
            if data.get("error"):
                print(f"[!] Error: {data['error']}")
        elif event.event == EventType.RESULTS:
            print_results(data.get("query"), data.get("artworks", []))


def print_results(query: str | None, artworks: list[dict]) -> None:
    print(f"\n{'='*50}")
    print(f"ARTWORKS FOR: {query}")
    print(f"{'='*50}")
    for i, artwork in enumerate(artworks, 1):
        print(f"\n{i}. {artwork.get('title')} - {artwork.get('artist')} ({artwork.get('year')})")
        print(f"   {artwork.get('period')} | {artwork.get('location')}")
        print(f"   Image: {artwork.get('imageUrl')}")
        annotations = artwork.get("annotations", {})
        print(f"   Context: {annotations.get('historicalContext', '')[:200]}")
        for detail in annotations.get("interestingDetails", []):
            print(f"     - {detail}")


async def run_query(query: str, model: str | None = None, use_cache: bool = True):
    """Run the pipeline for one query and print progress."""
    print(f"Narrative query: {query}")
    print("-" * 50)

    store = QueryStateStore(NotificationHub(), persist_dir="")
    cache = ResultCache(enabled=use_cache)
    orchestrator = ArtPipelineOrchestrator(
        store,
        completion=TextCompletionClient(model=model),
        image_resolver=ImageResolver(),
        cache=cache,
    )
    gateway = SessionGateway(store, orchestrator, cache)

    await gateway.subscribe(CLI_SESSION, ConsoleChannel())
    try:
        accepted = await gateway.submit(CLI_SESSION, query)
        if accepted.cached:
            print("[*] Served from cache")
        await gateway.wait_idle()
    finally:
        await gateway.shutdown()


def main():
    parser = argparse.ArgumentParser(description="Christian Art Explorer")
    parser.add_argument("--query", "-q", required=True, help="Biblical narrative, e.g. 'The Last Supper'")
    parser.add_argument("--model", "-m", help="Model to use (default: from config)")
    parser.add_argument("--no-cache", action="store_true", help="Skip the result cache")

    args = parser.parse_args()

    asyncio.run(run_query(args.query, args.model, use_cache=not args.no_cache))


if __name__ == "__main__":
    main()
