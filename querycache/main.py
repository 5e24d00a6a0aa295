"""
Query Cache - admin FastAPI application
Exposes health, statistics, entry snapshots and invalidation for one client
"""
from typing import Any, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from querycache import __version__, configure_logging
from querycache.cache import QueryClient, UnknownKeyError

APP_NAME = "Query Cache"


class InvalidateRequest(BaseModel):
    """Key descriptor to invalidate; prefix=True matches every key under it."""
    key: List[Any]
    prefix: bool = False


class RefetchRequest(BaseModel):
    key: List[Any]


def create_app(client: Optional[QueryClient] = None) -> FastAPI:
    """
    Build the admin app around a query client.

    Args:
        client: The application's client (a fresh one if omitted)
    """
    app = FastAPI(
        title=APP_NAME,
        description="Inspect and control the in-process query cache",
        version=__version__,
    )
    app.state.query_client = client or QueryClient()

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "ok"}

    @app.get("/version")
    def version_info():
        """Version information endpoint."""
        return {
            "name": APP_NAME,
            "version": __version__,
            "full": f"{APP_NAME} {__version__}",
        }

    @app.get("/cache/stats")
    def cache_stats():
        """Get cache statistics."""
        return app.state.query_client.get_stats()

    @app.get("/cache/entries")
    def cache_entries():
        """Snapshot of every entry."""
        snapshots = app.state.query_client.store.snapshots()
        return {"entries": [snapshot.to_dict() for snapshot in snapshots]}

    @app.post("/cache/invalidate")
    async def invalidate(request: InvalidateRequest):
        """Invalidate one key, or every key under a prefix."""
        client = app.state.query_client
        if request.prefix:
            count = client.invalidate_matching(request.key)
        else:
            count = 1 if client.invalidate(request.key) else 0
        return {"invalidated": count}

    @app.post("/cache/refetch")
    async def refetch(request: RefetchRequest):
        """Fetch a key now and return the outcome."""
        client = app.state.query_client
        try:
            snapshot = await client.refetch_now(request.key)
        except UnknownKeyError:
            raise HTTPException(status_code=404, detail="Unknown cache key")
        return snapshot.to_dict()

    return app


configure_logging()
app = create_app()
