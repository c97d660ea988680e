"""FastAPI app serving published feeds to the commerce platform."""

import asyncio
import hmac
from contextlib import asynccontextmanager
from typing import AsyncContextManager, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse

from catalog_feeds.feeds.errors import FeedGenerationError, UnknownFeedTypeError
from catalog_feeds.feeds.manager import FeedManager


def create_feed_app(
    manager: FeedManager,
    scheduler_poll_interval: Optional[float] = None,
    resources: Optional[AsyncContextManager] = None
) -> FastAPI:
    """
    Create the feed data app.

    ``GET /feeds/{data_stream_name}?secret=...`` streams the published file.
    A missing file answers 404 and starts a regeneration, so the next fetch
    by the platform finds it.

    Args:
        manager: Registry of the served feeds
        scheduler_poll_interval: When set, the manager's scheduler runs in the
            background for the lifetime of the app
        resources: Entered for the lifetime of the app, e.g. the API
            client used for upload requests

    Returns:
        FastAPI application
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stop = asyncio.Event()
        task = None
        if resources is not None:
            await resources.__aenter__()
        if scheduler_poll_interval is not None and manager.scheduler is not None:
            manager.schedule_all()
            task = asyncio.create_task(manager.scheduler.run_forever(scheduler_poll_interval, stop))
        try:
            yield
        finally:
            stop.set()
            if task is not None:
                await task
            manager.close()
            if resources is not None:
                await resources.__aexit__(None, None, None)

    app = FastAPI(title="Catalog feeds", lifespan=lifespan)

    @app.get("/feeds/{data_stream_name}")
    async def get_feed(data_stream_name: str, secret: str = ""):
        """Published feed file as a CSV attachment."""
        try:
            feed = manager.get_feed_instance(data_stream_name)
        except UnknownFeedTypeError:
            raise HTTPException(status_code=404, detail="Unknown feed")

        if not hmac.compare_digest(secret.encode(), feed.get_feed_secret().encode()):
            manager.logger.log("feed_request_rejected", feed=data_stream_name, reason="invalid secret")
            raise HTTPException(status_code=401, detail="Invalid secret")

        published = feed.get_published_file()
        if published is None:
            try:
                started = feed.regenerate_feed()
            except FeedGenerationError:
                started = False
            manager.logger.log("feed_request_missing", feed=data_stream_name, regeneration_started=started)
            raise HTTPException(status_code=404, detail="Feed has not been generated yet")

        manager.logger.log("feed_requested", feed=data_stream_name, size_bytes=published.size_bytes)
        return FileResponse(
            published.path,
            media_type="text/csv; charset=utf-8",
            filename=published.path.name,
            headers={"Cache-Control": "must-revalidate", "Expires": "0"}
        )

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "feeds": [feed_type.data_stream_name for feed_type in manager.get_feed_types()]}

    return app
