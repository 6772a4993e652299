import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import StreamingResponse
from story_adventure.core.config import settings
from story_adventure.database import init_db
from story_adventure.services.sse_service import redis_client, sse_generator
from story_adventure.api.v1.endpoints import story
from story_adventure.scheduler import scheduler, setup_scheduler

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handles application startup and shutdown events.
    """
    # Startup
    logging.basicConfig(level=settings.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    await init_db()
    await redis_client.connect()
    scheduler_enabled = setup_scheduler()
    if scheduler_enabled:
        scheduler.start()

    yield

    # Shutdown
    await redis_client.close()
    if scheduler_enabled:
        scheduler.shutdown()

app = FastAPI(title="Story Adventure", lifespan=lifespan)

@app.get("/events/{key}")
async def sse_events(request: Request, key: str):
    """
    Endpoint for Server-Sent Events (SSE) to stream AI extension progress.
    """
    return StreamingResponse(sse_generator(key), media_type="text/event-stream")

# Include API routers
app.include_router(story.router, prefix="/api/v1", tags=["story"])
