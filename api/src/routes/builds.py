from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sse_starlette.sse import EventSourceResponse
from uuid import UUID
import json
import logging

from api.src.db.database import get_db
from api.src.models.schemas import BuildResponse, BuildStatusUpdate, LogChunk
from api.src.routes.errors import HANDLED_ERRORS, http_error
from api.src.services import build_service, events

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/builds", tags=["builds"])

@router.get("/{build_id}", response_model=BuildResponse)
async def get_build(build_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await build_service.get_build(db, build_id)
    except HANDLED_ERRORS as e:
        raise http_error(e)

@router.put("/{build_id}", response_model=BuildResponse)
async def update_build_status(build_id: UUID, body: BuildStatusUpdate, db: AsyncSession = Depends(get_db)):
    """
    Status callback from the build worker.

    A repeated status is a no-op, a backwards move is 409. On success the
    build is activated before the response is sent; activation problems go to
    the build's log and do not change this response.
    """
    try:
        return await build_service.update_build_status(db, build_id, body.status, body.artifact_id)
    except HANDLED_ERRORS as e:
        raise http_error(e)

@router.post("/{build_id}/logs")
async def append_logs(build_id: UUID, body: LogChunk, db: AsyncSession = Depends(get_db)):
    try:
        await build_service.append_logs(db, build_id, body.logs)
    except HANDLED_ERRORS as e:
        raise http_error(e)
    return {"success": True}

@router.get("/{build_id}/logs", response_class=PlainTextResponse)
async def get_logs(build_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await build_service.get_logs(db, build_id)
    except HANDLED_ERRORS as e:
        raise http_error(e)

@router.get("/{build_id}/events")
async def build_events(build_id: UUID, request: Request, db: AsyncSession = Depends(get_db)):
    """Live log chunks and status changes of one build (SSE)."""
    try:
        build = await build_service.get_build(db, build_id)
    except HANDLED_ERRORS as e:
        raise http_error(e)
    status = build.status

    async def event_generator():
        yield {"event": "status", "data": json.dumps({"build_id": str(build_id), "status": status})}
        if status in build_service.TERMINAL_STATUSES:
            return
        subscription = events.publisher.subscribe(events.build_channel(build_id))
        try:
            async for event in subscription:
                if await request.is_disconnected():
                    break
                yield {"event": event.get("type", "message"), "data": json.dumps(event)}
                if event.get("type") == "status" and event.get("status") in build_service.TERMINAL_STATUSES:
                    break
        finally:
            await subscription.aclose()
            logger.debug(f"Event stream for build {build_id} closed")

    return EventSourceResponse(event_generator())
