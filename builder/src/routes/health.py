from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])

@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "launchpad-builder"}

@router.get("/health/queue")
async def queue_health_check(request: Request):
    queue = request.app.state.queue
    try:
        pending = await queue.length()
        processing = await queue.processing()
    except Exception as e:
        return {"status": "unhealthy", "queue": "disconnected", "error": str(e)}

    worker = getattr(request.app.state, "worker", None)
    current = worker.current.job.build_id if worker and worker.current else None
    return {
        "status": "healthy",
        "queue": "connected",
        "pending": pending,
        "processing": processing,
        "current_build": current,
    }
