"""
GET /status
Reports what the build consumer is doing and its job counters.
"""
from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/status")
async def get_status(request: Request):
    consumer = getattr(request.app.state, "consumer", None)
    if consumer is None:
        return {"status": "not_started"}

    thread = getattr(request.app.state, "consumer_thread", None)
    running = thread is not None and thread.is_alive()
    return {"status": "running" if running else "stopped", **consumer.get_stats()}
