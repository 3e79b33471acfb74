import uvicorn
import time
import logging
import threading
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from build_worker.api.status import router as status_router
from build_worker.core.config import LOG_LEVEL, validate_config
from build_worker.utils.logging_config import setup_logging
from build_worker.worker import create_consumer

# Initialize enhanced logging
setup_logging(level=getattr(logging, LOG_LEVEL, logging.INFO))
logger = logging.getLogger("main")

# Seconds to wait for an in-flight build when the app shuts down
_SHUTDOWN_JOIN_SECONDS = 30


# ---------------------------------------------------------------------------
# Lifespan: the build consumer runs on a background thread
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.consumer = None
    app.state.consumer_thread = None

    missing = validate_config()
    if missing:
        logger.error("Missing required configuration: %s; consumer not started", ", ".join(missing))
        yield
        return

    consumer = create_consumer()
    thread = threading.Thread(target=consumer.run_forever, name="build-consumer", daemon=True)
    app.state.consumer = consumer
    app.state.consumer_thread = thread
    thread.start()
    logger.info("Build consumer started")

    yield

    consumer.stop()
    thread.join(timeout=_SHUTDOWN_JOIN_SECONDS)
    if thread.is_alive():
        logger.warning(
            "Build consumer still busy with job %s at shutdown; its container may need manual cleanup",
            consumer.current_job_id,
        )


app = FastAPI(title="Build Worker", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Logging Middleware
# ---------------------------------------------------------------------------
class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        try:
            response = await call_next(request)
            process_time = (time.time() - start_time) * 1000
            logger.debug(
                f"{request.method} {request.url.path} - "
                f"Status: {response.status_code} - "
                f"Time: {process_time:.2f}ms"
            )
            return response
        except Exception as e:
            logger.error(f"Request failed: {request.method} {request.url.path} - Error: {str(e)}")
            raise e

app.add_middleware(LoggingMiddleware)


# Health endpoint
@app.get("/health")
async def health_check():
    thread = getattr(app.state, "consumer_thread", None)
    return {"status": "ok", "consumer_alive": bool(thread and thread.is_alive())}

# Register routers
app.include_router(status_router, tags=["Worker"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000)
