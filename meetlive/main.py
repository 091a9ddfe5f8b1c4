import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from meetlive.core.db import init_db
from meetlive.core.logging import setup_logging
from meetlive.core.settings import get_settings
from meetlive.routers import meeting_ws

# Initialize
settings = get_settings()
logger = setup_logging()

# Create app
app = FastAPI(
    title=settings.app_name, version="1.0.0", description="Live meeting transcription and assistant"
)


# Request logging middleware with timing
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming HTTP requests with timing information."""
    start_time = time.perf_counter()

    response = await call_next(request)

    duration_ms = (time.perf_counter() - start_time) * 1000
    response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

    method = request.method
    path = request.url.path
    time_str = f"{duration_ms:.2f}ms"
    if duration_ms < 500:
        logger.info(f"<<< {method} {path} - {response.status_code} [{time_str}]")
    else:
        logger.warning(f"<<< {method} {path} - {response.status_code} [{time_str}] (slow)")

    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(meeting_ws.router, prefix="/api")


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    logger.info("Starting up...")
    init_db()
    logger.info("Database initialized")


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": settings.app_name}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
