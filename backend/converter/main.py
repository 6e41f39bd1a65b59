"""FastAPI application: MP4 <-> WebM conversion API."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from converter.api.routes import router
from converter.config import CORS_ORIGINS, logger as config_logger
from converter.conversion.service import shutdown_conversion_service
from converter.db import init_db

logging.getLogger("uvicorn").setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    config_logger.info("Converter API started")
    yield
    # Releases the held output and stops the transcode worker
    shutdown_conversion_service()
    config_logger.info("Converter API shutting down")


app = FastAPI(
    title="MP4/WebM Converter API",
    description=(
        "Upload one MP4 or WebM file to POST /api/convert and it is transcoded to the other "
        "container with ffmpeg. Poll GET /api/status for progress, then fetch GET /api/download."
    ),
    version="1.0.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
    expose_headers=["X-Session-ID", "Content-Disposition"],
)


@app.middleware("http")
async def echo_session_id(request: Request, call_next):
    """Return a generated X-Session-ID so the client can reuse it."""
    response = await call_next(request)
    if hasattr(request.state, "session_id"):
        response.headers["X-Session-ID"] = request.state.session_id
    return response


app.include_router(router)


if __name__ == "__main__":
    import uvicorn
    from converter.config import HOST, PORT
    uvicorn.run("converter.main:app", host=HOST, port=PORT, reload=True)
