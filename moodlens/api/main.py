import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from moodlens.api.dependencies import build_services
from moodlens.api.models import ErrorDetail, ErrorResponse
from moodlens.api.routes.analyze import router as analyze_router
from moodlens.config import settings
from moodlens.errors import MoodLensError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    services = await build_services(settings)
    app.state.services = services
    try:
        yield
    finally:
        await services.close()


app = FastAPI(
    title="MoodLens API",
    description="Segment-parallel mood analysis of YouTube videos",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.frontend_url,
        "http://localhost:8501",
    ],
    allow_origin_regex=r"http://localhost:\d+",
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(analyze_router)


@app.exception_handler(MoodLensError)
async def moodlens_error_handler(request: Request, exc: MoodLensError) -> JSONResponse:
    status = exc.status_code
    if status >= 500:
        logger.error("HTTP %d %s: %s - %s %s", status, exc.code, exc.message, request.method, request.url.path)
    else:
        logger.warning("HTTP %d %s: %s - %s %s", status, exc.code, exc.message, request.method, request.url.path)

    body = ErrorResponse(
        error=ErrorDetail(
            message=exc.message,
            code=exc.code,
            status_code=status,
            timestamp=datetime.now(UTC).isoformat(),
            path=request.url.path,
            method=request.method,
        )
    )
    return JSONResponse(status_code=status, content=body.model_dump())


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


def run() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
