from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from gait_recorder.api import endpoints
from gait_recorder.constants import MULTIPART_OVERHEAD_BYTES
from gait_recorder.core.config import settings
from gait_recorder.core.errors import register_exception_handlers
from gait_recorder.core.logger import get_logger
from gait_recorder.db.base import engine, Base
from gait_recorder.schemas.session import HealthResponse

logger = get_logger(__name__)

# Create DB tables
if settings.STORAGE_BACKEND == "sqlite":
    Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.PROJECT_NAME)

register_exception_handlers(app)


@app.middleware("http")
async def limit_upload_size(request: Request, call_next):
    # Reject oversized uploads from the declared length, before the body is spooled.
    content_length = request.headers.get("content-length")
    if request.method == "POST" and content_length and content_length.isdigit():
        if int(content_length) > settings.MAX_UPLOAD_BYTES + MULTIPART_OVERHEAD_BYTES:
            logger.info(f"Rejected {content_length} byte upload to {request.url.path}")
            return JSONResponse(
                status_code=413,
                content={
                    "error": "Video exceeds upload limit",
                    "details": {"maxBytes": settings.MAX_UPLOAD_BYTES},
                },
            )
    return await call_next(request)


# CORS wraps the size check so rejections still carry CORS headers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(endpoints.router)


@app.get("/api/health", response_model=HealthResponse)
def health_check() -> HealthResponse:
    return HealthResponse(timestamp=datetime.now(timezone.utc))


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Uploads directory: {settings.UPLOADS_DIR}, storage backend: {settings.STORAGE_BACKEND}")
    uvicorn.run("gait_recorder.main:app", host="0.0.0.0", port=8000, reload=True)
