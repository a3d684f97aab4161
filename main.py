from contextlib import asynccontextmanager
import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mailbridge.api.api import api_router
from mailbridge.api.errors import register_exception_handlers
from mailbridge.config import get_settings
from mailbridge.database import init_db
from mailbridge.logging_config import setup_logging
from mailbridge.services import history_service

settings = get_settings()
setup_logging(settings.LOG_LEVEL)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create database tables on startup; flush history writes on shutdown."""
    settings.warn_missing()
    init_db()
    logger.info("Database tables created/verified")
    yield
    logger.info("Shutting down, waiting for pending history writes...")
    if not history_service.wait_pending(timeout=30):
        logger.warning("Some history writes did not finish before shutdown")


app = FastAPI(
    title="Mail Bridge",
    description="Gmail-linked single and bulk email sending with history",
    version="1.0.0",
    lifespan=lifespan,
)

origins = [
    "http://localhost:3000",
    "https://localhost:3000",
]
if settings.FRONTEND_URL:
    origins.append(settings.FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["Origin", "Content-Length", "Content-Type", "Authorization"],
)

register_exception_handlers(app)
app.include_router(api_router)


@app.get("/health")
def health_check():
    return {"status": "OK"}


@app.get("/", include_in_schema=False)
def root():
    return health_check()


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=settings.PORT)
