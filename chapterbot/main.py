from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chapterbot.config import settings
from chapterbot.logging_config import get_logger, setup_logging
from chapterbot.routers import line_webhook
from chapterbot.services.agent import configure_ai_backend
from chapterbot.services.kv_store import get_kv_store

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="Chapter Bot API",
    description="LINE webhook and AI assistant for chapter management",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(line_webhook.router)


@app.on_event("startup")
async def configure_backends() -> None:
    get_kv_store()
    backend = configure_ai_backend()
    logger.info(
        "Backends configured",
        extra={"context": {"state_backend": settings.state_backend, "ai_backend": type(backend).__name__}},
    )


@app.get("/health")
async def health():
    return {"status": "ok"}
