"""Primary FastAPI application for the MetroTex backend.

Relays chat messages to OpenRouter or Gemini (after checking the local
knowledge table) and image prompts to a Stable Horde style API, either
waiting for the finished image or handing the caller a status URL to poll.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings, mask_secret
from .database import create_tables
from .routers import chat, images, knowledge

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup."""
    create_tables()
    logger.info("SQLite tables created/verified")
    yield


settings = get_settings()

app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(knowledge.router)
app.include_router(chat.router)
app.include_router(images.router)


@app.get("/")
async def root():
    """Basic sanity check endpoint for the API root."""
    return {"message": "MetroTex AI Backend is running"}


@app.get("/health")
async def health_check():
    """Simple endpoint to confirm the service is running."""
    return {"status": "ok"}


@app.get("/config")
async def get_config(cfg: Settings = Depends(get_settings)):
    """Current configuration with secrets masked."""
    return {
        "chat": {
            "provider": cfg.chat.provider.value,
            "openrouter_models": list(cfg.chat.openrouter_models),
            "openrouter_api_key_masked": mask_secret(cfg.chat.openrouter_api_key),
            "gemini_model": cfg.chat.gemini_model,
            "gemini_api_key_masked": mask_secret(cfg.chat.gemini_api_key),
        },
        "images": {
            "base_url": cfg.horde.base_url,
            "api_key_masked": mask_secret(cfg.horde.api_key),
            "model_groups": [list(g) for g in cfg.horde.model_groups],
            "poll_interval": cfg.horde.poll_interval,
            "max_attempts": cfg.horde.max_attempts,
            "wait_for_result": cfg.horde.wait_for_result,
        },
    }
