# backend/socialchat/main.py
"""
Application entry point.

The presence registry, room registry, media client and messaging coordinator
are built once per process in the lifespan handler and kept on ``app.state``.
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from .core.config import Settings, settings as default_settings
from .core.exceptions import DomainException
from .database import Base, SessionLocal
from .routes.v1 import (
    conversations as conversations_v1,
    follows as follows_v1,
    notifications as notifications_v1,
    prometheus as prometheus_v1,
    realtime as realtime_v1,
)
from .services.attachment_service import AttachmentService, MediaStorage, build_storage_client
from .services.messaging.coordinator import MessagingCoordinator
from .services.messaging.presence import PresenceRegistry
from .services.messaging.rooms import RoomRegistry

# Configure logging
logging.basicConfig(
    level=getattr(logging, default_settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

API_TITLE = "SocialChat Messaging API"
API_VERSION = "1.0.0"


def create_app(
    session_factory: Optional[sessionmaker] = None,
    storage: Optional[MediaStorage] = None,
    config: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        session_factory: Sessions for the coordinator's units of work
        storage: Media collaborator override (defaults to R2 or the null client)
        config: Settings override
    """
    config = config or default_settings
    factory = session_factory or SessionLocal

    @asynccontextmanager
    async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(f"{API_TITLE} starting up (environment={config.environment})")
        Base.metadata.create_all(bind=factory.kw["bind"])

        attachments = AttachmentService(storage or build_storage_client(config), config)
        app.state.presence = PresenceRegistry()
        app.state.rooms = RoomRegistry()
        app.state.attachments = attachments
        app.state.coordinator = MessagingCoordinator(
            presence=app.state.presence,
            rooms=app.state.rooms,
            attachments=attachments,
            session_factory=factory,
        )
        yield
        logger.info(f"{API_TITLE} shutting down ({len(app.state.presence)} users online)")

    app = FastAPI(title=API_TITLE, version=API_VERSION, lifespan=app_lifespan)

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        http_exc = exc.to_http_exception()
        return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "HEAD", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(conversations_v1.router, prefix="/conversations")
    api_v1.include_router(notifications_v1.router, prefix="/notifications")
    api_v1.include_router(follows_v1.router, prefix="/follow-events")
    api_v1.include_router(realtime_v1.router)
    app.include_router(api_v1)
    app.include_router(prometheus_v1.router)
    return app


app = create_app()
