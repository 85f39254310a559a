from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .chat import routers as chat_router
from .chat import socket as chat_socket
from .offers import routers as offer_router
from .presence import routers as presence_router
from .presence.tracker import PresenceHub

from .core.config import get_settings
from .core.errors import register_error_handlers
from .core.middleware import logging_middleware
from .delivery.events import EventBus
from .utils.logging_config import setup_logging


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)

    app = FastAPI(title="Skill Swap Messaging")
    app.include_router(chat_router.router, prefix="/chat", tags=["Chat"])
    app.include_router(chat_socket.router, prefix="/chat", tags=["Chat"])
    app.include_router(offer_router.router, prefix="/offers", tags=["Offers"])
    app.include_router(presence_router.router, prefix="/presence", tags=["Presence"])

    # In-process push channel and presence signalling, shared by all connections
    app.state.bus = EventBus()
    app.state.presence = PresenceHub()

    register_error_handlers(app)
    app.middleware("http")(logging_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app


app = create_app()
