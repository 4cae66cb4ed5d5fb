"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Initialize shared resources (packet store, process logger, stream router)
- Start and stop the RTP listener with the app lifespan
- Register routes
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Sequence

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.asr.base import RecognitionBackend
from config import AppConfig
from observability.logger import EventLogger, make_logger
from routing.router import StreamRouter
from storage.packets import InMemoryPacketStore, PacketStore

from server.routes import register_routes
from server.rtp_ingress import RTPIngress


def create_app(
    config: AppConfig | None = None,
    store: PacketStore | None = None,
    log: EventLogger | None = None,
    recognizers: Sequence[RecognitionBackend] = (),
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with different configurations and stores
    - Environment-specific setup
    - ASGI server compatibility
    """
    config = config or AppConfig.load_from_env()
    log = log or make_logger(
        min_level=config.log_level,
        json_output=config.enable_json_logs,
        env=config.env,
    )
    store = store or InMemoryPacketStore()

    # One router per process; the HTTP side reads what it persists
    router = StreamRouter(
        store,
        log=log,
        recognizers=recognizers,
        locales=config.recognition_locales,
        queue_capacity=config.stream_queue_capacity,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        ingress: RTPIngress | None = None
        if config.rtp_port is not None:
            ingress = RTPIngress(
                router,
                call_id=config.rtp_call_id,
                channel_id=config.rtp_channel_id,
                log=log,
                capacity=config.stream_queue_capacity,
            )
            await ingress.start(config.rtp_host, config.rtp_port)
        app.state.rtp_ingress = ingress

        try:
            yield
        finally:
            if ingress is not None:
                await ingress.stop()
            await router.close()

    app = FastAPI(title="Voice Packet Pipeline API", lifespan=lifespan)

    app.state.config = config
    app.state.store = store
    app.state.router = router
    app.state.rtp_ingress = None
    app.state.log = log.bind(component="http")

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app
