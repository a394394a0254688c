"""Application factory: builds one node's services and its FastAPI app."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .discovery import DiscoveryEngine
from .network import canonical_address, get_hostname, get_local_address
from .peers import PeerRegistry
from .pending import PendingQueue
from .relay import SignalingRelay
from .routes import api
from .sessions import ClientRegistry


logger = logging.getLogger(__name__)


class Node:
    """Everything one running node owns, wired together explicitly."""

    def __init__(self, settings: Settings, local_address: Optional[str] = None) -> None:
        self.settings = settings
        self.local_address = canonical_address(
            local_address or settings.advertised_address or get_local_address()
        )
        self.display_name = settings.display_name or get_hostname()
        self.http = httpx.AsyncClient()
        self.peers = PeerRegistry()
        self.sessions = ClientRegistry()
        self.pending = PendingQueue(settings.max_pending_per_address)
        self.discovery = DiscoveryEngine(
            settings, self.local_address, self.peers, self.display_name, http=self.http
        )
        self.relay = SignalingRelay(
            settings, self.local_address, self.peers, self.sessions, self.pending, http=self.http
        )

    async def start(self) -> None:
        logger.info("PeerDrop node %s on port %d", self.local_address, self.settings.control_port)
        if self.settings.discovery_enabled:
            await self.discovery.start()

    async def stop(self) -> None:
        await self.discovery.stop()
        await self.relay.join()
        await self.http.aclose()


async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(
        status_code=400, content={"success": False, "error": "Invalid message format"}
    )


def create_app(settings: Optional[Settings] = None, local_address: Optional[str] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    node = Node(settings, local_address)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await node.start()
        try:
            yield
        finally:
            await node.stop()

    app = FastAPI(title="PeerDrop Node", lifespan=lifespan)
    app.state.node = node
    # the browser UI is served from its own origin
    app.add_middleware(
        CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"]
    )
    app.add_exception_handler(RequestValidationError, _invalid_request)
    app.include_router(api.router)
    return app
