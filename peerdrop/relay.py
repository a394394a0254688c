"""Signaling relay.

Envelopes from a local UI are delivered through the cheapest path that
works: straight to a local session, to the target node's ``/forward``
endpoint, or into the pending queue the target can poll when it can receive
from us but we cannot reach it.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

import httpx
from pydantic import ValidationError

from . import api_client
from .config import Settings
from .errors import MalformedMessage, NetworkUnreachable
from .models import (
    ClientMessage,
    EnvelopeType,
    PeerRecord,
    PendingMessage,
    SignalingEnvelope,
)
from .network import canonical_address, is_unreachable
from .peers import PeerRegistry
from .pending import PendingQueue
from .sessions import ClientRegistry, ClientSession


logger = logging.getLogger(__name__)


class Delivery(enum.Enum):
    LOCAL = "local"
    REMOTE = "remote"
    QUEUED = "queued"


Handler = Callable[[ClientSession, ClientMessage], Awaitable[None]]


def parse_client_message(raw) -> ClientMessage:
    """Decode one frame from a UI session."""
    try:
        data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        return ClientMessage.model_validate(data)
    except (ValueError, ValidationError) as e:
        raise MalformedMessage(f"bad client message: {e}") from e


class SignalingRelay:
    def __init__(
        self,
        settings: Settings,
        local_address: str,
        peers: PeerRegistry,
        sessions: ClientRegistry,
        pending: PendingQueue,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings
        self.local_address = canonical_address(local_address)
        self.peers = peers
        self.sessions = sessions
        self.pending = pending
        self.http = http or httpx.AsyncClient()
        self._tasks: Set[asyncio.Task] = set()
        self._handlers: Dict[str, Handler] = {
            "register": self._on_register,
            "ping": self._on_ping,
            "poll": self._on_poll,
            EnvelopeType.CONNECTION_REQUEST.value: self._on_connection_request,
            EnvelopeType.CONNECTION_ACCEPT.value: self._on_signal,
            EnvelopeType.CONNECTION_REJECT.value: self._on_signal,
            EnvelopeType.OFFER.value: self._on_signal,
            EnvelopeType.ANSWER.value: self._on_signal,
            EnvelopeType.ICE_CANDIDATE.value: self._on_signal,
        }

    # --- inbound from local sessions ---

    async def handle_raw(self, session: ClientSession, raw) -> None:
        """Handle one frame; malformed frames are logged and dropped."""
        try:
            message = parse_client_message(raw)
        except MalformedMessage as e:
            logger.warning("Dropping message from %s: %s", session.address, e)
            return
        await self.handle_message(session, message)

    async def handle_message(self, session: ClientSession, message: ClientMessage) -> None:
        handler = self._handlers.get(message.type)
        if handler is None:
            logger.info("Unknown message type from %s: %s", session.address, message.type)
            return
        try:
            await handler(session, message)
        except MalformedMessage as e:
            logger.warning("Dropping %s from %s: %s", message.type, session.address, e)

    async def _on_register(self, session: ClientSession, message: ClientMessage) -> None:
        if not message.address:
            raise MalformedMessage("register without address")
        self.sessions.register(session, message.address)

    async def _on_ping(self, session: ClientSession, message: ClientMessage) -> None:
        await session.send({"type": "pong"})

    async def _on_connection_request(self, session: ClientSession, message: ClientMessage) -> None:
        sender = session.address
        # the target may never have been found by discovery; make sure the
        # requester shows up in its peer list either way
        self.peers.add(
            PeerRecord(
                address=sender,
                display_name=message.from_name or f"Peer {sender}",
                control_port=self.settings.control_port,
            )
        )
        await self._on_signal(session, message)

    async def _on_signal(self, session: ClientSession, message: ClientMessage) -> None:
        if not message.target_address:
            raise MalformedMessage(f"{message.type} without targetAddress")
        envelope = self.stamp(session, message)
        logger.info(
            "Signaling %s from %s to %s", envelope.type.value, envelope.from_address,
            message.target_address,
        )
        self.dispatch(message.target_address, envelope)

    async def _on_poll(self, session: ClientSession, message: ClientMessage) -> None:
        if not message.target_address:
            raise MalformedMessage("poll without targetAddress")
        self._spawn(self.pull_pending(message.target_address, session))

    def stamp(self, session: ClientSession, message: ClientMessage) -> SignalingEnvelope:
        """Build the outgoing envelope; sender and time come from us, not the client."""
        kind = EnvelopeType(message.type)
        from_name = message.from_name
        if from_name is None and kind in (
            EnvelopeType.CONNECTION_REQUEST,
            EnvelopeType.CONNECTION_ACCEPT,
            EnvelopeType.CONNECTION_REJECT,
        ):
            from_name = f"Peer {session.address}"
        return SignalingEnvelope(
            type=kind,
            from_address=session.address,
            from_name=from_name,
            payload=message.payload,
        )

    # --- routing ---

    def dispatch(self, target: str, envelope: SignalingEnvelope) -> None:
        """Route in the background so a slow peer never stalls the session."""
        self._spawn(self.route(target, envelope))

    async def route(self, target: str, envelope: SignalingEnvelope) -> Delivery:
        target = canonical_address(target)

        session = self.sessions.get(target)
        if session is not None and await session.send(envelope.to_wire()):
            logger.info("Delivered %s locally to %s", envelope.type.value, target)
            return Delivery.LOCAL

        if target != self.local_address and await self.forward_remote(target, envelope):
            return Delivery.REMOTE

        self.pending.put(target, envelope)
        return Delivery.QUEUED

    async def forward_remote(self, target: str, envelope: SignalingEnvelope) -> bool:
        if is_unreachable(target):
            logger.warning("Skipping forward to unreachable address %s", target)
            return False
        try:
            body = await api_client.forward_envelope(
                self.http,
                target,
                self.settings.control_port,
                envelope.to_wire(),
                self.settings.forward_timeout,
            )
        except NetworkUnreachable as e:
            logger.warning("Forward of %s failed: %s", envelope.type.value, e)
            return False
        if not (isinstance(body, dict) and body.get("delivered")):
            logger.warning("%s accepted %s but had no client to deliver to", target, envelope.type.value)
            return False
        logger.info("Forwarded %s to %s", envelope.type.value, target)
        return True

    # --- inbound from other nodes ---

    async def receive_forwarded(self, envelope: SignalingEnvelope) -> bool:
        """Deliver an envelope pushed by another node to our own UI.

        The session registered under our own address is preferred; otherwise
        the first live session gets it.
        """
        logger.info("Received forwarded %s from %s", envelope.type.value, envelope.from_address)
        if envelope.type is EnvelopeType.PING:
            logger.warning("Refusing forwarded ping from %s", envelope.from_address)
            return False
        preferred = self.sessions.get(self.local_address)
        candidates = [preferred] if preferred is not None else []
        candidates += [s for s in self.sessions.sessions() if s is not preferred]
        wire = envelope.to_wire()
        for session in candidates:
            if await session.send(wire):
                logger.info("Delivered forwarded %s to %s", envelope.type.value, session.address)
                return True
        logger.warning("Could not deliver %s: no local client connected", envelope.type.value)
        return False

    def poll(self, address: str) -> list:
        return self.pending.drain(address)

    async def pull_pending(self, peer: str, session: Optional[ClientSession] = None) -> int:
        """Fetch what ``peer`` queued for us and hand it to our UI."""
        own = session.address if session is not None else self.local_address
        try:
            body = await api_client.fetch_pending(
                self.http, peer, self.settings.control_port, own, self.settings.forward_timeout
            )
        except NetworkUnreachable as e:
            logger.warning("Polling %s failed: %s", peer, e)
            return 0
        messages = body.get("messages", []) if isinstance(body, dict) else []
        delivered = 0
        for raw in messages:
            try:
                message = PendingMessage.model_validate(raw)
            except ValidationError as e:
                logger.warning("Dropping malformed pending message from %s: %s", peer, e)
                continue
            if session is not None:
                ok = await session.send(message.to_wire())
            else:
                ok = await self.receive_forwarded(message)
            delivered += ok
        return delivered

    # --- task bookkeeping ---

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Relay task failed", exc_info=task.exception())

    async def join(self) -> None:
        """Wait for every in-flight route/poll task."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
