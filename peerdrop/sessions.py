"""Live local signaling sessions and the address each one speaks for."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

from fastapi import WebSocketDisconnect

from .network import canonical_address


logger = logging.getLogger(__name__)


class Connection(Protocol):
    async def send_json(self, data: Any) -> None: ...


class ClientSession:
    """One UI connection. ``address`` is the key it is registered under."""

    def __init__(self, connection: Connection, observed_address: str) -> None:
        self.connection = connection
        self.observed_address = observed_address
        self.address = canonical_address(observed_address)

    async def send(self, message: dict) -> bool:
        try:
            await self.connection.send_json(message)
        except (WebSocketDisconnect, RuntimeError, ConnectionError) as e:
            logger.warning("Send to session %s failed: %s", self.address, e)
            return False
        return True

    def __repr__(self) -> str:
        return f"ClientSession(address={self.address!r}, observed={self.observed_address!r})"


class ClientRegistry:
    """Maps canonical address -> session, one session per address.

    A later claim on an address evicts the earlier session from the map but
    leaves its connection open.
    """

    def __init__(self) -> None:
        self._by_address: Dict[str, ClientSession] = {}

    def connect(self, connection: Connection, observed_address: str) -> ClientSession:
        session = ClientSession(connection, observed_address)
        self._claim(session, session.address)
        logger.info("Client connected from %s", observed_address)
        return session

    def register(self, session: ClientSession, address: str) -> None:
        key = canonical_address(address)
        if self._by_address.get(session.address) is session and session.address != key:
            del self._by_address[session.address]
        session.address = key
        self._claim(session, key)
        logger.info(
            "Client registered as %s (connection address %s), %d client(s)",
            key,
            session.observed_address,
            len(self._by_address),
        )

    def disconnect(self, session: ClientSession) -> None:
        if self._by_address.get(session.address) is session:
            del self._by_address[session.address]
        logger.info("Client disconnected: %s", session.address)

    def get(self, address: str) -> Optional[ClientSession]:
        return self._by_address.get(canonical_address(address))

    def sessions(self) -> List[ClientSession]:
        return list(self._by_address.values())

    def __len__(self) -> int:
        return len(self._by_address)

    def _claim(self, session: ClientSession, key: str) -> None:
        previous = self._by_address.get(key)
        if previous is not None and previous is not session:
            logger.info("Address %s taken over by a newer session", key)
        self._by_address[key] = session
