"""Peer discovery: UDP broadcast beacons plus an active /24 health probe."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import List, Optional, Tuple

import httpx
from pydantic import ValidationError

from . import api_client
from .config import Settings
from .errors import MalformedMessage, NetworkUnreachable
from .models import DiscoveryMessage, PeerRecord, utcnow
from .network import canonical_address, is_loopback, is_unreachable, subnet_hosts
from .peers import PeerRegistry


logger = logging.getLogger(__name__)

DISCOVERY_REQUEST = "DISCOVERY_REQUEST"
DISCOVERY_RESPONSE = "DISCOVERY_RESPONSE"


def parse_datagram(data: bytes) -> DiscoveryMessage:
    try:
        return DiscoveryMessage.model_validate(json.loads(data.decode("utf-8")))
    except (UnicodeDecodeError, ValueError, ValidationError) as e:
        raise MalformedMessage(f"bad discovery datagram: {e}") from e


class DiscoveryProtocol(asyncio.DatagramProtocol):
    def __init__(self, engine: "DiscoveryEngine") -> None:
        self.engine = engine
        self.transport: Optional[asyncio.DatagramTransport] = None

    def connection_made(self, transport: asyncio.DatagramTransport) -> None:
        self.transport = transport

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        self.engine.handle_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        logger.error("UDP discovery error: %s", exc)


class DiscoveryEngine:
    def __init__(
        self,
        settings: Settings,
        local_address: str,
        registry: PeerRegistry,
        host_id: str,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings
        self.local_address = canonical_address(local_address)
        self.registry = registry
        self.host_id = host_id
        self.http = http or httpx.AsyncClient()
        self.transport: Optional[asyncio.DatagramTransport] = None
        self._beacon: Optional[asyncio.Task] = None
        self._round_lock = asyncio.Lock()

    # --- lifecycle ---

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            self.transport, _ = await loop.create_datagram_endpoint(
                lambda: DiscoveryProtocol(self),
                local_addr=(self.settings.host, self.settings.discovery_port),
                allow_broadcast=True,
            )
        except OSError as e:
            logger.error(
                "Cannot listen for discovery on UDP %d: %s", self.settings.discovery_port, e
            )
            return
        logger.info("Discovery listening on UDP port %d", self.settings.discovery_port)
        self._beacon = asyncio.create_task(self._beacon_loop())

    async def stop(self) -> None:
        if self._beacon is not None:
            self._beacon.cancel()
            try:
                await self._beacon
            except asyncio.CancelledError:
                pass
            self._beacon = None
        if self.transport is not None:
            self.transport.close()
            self.transport = None

    async def _beacon_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.broadcast_interval)
            self.broadcast()

    # --- UDP ---

    def _send(self, message: DiscoveryMessage, addr: Tuple[str, int]) -> None:
        payload = json.dumps(message.to_wire()).encode("utf-8")
        try:
            self.transport.sendto(payload, addr)
        except OSError as e:
            logger.error("Error sending %s to %s: %s", message.type, addr, e)

    def broadcast(self) -> None:
        if self.transport is None:
            logger.warning("Discovery socket not started, skipping broadcast")
            return
        request = DiscoveryMessage(
            type=DISCOVERY_REQUEST,
            address=self.local_address,
            port=self.settings.control_port,
            host_id=self.host_id,
        )
        self._send(request, (self.settings.broadcast_address, self.settings.discovery_port))

    def handle_datagram(self, data: bytes, addr: Tuple[str, int]) -> None:
        try:
            message = parse_datagram(data)
        except MalformedMessage as e:
            logger.warning("Dropping datagram from %s: %s", addr[0], e)
            return

        sender = canonical_address(message.address or addr[0])
        if message.type == DISCOVERY_REQUEST:
            if sender == self.local_address and message.host_id == self.host_id:
                return
            if self.transport is None:
                return
            response = DiscoveryMessage(
                type=DISCOVERY_RESPONSE,
                address=self.local_address,
                port=self.settings.control_port,
                host_id=self.host_id,
                timestamp=utcnow(),
            )
            self._send(response, addr)
        elif sender != self.local_address and not is_unreachable(sender):
            self.registry.add(
                PeerRecord(
                    address=sender,
                    display_name=message.host_id or f"Peer {sender}",
                    control_port=message.port or self.settings.control_port,
                )
            )

    # --- active probe ---

    async def probe(self, address: str) -> bool:
        """Health-check one address; failures just mean nobody is there."""
        try:
            body = await api_client.check_health(
                self.http, address, self.settings.control_port, self.settings.probe_timeout
            )
        except NetworkUnreachable:
            return False
        if not (isinstance(body, dict) and body.get("success")):
            return False
        self.registry.add(
            PeerRecord(
                address=address,
                display_name=f"Peer {address}",
                control_port=self.settings.control_port,
            )
        )
        return True

    def scan_targets(self) -> List[str]:
        if is_loopback(self.local_address):
            return []
        try:
            hosts = subnet_hosts(self.local_address)
        except ValueError:
            logger.warning("Cannot derive a subnet from %s, skipping probe", self.local_address)
            return []
        return [host for host in hosts if not is_unreachable(host)]

    async def scan(self) -> int:
        """Probe the local /24 in batches; returns how many nodes answered."""
        targets = self.scan_targets()
        size = self.settings.probe_batch_size
        found = 0
        for start in range(0, len(targets), size):
            batch = targets[start:start + size]
            results = await asyncio.gather(
                *(self.probe(address) for address in batch), return_exceptions=True
            )
            for address, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.warning("Probe of %s raised %r", address, result)
                elif result:
                    found += 1
            if start + size < len(targets):
                await asyncio.sleep(self.settings.probe_batch_delay)
        return found

    async def discover(self) -> List[PeerRecord]:
        """One full round; the registry is rebuilt from scratch."""
        async with self._round_lock:
            self.registry.clear()
            logger.info("Starting peer discovery")
            self.broadcast()
            await self.scan()
            await asyncio.sleep(self.settings.settle_delay)
            # late responders
            self.broadcast()
            await asyncio.sleep(self.settings.late_delay)
            peers = self.registry.snapshot()
            logger.info("Discovery complete, found %d peer(s)", len(peers))
            return peers
