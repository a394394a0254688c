"""Control-plane endpoints and the local signaling WebSocket."""

import logging

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect

from ..models import (
    AddressResponse,
    DiscoverResponse,
    ForwardResponse,
    HealthResponse,
    PeersResponse,
    PollResponse,
    SignalingEnvelope,
)


logger = logging.getLogger(__name__)

router = APIRouter()


def get_node(request: Request):
    return request.app.state.node


@router.get("/health", response_model=HealthResponse)
async def health(node=Depends(get_node)) -> HealthResponse:
    return HealthResponse(local_address=node.local_address)


@router.get("/ip", response_model=AddressResponse)
async def local_ip(node=Depends(get_node)) -> AddressResponse:
    return AddressResponse(local_address=node.local_address)


@router.get("/peers", response_model=PeersResponse)
async def list_peers(node=Depends(get_node)) -> PeersResponse:
    return PeersResponse(peers=node.peers.snapshot())


@router.post("/discover", response_model=DiscoverResponse)
async def discover(node=Depends(get_node)) -> DiscoverResponse:
    """Run one discovery round and return what it found."""
    peers = await node.discovery.discover()
    return DiscoverResponse(peers=peers, local_address=node.local_address)


@router.post("/forward", response_model=ForwardResponse)
async def forward(envelope: SignalingEnvelope, node=Depends(get_node)) -> ForwardResponse:
    """Accept an envelope pushed by another node for our local UI."""
    delivered = await node.relay.receive_forwarded(envelope)
    return ForwardResponse(success=delivered, delivered=delivered)


@router.get("/poll-signaling", response_model=PollResponse)
async def poll_signaling(
    address: str = Query(..., min_length=1), node=Depends(get_node)
) -> PollResponse:
    """Hand over (and forget) everything queued for ``address``."""
    messages = node.relay.poll(address)
    return PollResponse(messages=messages, count=len(messages))


@router.websocket("/ws")
async def signaling_session(websocket: WebSocket) -> None:
    node = websocket.app.state.node
    await websocket.accept()
    observed = websocket.client.host if websocket.client else "unknown"
    session = node.sessions.connect(websocket, observed)
    await session.send(
        {
            "type": "connected",
            "message": "Connected to PeerDrop server",
            "yourAddress": node.local_address,
        }
    )
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            # UIs may send JSON in text or binary frames
            raw = message.get("text") or message.get("bytes")
            if raw is None:
                continue
            await node.relay.handle_raw(session, raw)
    except WebSocketDisconnect as e:
        logger.debug("Session %s closed (code %s)", session.address, e.code)
    finally:
        node.sessions.disconnect(session)
