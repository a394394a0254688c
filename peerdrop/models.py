from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base for everything that crosses the wire with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class EnvelopeType(str, Enum):
    CONNECTION_REQUEST = "connection_request"
    CONNECTION_ACCEPT = "connection_accept"
    CONNECTION_REJECT = "connection_reject"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice_candidate"
    PING = "ping"


# --- Registry ---
class PeerRecord(WireModel):
    address: str
    display_name: str
    control_port: int = Field(..., ge=1, le=65535)
    last_seen: datetime = Field(default_factory=utcnow)


# --- Signaling ---
class SignalingEnvelope(WireModel):
    type: EnvelopeType
    from_address: str
    from_name: Optional[str] = None
    payload: Any = None
    timestamp: datetime = Field(default_factory=utcnow)


class PendingMessage(SignalingEnvelope):
    stored_at: datetime = Field(default_factory=utcnow)


class ClientMessage(WireModel):
    """Anything a local UI sends over its signaling session."""

    type: str
    target_address: Optional[str] = None
    from_name: Optional[str] = None
    payload: Any = None
    address: Optional[str] = None


# --- Discovery ---
class DiscoveryMessage(WireModel):
    type: Literal["DISCOVERY_REQUEST", "DISCOVERY_RESPONSE"]
    address: Optional[str] = None
    port: Optional[int] = None
    host_id: Optional[str] = None
    timestamp: Optional[datetime] = None


# --- Control plane responses ---
class HealthResponse(WireModel):
    success: bool = True
    status: str = "running"
    timestamp: datetime = Field(default_factory=utcnow)
    local_address: str


class AddressResponse(WireModel):
    success: bool = True
    local_address: str


class PeersResponse(WireModel):
    success: bool = True
    peers: List[PeerRecord]


class DiscoverResponse(WireModel):
    success: bool = True
    peers: List[PeerRecord]
    local_address: str


class ForwardResponse(WireModel):
    success: bool
    delivered: bool


class PollResponse(WireModel):
    success: bool = True
    messages: List[PendingMessage]
    count: int
