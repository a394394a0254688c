"""Deduplicated store of known peers, keyed by canonical address."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .models import PeerRecord
from .network import canonical_address


logger = logging.getLogger(__name__)


class PeerRegistry:
    def __init__(self) -> None:
        self._peers: Dict[str, PeerRecord] = {}

    def add(self, peer: PeerRecord) -> bool:
        """Insert or update ``peer``; an older ``last_seen`` never wins.

        Returns True when the stored record changed.
        """
        key = canonical_address(peer.address)
        if key != peer.address:
            peer = peer.model_copy(update={"address": key})
        existing = self._peers.get(key)
        if existing is not None and peer.last_seen < existing.last_seen:
            return False
        if existing is None:
            logger.info("New peer %s (%s)", key, peer.display_name)
        self._peers[key] = peer
        return True

    def get(self, address: str) -> Optional[PeerRecord]:
        return self._peers.get(canonical_address(address))

    def clear(self) -> None:
        self._peers.clear()

    def snapshot(self) -> List[PeerRecord]:
        return list(self._peers.values())

    def __len__(self) -> int:
        return len(self._peers)

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and canonical_address(address) in self._peers
