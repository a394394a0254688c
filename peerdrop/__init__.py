"""PeerDrop node: LAN peer discovery and a signaling relay."""

__version__ = "0.2.0"

from .app import Node, create_app
from .config import Settings

__all__ = ["Node", "Settings", "create_app"]
