"""Local network helpers: interface selection, subnet ranges, addresses."""

from __future__ import annotations

import ipaddress
import logging
import socket
from typing import List

import psutil


logger = logging.getLogger(__name__)

VIRTUAL_KEYWORDS = (
    "virtualbox",
    "vmware",
    "vbox",
    "vmnet",
    "hyper-v",
    "docker",
    "wsl",
    "bluetooth",
    "loopback",
    "pseudo",
    "host-only",
    "nat",
    "bridge",
)

REAL_KEYWORDS = (
    "wi-fi",
    "wifi",
    "wireless",
    "ethernet",
    "lan",
    "local area connection",
    "network adapter",
)

# Linux and macOS interface names: eth0, enp3s0, en0, wlan0, wlp2s0
REAL_PREFIXES = ("eth", "en", "wl")

# Reachable in theory, almost never in practice
UNREACHABLE_NETWORKS = (
    ipaddress.ip_network("169.254.0.0/16"),  # link-local (APIPA)
    ipaddress.ip_network("10.0.2.0/24"),  # VirtualBox NAT
)

PRIVATE_PREFERRED = (
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("10.0.0.0/8"),
)


def interface_priority(name: str) -> int:
    """Rank an interface name: real adapters 20, unknown 10, virtual 1."""
    lowered = name.lower()
    if any(keyword in lowered for keyword in VIRTUAL_KEYWORDS):
        return 1
    if lowered.startswith(REAL_PREFIXES) or any(k in lowered for k in REAL_KEYWORDS):
        return 20
    return 10


def get_local_address() -> str:
    """Pick the IPv4 address other nodes on the LAN are most likely to reach."""
    candidates = []
    for name, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            try:
                ip = ipaddress.IPv4Address(addr.address)
            except ipaddress.AddressValueError:
                continue
            if ip.is_loopback:
                continue
            private = any(ip in net for net in PRIVATE_PREFERRED)
            candidates.append((interface_priority(name), private, name, str(ip)))

    if not candidates:
        return "127.0.0.1"

    # stable sort keeps enumeration order for ties
    candidates.sort(key=lambda c: (c[0], c[1]), reverse=True)
    priority, _, name, address = candidates[0]
    logger.debug("Selected interface %s (%s) priority %d", name, address, priority)
    for other in candidates[1:]:
        logger.debug("  also found %s (%s) priority %d", other[2], other[3], other[0])
    return address


def get_hostname() -> str:
    return socket.gethostname()


def canonical_address(value: str) -> str:
    """Normalise an address string so equal hosts compare equal.

    IPv4-mapped IPv6 addresses collapse to plain IPv4, and brackets,
    surrounding whitespace and case differences are removed. Anything that is not an IP
    literal is treated as a hostname and lower-cased.
    """
    text = value.strip()
    if text.startswith("[") and text.endswith("]"):
        text = text[1:-1]
    try:
        ip = ipaddress.ip_address(text)
    except ValueError:
        return text.lower()
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return str(ip.ipv4_mapped)
    return str(ip)


def is_loopback(address: str) -> bool:
    try:
        return ipaddress.ip_address(canonical_address(address)).is_loopback
    except ValueError:
        return address.lower() == "localhost"


def is_unreachable(address: str) -> bool:
    """True for ranges that are skipped when probing or forwarding."""
    try:
        ip = ipaddress.ip_address(canonical_address(address))
    except ValueError:
        return False
    return any(ip in net for net in UNREACHABLE_NETWORKS if ip.version == net.version)


def subnet_hosts(local_address: str) -> List[str]:
    """Every host of the local /24 except ``local_address`` itself."""
    network = ipaddress.ip_network(f"{local_address}/24", strict=False)
    return [str(host) for host in network.hosts() if str(host) != local_address]


def control_url(address: str, port: int, path: str) -> str:
    host = canonical_address(address)
    if ":" in host:
        host = f"[{host}]"
    return f"http://{host}:{port}{path}"
