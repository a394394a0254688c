import asyncio

import httpx

from .errors import NetworkUnreachable
from .network import control_url


# --- node-to-node calls (async, shared client) ---

async def _request(address, request, timeout):
    """Await ``request`` bounded by ``timeout`` end to end; return its JSON."""
    try:
        response = await asyncio.wait_for(request, timeout)
        response.raise_for_status()
        return response.json()
    except asyncio.TimeoutError:
        raise NetworkUnreachable(address, "timeout") from None
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
        raise NetworkUnreachable(address, str(e) or type(e).__name__) from e


async def check_health(client: httpx.AsyncClient, address: str, port: int, timeout: float) -> dict:
    url = control_url(address, port, "/health")
    return await _request(address, client.get(url, timeout=timeout), timeout)


async def forward_envelope(
    client: httpx.AsyncClient, address: str, port: int, envelope: dict, timeout: float
) -> dict:
    url = control_url(address, port, "/forward")
    return await _request(address, client.post(url, json=envelope, timeout=timeout), timeout)


async def fetch_pending(
    client: httpx.AsyncClient, address: str, port: int, for_address: str, timeout: float
) -> dict:
    """Drain the queue another node holds for ``for_address``."""
    url = control_url(address, port, "/poll-signaling")
    request = client.get(url, params={"address": for_address}, timeout=timeout)
    return await _request(address, request, timeout)


# --- CLI helpers (sync) ---

def health(server):
    response = httpx.get(f"{server}/health")
    response.raise_for_status()
    return response.json()


def list_peers(server):
    response = httpx.get(f"{server}/peers")
    response.raise_for_status()
    return response.json()


def discover(server, timeout=60.0):
    response = httpx.post(f"{server}/discover", timeout=timeout)
    response.raise_for_status()
    return response.json()


def poll_signaling(address, server):
    response = httpx.get(f"{server}/poll-signaling", params={"address": address})
    response.raise_for_status()
    return response.json()
