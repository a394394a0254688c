import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from peerdrop import api_client
from peerdrop.errors import NetworkUnreachable


@patch('httpx.get')
def test_health(mock_get):
    mock_get.return_value = MagicMock(status_code=200, json=lambda: {'success': True, 'localAddress': '10.0.0.5'})
    result = api_client.health('http://localhost:3001')
    assert result['localAddress'] == '10.0.0.5'
    mock_get.assert_called_once_with('http://localhost:3001/health')


@patch('httpx.get')
def test_list_peers(mock_get):
    mock_get.return_value = MagicMock(status_code=200, json=lambda: {'success': True, 'peers': [{'address': '10.0.0.6'}]})
    result = api_client.list_peers('http://localhost:3001')
    assert result['peers'][0]['address'] == '10.0.0.6'
    mock_get.assert_called_once()


@patch('httpx.post')
def test_discover(mock_post):
    mock_post.return_value = MagicMock(status_code=200, json=lambda: {'success': True, 'peers': []})
    result = api_client.discover('http://localhost:3001')
    assert result['peers'] == []
    assert mock_post.call_args.args == ('http://localhost:3001/discover',)


@patch('httpx.get')
def test_poll_signaling(mock_get):
    mock_get.return_value = MagicMock(status_code=200, json=lambda: {'success': True, 'messages': [], 'count': 0})
    result = api_client.poll_signaling('10.0.0.5', 'http://localhost:3001')
    assert result['count'] == 0
    mock_get.assert_called_once_with('http://localhost:3001/poll-signaling', params={'address': '10.0.0.5'})


def test_forward_envelope_posts_to_control_port():
    client = MagicMock()
    client.post = AsyncMock(return_value=MagicMock(status_code=200, json=lambda: {'delivered': True}))

    async def run():
        return await api_client.forward_envelope(client, '10.0.0.9', 3001, {'type': 'offer'}, 3.0)

    assert asyncio.run(run()) == {'delivered': True}
    client.post.assert_awaited_once_with('http://10.0.0.9:3001/forward', json={'type': 'offer'}, timeout=3.0)


def test_check_health_connection_error():
    client = MagicMock()
    client.get = AsyncMock(side_effect=httpx.ConnectError('refused'))

    with pytest.raises(NetworkUnreachable) as info:
        asyncio.run(api_client.check_health(client, '10.0.0.9', 3001, 0.5))
    assert info.value.address == '10.0.0.9'


def test_check_health_timeout():
    client = MagicMock()

    async def hang(*args, **kwargs):
        await asyncio.sleep(5)

    client.get = hang
    with pytest.raises(NetworkUnreachable) as info:
        asyncio.run(api_client.check_health(client, '10.0.0.9', 3001, 0.05))
    assert info.value.reason == 'timeout'


def test_fetch_pending_bad_json():
    def bad_json():
        raise ValueError('not json')

    client = MagicMock()
    client.get = AsyncMock(return_value=MagicMock(status_code=200, json=bad_json))
    with pytest.raises(NetworkUnreachable):
        asyncio.run(api_client.fetch_pending(client, '10.0.0.9', 3001, '10.0.0.5', 3.0))
    client.get.assert_awaited_once_with(
        'http://10.0.0.9:3001/poll-signaling', params={'address': '10.0.0.5'}, timeout=3.0
    )


def test_forward_envelope_invalid_url():
    client = MagicMock()
    client.post = AsyncMock(side_effect=httpx.InvalidURL("Invalid IPv6 address"))
    with pytest.raises(NetworkUnreachable) as info:
        asyncio.run(api_client.forward_envelope(client, '10.0.0.9:3001', 3001, {'type': 'offer'}, 3.0))
    assert info.value.address == '10.0.0.9:3001'
