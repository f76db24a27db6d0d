"""
Unit tests for GitHubClient using httpx.MockTransport.
"""

import httpx
import pytest

from hosting.github_client import GitHubClient, HostingAPIError


def _client(handler):
    return GitHubClient(api_url="https://api.github.test", transport=httpx.MockTransport(handler))


class TestGetCloneUrl:

    @pytest.mark.asyncio
    async def test_returns_clone_url(self):
        seen = {}

        def handler(request):
            seen['url'] = str(request.url)
            seen['auth'] = request.headers.get('Authorization')
            return httpx.Response(200, json={'clone_url': 'https://github.com/octo/widgets.git'})

        url = await _client(handler).get_clone_url('octo', 'widgets', token='ghp_x')

        assert url == 'https://github.com/octo/widgets.git'
        assert seen['url'] == 'https://api.github.test/repos/octo/widgets'
        assert seen['auth'] == 'Bearer ghp_x'

    @pytest.mark.asyncio
    async def test_anonymous_request_has_no_auth_header(self):
        seen = {}

        def handler(request):
            seen['auth'] = request.headers.get('Authorization')
            return httpx.Response(200, json={'clone_url': 'https://github.com/octo/widgets.git'})

        await _client(handler).get_clone_url('octo', 'widgets')

        assert seen['auth'] is None

    @pytest.mark.asyncio
    async def test_not_found(self):
        client = _client(lambda request: httpx.Response(404, json={'message': 'Not Found'}))

        with pytest.raises(HostingAPIError, match="not found") as exc_info:
            await client.get_clone_url('octo', 'missing')

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_server_error(self):
        client = _client(lambda request: httpx.Response(502))

        with pytest.raises(HostingAPIError) as exc_info:
            await client.get_clone_url('octo', 'widgets')

        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_missing_clone_url(self):
        client = _client(lambda request: httpx.Response(200, json={'name': 'widgets'}))

        with pytest.raises(HostingAPIError):
            await client.get_clone_url('octo', 'widgets')

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(HostingAPIError, match="request failed"):
            await _client(handler).get_clone_url('octo', 'widgets')


class TestTokens:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,expected", [(200, True), (401, False), (403, False)])
    async def test_validate_token(self, status, expected):
        client = _client(lambda request: httpx.Response(status, json={'login': 'octocat'}))

        assert await client.validate_token('ghp_x') is expected

    @pytest.mark.asyncio
    async def test_validate_token_unexpected_status(self):
        client = _client(lambda request: httpx.Response(500))

        with pytest.raises(HostingAPIError):
            await client.validate_token('ghp_x')

    @pytest.mark.asyncio
    async def test_validate_empty_token(self):
        client = _client(lambda request: pytest.fail("no request expected"))

        assert await client.validate_token('') is False

    @pytest.mark.asyncio
    async def test_get_token_username(self):
        client = _client(lambda request: httpx.Response(200, json={'login': 'octocat'}))

        assert await client.get_token_username('ghp_x') == 'octocat'
