"""
GitHub REST API client.

Used for the two things git itself cannot tell us: the canonical clone URL
of a repository and whether a token is accepted by the hosting service.
"""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_API_URL = 'https://api.github.com'
GITHUB_HTTP_TIMEOUT = 10.0


class HostingAPIError(Exception):
    """GitHub API call failed or returned an unexpected response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GitHubClient:
    """
    Thin async wrapper over the endpoints the sync service needs.

    A client is opened per request, matching how the rest of the backend talks
    to external HTTP services. Tests pass an httpx.MockTransport.
    """

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        timeout: float = GITHUB_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout
        self._transport = transport

    def _headers(self, token: Optional[str]) -> dict:
        headers = {
            'Accept': 'application/vnd.github+json',
            'User-Agent': 'gitsync',
        }
        if token:
            headers['Authorization'] = f'Bearer {token}'
        return headers

    async def _get(self, path: str, token: Optional[str] = None) -> httpx.Response:
        kwargs = {'timeout': self.timeout}
        if self._transport is not None:
            kwargs['transport'] = self._transport
        try:
            async with httpx.AsyncClient(**kwargs) as client:
                return await client.get(f"{self.api_url}{path}", headers=self._headers(token))
        except httpx.TimeoutException:
            raise HostingAPIError(f"GitHub API request timed out: {path}")
        except httpx.HTTPError as e:
            raise HostingAPIError(f"GitHub API request failed: {e}")

    async def get_clone_url(self, owner: str, name: str, token: Optional[str] = None) -> str:
        """
        Resolve the canonical HTTPS clone URL for owner/name.

        Raises:
            HostingAPIError: Repository not found or API unreachable
        """
        response = await self._get(f"/repos/{owner}/{name}", token)
        if response.status_code == 404:
            raise HostingAPIError(f"Repository {owner}/{name} not found", status_code=404)
        if response.status_code != 200:
            raise HostingAPIError(
                f"GitHub API returned {response.status_code} for {owner}/{name}",
                status_code=response.status_code
            )

        clone_url = response.json().get('clone_url')
        if not clone_url:
            raise HostingAPIError(f"GitHub API returned no clone URL for {owner}/{name}")
        return clone_url

    async def validate_token(self, token: str) -> bool:
        """Return True when GitHub accepts the token, False when it rejects it."""
        if not token:
            return False
        response = await self._get('/user', token)
        if response.status_code == 200:
            return True
        if response.status_code in (401, 403):
            return False
        raise HostingAPIError(
            f"GitHub API returned {response.status_code} while validating token",
            status_code=response.status_code
        )

    async def get_token_username(self, token: str) -> str:
        """Login name of the token's owner."""
        response = await self._get('/user', token)
        if response.status_code != 200:
            raise HostingAPIError(
                f"GitHub API returned {response.status_code} for /user",
                status_code=response.status_code
            )
        login = response.json().get('login')
        if not login:
            raise HostingAPIError("GitHub API response did not include a login")
        return login
