"""Hosting service API clients."""

from hosting.github_client import GitHubClient, HostingAPIError

__all__ = ['GitHubClient', 'HostingAPIError']
