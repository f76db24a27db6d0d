"""
GitHub credential routes

The service acts for a single local user. Their GitHub personal access token
is validated against the GitHub API, then stored Fernet-encrypted. The token
is never returned by any endpoint.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException

from database import DatabaseManager
from hosting.github_client import GitHubClient, HostingAPIError
from models.sync_models import AuthStatusResponse, GitHubTokenRequest
from utils.encryption import encrypt_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

_db_manager: Optional[DatabaseManager] = None
_github_client: Optional[GitHubClient] = None


def set_database_manager(db: DatabaseManager) -> None:
    """Set the database manager reference."""
    global _db_manager
    _db_manager = db


def set_github_client(client: GitHubClient) -> None:
    global _github_client
    _github_client = client


def get_db() -> DatabaseManager:
    """Get database manager, raising error if not initialized."""
    if _db_manager is None:
        raise RuntimeError("Database manager not initialized for auth routes")
    return _db_manager


def get_github_client() -> GitHubClient:
    if _github_client is None:
        raise RuntimeError("GitHub client not initialized for auth routes")
    return _github_client


@router.get("/status", response_model=AuthStatusResponse)
async def auth_status():
    """Whether a GitHub token is stored, and for which account."""
    user = await asyncio.to_thread(get_db().get_user)
    if user is None or not user.has_github_token:
        return AuthStatusResponse(connected=False)
    return AuthStatusResponse(connected=True, github_username=user.github_username)


@router.put("/github-token", response_model=AuthStatusResponse)
async def store_github_token(data: GitHubTokenRequest):
    """Validate a GitHub token and store it encrypted."""
    client = get_github_client()

    try:
        if not await client.validate_token(data.token):
            raise HTTPException(status_code=401, detail="GitHub rejected the token")
        username = await client.get_token_username(data.token)
    except HostingAPIError as e:
        logger.warning(f"GitHub token validation failed: {e}")
        raise HTTPException(status_code=502, detail=f"Could not validate token with GitHub: {e}")

    try:
        encrypted = encrypt_token(data.token)
    except (ValueError, IOError) as e:
        logger.error(f"Failed to encrypt GitHub token: {e}")
        raise HTTPException(status_code=500, detail="Failed to store token")

    user = await asyncio.to_thread(get_db().save_github_token, username, encrypted)
    return AuthStatusResponse(connected=True, github_username=user.github_username)


@router.delete("/github-token", response_model=AuthStatusResponse)
async def delete_github_token():
    """Forget the stored GitHub token."""
    removed = await asyncio.to_thread(get_db().clear_github_token)
    if not removed:
        raise HTTPException(status_code=404, detail="No GitHub token stored")
    return AuthStatusResponse(connected=False)
