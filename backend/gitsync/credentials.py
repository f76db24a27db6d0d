"""
Remote credential handling for push operations.

Pushes authenticate by embedding the user's token in the remote URL of the
working copy (https://<token>@github.com/<owner>/<name>.git). Anything that
may echo that URL back (git errors, push output, logged command lines) must
go through sanitize_error() first.
"""

import logging
import re
from pathlib import Path
from typing import Iterable, Tuple, Union, TYPE_CHECKING
from urllib.parse import quote

from gitsync.errors import ConfigurationError

if TYPE_CHECKING:
    from gitsync.command_runner import CommandRunner

logger = logging.getLogger(__name__)

DEFAULT_HOST = 'github.com'
REMOTE_NAME = 'origin'
NOREPLY_EMAIL_DOMAIN = 'users.noreply.github.com'

_HTTPS_CREDENTIALS_PATTERN = re.compile(r'(https?://)[^\s]+@(?=[a-zA-Z0-9])')
_SSH_USER_PATTERN = re.compile(r'(ssh://)([^@\s]+)@([^\s]+)')


def sanitize_error(text: str, secrets: Iterable[str] = ()) -> str:
    """
    Remove credentials from git output.

    Args:
        text: Output that may contain authenticated URLs
        secrets: Literal values (tokens) to mask wherever they appear

    Returns:
        Text with URL credentials stripped and secrets replaced by ***

    Examples:
        >>> sanitize_error("fatal: unable to access 'https://ghp_abc@github.com/o/r.git/'")
        "fatal: unable to access 'https://github.com/o/r.git/'"
    """
    if not text:
        return text or ''

    result = text
    for secret in secrets:
        if secret:
            result = result.replace(secret, '***')
            encoded = quote(secret, safe='')
            if encoded != secret:
                result = result.replace(encoded, '***')

    # Greedy match handles tokens containing @, the lookahead stops at the host
    result = _HTTPS_CREDENTIALS_PATTERN.sub(r'\1', result)
    result = _SSH_USER_PATTERN.sub(r'\1\3', result)
    return result


def parse_repository_identifier(remote_id: str) -> Tuple[str, str]:
    """
    Split an 'owner/name' identifier.

    Raises:
        ConfigurationError: Identifier does not contain exactly one '/'
            separating two non-empty parts
    """
    if not remote_id or remote_id.count('/') != 1:
        raise ConfigurationError(
            f"Invalid repository identifier '{remote_id}': expected format owner/name"
        )
    owner, name = remote_id.split('/')
    if not owner.strip() or not name.strip():
        raise ConfigurationError(
            f"Invalid repository identifier '{remote_id}': owner and name must be non-empty"
        )
    return owner, name


def build_authenticated_remote(owner: str, repo_name: str, token: str, host: str = DEFAULT_HOST) -> str:
    """Build https://<token>@<host>/<owner>/<repo_name>.git with the token URL-encoded."""
    if not token:
        raise ConfigurationError("A GitHub token is required to push")
    return f"https://{quote(token, safe='')}@{host}/{owner}/{repo_name}.git"


def noreply_email(username: str) -> str:
    return f"{username}@{NOREPLY_EMAIL_DOMAIN}"


class CredentialInjector:
    """Prepares a working copy so commits have an identity and origin points at the remote."""

    def __init__(self, runner: 'CommandRunner', host: str = DEFAULT_HOST):
        self.runner = runner
        self.host = host

    def authenticated_remote(self, remote_id: str, token: str) -> str:
        owner, name = parse_repository_identifier(remote_id)
        return build_authenticated_remote(owner, name, token, host=self.host)

    async def ensure_identity(self, cwd: Union[str, Path], username: str) -> None:
        """Set repository-local user.name / user.email. Safe to repeat."""
        await self.runner.run(['config', 'user.name', username], cwd=cwd)
        await self.runner.run(['config', 'user.email', noreply_email(username)], cwd=cwd)

    async def ensure_remote(self, cwd: Union[str, Path], url: str) -> None:
        """
        Point origin at url, adding the remote if it does not exist yet.

        A missing origin is never an error here.
        """
        current = await self.runner.run(['remote', 'get-url', REMOTE_NAME], cwd=cwd, check=False)
        if current.ok:
            await self.runner.run(['remote', 'set-url', REMOTE_NAME, url], cwd=cwd)
            logger.debug(f"Updated {REMOTE_NAME} remote in {cwd}")
        else:
            await self.runner.run(['remote', 'add', REMOTE_NAME, url], cwd=cwd)
            logger.debug(f"Added {REMOTE_NAME} remote in {cwd}")
