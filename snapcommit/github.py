"""
Client for the GitOps commit endpoint and GitHub token validation.
"""
import asyncio
import logging
from typing import Dict, Optional

import aiohttp
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from .errors import (
    CommitDecodingError,
    CommitNetworkError,
    CommitServerError,
    GitHubResponseError,
    InvalidTokenError,
    TokenForbiddenError,
)

logger = logging.getLogger(__name__)

GITHUB_USER_URL = "https://api.github.com/user"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Request/Response models
class GitOpsRequest(_CamelModel):
    owner: str
    repository: str
    base_branch: Optional[str] = None
    head_branch: Optional[str] = None
    create_pr: Optional[bool] = None
    files: Dict[str, Optional[str]]  # None marks a deleted file


class GitOpsParams(_CamelModel):
    owner: str
    repository: str
    base_branch: Optional[str] = None
    head_branch: Optional[str] = None
    create_pr: Optional[bool] = None


class GitOpsSuccess(_CamelModel):
    status: str
    params: GitOpsParams


class GitOpsErrorDetails(_CamelModel):
    status: int
    upstream_status: Optional[int] = None
    upstream_message: Optional[str] = None
    context: Optional[Dict[str, str]] = None


class GitOpsError(_CamelModel):
    message: str
    details: Optional[GitOpsErrorDetails] = None


class GitOpsClient:
    """Posts commit requests to ``{api_base_url}{commit_path}``."""

    def __init__(self, api_base_url: str, commit_path: str = "/github/commit_push",
                 timeout: float = 60.0):
        self.url = api_base_url.rstrip("/") + "/" + commit_path.lstrip("/")
        self.timeout = timeout

    async def send(self, token: str, request: GitOpsRequest) -> GitOpsSuccess:
        headers = {
            "Content-Type": "application/json",
            "X-GitHub-Token": f"Bearer {token}",
        }
        body = request.model_dump(mode="json", by_alias=True)

        async with aiohttp.ClientSession() as session:
            try:
                async with session.post(
                    self.url,
                    json=body,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    status = response.status
                    payload = await response.read()
            except asyncio.TimeoutError as e:
                raise CommitNetworkError(f"Commit request timed out ({self.timeout:.0f} seconds)") from e
            except aiohttp.ClientError as e:
                raise CommitNetworkError(f"Commit request failed: {e}") from e

        if not 200 <= status < 300:
            try:
                error = GitOpsError.model_validate_json(payload)
            except ValidationError:
                error = None
            raise CommitServerError(
                message=error.message if error else "Unknown server error",
                status=status,
                upstream_message=error.details.upstream_message if error and error.details else None,
            )

        try:
            return GitOpsSuccess.model_validate_json(payload)
        except ValidationError as e:
            raise CommitDecodingError(f"Could not decode commit response: {e}") from e


async def validate_github_token(token: str, url: str = GITHUB_USER_URL, timeout: float = 10.0) -> bool:
    """
    Check a personal access token against the GitHub user endpoint.

    Returns True for a usable token and raises a GitHubTokenError otherwise.
    """
    headers = {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
    }
    async with aiohttp.ClientSession() as session:
        try:
            async with session.get(url, headers=headers,
                                   timeout=aiohttp.ClientTimeout(total=timeout)) as response:
                status = response.status
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            logger.error(f"GitHub token validation failed: {e!r}")
            raise GitHubResponseError() from e

    if status == 200:
        return True
    if status == 401:
        raise InvalidTokenError()
    if status == 403:
        raise TokenForbiddenError()
    raise GitHubResponseError(status)
