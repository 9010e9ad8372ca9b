"""
Commit service: turns the project folder's working-tree changes into a
GitOps commit request, and stashes them locally once the commit lands.
"""
import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .errors import CommitConfigurationError, CommitError
from .git import GitRepository
from .github import GitOpsClient, GitOpsRequest
from .settings import SettingsKey
from .types import CommitSuccess, SettingsProto

logger = logging.getLogger(__name__)


@dataclass
class CommitData:
    """Everything needed for one commit request."""
    owner: str
    github_token: str
    repository: str
    head_branch: str
    files: Dict[str, Optional[str]]


class CommitService:
    """Builds and sends commit requests for the configured project folder."""

    def __init__(self, settings: SettingsProto, git: GitRepository, client: GitOpsClient):
        self.settings = settings
        self.git = git
        self.client = client

    def project_path(self) -> str:
        path = self.settings.get(SettingsKey.PROJECT_FOLDER_PATH, str)
        if not path:
            raise CommitConfigurationError(
                "The project folder is not configured",
                recovery_suggestion="Choose the project folder in the settings and try again",
            )
        return path

    def github_token(self) -> str:
        token = self.settings.get(SettingsKey.GITHUB_TOKEN, str) or os.getenv("GITHUB_TOKEN")
        if not token:
            raise CommitConfigurationError(
                "The GitHub token is not configured",
                recovery_suggestion="Set a GitHub token in the settings (or GITHUB_TOKEN) and try again",
            )
        return token

    def build_commit_data(self) -> CommitData:
        project_path = self.project_path()

        repository_name = self.git.repository_name(project_path)
        owner, _, repository = repository_name.partition("/")
        head_branch = self.git.current_branch(project_path)
        changed = self.git.changed_file_paths(project_path)
        token = self.github_token()

        files = self._read_changed_files(project_path, changed)

        logger.info(f"Prepared commit for {owner}/{repository} on {head_branch} "
                    f"({len(files)} changed files)")
        return CommitData(
            owner=owner,
            github_token=token,
            repository=repository,
            head_branch=head_branch,
            files=files,
        )

    def build_request(self, data: CommitData) -> GitOpsRequest:
        create_pr = bool(self.settings.get(SettingsKey.SHOULD_CREATE_PR, bool))
        base_branch = None
        if create_pr:
            base_branch = self.settings.get(SettingsKey.BASE_BRANCH, str)
            if not base_branch:
                raise CommitConfigurationError(
                    "A base branch is required to open a pull request",
                    recovery_suggestion="Pick a base branch in the settings",
                )

        return GitOpsRequest(
            owner=data.owner,
            repository=data.repository,
            base_branch=base_branch,
            head_branch=data.head_branch,
            create_pr=create_pr,
            files=data.files,
        )

    async def send_commit_data(self) -> CommitSuccess:
        data = await asyncio.to_thread(self.build_commit_data)
        request = self.build_request(data)

        response = await self.client.send(data.github_token, request)
        repository_url = f"https://github.com/{response.params.owner}/{response.params.repository}"
        logger.info(f"✅ Commit accepted ({response.status}): {repository_url}")
        return CommitSuccess(repository_url=repository_url, status=response.status)

    async def stash_changes(self) -> None:
        project_path = self.project_path()
        await asyncio.to_thread(self.git.stash_changes, project_path)
        logger.info("Stashed committed changes")

    async def get_branches(self) -> List[str]:
        project_path = self.project_path()
        # Only meaningful for repositories with an origin remote.
        await asyncio.to_thread(self.git.remote_origin_url, project_path)
        return await asyncio.to_thread(self.git.branches, project_path)

    def _read_changed_files(self, project_path: str, paths: List[str]) -> Dict[str, Optional[str]]:
        files: Dict[str, Optional[str]] = {}
        root = Path(project_path)
        for relative in paths:
            try:
                files[relative] = (root / relative).read_text(encoding="utf-8")
            except FileNotFoundError:
                files[relative] = None
                logger.debug(f"Deleted file: {relative}")
            except (OSError, UnicodeDecodeError) as e:
                raise CommitError(f"Failed to read {relative}: {e}") from e
        return files
