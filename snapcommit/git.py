"""
Thin wrapper around the git CLI for the project folder.
"""
import logging
import subprocess
from typing import List, Optional
from urllib.parse import urlparse

from .errors import GitError

logger = logging.getLogger(__name__)


def extract_repository_name(remote_url: str) -> Optional[str]:
    """
    Extract "owner/repo" from a remote URL.

    Handles SSH (``git@github.com:owner/repo.git``) and HTTPS
    (``https://github.com/owner/repo``) remotes. Returns None when the URL
    has neither shape.
    """
    url = remote_url.strip()
    if url.endswith(".git"):
        url = url[:-4]

    if "://" not in url and "@" in url and ":" in url:
        path = url.rsplit(":", 1)[1].strip("/")
        return path or None

    components = [part for part in urlparse(url).path.split("/") if part]
    if len(components) >= 2:
        return f"{components[-2]}/{components[-1]}"

    logger.warning(f"Could not extract a repository name from {remote_url!r}")
    return None


class GitRepository:
    """Reads repository facts and stashes changes by shelling out to git."""

    def __init__(self, git_executable: str = "git"):
        self.git_executable = git_executable

    def remote_origin_url(self, project_path: str) -> str:
        return self._run(["config", "--get", "remote.origin.url"], project_path)

    def repository_name(self, project_path: str) -> str:
        """Return "owner/repo" for the origin remote."""
        name = extract_repository_name(self.remote_origin_url(project_path))
        if name is None:
            raise GitError("Failed to extract repository name from the origin remote")
        return name

    def owner(self, project_path: str) -> str:
        return self.repository_name(project_path).split("/")[0]

    def current_branch(self, project_path: str) -> str:
        return self._run(["rev-parse", "--abbrev-ref", "HEAD"], project_path)

    def changed_file_paths(self, project_path: str) -> List[str]:
        """Tracked files that differ from HEAD, followed by untracked files."""
        tracked = self._run(["diff", "--name-only", "HEAD"], project_path).splitlines()
        untracked = self._run(["ls-files", "--others", "--exclude-standard"], project_path).splitlines()
        paths: List[str] = []
        for path in tracked + untracked:
            if path and path not in paths:
                paths.append(path)
        return paths

    def branches(self, project_path: str) -> List[str]:
        output = self._run(["branch", "--format=%(refname:short)"], project_path)
        return [line for line in output.splitlines() if line]

    def stash_changes(self, project_path: str) -> None:
        self._run(["stash", "push", "--include-untracked"], project_path)

    def _run(self, arguments: List[str], cwd: str) -> str:
        command = " ".join(arguments)
        try:
            completed = subprocess.run(
                [self.git_executable, *arguments],
                cwd=cwd,
                capture_output=True,
                text=True,
            )
        except OSError as e:
            raise GitError(f"git {command} could not run: {e}") from e

        if completed.returncode != 0:
            stderr = completed.stderr.strip()
            logger.warning(f"git {command} exited with {completed.returncode}: {stderr}")
            raise GitError(f"git {command} failed: {stderr or f'exit {completed.returncode}'}")

        return completed.stdout.strip()
