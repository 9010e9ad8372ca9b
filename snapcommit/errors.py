"""
Exception types raised by actions and their collaborators.
"""
from typing import Optional


class SnapCommitError(Exception):
    """Base class for every error this package raises on purpose."""

    recovery_suggestion: Optional[str] = None

    def __init__(self, message: str, recovery_suggestion: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if recovery_suggestion is not None:
            self.recovery_suggestion = recovery_suggestion


# ---- action configuration ---------------------------------------------

class ActionError(SnapCommitError):
    """An action could not run or finished unsuccessfully."""


class AccessibilityPermissionDenied(ActionError):
    recovery_suggestion = (
        "Allow this app under System Settings > Privacy & Security > Accessibility"
    )

    def __init__(self):
        super().__init__("Accessibility permission is required to send shortcuts")


class CameraPermissionDenied(ActionError):
    recovery_suggestion = "Allow camera access under System Settings > Privacy & Security > Camera"

    def __init__(self):
        super().__init__("Camera permission is required")


class HotkeyNotConfigured(ActionError):
    recovery_suggestion = "Record a shortcut for this action in the settings"

    def __init__(self):
        super().__init__("No shortcut key is configured")


class CommandNotConfigured(ActionError):
    recovery_suggestion = "Enter a shell command for this action in the settings"

    def __init__(self):
        super().__init__("No command is configured")


class CommandFailed(ActionError):
    """A shell command exited with a non-zero status."""

    def __init__(self, exit_code: int, stdout: str = "", stderr: str = ""):
        message = stderr if stderr else f"Command failed (exit {exit_code})"
        super().__init__(message)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


# ---- git / commit -----------------------------------------------------

class GitError(SnapCommitError):
    """A git command failed or returned output we could not parse."""


class CommitError(SnapCommitError):
    """Committing the working tree through the GitOps endpoint failed."""


class CommitConfigurationError(CommitError):
    """Settings needed to build the commit request are missing."""


class CommitNetworkError(CommitError):
    """The request never produced an HTTP response."""


class CommitServerError(CommitError):
    """The endpoint answered with a non-2xx status."""

    def __init__(self, message: str, status: int, upstream_message: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.upstream_message = upstream_message

    def __str__(self) -> str:
        if self.upstream_message:
            return f"{self.message} (HTTP {self.status}: {self.upstream_message})"
        return f"{self.message} (HTTP {self.status})"


class CommitDecodingError(CommitError):
    """The endpoint answered 2xx with a body we could not decode."""


# ---- GitHub token validation ------------------------------------------

class GitHubTokenError(SnapCommitError):
    pass


class InvalidTokenError(GitHubTokenError):
    def __init__(self):
        super().__init__("The GitHub token is invalid")


class TokenForbiddenError(GitHubTokenError):
    def __init__(self):
        super().__init__("The GitHub token lacks the required permissions")


class GitHubResponseError(GitHubTokenError):
    def __init__(self, status: Optional[int] = None):
        detail = f" (HTTP {status})" if status is not None else ""
        super().__init__(f"Unexpected response from GitHub{detail}")
        self.status = status
