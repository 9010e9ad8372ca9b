"""
Shell command execution for command actions.
"""
import asyncio
import logging
from typing import Optional

from .types import ShellResult

logger = logging.getLogger(__name__)


class ShellExecutor:
    """Runs ``<shell> -c <command>`` and captures its output. Never raises."""

    def __init__(self, shell: str = "/bin/zsh"):
        self.shell = shell

    async def execute(self, command: str, cwd: Optional[str] = None) -> ShellResult:
        logger.info(f"$ {command}")
        try:
            process = await asyncio.create_subprocess_exec(
                self.shell, "-c", command,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await process.communicate()
        except OSError as e:
            logger.error(f"Failed to start {self.shell}: {e}")
            return ShellResult(stdout="", stderr=str(e), exit_code=-1)

        result = ShellResult(
            stdout=stdout.decode("utf-8", errors="replace").strip(),
            stderr=stderr.decode("utf-8", errors="replace").strip(),
            exit_code=process.returncode,
        )
        if not result.is_success:
            logger.warning(f"Command exited with {result.exit_code}: {command}")
        return result
