"""
Main application: wires the detector connection, the gesture session
coordinator and the action collaborators together.
"""
import asyncio
import logging
import signal
import sys
from typing import Optional

from dotenv import load_dotenv

from .camera import HeadlessCamera
from .commit import CommitService
from .config import Cfg, load_config
from .coordinator import GestureSessionCoordinator
from .git import GitRepository
from .github import GitOpsClient
from .keys import AppleScriptKeySender
from .runner import ActionRunner
from .settings import SettingsStore
from .shell import ShellExecutor
from .transport import WebSocketClient

logger = logging.getLogger(__name__)


def setup_logging(cfg: Cfg) -> None:
    logging.basicConfig(
        level=getattr(logging, cfg.logging.level.upper(), logging.INFO),
        format=cfg.logging.format,
    )


class SnapCommitApp:
    """Main application class for the gesture session service."""

    def __init__(self, config_path: Optional[str] = None, cfg: Optional[Cfg] = None):
        self.config = cfg or load_config(config_path)

        self.settings = SettingsStore(self.config.settings.path)
        self.shell = ShellExecutor(self.config.actions.shell)
        self.camera = HeadlessCamera()
        self.transport = WebSocketClient(
            self.config.transport.url,
            max_retry_interval=self.config.transport.max_retry_interval_s,
            ping_timeout=self.config.transport.ping_timeout_s,
        )

        client = GitOpsClient(
            self.config.github.api_base_url,
            commit_path=self.config.github.commit_path,
            timeout=self.config.github.request_timeout_s,
        )
        self.commit = CommitService(self.settings, GitRepository(), client)
        self.runner = ActionRunner(
            self.commit,
            AppleScriptKeySender(self.shell),
            self.shell,
            max_actions=self.config.actions.max_per_gesture,
        )
        self.coordinator = GestureSessionCoordinator(
            self.transport, self.camera, self.runner, self.settings, self.config.session
        )

        self._stopped = asyncio.Event()

    def request_stop(self) -> None:
        self._stopped.set()

    async def run(self) -> None:
        """Run until SIGINT/SIGTERM; SIGUSR1 dismisses the current session."""
        logger.info(f"Starting snapcommit (detector: {self.config.transport.url})")
        logger.info(f"🎯 Trigger: {self.config.session.trigger.value}, gestures: "
                    f"{', '.join(g.value for g in self.config.session.target_gestures)}")

        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, self.request_stop)
        loop.add_signal_handler(signal.SIGTERM, self.request_stop)
        loop.add_signal_handler(signal.SIGUSR1, self.coordinator.window_closed)

        states = self.coordinator.state_changes.subscribe()
        watcher = asyncio.create_task(self._log_states(states))
        try:
            await self.coordinator.start()
            await self._stopped.wait()
        finally:
            watcher.cancel()
            states.close()
            await self.coordinator.stop()
            for sig in (signal.SIGINT, signal.SIGTERM, signal.SIGUSR1):
                loop.remove_signal_handler(sig)
            logger.info("Application stopped")

    async def _log_states(self, states) -> None:
        async for state in states:
            if state.error is not None:
                logger.error(f"Session {state.phase.value}: {state.error.kind}: {state.error.message}")
            else:
                logger.info(f"Session {state.phase.value}")


def _config_path_from_argv() -> Optional[str]:
    if "--config" in sys.argv:
        index = sys.argv.index("--config")
        if index + 1 < len(sys.argv):
            return sys.argv[index + 1]
        print("Error: --config requires a path")
        sys.exit(2)
    return None


async def main():
    """Entry point for the application."""
    load_dotenv()

    try:
        cfg = load_config(_config_path_from_argv())
    except (FileNotFoundError, KeyError, ValueError) as e:
        print(f"Error: could not load configuration: {e}")
        sys.exit(1)

    setup_logging(cfg)
    app = SnapCommitApp(cfg=cfg)
    await app.run()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
