"""
Camera stand-in for headless runs.

The detector process owns the capture device; this object only tracks what
the session asked for so the flow (and tests) can observe it.
"""
import logging

logger = logging.getLogger(__name__)


class HeadlessCamera:
    """Camera that records start/stop requests instead of capturing."""

    def __init__(self, grant_permission: bool = True):
        self.grant_permission = grant_permission
        self.is_running = False
        self.start_count = 0
        self.stop_count = 0
        self.permission_requests = 0

    async def request_permission(self) -> bool:
        self.permission_requests += 1
        logger.debug(f"[HeadlessCamera] Permission request #{self.permission_requests}: "
                     f"{'granted' if self.grant_permission else 'denied'}")
        return self.grant_permission

    def start_camera(self) -> None:
        """Start capture; calling it while running does nothing."""
        if self.is_running:
            return
        self.is_running = True
        self.start_count += 1
        logger.info(f"📷 Camera started (start #{self.start_count})")

    def stop_camera(self) -> None:
        """Stop capture; calling it while stopped does nothing."""
        if not self.is_running:
            return
        self.is_running = False
        self.stop_count += 1
        logger.info("📷 Camera stopped")

    def reset_counters(self) -> None:
        self.start_count = 0
        self.stop_count = 0
        self.permission_requests = 0
