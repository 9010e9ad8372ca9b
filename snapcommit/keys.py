"""
Keyboard shortcut injection through AppleScript (System Events).
"""
import logging
from typing import List

from .errors import AccessibilityPermissionDenied, ActionError
from .types import Hotkey, Modifier, ShellProto

logger = logging.getLogger(__name__)

_MODIFIER_CLAUSES = {
    Modifier.CONTROL: "control down",
    Modifier.OPTION: "option down",
    Modifier.SHIFT: "shift down",
    Modifier.COMMAND: "command down",
}


def _quote(script: str) -> str:
    return "'" + script.replace("'", "'\\''") + "'"


def key_code_script(hotkey: Hotkey) -> str:
    """AppleScript that presses ``hotkey`` via System Events."""
    script = f'tell application "System Events" to key code {hotkey.key_code}'
    clauses: List[str] = [_MODIFIER_CLAUSES[m] for m in Modifier if m in hotkey.modifiers]
    if clauses:
        script += " using {" + ", ".join(clauses) + "}"
    return script


class AppleScriptKeySender:
    """Sends hotkeys with ``osascript``; needs the Accessibility permission."""

    def __init__(self, shell: ShellProto, osascript: str = "osascript"):
        self.shell = shell
        self.osascript = osascript

    async def is_trusted(self) -> bool:
        script = 'tell application "System Events" to get UI elements enabled'
        result = await self.shell.execute(f"{self.osascript} -e {_quote(script)}")
        trusted = result.is_success and result.stdout.strip().lower() == "true"
        if not trusted:
            logger.warning("Accessibility access is not granted")
        return trusted

    async def send(self, hotkey: Hotkey) -> None:
        script = key_code_script(hotkey)
        result = await self.shell.execute(f"{self.osascript} -e {_quote(script)}")
        if not result.is_success:
            # System Events reports -1719 / -25211 when assistive access is missing
            if "-1719" in result.stderr or "-25211" in result.stderr:
                raise AccessibilityPermissionDenied()
            raise ActionError(f"Failed to send {hotkey.display_string or hotkey.key_code}: "
                              f"{result.stderr or f'exit {result.exit_code}'}")
        logger.info(f"⌨️  Sent shortcut {hotkey.display_string}")
