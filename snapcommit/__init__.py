"""
SnapCommit gesture session service

Listens to an external gesture detector over WebSocket, runs a snap-armed
gesture session, and performs the configured actions for the detected
gesture: commit to GitHub, send a keyboard shortcut, or run a shell command.
"""

__version__ = "0.1.0"

from .types import (
    ActionType,
    ConnectionState,
    ExecutionSummary,
    GestureAction,
    GestureCommand,
    GestureType,
    Hotkey,
)
from .config import load_config, Cfg
from .codec import decode_event, encode_command
from .transport import WebSocketClient
from .coordinator import GestureSessionCoordinator, SessionPhase, SessionState
from .runner import ActionRunner
from .settings import SettingsStore

__all__ = [
    "ActionType",
    "ConnectionState",
    "ExecutionSummary",
    "GestureAction",
    "GestureCommand",
    "GestureType",
    "Hotkey",
    "load_config",
    "Cfg",
    "decode_event",
    "encode_command",
    "WebSocketClient",
    "GestureSessionCoordinator",
    "SessionPhase",
    "SessionState",
    "ActionRunner",
    "SettingsStore",
]
