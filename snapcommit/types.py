"""
Type definitions shared by the transport, the session coordinator and the action runner.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Protocol, Type, TypeVar, Union, runtime_checkable
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


T = TypeVar("T")

MAX_ACTIONS_PER_GESTURE = 10


class ConnectionState(str, Enum):
    """Connectivity of the detector connection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class GestureType(str, Enum):
    """Hand gestures the detector can report."""
    HEART = "heart"
    THUMBS_UP = "thumbs_up"
    PEACE = "peace"


class AudioType(str, Enum):
    """Audio events the detector can report."""
    SNAP = "snap"


class GestureCommand(str, Enum):
    """Wire tokens understood by the detector."""
    ENABLE_SNAP = "enable_snap"
    DISABLE_SNAP = "disable_snap"
    CALIBRATE_SNAP = "calibrate_snap"
    ENABLE_HEART = "enable_heart"  # legacy
    DISABLE_HEART = "disable_heart"  # legacy
    ENABLE_THUMBS_UP = "enable_thumbs_up"
    DISABLE_THUMBS_UP = "disable_thumbs_up"
    ENABLE_PEACE = "enable_peace"
    DISABLE_PEACE = "disable_peace"
    ENABLE_GESTURE = "enable_gesture"
    DISABLE_GESTURE = "disable_gesture"


# ---- domain events ----------------------------------------------------

@dataclass(frozen=True)
class Connected:
    """The detector connection is up and confirmed."""


@dataclass(frozen=True)
class Disconnected:
    """The detector connection dropped or was closed."""


@dataclass(frozen=True)
class GestureDetected:
    gesture: GestureType


@dataclass(frozen=True)
class GestureLost:
    gesture: GestureType


@dataclass(frozen=True)
class AudioDetected:
    audio: AudioType


@dataclass(frozen=True)
class HandCount:
    """Number of hands currently in frame."""
    count: int

    def __post_init__(self):
        if self.count < 0:
            raise ValueError(f"hand count must be non-negative, got {self.count}")


DomainEvent = Union[Connected, Disconnected, GestureDetected, GestureLost, AudioDetected, HandCount]


# ---- persisted action configuration -----------------------------------

class ActionType(str, Enum):
    """What a gesture action does when it runs."""
    COMMIT = "commit"
    SHORTCUT = "shortcut"
    COMMAND = "command"


class Modifier(str, Enum):
    CONTROL = "control"
    OPTION = "option"
    SHIFT = "shift"
    COMMAND = "command"


_MODIFIER_SYMBOLS = [
    (Modifier.CONTROL, "⌃"),
    (Modifier.OPTION, "⌥"),
    (Modifier.SHIFT, "⇧"),
    (Modifier.COMMAND, "⌘"),
]


class Hotkey(BaseModel):
    """A key chord: virtual key code plus modifier keys."""
    key_code: int
    modifiers: List[Modifier] = Field(default_factory=list)
    key_display: str = ""

    @property
    def display_string(self) -> str:
        symbols = [symbol for modifier, symbol in _MODIFIER_SYMBOLS if modifier in self.modifiers]
        mod = " ".join(symbols)
        return f"{mod} {self.key_display}" if mod else self.key_display


class GestureAction(BaseModel):
    """One configured action in a gesture's ordered action list."""
    id: UUID = Field(default_factory=uuid4)
    action_type: ActionType = ActionType.SHORTCUT
    hotkey: Optional[Hotkey] = None  # shortcut only
    command_string: Optional[str] = None  # command only


# ---- action outcomes --------------------------------------------------

@dataclass
class ShellResult:
    """Captured output of one shell command."""
    stdout: str
    stderr: str
    exit_code: int

    @property
    def is_success(self) -> bool:
        return self.exit_code == 0


@dataclass
class CommitSuccess:
    """Result of a successful commit through the GitOps endpoint."""
    repository_url: str
    status: str


@dataclass
class ActionResult:
    """Outcome of one executed action."""
    action: GestureAction
    ok: bool
    payload: Any = None
    error: Optional[BaseException] = None

    @classmethod
    def success(cls, action: GestureAction, payload: Any = None) -> "ActionResult":
        return cls(action=action, ok=True, payload=payload)

    @classmethod
    def failure(cls, action: GestureAction, error: BaseException, payload: Any = None) -> "ActionResult":
        return cls(action=action, ok=False, payload=payload, error=error)


@dataclass
class ExecutionSummary:
    """Ordered results of one action-list run, with derived counts."""
    results: List[ActionResult] = field(default_factory=list)

    @property
    def total_count(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def failure_count(self) -> int:
        return self.total_count - self.success_count

    @property
    def all_succeeded(self) -> bool:
        return self.failure_count == 0

    @property
    def critical_failure(self) -> Optional[ActionResult]:
        """First failed commit action; its failure blocks the automatic reset."""
        for result in self.results:
            if not result.ok and result.action.action_type is ActionType.COMMIT:
                return result
        return None

    @property
    def summary_message(self) -> str:
        if self.total_count == 0:
            return "No actions configured"
        if self.all_succeeded:
            return f"{self.success_count} action(s) succeeded"
        return f"{self.success_count} succeeded, {self.failure_count} failed"


# ---- collaborator protocols -------------------------------------------

@runtime_checkable
class TransportProto(Protocol):
    """
    Long-lived message connection to the detector.

    ``messages`` and ``connection_states`` are Broadcast streams of inbound
    text frames and ConnectionState changes.
    """
    messages: Any
    connection_states: Any

    async def connect(self) -> None:
        ...

    async def disconnect(self) -> None:
        ...

    async def send(self, message: str) -> bool:
        ...


@runtime_checkable
class CameraProto(Protocol):
    """Owner of the camera capture session."""

    async def request_permission(self) -> bool:
        """Resolve camera permission, prompting the user if undetermined."""
        ...

    def start_camera(self) -> None:
        ...

    def stop_camera(self) -> None:
        ...


@runtime_checkable
class CommitProto(Protocol):
    async def send_commit_data(self) -> CommitSuccess:
        ...

    async def stash_changes(self) -> None:
        ...


@runtime_checkable
class KeySenderProto(Protocol):
    async def is_trusted(self) -> bool:
        """Whether the process may inject keyboard input."""
        ...

    async def send(self, hotkey: Hotkey) -> None:
        ...


@runtime_checkable
class ShellProto(Protocol):
    async def execute(self, command: str, cwd: Optional[str] = None) -> ShellResult:
        ...


@runtime_checkable
class SettingsProto(Protocol):
    def get(self, key: str, type_: Type[T]) -> Optional[T]:
        ...

    def save(self, key: str, value: Any) -> None:
        ...

    def gesture_actions(self, gesture: GestureType) -> List[GestureAction]:
        ...
