"""
User settings store (GitHub token, project folder, per-gesture actions, ...).

Values are kept as JSON-compatible data and persisted to a YAML file when a
path is given. Reads are typed: ``get(key, type_)`` validates the stored
value with pydantic and returns None when it is missing or invalid.
"""
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

import yaml
from pydantic import TypeAdapter, ValidationError
from pydantic_core import to_jsonable_python

from .types import MAX_ACTIONS_PER_GESTURE, GestureAction, GestureType

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SettingsKey(str, Enum):
    GITHUB_TOKEN = "github_token"
    PROJECT_FOLDER_PATH = "project_folder_path"
    BASE_BRANCH = "base_branch"
    SHOULD_CREATE_PR = "should_create_pr"
    ONBOARDING_COMPLETED = "onboarding_completed"
    TRIGGER_HOTKEY = "trigger_hotkey"


def actions_key(gesture: GestureType) -> str:
    return f"gesture_actions.{GestureType(gesture).value}"


def _key_name(key: Union[SettingsKey, str]) -> str:
    return key.value if isinstance(key, SettingsKey) else str(key)


class SettingsStore:
    """Key/value settings, optionally backed by a YAML file."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else None
        self._values: Dict[str, Any] = {}
        if self.path is not None and self.path.exists():
            self._load()

    def get(self, key: Union[SettingsKey, str], type_: Type[T]) -> Optional[T]:
        name = _key_name(key)
        if name not in self._values:
            logger.debug(f"No value stored for {name}")
            return None
        try:
            return TypeAdapter(type_).validate_python(self._values[name])
        except ValidationError as e:
            logger.warning(f"Ignoring invalid value for {name}: {e.error_count()} errors")
            return None

    def save(self, key: Union[SettingsKey, str], value: Any) -> None:
        self._values[_key_name(key)] = to_jsonable_python(value)
        self._flush()

    def remove(self, key: Union[SettingsKey, str]) -> None:
        if self._values.pop(_key_name(key), None) is not None:
            self._flush()

    def gesture_actions(self, gesture: GestureType) -> List[GestureAction]:
        """Ordered actions configured for a gesture (empty when none)."""
        actions = self.get(actions_key(gesture), List[GestureAction]) or []
        if len(actions) > MAX_ACTIONS_PER_GESTURE:
            logger.warning(f"{gesture.value} has {len(actions)} actions; "
                           f"only the first {MAX_ACTIONS_PER_GESTURE} are used")
            actions = actions[:MAX_ACTIONS_PER_GESTURE]
        return actions

    def save_gesture_actions(self, gesture: GestureType, actions: List[GestureAction]) -> None:
        if len(actions) > MAX_ACTIONS_PER_GESTURE:
            raise ValueError(f"A gesture can have at most {MAX_ACTIONS_PER_GESTURE} actions")
        self.save(actions_key(gesture), actions)

    def _load(self) -> None:
        with open(self.path, 'r') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring settings file with unexpected content: {self.path}")
            return
        self._values = data

    def _flush(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            yaml.safe_dump(self._values, f, sort_keys=True, allow_unicode=True)
