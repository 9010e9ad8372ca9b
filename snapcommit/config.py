"""
Configuration management for the gesture session service.
"""
import os
import yaml
from pathlib import Path
from typing import Optional, Dict, Any, List
from dataclasses import dataclass

from .types import AudioType, GestureType


@dataclass
class TransportConfig:
    """Detector connection settings."""
    url: str
    max_retry_interval_s: float
    ping_timeout_s: float


@dataclass
class SessionConfig:
    """Gesture session timing and gesture selection."""
    trigger: AudioType
    target_gestures: List[GestureType]
    hold_to_confirm_s: float
    camera_arm_delay_s: float
    reset_delay_s: float
    resume_delay_s: float
    window_close_resume_delay_s: float


@dataclass
class ActionsConfig:
    """Action runner settings."""
    max_per_gesture: int
    shell: str


@dataclass
class GitHubConfig:
    """GitOps commit endpoint settings."""
    api_base_url: str
    commit_path: str
    request_timeout_s: float


@dataclass
class SettingsConfig:
    """Where user settings are persisted."""
    path: Path


@dataclass
class LoggingConfig:
    level: str
    format: str


@dataclass
class Cfg:
    """Main configuration class."""
    transport: TransportConfig
    session: SessionConfig
    actions: ActionsConfig
    github: GitHubConfig
    settings: SettingsConfig
    logging: LoggingConfig


def load_config(path: Optional[str] = None) -> Cfg:
    """
    Load configuration from YAML file.

    Args:
        path: Path to config file. If None, uses the bundled config.default.yaml

    Returns:
        Configuration object with all settings
    """
    if path is None:
        path = Path(__file__).parent / "config.default.yaml"

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f)

    cfg = _dict_to_config(data)
    _apply_env_overrides(cfg)
    return cfg


def _dict_to_config(data: Dict[str, Any]) -> Cfg:
    """Convert dictionary to configuration object."""
    transport_data = data['transport']
    transport = TransportConfig(
        url=transport_data['url'],
        max_retry_interval_s=float(transport_data['max_retry_interval_s']),
        ping_timeout_s=float(transport_data['ping_timeout_s'])
    )

    session_data = data['session']
    session = SessionConfig(
        trigger=AudioType(session_data['trigger']),
        target_gestures=[GestureType(name) for name in session_data['target_gestures']],
        hold_to_confirm_s=float(session_data['hold_to_confirm_s']),
        camera_arm_delay_s=float(session_data['camera_arm_delay_s']),
        reset_delay_s=float(session_data['reset_delay_s']),
        resume_delay_s=float(session_data['resume_delay_s']),
        window_close_resume_delay_s=float(session_data['window_close_resume_delay_s'])
    )

    actions_data = data['actions']
    actions = ActionsConfig(
        max_per_gesture=int(actions_data['max_per_gesture']),
        shell=actions_data['shell']
    )

    github_data = data['github']
    github = GitHubConfig(
        api_base_url=github_data['api_base_url'],
        commit_path=github_data['commit_path'],
        request_timeout_s=float(github_data['request_timeout_s'])
    )

    settings = SettingsConfig(path=Path(data['settings']['path']).expanduser())

    logging_data = data['logging']
    logging_cfg = LoggingConfig(
        level=logging_data['level'],
        format=logging_data['format']
    )

    return Cfg(
        transport=transport,
        session=session,
        actions=actions,
        github=github,
        settings=settings,
        logging=logging_cfg
    )


def _apply_env_overrides(cfg: Cfg) -> None:
    """Let deployment-specific endpoints come from the environment (or .env)."""
    ws_url = os.getenv("SNAPCOMMIT_WS_URL")
    if ws_url:
        cfg.transport.url = ws_url

    api_base_url = os.getenv("SNAPCOMMIT_API_BASE_URL")
    if api_base_url:
        cfg.github.api_base_url = api_base_url
