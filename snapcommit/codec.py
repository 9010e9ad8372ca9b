"""
Wire codec for the detector connection.

Inbound frames are JSON objects with optional ``event``, ``type``, ``count``
and ``status`` fields; outbound frames are ``{"command": "<token>"}``.
"""
import json
import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .types import (
    AudioDetected,
    AudioType,
    DomainEvent,
    GestureCommand,
    GestureDetected,
    GestureLost,
    GestureType,
    HandCount,
)

logger = logging.getLogger(__name__)

KNOWN_EVENTS = {"audio", "gesture", "gesture_lost", "hand_count"}


class ServerFrame(BaseModel):
    """Shape of one inbound detector frame; every field is optional."""
    model_config = ConfigDict(extra="ignore")

    event: Optional[str] = None
    type: Optional[str] = None
    count: Optional[int] = Field(default=None, strict=True)  # "2" and true are not counts
    status: Optional[str] = None


def decode_event(raw: str) -> Optional[DomainEvent]:
    """
    Parse one detector frame into a domain event.

    Returns None for status messages and for anything malformed or unknown;
    never raises.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning(f"Discarding malformed frame ({e}): {raw!r}")
        return None

    if not isinstance(data, dict):
        logger.warning(f"Discarding non-object frame: {raw!r}")
        return None

    # Status frames are informational whatever else they carry
    if data.get("status") is not None:
        logger.info(f"Detector status: {data['status']}")
        return None

    try:
        frame = ServerFrame.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Discarding frame with invalid fields ({e.error_count()} errors): {raw!r}")
        return None

    if frame.event not in KNOWN_EVENTS:
        logger.warning(f"Discarding frame with unknown event {frame.event!r}")
        return None

    if frame.event == "hand_count":
        if frame.count is None or frame.count < 0:
            logger.warning(f"Discarding hand_count without a valid count: {raw!r}")
            return None
        return HandCount(frame.count)

    if frame.event == "audio":
        try:
            return AudioDetected(AudioType(frame.type))
        except ValueError:
            logger.warning(f"Discarding audio event with unknown type {frame.type!r}")
            return None

    try:
        gesture = GestureType(frame.type)
    except ValueError:
        logger.warning(f"Discarding {frame.event} event with unknown type {frame.type!r}")
        return None

    if frame.event == "gesture":
        return GestureDetected(gesture)
    return GestureLost(gesture)


def encode_command(command: GestureCommand) -> str:
    """Serialize a detector command into its JSON text frame."""
    return json.dumps({"command": GestureCommand(command).value})
