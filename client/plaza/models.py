"""Payloads and values for the shared plaza: presence, positions and global chat."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from pydantic import AliasChoices, Field

from shared.messaging.wire import WireModel


class PresenceAction(StrEnum):
    JOIN = "join"
    LEAVE = "leave"
    # The server saw a second login for the same user id.
    DUPLICATE = "duplicate"


class PresencePayload(WireModel):
    user_id: str
    display_name: str = Field(default="", validation_alias=AliasChoices("username", "displayName"))
    action: PresenceAction
    timestamp: int | None = None


class PositionPayload(WireModel):
    user_id: str
    display_name: str = Field(default="", validation_alias=AliasChoices("username", "displayName"))
    x: float
    y: float
    z: float
    heading_radians: float = Field(default=0.0, validation_alias=AliasChoices("rotationY", "headingRadians"))
    animation_state: str = Field(default="idle", validation_alias=AliasChoices("animation", "animationState"))
    model_ref: str | None = Field(default=None, validation_alias=AliasChoices("modelPath", "modelRef"))
    timestamp: int | None = None

    def to_sample(self) -> PositionSample:
        return PositionSample(
            user_id=self.user_id,
            x=self.x,
            y=self.y,
            z=self.z,
            heading_radians=self.heading_radians,
            animation_state=self.animation_state,
            model_ref=self.model_ref,
            timestamp=self.timestamp,
            display_name=self.display_name,
        )


@dataclass(frozen=True)
class PositionSample:
    """Latest known pose of one avatar. Superseded by the next sample, never stored."""

    user_id: str
    x: float
    y: float
    z: float
    heading_radians: float = 0.0
    animation_state: str = "idle"
    model_ref: str | None = None
    timestamp: int | None = None
    display_name: str = ""


@dataclass(frozen=True)
class PresenceEvent:
    action: PresenceAction
    user_id: str
    display_name: str = ""


# Outbound


class PlayerJoinRequest(WireModel):
    user_id: str
    username: str


class PositionUpdateRequest(WireModel):
    user_id: str
    username: str
    x: float
    y: float
    z: float
    rotation_y: float
    animation: str
    model_path: str | None = None


class PlazaChatRequest(WireModel):
    user_id: str
    username: str
    message: str = Field(min_length=1, max_length=500)
