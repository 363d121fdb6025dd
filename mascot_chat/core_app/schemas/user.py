from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from mascot_chat.core_app.schemas.message import CamelModel


class AvatarShape(str, Enum):
    circle = "circle"
    squircle = "squircle"
    hexagon = "hexagon"


class AvatarStyle(str, Enum):
    minimal = "minimal"
    cute = "cute"
    robot = "robot"


class AvatarAnimation(str, Enum):
    bounce = "bounce"
    pulse = "pulse"
    wave = "wave"


class AvatarCustomization(CamelModel):
    primary_color: str = Field(default="hsl(142 76% 36%)", min_length=1)
    secondary_color: str = Field(default="hsl(142 76% 46%)", min_length=1)
    shape: AvatarShape = AvatarShape.circle
    style: AvatarStyle = AvatarStyle.minimal
    animation: AvatarAnimation = AvatarAnimation.bounce


class PublicUser(CamelModel):
    id: int
    username: str
    avatar_settings: AvatarCustomization = Field(default_factory=AvatarCustomization)
    created_at: datetime


class User(PublicUser):
    password: str

    def public(self) -> PublicUser:
        return PublicUser(**self.model_dump(exclude={"password"}))


class UserCredentials(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)

    @field_validator("username")
    @classmethod
    def username_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Username must not be empty")
        return value.strip()


class AvatarUpdateRequest(CamelModel):
    settings: AvatarCustomization


class SessionData(BaseModel):
    sid: str
    user_id: int
    expires_at: datetime
