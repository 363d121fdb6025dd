import math
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Provide clear, accurate, and engaging responses. "
    "Feel free to use markdown for better formatting."
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Role(str, Enum):
    user = "user"
    assistant = "assistant"
    system = "system"


class MessageType(str, Enum):
    general = "general"
    code = "code"
    analysis = "analysis"


class ChatMode(str, Enum):
    general = "general"
    code_assistant = "code_assistant"
    analyst = "analyst"


def to_display_sentiment(score: float) -> int:
    """
    Maps a -1..1 sentiment score onto the 1..5 scale the mascot understands, halves round up.
    """
    display = math.floor((score + 1) * 2 + 1.5)
    return max(1, min(5, display))


def mascot_expression(display_score: int) -> str:
    if display_score >= 4:
        return "happy"
    if display_score <= 2:
        return "sad"
    return "neutral"


class MessageMetadata(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    role: Role
    sentiment: Optional[float] = Field(default=None, ge=-1, le=1)
    type: Optional[MessageType] = None
    degraded: bool = False

    @computed_field(alias="displaySentiment")
    @property
    def display_sentiment(self) -> Optional[int]:
        if self.sentiment is None:
            return None
        return to_display_sentiment(self.sentiment)

    @computed_field(alias="expression")
    @property
    def expression(self) -> Optional[str]:
        if self.display_sentiment is None:
            return None
        return mascot_expression(self.display_sentiment)


class Message(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    content: str = Field(min_length=1)
    metadata: MessageMetadata
    created_at: datetime

    @property
    def role(self) -> Role:
        return self.metadata.role


class ChatSettings(CamelModel):
    temperature: float = Field(default=1, ge=0, le=2)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    mode: ChatMode = ChatMode.general


class SendMessageRequest(CamelModel):
    content: str
    settings: ChatSettings = Field(default_factory=ChatSettings)

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message content must not be empty")
        return value


class ChatExchange(CamelModel):
    user_message: Message
    ai_message: Message


class HistoryEntry(BaseModel):
    role: Role
    content: str


def to_history(messages: List[Message]) -> List[HistoryEntry]:
    return [HistoryEntry(role=m.metadata.role, content=m.content) for m in messages]
