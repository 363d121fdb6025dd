from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from mascot_chat.core_app.schemas.message import (
    ChatMode,
    ChatSettings,
    Message,
    MessageMetadata,
    Role,
    SendMessageRequest,
    mascot_expression,
    to_display_sentiment,
)
from mascot_chat.core_app.schemas.user import AvatarCustomization, User


@pytest.mark.parametrize("score, display", [(-1, 1), (0, 3), (1, 5), (0.5, 4), (-0.5, 2), (0.75, 5), (0.25, 4)])
def test_sentiment_display_remap(score, display):
    assert to_display_sentiment(score) == display


@pytest.mark.parametrize("display, expression", [(1, "sad"), (2, "sad"), (3, "neutral"), (4, "happy"), (5, "happy")])
def test_mascot_expression(display, expression):
    assert mascot_expression(display) == expression


def test_metadata_serializes_display_fields():
    metadata = MessageMetadata(role=Role.user, sentiment=1.0)
    dumped = metadata.model_dump(by_alias=True)

    assert dumped["sentiment"] == 1.0
    assert dumped["displaySentiment"] == 5
    assert dumped["expression"] == "happy"


def test_metadata_without_sentiment():
    metadata = MessageMetadata(role=Role.assistant)

    assert metadata.display_sentiment is None
    assert metadata.expression is None


def test_metadata_rejects_unknown_role_and_out_of_range_sentiment():
    with pytest.raises(ValidationError):
        MessageMetadata(role="moderator")
    with pytest.raises(ValidationError):
        MessageMetadata(role=Role.user, sentiment=1.5)


def test_message_is_immutable_and_non_empty():
    message = Message(
        id=1,
        content="hi",
        metadata=MessageMetadata(role=Role.user),
        created_at=datetime.now(timezone.utc),
    )
    with pytest.raises(ValidationError):
        message.content = "changed"
    with pytest.raises(ValidationError):
        Message(id=2, content="", metadata=MessageMetadata(role=Role.user), created_at=datetime.now(timezone.utc))


def test_chat_settings_accepts_camel_case():
    settings = ChatSettings.model_validate({"temperature": 0.2, "systemPrompt": "Be brief", "mode": "analyst"})

    assert settings.system_prompt == "Be brief"
    assert settings.mode == ChatMode.analyst


@pytest.mark.parametrize("payload", [{"temperature": -0.1}, {"temperature": 2.5}, {"mode": "poet"}])
def test_chat_settings_bounds(payload):
    with pytest.raises(ValidationError):
        ChatSettings.model_validate(payload)


@pytest.mark.parametrize("content", ["", "   ", "\n"])
def test_send_message_rejects_blank_content(content):
    with pytest.raises(ValidationError):
        SendMessageRequest(content=content)


def test_send_message_defaults_settings():
    request = SendMessageRequest(content="hello")

    assert request.settings == ChatSettings()
    assert request.settings.temperature == 1


def test_public_user_drops_password():
    user = User(id=1, username="alice", password="hash.salt", created_at=datetime.now(timezone.utc))
    public = user.public().model_dump(by_alias=True)

    assert "password" not in public
    assert public["avatarSettings"] == AvatarCustomization().model_dump(by_alias=True)
