# mascot_chat/core_app/services/chat.py
from typing import List

from mascot_chat.core_app.exceptions import PipelineError, StorageError
from mascot_chat.core_app.schemas.message import (
    ChatExchange,
    ChatSettings,
    Message,
    MessageMetadata,
    MessageType,
    Role,
    to_history,
)
from mascot_chat.core_app.services.classifier import NEUTRAL_SENTIMENT, ChatClassifier
from mascot_chat.core_app.services.storage import Storage
from mascot_chat.core_app.tools import prompts
from mascot_chat.core_app.tools.setup_logger import setup_logger

logger = setup_logger(__name__.upper())


class MessagePipeline:
    """
    Handles one inbound user message:
    classify -> persist user message -> load history -> generate reply -> persist reply.

    Sentiment and type are computed before the user message is stored so the stored
    record always carries them. Once that message exists, any fault still ends with
    an assistant entry in the log (the apology) before PipelineError is raised.
    """

    def __init__(self, storage: Storage, classifier: ChatClassifier):
        self.storage = storage
        self.classifier = classifier

    def get_messages(self) -> List[Message]:
        return self.storage.get_messages()

    def clear(self) -> None:
        self.storage.clear_messages()
        logger.info("Message log cleared")

    async def process(self, content: str, settings: ChatSettings) -> ChatExchange:
        if not content or not content.strip():
            raise ValueError("Message content must not be empty")
        if not isinstance(settings, ChatSettings):
            raise ValueError("settings must be ChatSettings")

        sentiment, message_type = await self.classifier.analyze(content)
        logger.info(f"Incoming message: sentiment={sentiment:.2f} type={message_type.value} mode={settings.mode.value}")

        try:
            user_message = self.storage.create_message(
                content,
                MessageMetadata(role=Role.user, sentiment=sentiment, type=message_type),
            )
        except StorageError as e:
            self._persist_apology(message_type)
            raise PipelineError("Failed to store user message") from e

        try:
            log = self.storage.get_messages()
            if not any(m.id == user_message.id for m in log):
                # retention already pruned the message stored above
                log.append(user_message)
            history = to_history(log)
            reply = await self.classifier.generate_reply(history, settings)
            ai_message = self.storage.create_message(
                reply.content,
                MessageMetadata(
                    role=Role.assistant,
                    sentiment=NEUTRAL_SENTIMENT,
                    type=message_type,
                    degraded=reply.degraded,
                ),
            )
        except Exception as e:
            logger.error(f"Message pipeline failed after storing message {user_message.id}: {e}", exc_info=True)
            self._persist_apology(message_type)
            raise PipelineError("Failed to process message") from e

        return ChatExchange(user_message=user_message, ai_message=ai_message)

    async def suggestions(self) -> List[str]:
        history = to_history(self.storage.get_messages())
        return await self.classifier.generate_suggestions(history)

    def _persist_apology(self, message_type: MessageType) -> None:
        try:
            self.storage.create_message(
                prompts.pipeline_failure_reply,
                MessageMetadata(
                    role=Role.assistant,
                    sentiment=NEUTRAL_SENTIMENT,
                    type=message_type,
                    degraded=True,
                ),
            )
        except StorageError as e:
            logger.error(f"Could not store apology message either: {e}")
