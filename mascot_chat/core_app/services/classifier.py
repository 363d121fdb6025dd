# mascot_chat/core_app/services/classifier.py
import asyncio
import json
import math
import re
from typing import List, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel

from mascot_chat.core_app.exceptions import ProviderError, ProviderRateLimitError, ProviderTimeoutError
from mascot_chat.core_app.schemas.message import ChatSettings, HistoryEntry, MessageType, Role
from mascot_chat.core_app.tools import prompts
from mascot_chat.core_app.tools.setup_logger import setup_logger

logger = setup_logger(__name__.upper())

NEUTRAL_SENTIMENT = 0.0
SUGGESTION_HISTORY_LIMIT = 10
MAX_SUGGESTIONS = 3

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


class Reply(BaseModel):
    content: str
    degraded: bool = False


def _strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip())


def parse_sentiment(raw: str) -> Optional[float]:
    """
    Reads {"score": x} or, failing that, the first number in the answer.
    Returns None when nothing usable is found; the value is clamped to -1..1.
    """
    score = None
    try:
        data = json.loads(_strip_fences(raw))
        if isinstance(data, dict):
            score = float(data["score"])
        elif isinstance(data, (int, float)):
            score = float(data)
    except (ValueError, KeyError, TypeError):
        match = _NUMBER_RE.search(raw)
        if match:
            score = float(match.group())
    if score is None or not math.isfinite(score):
        return None
    return max(-1.0, min(1.0, score))


def parse_message_type(raw: str) -> Optional[MessageType]:
    words = re.findall(r"[a-z]+", raw.lower())
    for word in words:
        if word in MessageType.__members__:
            return MessageType(word)
    return None


def parse_suggestions(raw: str) -> List[str]:
    try:
        data = json.loads(_strip_fences(raw))
    except ValueError:
        return []
    if not isinstance(data, list):
        return []
    suggestions = [item.strip() for item in data if isinstance(item, str) and item.strip()]
    return suggestions[:MAX_SUGGESTIONS]


def history_to_messages(history: List[HistoryEntry]) -> List[BaseMessage]:
    messages: List[BaseMessage] = []
    for entry in history:
        if entry.role == Role.user:
            messages.append(HumanMessage(content=entry.content))
        elif entry.role == Role.assistant:
            messages.append(AIMessage(content=entry.content))
        else:
            messages.append(SystemMessage(content=entry.content))
    return messages


class ChatClassifier:
    """
    Boundary around every call to the LLM provider.

    Sentiment, type and suggestions never raise: any failure is logged and a neutral
    default comes back. Reply generation turns provider failures into a canned reply
    flagged as degraded and raises only for invalid input.
    """

    def __init__(self, llm: BaseChatModel, classification_temperature: float = 0.0):
        self.llm = llm
        self.classification_temperature = classification_temperature

    async def _ask(self, system_prompt: str, text: str, temperature: float) -> str:
        result = await self.llm.ainvoke(
            [SystemMessage(content=system_prompt), HumanMessage(content=text)],
            temperature=temperature,
        )
        return str(result.content)

    async def score_sentiment(self, text: str) -> float:
        try:
            raw = await self._ask(prompts.sentiment_prompt, text, self.classification_temperature)
        except Exception as e:
            logger.warning(f"Sentiment scoring failed, using neutral: {e}")
            return NEUTRAL_SENTIMENT

        score = parse_sentiment(raw)
        if score is None:
            logger.warning(f"Unparsable sentiment answer: {raw!r}")
            return NEUTRAL_SENTIMENT
        return score

    async def classify_type(self, text: str) -> MessageType:
        try:
            raw = await self._ask(prompts.classification_prompt, text, self.classification_temperature)
        except Exception as e:
            logger.warning(f"Message classification failed, using general: {e}")
            return MessageType.general

        message_type = parse_message_type(raw)
        if message_type is None:
            logger.warning(f"Unparsable classification answer: {raw!r}")
            return MessageType.general
        return message_type

    async def analyze(self, text: str):
        """Sentiment and type, requested concurrently."""
        return await asyncio.gather(self.score_sentiment(text), self.classify_type(text))

    def build_reply_messages(self, history: List[HistoryEntry], settings: ChatSettings) -> List[BaseMessage]:
        messages: List[BaseMessage] = [SystemMessage(content=prompts.mode_prompts[settings.mode])]
        if settings.system_prompt.strip():
            messages.append(SystemMessage(content=settings.system_prompt))
        messages.extend(history_to_messages(history))
        return messages

    async def generate_reply(self, history: List[HistoryEntry], settings: ChatSettings) -> Reply:
        if not isinstance(settings, ChatSettings):
            raise ValueError("settings must be ChatSettings")
        if not history:
            raise ValueError("Cannot generate a reply without conversation history")

        messages = self.build_reply_messages(history, settings)
        try:
            result = await self.llm.ainvoke(messages, temperature=settings.temperature)
        except ProviderTimeoutError as e:
            logger.error(f"Reply generation timed out: {e}")
            return Reply(content=prompts.timeout_reply, degraded=True)
        except ProviderRateLimitError as e:
            logger.error(f"Reply generation rate limited: {e}")
            return Reply(content=prompts.rate_limit_reply, degraded=True)
        except ProviderError as e:
            logger.error(f"Reply generation failed: {e}")
            return Reply(content=prompts.unknown_error_reply, degraded=True)

        content = str(result.content).strip()
        if not content:
            return Reply(content=prompts.empty_reply, degraded=True)
        return Reply(content=content)

    async def generate_suggestions(self, history: List[HistoryEntry]) -> List[str]:
        if not history:
            return list(prompts.fallback_suggestions)

        transcript = "\n".join(
            f"{entry.role.value}: {entry.content}" for entry in history[-SUGGESTION_HISTORY_LIMIT:]
        )
        try:
            raw = await self._ask(prompts.suggestions_prompt, transcript, 0.7)
        except Exception as e:
            logger.warning(f"Suggestion generation failed, using fallback: {e}")
            return list(prompts.fallback_suggestions)

        suggestions = parse_suggestions(raw)
        if not suggestions:
            logger.warning(f"Unparsable suggestions answer: {raw!r}")
            return list(prompts.fallback_suggestions)
        return suggestions
