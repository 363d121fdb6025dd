import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from mascot_chat.core_app.exceptions import PipelineError, ProviderTimeoutError, StorageError
from mascot_chat.core_app.schemas.message import ChatSettings, MessageType, Role
from mascot_chat.core_app.services.chat import MessagePipeline
from mascot_chat.core_app.services.storage import MemStorage
from mascot_chat.core_app.tools import prompts


class FlakyStorage(MemStorage):
    """Fails the n-th create_message call (1-based); later calls work again."""

    def __init__(self, fail_on):
        super().__init__()
        self.fail_on = set(fail_on)
        self.create_calls = 0

    def create_message(self, content, metadata):
        self.create_calls += 1
        if self.create_calls in self.fail_on:
            raise StorageError("database unavailable")
        return super().create_message(content, metadata)


@pytest.fixture
def pipeline(storage, classifier):
    return MessagePipeline(storage, classifier)


def test_process_stores_user_and_assistant_messages(pipeline, storage):
    exchange = asyncio.run(pipeline.process("Can you review my code?", ChatSettings()))

    messages = storage.get_messages()
    assert [m.metadata.role for m in messages] == [Role.user, Role.assistant]
    assert exchange.user_message.id == messages[0].id
    assert exchange.ai_message.id == messages[1].id

    user_meta = exchange.user_message.metadata
    assert user_meta.sentiment == pytest.approx(0.6)
    assert user_meta.type == MessageType.code

    ai_meta = exchange.ai_message.metadata
    assert exchange.ai_message.content == "Echo: Can you review my code?"
    assert ai_meta.sentiment == 0.0
    assert ai_meta.type == MessageType.code
    assert not ai_meta.degraded


def test_process_sends_whole_log_as_history(pipeline, llm):
    asyncio.run(pipeline.process("first", ChatSettings()))
    asyncio.run(pipeline.process("second", ChatSettings()))

    last_reply_call = llm.calls_for("reply")[-1]
    contents = [m.content for m in last_reply_call["messages"][2:]]
    assert contents == ["first", "Echo: first", "second"]


def test_each_call_adds_exactly_one_pair(pipeline, storage):
    for text in ["one", "two", "three"]:
        before = len(storage.get_messages())
        asyncio.run(pipeline.process(text, ChatSettings()))
        after = storage.get_messages()
        assert len(after) == before + 2
        assert [m.metadata.role for m in after[-2:]] == [Role.user, Role.assistant]


def test_classification_failure_does_not_block(pipeline, llm, storage):
    llm.errors = {"sentiment": ProviderTimeoutError("slow"), "classify": RuntimeError("boom")}

    exchange = asyncio.run(pipeline.process("hello", ChatSettings()))

    assert exchange.user_message.metadata.sentiment == 0.0
    assert exchange.user_message.metadata.type == MessageType.general
    assert exchange.ai_message.content == "Echo: hello"


def test_provider_failure_returns_degraded_reply(pipeline, llm, storage):
    llm.errors = {"reply": ProviderTimeoutError("slow")}

    exchange = asyncio.run(pipeline.process("hello", ChatSettings()))

    assert exchange.ai_message.content == prompts.timeout_reply
    assert exchange.ai_message.metadata.degraded
    assert len(storage.get_messages()) == 2


def test_unexpected_reply_failure_stores_apology(pipeline, llm, storage):
    llm.errors = {"reply": RuntimeError("bug")}

    with pytest.raises(PipelineError):
        asyncio.run(pipeline.process("hello", ChatSettings()))

    messages = storage.get_messages()
    assert [m.metadata.role for m in messages] == [Role.user, Role.assistant]
    assert messages[1].content == prompts.pipeline_failure_reply
    assert messages[1].metadata.degraded


def test_storage_failure_on_reply_stores_apology(classifier):
    storage = FlakyStorage(fail_on={2})
    pipeline = MessagePipeline(storage, classifier)

    with pytest.raises(PipelineError):
        asyncio.run(pipeline.process("hello", ChatSettings()))

    messages = storage.get_messages()
    assert [m.content for m in messages] == ["hello", prompts.pipeline_failure_reply]


def test_storage_failure_everywhere_still_raises_pipeline_error(classifier):
    storage = FlakyStorage(fail_on={1, 2})
    pipeline = MessagePipeline(storage, classifier)

    with pytest.raises(PipelineError):
        asyncio.run(pipeline.process("hello", ChatSettings()))

    assert storage.get_messages() == []


@pytest.mark.parametrize("content", ["", "   "])
def test_blank_content_is_rejected_without_side_effects(pipeline, storage, llm, content):
    with pytest.raises(ValueError):
        asyncio.run(pipeline.process(content, ChatSettings()))

    assert storage.get_messages() == []
    assert llm.calls == []


def test_suggestions_use_log(pipeline, llm):
    assert asyncio.run(pipeline.suggestions()) == prompts.fallback_suggestions

    asyncio.run(pipeline.process("hello", ChatSettings()))
    assert asyncio.run(pipeline.suggestions()) == ["Show me an example", "What are the trade-offs?", "Summarize that"]


def test_clear(pipeline, storage):
    asyncio.run(pipeline.process("hello", ChatSettings()))

    pipeline.clear()
    pipeline.clear()

    assert pipeline.get_messages() == []


class TickingClock:
    """Every reading is one minute after the previous one."""

    def __init__(self):
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(minutes=1)
        return self.now


def test_reply_still_sees_message_pruned_by_short_retention(classifier, llm):
    storage = MemStorage(retention=timedelta(seconds=30), clock=TickingClock())
    pipeline = MessagePipeline(storage, classifier)

    exchange = asyncio.run(pipeline.process("hello", ChatSettings()))

    assert exchange.ai_message.content == "Echo: hello"
    assert not exchange.ai_message.metadata.degraded
    assert [m.content for m in llm.calls_for("reply")[0]["messages"][2:]] == ["hello"]
