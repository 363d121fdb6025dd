from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage
from langchain_core.outputs import ChatGeneration, ChatResult

from mascot_chat.api import create_app
from mascot_chat.core_app.config import Settings
from mascot_chat.core_app.database.session import create_session_factory
from mascot_chat.core_app.services.classifier import ChatClassifier
from mascot_chat.core_app.services.storage import DatabaseStorage, MemStorage
from mascot_chat.core_app.tools import prompts

TASK_BY_PROMPT = {
    prompts.sentiment_prompt: "sentiment",
    prompts.classification_prompt: "classify",
    prompts.suggestions_prompt: "suggest",
}


class FakeChatModel(BaseChatModel):
    """Answers according to which system prompt it receives; errors are raised per task."""

    sentiment: str = '{"score": 0.6}'
    category: str = "code"
    suggestions: str = '["Show me an example", "What are the trade-offs?", "Summarize that"]'
    reply: Optional[str] = None
    errors: Dict[str, Any] = {}
    calls: List[Dict[str, Any]] = []

    @property
    def _llm_type(self):
        return "fake"

    def _task(self, messages) -> str:
        return TASK_BY_PROMPT.get(messages[0].content, "reply")

    def _generate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        task = self._task(messages)
        self.calls.append({"task": task, "messages": list(messages), "temperature": kwargs.get("temperature")})
        if task in self.errors:
            raise self.errors[task]

        if task == "sentiment":
            text = self.sentiment
        elif task == "classify":
            text = self.category
        elif task == "suggest":
            text = self.suggestions
        else:
            text = self.reply if self.reply is not None else f"Echo: {messages[-1].content}"
        return ChatResult(generations=[ChatGeneration(message=AIMessage(content=text))])

    async def _agenerate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        return self._generate(messages, stop=stop, run_manager=run_manager, **kwargs)

    def calls_for(self, task: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["task"] == task]


@pytest.fixture(autouse=True)
def env(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("SESSION_SECRET", "test-secret")
    for name in ("DATABASE_URL", "CORS_ORIGINS", "MESSAGE_RETENTION_MINUTES"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings():
    return Settings(
        openai_api_key="test-key",
        session_secret="test-secret",
        rate_limit=1000,
        clear_messages_on_startup=False,
    )


@pytest.fixture
def llm():
    return FakeChatModel()


@pytest.fixture
def classifier(llm):
    return ChatClassifier(llm)


@pytest.fixture
def mem_storage():
    return MemStorage()


@pytest.fixture
def db_storage():
    return DatabaseStorage(create_session_factory("sqlite://"))


@pytest.fixture(params=["memory", "database"])
def storage(request):
    if request.param == "memory":
        return MemStorage()
    return DatabaseStorage(create_session_factory("sqlite://"))


@pytest.fixture
def app(settings, mem_storage, classifier):
    return create_app(settings=settings, storage=mem_storage, classifier=classifier)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def auth_client(client):
    response = client.post("/api/register", json={"username": "alice", "password": "wonderland"})
    assert response.status_code == 201, response.text
    return client
