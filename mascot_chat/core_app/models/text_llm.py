import asyncio
from time import sleep
from typing import Any, Dict, List, Optional

import aiohttp
import requests
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.outputs import ChatGeneration, ChatResult

from mascot_chat.core_app.api_clients.api_clients import OpenAIClient, OPENAI_API_URL
from mascot_chat.core_app.exceptions import (
    ProviderError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from mascot_chat.core_app.tools.setup_logger import setup_logger

logger = setup_logger(__name__.upper())
semaphore = asyncio.Semaphore(4)

ROLE_BY_TYPE = {"system": "system", "human": "user", "ai": "assistant"}


def to_openai_messages(messages: List[BaseMessage]) -> List[Dict[str, str]]:
    return [{"role": ROLE_BY_TYPE.get(m.type, "user"), "content": m.content} for m in messages]


def extract_content(result: Any) -> str:
    try:
        content = result['choices'][0]['message']['content']
    except (KeyError, IndexError, TypeError) as e:
        raise ProviderResponseError(f"Malformed completion body: {e}") from e
    return content or ""


class CustomChatModel(BaseChatModel):
    """
    OpenAI-compatible chat/completions model.

    Failures are raised as ProviderError subclasses so callers can decide how to degrade:
    timeouts (after `retries` attempts) -> ProviderTimeoutError, HTTP 429 ->
    ProviderRateLimitError, unreadable bodies -> ProviderResponseError.
    """
    api_key: str
    api_url: str = OPENAI_API_URL
    model: str = "gpt-4o"
    temperature: float = 1.0
    timeout: float = 60
    retries: int = 2
    retry_delay: float = 1.0

    @property
    def _identifying_params(self):
        return {"api_url": f"{self.api_url}", "model": self.model}

    @property
    def _llm_type(self):
        return "openai-compatible"

    def build_payload(self, messages: List[BaseMessage], **kwargs) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": to_openai_messages(messages),
            "temperature": kwargs.get("temperature", self.temperature),
        }

    async def send_post_request_with_retry(self, data: Dict[str, Any]) -> Dict[str, Any]:
        headers = OpenAIClient(self.api_key).get_headers()
        async with semaphore:
            logger.info(f"[LLM] Request to {self.model} (temp={data['temperature']}, messages={len(data['messages'])})")
            async with aiohttp.ClientSession() as session:
                for attempt in range(self.retries):
                    try:
                        logger.debug(f"[LLM] Attempt {attempt + 1}/{self.retries} to {self.model}")
                        async with session.post(
                            self.api_url,
                            headers=headers,
                            json=data,
                            timeout=aiohttp.ClientTimeout(total=self.timeout),
                        ) as response:
                            if response.status == 429:
                                raise ProviderRateLimitError("Provider rate limit reached")
                            response.raise_for_status()
                            return await response.json()
                    except asyncio.TimeoutError:
                        logger.warning(
                            f"[LLM] Request to {self.model} timed out ({attempt + 1}/{self.retries}). Retrying...")
                    except (aiohttp.ContentTypeError, ValueError) as e:
                        raise ProviderResponseError(f"Unreadable provider response: {e}") from e
                    except aiohttp.ClientError as e:
                        logger.error(f"[LLM] Client error: {e}")
                        raise ProviderError(str(e)) from e
                    if attempt + 1 < self.retries:
                        await asyncio.sleep(self.retry_delay)
        raise ProviderTimeoutError(f"No answer from {self.model} after {self.retries} attempts")

    def _generate(
            self,
            messages,
            stop=None,
            run_manager=None,
            **kwargs
    ) -> ChatResult:
        data = self.build_payload(messages, **kwargs)
        headers = OpenAIClient(self.api_key).get_headers()

        def send_post_request_with_retry(url, headers, data, timeout, retries):
            for attempt in range(retries):
                try:
                    response = requests.post(url, headers=headers, json=data, timeout=timeout)
                    if response.status_code == 429:
                        raise ProviderRateLimitError("Provider rate limit reached")
                    response.raise_for_status()
                    return response
                except requests.exceptions.Timeout:
                    logger.error("[LLM] Request timed out. Retrying...")
                except requests.exceptions.RequestException as e:
                    logger.error(f"[LLM] An error occurred: {e}")
                    raise ProviderError(str(e)) from e
                if attempt + 1 < retries:
                    sleep(self.retry_delay)
            raise ProviderTimeoutError(f"No answer from {self.model} after {retries} attempts")

        logger.info(f"[LLM] Request to {self.model} ({data['temperature']})")
        response = send_post_request_with_retry(self.api_url, headers, data, self.timeout, self.retries)

        try:
            result = response.json()
        except ValueError as e:
            raise ProviderResponseError(f"Unreadable provider response: {e}") from e

        message = AIMessage(content=extract_content(result))
        return ChatResult(generations=[ChatGeneration(message=message)])

    async def _agenerate(
            self,
            messages,
            stop=None,
            run_manager=None,
            **kwargs
    ) -> ChatResult:
        data = self.build_payload(messages, **kwargs)
        result = await self.send_post_request_with_retry(data)

        message = AIMessage(content=extract_content(result))
        return ChatResult(generations=[ChatGeneration(message=message)])


def build_chat_model(settings) -> CustomChatModel:
    return CustomChatModel(
        api_key=settings.openai_api_key,
        api_url=settings.llm_api_url,
        model=settings.llm_model,
        timeout=settings.llm_timeout,
        retries=settings.llm_retries,
    )
