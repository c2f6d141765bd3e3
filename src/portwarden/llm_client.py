"""
LLM client for routing generation requests to language models

OpenAI, Azure OpenAI and OpenAI-compatible local servers share one
implementation; a mock client serves canned playbooks for development and
tests. Provider failures surface as LLMProviderError.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import openai
import yaml
from openai import AsyncAzureOpenAI, AsyncOpenAI
from pydantic import BaseModel, Field

from .config import LLMRouterConfig, PortwardenConfig
from .errors import LLMProviderError
from .observability.metrics import get_metrics
from .observability.tracer import add_event, set_attribute, trace_async

logger = logging.getLogger(__name__)

DEFAULT_MOCK_RESPONSES = Path(__file__).parent / "prompts" / "mock_responses.yaml"


class LLMResponse(BaseModel):
    """Standardized LLM response format"""

    content: str
    model: str
    tokens_used: Optional[int] = None
    finish_reason: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


def join_content(content: Any) -> str:
    """Flatten message content that may arrive as a list of parts"""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict):
                parts.append(str(part.get("text", "")))
            else:
                parts.append(str(getattr(part, "text", "")))
        return "\n".join(parts)
    return str(content)


def _error_payload(body: Any) -> dict[str, Any]:
    if isinstance(body, dict):
        # OpenAI nests the details under "error"
        return body.get("error", body) if isinstance(body.get("error"), dict) else body
    return {}


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients"""

    provider_name = "base"

    def __init__(self, config: LLMRouterConfig, router_name: str = "default"):
        self.config = config
        self.router_name = router_name

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        response_format: Optional[dict[str, Any]] = None,
        template_type: str = "default",
    ) -> LLMResponse:
        """Generate a completion"""

    async def close(self) -> None:
        """Release network resources held by the client"""


class BaseOpenAICompatibleClient(BaseLLMClient):
    """Shared chat-completions implementation for OpenAI-style APIs"""

    def __init__(self, config: LLMRouterConfig, router_name: str = "default"):
        super().__init__(config, router_name)
        self._client: Optional[AsyncOpenAI] = None

    @abstractmethod
    def _create_client(self) -> AsyncOpenAI:
        """Build the SDK client (called once, lazily)"""

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            try:
                self._client = self._create_client()
            except (openai.OpenAIError, ValueError) as e:
                # missing api key or endpoint
                logger.error(f"Cannot create {self.provider_name} client: {e}")
                self._record_error("ConfigurationError")
                raise LLMProviderError(
                    f"LLM provider is not configured: {e}",
                    status_code=500,
                    reason="configuration",
                ) from e
        return self._client

    def _model_name(self) -> str:
        return self.config.model

    def _record_error(self, error_type: str) -> None:
        metrics = get_metrics()
        if metrics:
            metrics.record_llm_error(
                self.provider_name, self.config.model, self.router_name, error_type
            )
        set_attribute("error.type", error_type)

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        response_format: Optional[dict[str, Any]] = None,
        template_type: str = "default",
    ) -> LLMResponse:
        """Generate a completion with the chat completions API"""

        @trace_async(f"llm.{self.provider_name}.generate")
        async def _generate() -> LLMResponse:
            set_attribute("llm.provider", self.provider_name)
            set_attribute("llm.model", self.config.model)
            set_attribute("llm.template_type", template_type)
            set_attribute("prompt.length", len(prompt))

            messages = []
            if system_prompt:
                messages.append({"role": "system", "content": system_prompt})
            messages.append({"role": "user", "content": prompt})

            params: dict[str, Any] = {
                "model": self._model_name(),
                "messages": messages,
                "temperature": self.config.temperature,
                "max_tokens": self.config.max_tokens,
            }
            if response_format:
                params["response_format"] = response_format

            try:
                response = await self._get_client().chat.completions.create(**params)
            except openai.APIStatusError as e:
                logger.error(f"{self.provider_name} request failed ({e.status_code}): {e}")
                self._record_error(type(e).__name__)
                payload = _error_payload(e.body)
                raise LLMProviderError(
                    payload.get("message") or str(e),
                    status_code=e.status_code,
                    reason=payload.get("code") or payload.get("type"),
                    payload=payload,
                ) from e
            except openai.APIConnectionError as e:
                # APITimeoutError is a subclass of APIConnectionError
                logger.error(f"{self.provider_name} request failed: {e}")
                self._record_error(type(e).__name__)
                status = 504 if isinstance(e, openai.APITimeoutError) else 502
                raise LLMProviderError(
                    f"LLM provider unreachable: {e}", status_code=status
                ) from e

            if not response.choices:
                self._record_error("EmptyChoices")
                raise LLMProviderError("LLM provider returned no choices", status_code=502)

            choice = response.choices[0]
            usage = response.usage
            result = LLMResponse(
                content=join_content(choice.message.content),
                model=response.model or self.config.model,
                tokens_used=usage.total_tokens if usage else None,
                finish_reason=choice.finish_reason,
                metadata={
                    "provider": self.provider_name,
                    "prompt_tokens": usage.prompt_tokens if usage else None,
                    "completion_tokens": usage.completion_tokens if usage else None,
                },
            )

            metrics = get_metrics()
            if metrics:
                metrics.record_llm_request(
                    self.provider_name, self.config.model, self.router_name, template_type
                )
                metrics.record_llm_tokens(
                    self.provider_name,
                    self.config.model,
                    self.router_name,
                    result.tokens_used or 0,
                )

            set_attribute("response.tokens_used", result.tokens_used or 0)
            set_attribute("response.finish_reason", result.finish_reason or "")
            add_event("llm_generation_complete")
            return result

        return await _generate()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


class OpenAIClient(BaseOpenAICompatibleClient):
    """OpenAI API client"""

    provider_name = "openai"

    def _create_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=self.config.api_key,
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            max_retries=0,
        )


class AzureOpenAIClient(BaseOpenAICompatibleClient):
    """Azure OpenAI client; requests address a deployment, not a model"""

    provider_name = "azure"

    def _create_client(self) -> AsyncOpenAI:
        if not self.config.base_url:
            raise ValueError("base_url (the Azure endpoint) is required for azure provider")
        return AsyncAzureOpenAI(
            api_key=self.config.api_key,
            azure_endpoint=self.config.base_url,
            azure_deployment=self.config.deployment,
            api_version=self.config.api_version or "2024-10-21",
            timeout=self.config.timeout,
            max_retries=0,
        )

    def _model_name(self) -> str:
        return self.config.deployment or self.config.model


class LocalLLMClient(BaseOpenAICompatibleClient):
    """
    Client for local OpenAI-compatible inference servers

    Works with Ollama (http://localhost:11434/v1), LMStudio
    (http://localhost:1234/v1), vLLM and similar.
    """

    provider_name = "local"

    def _create_client(self) -> AsyncOpenAI:
        if not self.config.base_url:
            raise ValueError(
                "base_url is required for local LLM provider. "
                "Examples: http://localhost:11434/v1 (Ollama), "
                "http://localhost:1234/v1 (LMStudio)"
            )
        return AsyncOpenAI(
            api_key=self.config.api_key or "not-needed",
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            max_retries=0,
        )


class MockLLMClient(BaseLLMClient):
    """
    Mock LLM client for testing and development

    Responses come from a YAML file keyed by template type. Each entry holds
    either `payload` (serialized to JSON) or raw `content`, and optionally a
    `finish_reason`.
    """

    provider_name = "mock"

    def __init__(self, config: LLMRouterConfig, router_name: str = "default"):
        super().__init__(config, router_name)
        path = Path(config.mock_responses_path or DEFAULT_MOCK_RESPONSES)
        with open(path, encoding="utf-8") as f:
            self.mock_responses: dict[str, Any] = yaml.safe_load(f) or {}

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        response_format: Optional[dict[str, Any]] = None,
        template_type: str = "default",
    ) -> LLMResponse:
        await asyncio.sleep(0)

        entry = self.mock_responses.get(template_type) or self.mock_responses.get(
            "default", {}
        )
        if "payload" in entry:
            content = json.dumps(entry["payload"], indent=2)
        else:
            content = entry.get("content", f"Mock response for {template_type}")

        metrics = get_metrics()
        if metrics:
            metrics.record_llm_request(
                self.provider_name, self.config.model, self.router_name, template_type
            )

        return LLMResponse(
            content=content,
            model=f"mock-{self.config.model}",
            tokens_used=len(content.split()),
            finish_reason=entry.get("finish_reason", "stop"),
            metadata={"mock": True, "template_type": template_type},
        )


_PROVIDERS: dict[str, type[BaseLLMClient]] = {
    "openai": OpenAIClient,
    "azure": AzureOpenAIClient,
    "local": LocalLLMClient,
    "mock": MockLLMClient,
}


class LLMRouter:
    """
    Routes LLM requests to configured clients

    Clients are created on first use and cached per router name. There is
    no failover: the first provider error propagates to the caller.
    """

    def __init__(self, config: PortwardenConfig):
        self.config = config
        self._clients: dict[str, BaseLLMClient] = {}

    def get_client(self, router_name: Optional[str] = None) -> BaseLLMClient:
        router_name = router_name or self.config.llm.default

        if router_name not in self._clients:
            router_config = self.config.get_llm_router_config(router_name)
            client_cls = _PROVIDERS[router_config.provider]
            self._clients[router_name] = client_cls(router_config, router_name)
            logger.debug(f"Created {router_config.provider} client for router {router_name}")

        return self._clients[router_name]

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        response_format: Optional[dict[str, Any]] = None,
        template_type: str = "default",
        router_name: Optional[str] = None,
    ) -> LLMResponse:
        try:
            client = self.get_client(router_name)
        except (OSError, ValueError) as e:
            logger.error(f"Cannot route LLM request: {e}")
            raise LLMProviderError(
                f"LLM provider is not configured: {e}",
                status_code=500,
                reason="configuration",
            ) from e
        return await client.generate(
            prompt,
            system_prompt=system_prompt,
            response_format=response_format,
            template_type=template_type,
        )

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
