"""Ollama provider - direct HTTP calls to the Ollama generate API."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from tether.exceptions import LLMAPIError, LLMError
from tether.logging import get_logger

log = get_logger(__name__)


OLLAMA_NATIVE_BASE_URL = "http://localhost:11434"


@dataclass
class GenerateOptions:
    """Per-call overrides; None falls back to the provider defaults."""

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


@dataclass
class LLMResponse:
    """Response from the LLM."""

    content: str
    model: str = ""
    usage: dict[str, int] = field(default_factory=dict)


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    model: str = ""
    temperature: float = 0.7
    max_tokens: int = 4000

    @abstractmethod
    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerateOptions | None = None,
    ) -> LLMResponse:
        pass

    def count_tokens(self, text: str) -> int:
        """Count tokens (rough estimate, ~4 characters per token)."""
        return len(text) // 4

    async def close(self) -> None:
        return None


class OllamaProvider(LLMProvider):
    """Direct Ollama API provider."""

    def __init__(
        self,
        model: str = "qwen2.5-coder:3b",
        base_url: str = OLLAMA_NATIVE_BASE_URL,
        temperature: float = 0.7,
        max_tokens: int = 4000,
        api_key: str | None = None,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Ollama provider.

        Args:
            model: Ollama model name (e.g., 'qwen2.5-coder:3b', 'llama3.2')
            base_url: Ollama API base URL
            temperature: Sampling temperature
            max_tokens: Max tokens to generate (sent as num_predict)
            api_key: Optional bearer token for proxied servers
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.api_key = api_key

        self.client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _build_body(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerateOptions | None,
    ) -> dict[str, Any]:
        options = options or GenerateOptions()
        temperature = options.temperature if options.temperature is not None else self.temperature
        max_tokens = options.max_tokens or self.max_tokens

        ollama_options: dict[str, Any] = {"temperature": temperature}
        if max_tokens:
            ollama_options["num_predict"] = max_tokens

        body: dict[str, Any] = {
            "model": options.model or self.model,
            "prompt": user_prompt,
            "stream": False,
            "options": ollama_options,
        }
        if system_prompt:
            body["system"] = system_prompt
        return body

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerateOptions | None = None,
    ) -> LLMResponse:
        """Generate a completion for a flattened system/user prompt pair."""
        url = f"{self.base_url}/api/generate"
        body = self._build_body(system_prompt, user_prompt, options)

        try:
            log.debug(
                "Calling Ollama",
                model=body["model"],
                url=url,
                system_len=len(system_prompt),
                prompt_len=len(user_prompt),
            )

            response = await self.client.post(url, json=body, headers=self._headers())

            log.debug("Ollama response status", status=response.status_code)

            if not response.is_success:
                raise LLMAPIError(
                    f"Ollama API error {response.status_code}: {response.text}",
                    status_code=response.status_code,
                )

            data = response.json()
            if not isinstance(data, dict):
                raise LLMError("Ollama response is not a JSON object")

            prompt_tokens = int(data.get("prompt_eval_count") or 0)
            completion_tokens = int(data.get("eval_count") or 0)
            return LLMResponse(
                content=str(data.get("response") or ""),
                model=str(data.get("model") or body["model"]),
                usage={
                    "prompt_tokens": prompt_tokens,
                    "completion_tokens": completion_tokens,
                    "total_tokens": prompt_tokens + completion_tokens,
                },
            )

        except LLMError:
            raise
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Ollama HTTP error: {e}")
        except json.JSONDecodeError as e:
            raise LLMError(f"Ollama response decode error: {e}")

    async def list_models(self) -> list[str]:
        """Names of models available on the server."""
        url = f"{self.base_url}/api/tags"
        try:
            response = await self.client.get(url, headers=self._headers())
            if not response.is_success:
                raise LLMAPIError(
                    f"Ollama API error {response.status_code}: {response.text}",
                    status_code=response.status_code,
                )
            data = response.json()
        except LLMError:
            raise
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Ollama HTTP error: {e}")
        except json.JSONDecodeError as e:
            raise LLMError(f"Ollama response decode error: {e}")

        return [str(item.get("name", "")) for item in data.get("models") or [] if item.get("name")]

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def create_provider(
    provider: str = "ollama",
    model: str = "qwen2.5-coder:3b",
    api_key: str | None = None,
    base_url: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = 4000,
    timeout: float = 120.0,
) -> LLMProvider:
    """Create an LLM provider.

    Args:
        provider: Provider name (only ollama is supported)
        model: Model name
        api_key: Optional API key
        base_url: Optional base URL
        temperature: Default temperature
        max_tokens: Default max tokens
        timeout: Request timeout in seconds

    Returns:
        Configured LLMProvider instance
    """
    if provider == "ollama":
        return OllamaProvider(
            model=model,
            base_url=base_url or OLLAMA_NATIVE_BASE_URL,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=api_key,
            timeout=timeout,
        )
    raise ValueError(f"Provider '{provider}' not supported. Use 'ollama'.")


def create_provider_from_config(config) -> LLMProvider:
    """Build the provider described by the ``model`` config section."""
    return create_provider(
        provider=config.model.provider,
        model=config.model.model,
        api_key=config.model.api_key or None,
        base_url=config.model.base_url,
        temperature=config.model.temperature,
        max_tokens=config.model.max_tokens,
        timeout=config.model.request_timeout,
    )
