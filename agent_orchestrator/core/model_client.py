"""HTTP client for an OpenAI-compatible chat-completions provider."""

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .error_recovery import RetryStrategy
from .exceptions import ConfigurationError, ModelProviderError
from .logging import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://dashscope.aliyuncs.com/compatible-mode/v1"
DEFAULT_MODEL = "qwen-turbo"


@dataclass
class ChatCompletion:
    """Normalized response of one chat call."""

    content: str
    model: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    duration_ms: int


class ChatModelClient:
    """Calls ``POST {base_url}/chat/completions`` with bearer authentication.

    The underlying ``httpx.Client`` is shared by all worker threads; pass
    ``http_client`` to supply a preconfigured one (e.g. with a mock transport).
    Recoverable failures are retried through ``retry_strategy``, which keeps
    one circuit breaker per model.
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        default_model: str = DEFAULT_MODEL,
        timeout: float = 60.0,
        http_client: Optional[httpx.Client] = None,
        retry_strategy: Optional[RetryStrategy] = None
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.timeout = timeout
        self._client = http_client or httpx.Client(timeout=timeout)
        self.retry_strategy = retry_strategy or RetryStrategy()

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def chat(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None
    ) -> ChatCompletion:
        """
        Send a chat request.

        Args:
            messages: Chat messages as ``{"role", "content"}`` dicts
            model: Model id; defaults to the client's default model
            temperature: Optional sampling temperature
            max_tokens: Optional cap on generated tokens
            timeout: Optional per-request timeout in seconds

        Returns:
            The first choice's content with token usage

        Raises:
            ConfigurationError: If no API key is configured
            ModelProviderError: If the request still fails after retries or the response is malformed
            CircuitOpenError: If recent calls to the model kept failing
        """
        if not self.api_key:
            raise ConfigurationError("Model provider API key is not set", config_key="model_api_key")

        model = model or self.default_model
        payload: Dict[str, Any] = {"model": model, "messages": messages}
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        request_timeout = timeout if timeout is not None else self.timeout
        return self.retry_strategy.execute(model, lambda: self._send(payload, model, request_timeout))

    def _send(self, payload: Dict[str, Any], model: str, timeout: float) -> ChatCompletion:
        """Make a single chat-completions request."""
        start_time = time.time()
        try:
            response = self._client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=timeout,
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Chat call to {model} failed with status {e.response.status_code}")
            raise ModelProviderError(
                f"Model provider returned HTTP {e.response.status_code}",
                status_code=e.response.status_code, model=model
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Chat call to {model} failed: {str(e)}")
            raise ModelProviderError(f"Model provider request failed: {str(e)}", model=model) from e
        except ValueError as e:
            raise ModelProviderError(f"Model provider returned invalid JSON: {str(e)}", model=model) from e

        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ModelProviderError("Model provider response has no message content", model=model) from e

        usage = body.get("usage") or {}
        duration_ms = int((time.time() - start_time) * 1000)
        logger.debug(f"Chat call to {model} completed in {duration_ms} ms")

        return ChatCompletion(
            content=content,
            model=body.get("model", model),
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
            duration_ms=duration_ms,
        )

    def close(self) -> None:
        self._client.close()
