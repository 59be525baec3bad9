"""HTTP LLM client for OpenAI-compatible ``/chat/completions`` endpoints.

An agent's ``apiConfig`` may override ``model``, ``temperature``,
``maxTokens``, ``topP``, ``endpoint`` and ``apiKey`` per call; everything
else comes from ``CouncilSettings``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
from loguru import logger

from councilflow.runtime.collaborators.base import ChatResult

if TYPE_CHECKING:
    from councilflow.runtime.models.directory import Agent
    from councilflow.runtime.settings import CouncilSettings

# apiConfig key -> request body key
_MODEL_PARAMS = {
    "model": "model",
    "temperature": "temperature",
    "maxTokens": "max_tokens",
    "topP": "top_p",
    "frequencyPenalty": "frequency_penalty",
    "presencePenalty": "presence_penalty",
}


class LLMError(RuntimeError):
    """Raised when the endpoint returns a non-2xx status or an unusable body."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class HttpLLMClient:
    """Async chat-completions client.

    Parameters
    ----------
    base_url:
        Endpoint root, e.g. ``https://api.openai.com/v1``.
    api_key:
        Bearer token; omitted from headers when None.
    model:
        Default model when neither the call nor the agent names one.
    timeout:
        Default request timeout in seconds.
    client:
        Pre-built ``httpx.AsyncClient`` (tests pass one with a
        ``MockTransport``).  Created lazily when omitted.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._api_key = api_key
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings: CouncilSettings, *, client: httpx.AsyncClient | None = None) -> HttpLLMClient:
        if not settings.llm_base_url:
            raise ValueError("COUNCIL_LLM_BASE_URL is not configured")
        return cls(
            settings.llm_base_url,
            api_key=settings.llm_api_key.get_secret_value() if settings.llm_api_key else None,
            model=settings.llm_model,
            timeout=settings.llm_timeout,
            client=client,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpLLMClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -- LLMClient protocol ----------------------------------------------------

    async def chat(self, messages: list[dict[str, str]], **model_config: Any) -> ChatResult:
        """POST a chat completion and return the first choice's content."""
        endpoint = model_config.pop("endpoint", None) or self.base_url
        api_key = model_config.pop("api_key", None) or model_config.pop("apiKey", None) or self._api_key
        timeout = model_config.pop("timeout", None) or self.timeout

        body: dict[str, Any] = {"model": self.model, "messages": messages}
        for key, value in model_config.items():
            if value is None or value == "":
                continue
            body[_MODEL_PARAMS.get(key, key)] = value

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        url = f"{endpoint.rstrip('/')}/chat/completions"
        logger.debug("LLM request: model={} messages={}", body["model"], len(messages))
        try:
            response = await self._get_client().post(url, json=body, headers=headers, timeout=timeout)
        except httpx.HTTPError as exc:
            raise LLMError(f"LLM request failed: {exc}") from exc

        if response.status_code >= 400:
            raise LLMError(
                f"LLM endpoint returned {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise LLMError("LLM response is not valid JSON") from exc
        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMError("LLM response has no choices") from exc
        return ChatResult(content=content, model=data.get("model", body["model"]), usage=data.get("usage", {}), raw=data)

    async def generate(
        self,
        prompt: str,
        *,
        agent: Agent | None = None,
        system_prompt: str | None = None,
        timeout: float | None = None,
    ) -> str:
        """Single-turn completion.

        The system message is *system_prompt* when given, otherwise the
        agent's own ``systemPrompt``.  The agent's ``apiConfig`` supplies
        model parameters.
        """
        messages: list[dict[str, str]] = []
        system = system_prompt if system_prompt is not None else (agent.system_prompt if agent else "")
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        api_config = agent.api_config if agent else {}
        model_config = {k: v for k, v in api_config.items() if k in _MODEL_PARAMS or k in ("endpoint", "apiKey")}
        if timeout is not None:
            model_config["timeout"] = timeout
        result = await self.chat(messages, **model_config)
        return result.content
