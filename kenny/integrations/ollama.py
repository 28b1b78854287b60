"""Async client for the Ollama REST API.

Two entry points:

* :meth:`OllamaClient.complete` — plain or JSON completion via
  ``/api/generate``, used for intent names and slot JSON.
* :meth:`OllamaClient.generate_structured` — output constrained to a
  Pydantic schema via ``/api/chat``.

Transport failures and unreadable replies are translated into the
:class:`CompletionError` family so callers can fall back without knowing
about httpx. Connection failures and 5xx replies are retried a bounded
number of times, within the overall request timeout.
"""

import asyncio
import json
import logging
import time
from typing import Any, Literal, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from kenny.integrations.cache import ResponseCache

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

DEFAULT_TIMEOUT = 15.0
MAX_RETRIES = 2
RETRY_DELAY = 0.5
# Requests at or below this temperature are treated as deterministic and cached
CACHEABLE_TEMPERATURE = 0.2

ResponseFormat = Literal["text", "json"] | dict[str, Any]


class CompletionError(Exception):
    """Base class for completion backend failures."""


class CompletionUnavailable(CompletionError):
    """The backend could not be reached (or no model is configured)."""


class CompletionTimeout(CompletionError):
    """The backend did not answer within the client timeout."""


class CompletionStatusError(CompletionError):
    """The backend answered with a non-2xx status."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        super().__init__(f"Ollama returned HTTP {status_code}: {detail}".rstrip(": "))
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500


class CompletionMalformed(CompletionError):
    """The backend answered 2xx but the body was not the expected JSON envelope."""


class CompletionResponse(BaseModel):
    """Normalized result of :meth:`OllamaClient.complete`."""

    content: str
    model: str
    elapsed_ms: float


class OllamaResponse(BaseModel):
    """Raw response from Ollama's /api/chat endpoint (non-streaming)."""

    model: str
    message: dict
    done: bool
    done_reason: str = ""
    total_duration: int = 0
    load_duration: int = 0
    prompt_eval_count: int = 0
    prompt_eval_duration: int = 0
    eval_count: int = 0
    eval_duration: int = 0


def _json_body(response: httpx.Response) -> dict[str, Any]:
    """Decode a 2xx reply, which Ollama always sends as a JSON object.

    Raises:
        CompletionMalformed: If the body is not JSON or not an object.
    """
    try:
        body = response.json()
    except ValueError as exc:
        raise CompletionMalformed(f"Ollama returned a non-JSON body: {response.text[:80]!r}") from exc
    if not isinstance(body, dict):
        raise CompletionMalformed(f"Ollama returned {type(body).__name__}, expected an object")
    return body


class OllamaClient:
    """Async HTTP client for Ollama.

    Usage::

        async with OllamaClient(base_url, default_model="qwen2.5") as client:
            reply = await client.complete(
                "Classify: remind me to call mom",
                system="Respond with ONLY the intent name.",
                temperature=0.1,
                max_tokens=10,
            )
    """

    def __init__(
        self,
        base_url: str,
        *,
        default_model: str = "",
        default_keep_alive: str = "5m",
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        cache: ResponseCache[CompletionResponse] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._default_model = default_model
        self._default_keep_alive = default_keep_alive
        self._timeout = timeout
        self._max_retries = max_retries
        self._cache = cache
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "OllamaClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def default_model(self) -> str:
        return self._default_model

    def set_default_model(self, model: str) -> None:
        self._default_model = model

    async def _post(self, path: str, payload: dict) -> dict[str, Any]:
        """POST *payload* and return the decoded JSON body.

        Unreachable-server and 5xx failures are retried up to ``max_retries``
        times with a growing delay. Every attempt shares one deadline of
        ``timeout`` seconds, so retries never stretch a request past it.
        Timeouts are not retried.
        """
        deadline = time.monotonic() + self._timeout
        attempt = 0
        while True:
            try:
                response = await self._post_once(path, payload, deadline - time.monotonic())
            except (CompletionUnavailable, CompletionStatusError) as exc:
                attempt += 1
                delay = RETRY_DELAY * attempt
                retryable = not isinstance(exc, CompletionStatusError) or exc.retryable
                out_of_time = time.monotonic() + delay >= deadline
                if not retryable or attempt > self._max_retries or out_of_time:
                    raise
                logger.warning(
                    "Ollama request failed (attempt %d/%d), retrying in %.1fs: %s",
                    attempt,
                    self._max_retries,
                    delay,
                    exc,
                )
                await asyncio.sleep(delay)
            else:
                return _json_body(response)

    async def _post_once(self, path: str, payload: dict, remaining: float) -> httpx.Response:
        if remaining <= 0:
            raise CompletionTimeout("Ollama request budget exhausted")
        try:
            response = await self._client.post(path, json=payload, timeout=remaining)
        except httpx.TimeoutException as exc:
            raise CompletionTimeout(f"Ollama did not respond in time: {exc}") from exc
        except httpx.TransportError as exc:
            raise CompletionUnavailable(f"Ollama unreachable at {self._base_url}: {exc}") from exc

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise CompletionStatusError(exc.response.status_code, exc.response.text[:200]) from exc
        return response

    def _resolve_model(self, model: str | None) -> str:
        resolved = model or self._default_model
        if not resolved:
            raise CompletionUnavailable("No Ollama model configured")
        return resolved

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 100,
        response_format: ResponseFormat = "text",
        model: str | None = None,
        keep_alive: str | None = None,
    ) -> CompletionResponse:
        """Run a single non-streaming completion.

        Args:
            prompt: User prompt.
            system: Optional system prompt.
            temperature: Sampling temperature. Lower = more deterministic.
            max_tokens: Upper bound on generated tokens (``num_predict``).
            response_format: ``"text"``, ``"json"``, or a JSON schema dict.
            model: Model name. Defaults to the client's default_model.
            keep_alive: How long to keep the model loaded after this request.

        Returns:
            CompletionResponse with the generated content.

        Raises:
            CompletionUnavailable: Backend unreachable or no model configured.
            CompletionTimeout: Backend did not answer within the timeout.
            CompletionStatusError: Non-2xx response from Ollama (5xx after retries).
            CompletionMalformed: 2xx reply that is not the expected JSON.
        """
        model = self._resolve_model(model)

        cache_key = None
        if self._cache is not None and temperature <= CACHEABLE_TEMPERATURE:
            fmt_key = json.dumps(response_format, sort_keys=True)
            cache_key = (model, system, prompt, temperature, max_tokens, fmt_key)
            cached = self._cache.get(cache_key)
            if cached is not None:
                logger.debug("Completion cache hit for %s", model)
                return cached

        payload: dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "keep_alive": keep_alive or self._default_keep_alive,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
        }
        if system:
            payload["system"] = system
        if response_format != "text":
            payload["format"] = response_format

        started = time.perf_counter()
        body = await self._post("/api/generate", payload)
        elapsed_ms = (time.perf_counter() - started) * 1000

        content = body.get("response", "")
        if not isinstance(content, str):
            raise CompletionMalformed(f"Ollama 'response' is {type(content).__name__}, expected text")
        result = CompletionResponse(
            content=content,
            model=str(body.get("model") or model),
            elapsed_ms=elapsed_ms,
        )
        logger.debug("Ollama %s: %d chars in %.0fms", result.model, len(result.content), elapsed_ms)

        if cache_key is not None:
            self._cache.put(cache_key, result)
        return result

    async def generate_structured(
        self,
        model: str | None,
        schema_class: type[T],
        system: str,
        prompt: str,
        *,
        temperature: float = 0.2,
        keep_alive: str | None = None,
    ) -> tuple[T, OllamaResponse]:
        """Generate a structured response constrained to a Pydantic schema.

        Args:
            model: Ollama model name, or None for the client's default.
            schema_class: Pydantic model class. Its JSON schema is sent to Ollama
                as the ``format`` parameter to constrain output.
            system: System prompt with instructions for the LLM.
            prompt: User prompt.
            temperature: Sampling temperature.
            keep_alive: How long to keep the model loaded after this request.

        Returns:
            Tuple of (parsed Pydantic model instance, raw OllamaResponse).

        Raises:
            CompletionError: On transport failure, timeout, non-2xx status or
                an unreadable reply envelope.
            pydantic.ValidationError: If LLM output doesn't match the schema.
        """
        model = self._resolve_model(model)
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "format": schema_class.model_json_schema(),
            "stream": False,
            "keep_alive": keep_alive or self._default_keep_alive,
            "options": {
                "temperature": temperature,
            },
        }

        body = await self._post("/api/chat", payload)

        try:
            raw = OllamaResponse.model_validate(body)
        except ValidationError as exc:
            raise CompletionMalformed(f"Unexpected /api/chat reply: {exc.error_count()} error(s)") from exc
        content = raw.message.get("content", "")
        if not isinstance(content, str):
            raise CompletionMalformed("Ollama message content is not text")

        parsed = schema_class.model_validate_json(content)

        logger.debug(
            "Ollama %s: %d prompt tokens, %d eval tokens, %.1fs total",
            model,
            raw.prompt_eval_count,
            raw.eval_count,
            raw.total_duration / 1e9,
        )

        return parsed, raw

    async def list_models(self) -> list[dict]:
        """List models available on the Ollama server."""
        try:
            response = await self._client.get("/api/tags")
        except httpx.TimeoutException as exc:
            raise CompletionTimeout(str(exc)) from exc
        except httpx.TransportError as exc:
            raise CompletionUnavailable(f"Ollama unreachable at {self._base_url}: {exc}") from exc
        if response.is_error:
            raise CompletionStatusError(response.status_code, response.text[:200])
        return _json_body(response).get("models", [])

    async def pick_instruct_model(self) -> str | None:
        """Auto-detect the best instruct/chat model available on the server."""
        models = await self.list_models()
        return pick_instruct_model(models)


def pick_instruct_model(models: list[dict]) -> str | None:
    """Select the best instruct/chat model from a list of Ollama models.

    Prefers models with 'instruct', 'chat', 'qwen', 'llama' or 'gemma' in the
    name. Falls back to the first available model if none match.

    Args:
        models: List of model dicts from Ollama's /api/tags endpoint.

    Returns:
        Model name string, or None if the list is empty.
    """
    preferred = ("instruct", "chat", "qwen", "llama", "gemma")
    for m in models:
        name = m["name"].lower()
        if any(p in name for p in preferred):
            return m["name"]
    return models[0]["name"] if models else None
