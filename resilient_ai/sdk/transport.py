"""
Provider transport.

Sends one prompt to one provider and returns the generated text. The
response shape configured for the provider decides both the request body
and where the text sits in the answer. Every failure is raised as a
ProviderError subclass so the dispatcher can classify it.
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

import requests
from openai import APIStatusError, APITimeoutError, OpenAI, OpenAIError

from ..config.loader import ProviderConfig, ResponseShape
from ..core.errors import ProviderShapeError, ProviderTransportError
from ..core.fallback import SYNTHESIZERS
from ..core.tasks import Messages, messages_to_prompt


@dataclass(frozen=True)
class ProviderResponse:
    """Generated text, tagged with the response shape it was read from."""
    kind: ResponseShape
    text: str


def parse_response_body(provider: ProviderConfig, body: Any) -> ProviderResponse:
    """Pull the generated text out of a decoded HTTP response body.

    Raises:
        ProviderShapeError: If the body does not have the configured shape
    """
    shape = provider.response_shape
    try:
        if shape == ResponseShape.CHAT:
            text = body["choices"][0]["message"]["content"]
        elif shape == ResponseShape.COMPLETION:
            text = body["choices"][0]["text"]
        elif shape == ResponseShape.GENERATIONS:
            text = body["generations"][0]["text"]
        else:
            raise ProviderShapeError(provider.id, f"no HTTP body for shape '{shape.value}'")
    except (KeyError, IndexError, TypeError):
        raise ProviderShapeError(
            provider.id, f"response is not a '{shape.value}' body"
        ) from None
    if not isinstance(text, str) or not text.strip():
        raise ProviderShapeError(provider.id, "response text is empty")
    return ProviderResponse(kind=shape, text=text)


class ProviderTransport:
    """Outbound calls to configured providers.

    Chat-shaped providers go through the OpenAI SDK pointed at the
    provider's endpoint; completion and generation shapes are plain JSON
    POSTs. SDK retries are disabled: one orchestration call makes at most
    one attempt per provider.

    HTTP bodies are streamed and reading stops once ``timeout_s`` has passed
    since the request was sent; the ``requests`` timeout alone only bounds
    each socket operation. The OpenAI client also applies its timeout per
    operation, so a chat provider that keeps trickling bytes can overrun
    ``timeout_s``.
    """

    CHUNK_SIZE = 8192

    def __init__(self, session: Optional[requests.Session] = None,
                 monotonic: Callable[[], float] = time.monotonic):
        self._session = session
        self._monotonic = monotonic

    def __call__(self, provider: ProviderConfig, api_key: Optional[str],
                 messages: Messages, timeout_s: float,
                 task: Optional[str] = None,
                 params: Optional[Mapping[str, Any]] = None) -> ProviderResponse:
        """Send one request.

        Args:
            provider: Target provider
            api_key: Raw API key (None for mock providers)
            messages: Chat messages to send
            timeout_s: Hard timeout for the whole call
            task: Task name, used by mock providers
            params: Validated task parameters, used by mock providers

        Raises:
            ProviderTransportError: On timeout, connection error or non-2xx
            ProviderShapeError: If the answer has the wrong shape
        """
        if provider.response_shape == ResponseShape.MOCK:
            return self._mock(provider, task, params)
        if provider.response_shape == ResponseShape.CHAT:
            return self._chat(provider, api_key, messages, timeout_s)
        return self._post(provider, api_key, messages, timeout_s)

    def _chat(self, provider: ProviderConfig, api_key: Optional[str],
              messages: Messages, timeout_s: float) -> ProviderResponse:
        try:
            client = OpenAI(
                api_key=api_key,
                base_url=provider.endpoint,
                timeout=timeout_s,
                max_retries=0,
            )
            response = client.chat.completions.create(
                model=provider.model,
                messages=messages,
                max_tokens=provider.max_tokens,
                temperature=provider.temperature,
            )
        except APITimeoutError:
            raise ProviderTransportError(provider.id, f"timed out after {timeout_s:.1f}s") from None
        except APIStatusError as e:
            raise ProviderTransportError(provider.id, f"HTTP {e.status_code}") from None
        except OpenAIError as e:
            raise ProviderTransportError(provider.id, f"{type(e).__name__}: {e}") from None

        choice = response.choices[0] if response.choices else None
        text = choice.message.content if choice and choice.message else None
        if not text or not text.strip():
            raise ProviderShapeError(provider.id, "chat response has no content")
        return ProviderResponse(kind=ResponseShape.CHAT, text=text)

    def _post(self, provider: ProviderConfig, api_key: Optional[str],
              messages: Messages, timeout_s: float) -> ProviderResponse:
        body: Dict[str, Any] = {
            "model": provider.model,
            "prompt": messages_to_prompt(messages),
            "max_tokens": provider.max_tokens,
            "temperature": provider.temperature,
        }
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        post = self._session.post if self._session is not None else requests.post
        deadline = self._monotonic() + timeout_s
        try:
            response = post(provider.endpoint, json=body, headers=headers,
                            timeout=timeout_s, stream=True)
            try:
                response.raise_for_status()
                raw = self._read_body(provider, response, deadline, timeout_s)
            finally:
                response.close()
        except requests.exceptions.Timeout:
            raise ProviderTransportError(provider.id, f"timed out after {timeout_s:.1f}s") from None
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            raise ProviderTransportError(provider.id, f"HTTP {status}") from None
        except requests.exceptions.RequestException as e:
            raise ProviderTransportError(provider.id, f"{type(e).__name__}: {e}") from None

        try:
            data = json.loads(raw)
        except ValueError:
            raise ProviderShapeError(provider.id, "response body is not JSON") from None
        return parse_response_body(provider, data)

    def _read_body(self, provider: ProviderConfig, response: requests.Response,
                   deadline: float, timeout_s: float) -> bytes:
        """Read a streamed body, giving up once the wall-clock deadline passes."""
        chunks = []
        for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
            if self._monotonic() > deadline:
                raise ProviderTransportError(
                    provider.id, f"timed out after {timeout_s:.1f}s reading response body"
                )
            chunks.append(chunk)
        return b"".join(chunks)

    def _mock(self, provider: ProviderConfig, task: Optional[str],
              params: Optional[Mapping[str, Any]]) -> ProviderResponse:
        """Canned answer wrapped in prose, the way real models reply."""
        synthesize = SYNTHESIZERS.get(task or "")
        if synthesize is None or params is None:
            raise ProviderShapeError(provider.id, f"mock provider cannot answer task {task!r}")
        data = synthesize(params)
        data.pop("id", None)
        text = (
            "Here is the result you asked for:\n```json\n"
            f"{json.dumps(data, ensure_ascii=False, indent=2)}\n```"
        )
        return ProviderResponse(kind=ResponseShape.MOCK, text=text)

