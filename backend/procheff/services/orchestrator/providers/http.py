"""
HTTP provider adapters.

Provider-agnostic plumbing over httpx (no vendor SDKs):
- one circuit breaker per provider around the POST
- a shared prompt asking for a single JSON object with a "confidence" key
- JSON extraction from the model's text output
- token usage read from the backend's usage block

Variants:
- OpenAIChatProvider: OpenAI-compatible /chat/completions
- AnthropicMessagesProvider: Anthropic /messages
- GeminiProvider: Google Generative Language :generateContent
"""
import json
import math
import re
from abc import abstractmethod
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

import httpx

from procheff.core.circuit_breaker import CircuitBreaker
from procheff.core.logging import get_logger
from procheff.services.orchestrator.errors import ProviderError
from procheff.services.orchestrator.providers.base import ProviderAdapter, ProviderOutput

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

SYSTEM_PROMPT = (
    "You are an analysis engine for a professional catering kitchen. "
    "Solve the task described by the user for the JSON context provided.\n\n"
    "You MUST respond with a single JSON object only. Include a numeric "
    '"confidence" key between 0.0 and 1.0 rating how reliable your answer is. '
    "Do not include any explanation outside the JSON object."
)


def build_user_prompt(task: str, context: Any, capability_tags: Optional[Sequence[str]]) -> str:
    """Render the task, required capabilities and context into one user message."""
    lines = [f"Task: {task}"]
    if capability_tags:
        lines.append(f"Required capabilities: {', '.join(capability_tags)}")
    lines.append("Context:")
    lines.append(json.dumps(context, ensure_ascii=False, indent=2, default=str))
    return "\n".join(lines)


def parse_json_output(text: str) -> Tuple[Any, Optional[float]]:
    """
    Extract the JSON object from a model's text output.

    Returns:
        (payload, self-reported confidence or None)

    Raises:
        ProviderError: if no JSON object can be parsed
    """
    cleaned = _FENCE_RE.sub("", (text or "").strip())
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ProviderError("malformed response: no JSON object in model output")
        try:
            payload = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as exc:
            raise ProviderError(f"malformed response: {exc}") from exc

    confidence = None
    if isinstance(payload, dict):
        raw = payload.get("confidence")
        if isinstance(raw, (int, float)) and not isinstance(raw, bool) and math.isfinite(raw):
            confidence = float(raw)
    return payload, confidence


class HTTPProvider(ProviderAdapter):
    """
    Base class for providers reached over HTTP.

    `transport` lets tests plug in an httpx.MockTransport.
    """

    kind = "http"

    def __init__(
        self,
        name: str,
        api_key: str,
        model: str,
        api_base: str,
        capabilities: Iterable[str] = (),
        priority: int = 0,
        cost_per_1k_tokens: float = 0.0,
        max_tokens: int = 1000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        super().__init__(
            name=name,
            capabilities=capabilities,
            priority=priority,
            cost_per_1k_tokens=cost_per_1k_tokens,
        )
        self.api_key = api_key
        self.model = model
        self.api_base = api_base.rstrip("/")
        self.max_tokens = max_tokens
        self._transport = transport
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name=f"provider_{name}")

    def _on_timeout(self) -> None:
        self.circuit_breaker.record_failure()

    def describe(self) -> Dict[str, Any]:
        info = super().describe()
        info["model"] = self.model
        info["circuit_breaker"] = self.circuit_breaker.snapshot()
        return info

    async def _post(
        self,
        path: str,
        json_payload: Dict[str, Any],
        headers: Dict[str, str],
        params: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Low-level POST helper (isolated for the circuit breaker)."""
        url = f"{self.api_base}{path}"
        # No client-side timeout: ProviderAdapter.invoke bounds the whole call.
        async with httpx.AsyncClient(transport=self._transport, timeout=None) as client:
            response = await client.post(url, headers=headers, json=json_payload, params=params)
        # Raise inside the breaker so 5xx / 4xx count as failures.
        response.raise_for_status()
        return response

    async def _invoke(
        self,
        task: str,
        context: Any,
        capability_tags: Optional[Sequence[str]],
    ) -> ProviderOutput:
        path, payload, headers, params = self.build_request(
            build_user_prompt(task, context, capability_tags)
        )
        response = await self.circuit_breaker.call(
            self._post, path, payload, headers, params
        )
        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError(f"malformed response: body is not JSON ({exc})") from exc

        text, tokens_used = self.extract(body)
        data, confidence = parse_json_output(text)
        return ProviderOutput(data=data, confidence=confidence, tokens_used=tokens_used)

    @abstractmethod
    def build_request(
        self, user_prompt: str
    ) -> Tuple[str, Dict[str, Any], Dict[str, str], Optional[Dict[str, str]]]:
        """Return (path, json payload, headers, query params) for one call."""

    @abstractmethod
    def extract(self, body: Dict[str, Any]) -> Tuple[str, int]:
        """Return (model text output, total tokens used) from the response body."""


class OpenAIChatProvider(HTTPProvider):
    """OpenAI-compatible chat completions API."""

    kind = "openai"

    def build_request(self, user_prompt):
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": 0.2,
            "max_tokens": self.max_tokens,
            "response_format": {"type": "json_object"},
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        return "/chat/completions", payload, headers, None

    def extract(self, body):
        try:
            text = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError("malformed response: missing choices[0].message.content") from exc
        usage = body.get("usage") or {}
        tokens = int(usage.get("prompt_tokens") or 0) + int(usage.get("completion_tokens") or 0)
        return text, tokens


class AnthropicMessagesProvider(HTTPProvider):
    """Anthropic Messages API."""

    kind = "anthropic"
    api_version = "2023-06-01"

    def build_request(self, user_prompt):
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
        }
        return "/messages", payload, headers, None

    def extract(self, body):
        blocks = body.get("content") or []
        texts = [b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text"]
        if not texts:
            raise ProviderError("malformed response: no text content block")
        usage = body.get("usage") or {}
        tokens = int(usage.get("input_tokens") or 0) + int(usage.get("output_tokens") or 0)
        return "".join(texts), tokens


class GeminiProvider(HTTPProvider):
    """Google Generative Language API (generateContent)."""

    kind = "gemini"

    def build_request(self, user_prompt):
        payload = {
            "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
            "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
            "generationConfig": {
                "maxOutputTokens": self.max_tokens,
                "responseMimeType": "application/json",
            },
        }
        headers = {"Content-Type": "application/json"}
        return f"/models/{self.model}:generateContent", payload, headers, {"key": self.api_key}

    def extract(self, body):
        try:
            parts = body["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError("malformed response: missing candidates[0].content.parts") from exc
        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        usage = body.get("usageMetadata") or {}
        return text, int(usage.get("totalTokenCount") or 0)
