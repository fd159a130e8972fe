"""OpenAI LLM provider implementation (Responses API)."""
import json
import re
from typing import Any, Dict, List, Optional

import httpx
from openai import AsyncOpenAI, BadRequestError

from content_jobs.services.llm.base import LLMMessage, LLMProvider, LLMResponse

RESPONSES_URL = "https://api.openai.com/v1/responses"

_JSON_ONLY_INSTRUCTION = (
    "Return a single valid JSON object only. "
    "Do not include markdown, code fences, comments, or explanatory prose."
)


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from either an SDK object or a raw JSON dict."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _to_responses_input(messages: List[Any]) -> List[Dict[str, Any]]:
    formatted: List[Dict[str, Any]] = []
    for message in messages:
        if isinstance(message, dict):
            message = LLMMessage(
                role=str(message.get("role", "user")),
                content=str(message.get("content", "")),
            )
        elif not isinstance(message, LLMMessage):
            raise TypeError("messages must be LLMMessage or dict entries")

        role = message.role if message.role in {"system", "user", "assistant"} else "user"
        formatted.append({"role": role, "content": [{"type": "input_text", "text": message.content}]})
    return formatted


def _output_text(response: Any) -> str:
    text = _field(response, "output_text")
    if isinstance(text, str) and text.strip():
        return text

    parts: List[str] = []
    for item in _field(response, "output", []) or []:
        for content in _field(item, "content", []) or []:
            piece = _field(content, "text")
            if isinstance(piece, str) and piece:
                parts.append(piece)
    return "".join(parts).strip()


def _usage_tokens(response: Any) -> int:
    usage = _field(response, "usage")
    if usage is None:
        return 0
    total = _field(usage, "total_tokens")
    if isinstance(total, int):
        return total
    return int(_field(usage, "input_tokens", 0) or 0) + int(_field(usage, "output_tokens", 0) or 0)


def parse_json_object(text: str) -> Dict[str, Any]:
    """Parse a JSON object from model output, tolerating code fences and prose."""
    candidate = text.strip()
    if candidate.startswith("```"):
        candidate = candidate.strip("`")
        if candidate.lower().startswith("json"):
            candidate = candidate[4:].strip()

    try:
        parsed = json.loads(candidate)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("No JSON object found in model response")

    parsed = json.loads(candidate[start : end + 1])
    if not isinstance(parsed, dict):
        raise ValueError("Model response JSON is not an object")
    return parsed


def _schema_format(response_format: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Accept Chat Completions or Responses style schema shapes."""
    schema_format: Dict[str, Any] = dict(response_format or {})
    if isinstance(schema_format.get("json_schema"), dict):
        schema_format = schema_format["json_schema"]

    name = re.sub(r"[^a-zA-Z0-9_-]", "_", str(schema_format.get("name") or "structured_output"))[:64]
    schema = schema_format.get("schema")
    if not isinstance(schema, dict):
        schema = {"type": "object", "properties": {}, "additionalProperties": True}

    return {
        "type": "json_schema",
        "name": name or "structured_output",
        "strict": bool(schema_format.get("strict", True)),
        "schema": schema,
    }


def _supports_sampling(model: str) -> bool:
    # GPT-5 and o-series reasoning models reject temperature/top_p.
    return not (model or "").lower().startswith(("gpt-5", "o1", "o3", "o4"))


class OpenAIProvider(LLMProvider):
    """OpenAI implementation of LLM provider."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-5-mini",
        mini_model: str = "gpt-5-mini",
    ):
        """Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key
            default_model: Default model for generation
            mini_model: Model for simple tasks
        """
        if not api_key or not api_key.strip():
            raise ValueError("OPENAI_API_KEY is not configured")

        self.api_key = api_key
        self.client = AsyncOpenAI(api_key=api_key)
        self.default_model = default_model
        self.mini_model = mini_model

    def _request_args(self, model: str, messages: List[Any], **kwargs) -> Dict[str, Any]:
        request_args: Dict[str, Any] = {
            "model": model,
            "input": _to_responses_input(messages),
            **kwargs,
        }
        if not _supports_sampling(model):
            for key in ("temperature", "top_p", "logprobs"):
                request_args.pop(key, None)
        return request_args

    async def _create(self, request_args: Dict[str, Any]) -> Any:
        """Call the Responses API, over plain HTTP when the SDK lacks ``responses``."""
        responses_api = getattr(self.client, "responses", None)
        if responses_api is not None and hasattr(responses_api, "create"):
            return await responses_api.create(**request_args)

        async with httpx.AsyncClient(timeout=90.0) as http_client:
            response = await http_client.post(
                RESPONSES_URL,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=request_args,
            )

        if response.status_code >= 400:
            try:
                message = response.json().get("error", {}).get("message") or response.text
            except ValueError:
                message = response.text
            raise RuntimeError(f"Responses API request failed ({response.status_code}): {message}")

        return response.json()

    async def generate_text(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        use_mini: bool = False,
        **kwargs,
    ) -> LLMResponse:
        """Generate text using OpenAI."""
        model = self.mini_model if use_mini else self.default_model
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_output_tokens"] = max_tokens

        response = await self._create(self._request_args(model, messages, **kwargs))
        return LLMResponse(
            content=_output_text(response),
            tokens_used=_usage_tokens(response),
            model=model,
            finish_reason=str(_field(response, "status", "completed") or "completed"),
        )

    async def generate_structured(
        self,
        messages: List[LLMMessage],
        response_format: Optional[Dict] = None,
        use_mini: bool = False,
        **kwargs,
    ) -> Dict:
        """Generate structured JSON using OpenAI.

        Tries strict json_schema output first; if the schema is rejected or the
        output does not parse, asks once more with a plain JSON-only instruction.
        """
        model = self.mini_model if use_mini else self.default_model
        strict_args = self._request_args(
            model,
            messages,
            text={"format": _schema_format(response_format)},
            **kwargs,
        )

        try:
            response = await self._create(strict_args)
            return parse_json_object(_output_text(response) or "{}")
        except (BadRequestError, ValueError, RuntimeError) as exc:
            fallback_messages = [LLMMessage(role="system", content=_JSON_ONLY_INSTRUCTION), *messages]
            response = await self._create(self._request_args(model, fallback_messages, **kwargs))
            try:
                return parse_json_object(_output_text(response) or "{}")
            except ValueError as parse_exc:
                raise ValueError(
                    f"Failed to parse structured output via strict schema and fallback modes: {parse_exc}"
                ) from exc
