"""Anthropic LLM provider implementation."""
import logging
from typing import Dict, List, Optional

from anthropic import AsyncAnthropic

from content_jobs.services.llm.base import LLMMessage, LLMProvider, LLMResponse
from content_jobs.services.llm.openai_provider import parse_json_object

logger = logging.getLogger(__name__)

_JSON_INSTRUCTION = "Respond with ONLY valid JSON. No markdown, no explanations, just the JSON object."


class AnthropicProvider(LLMProvider):
    """Anthropic (Claude) implementation of LLM provider."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "claude-4-5-sonnet",
        mini_model: str = "claude-4-5-haiku",
    ):
        self.client = AsyncAnthropic(api_key=api_key)
        self.default_model = default_model
        self.mini_model = mini_model

    async def generate_text(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.7,
        max_tokens: Optional[int] = 8192,
        use_mini: bool = False,
        **kwargs,
    ) -> LLMResponse:
        """Generate text using Anthropic."""
        model = self.mini_model if use_mini else self.default_model

        # System prompts go in a separate argument
        system_parts = [msg.content for msg in messages if msg.role == "system"]
        conversation = [
            {"role": msg.role, "content": msg.content}
            for msg in messages
            if msg.role != "system"
        ]
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)

        response = await self.client.messages.create(
            model=model,
            messages=conversation,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        )

        content_text = "".join(
            getattr(block, "text", "") for block in (response.content or [])
        )
        tokens_used = (
            response.usage.input_tokens + response.usage.output_tokens
            if response.usage
            else 0
        )

        return LLMResponse(
            content=content_text,
            tokens_used=tokens_used,
            model=model,
            finish_reason=response.stop_reason or "stop",
        )

    async def generate_structured(
        self,
        messages: List[LLMMessage],
        response_format: Optional[Dict] = None,
        use_mini: bool = False,
        **kwargs,
    ) -> Dict:
        """Generate structured JSON using Anthropic.

        There is no native schema mode, so the JSON instruction rides on the
        last user message and the reply is parsed leniently.
        """
        if messages and messages[-1].role == "user":
            prompted = messages[:-1] + [
                LLMMessage(role="user", content=f"{messages[-1].content}\n\nIMPORTANT: {_JSON_INSTRUCTION}")
            ]
        else:
            prompted = list(messages) + [LLMMessage(role="user", content=_JSON_INSTRUCTION)]

        response = await self.generate_text(prompted, use_mini=use_mini, **kwargs)

        try:
            return parse_json_object(response.content)
        except ValueError as e:
            logger.error(f"Failed to parse JSON from Anthropic response: {e}")
            raise ValueError(f"Anthropic response was not valid JSON: {e}") from e
