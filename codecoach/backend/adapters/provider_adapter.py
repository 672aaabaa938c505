from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from openai import AsyncOpenAI

from codecoach.backend.config import GatewayConfig
from codecoach.backend.schemas import ProviderConfig


logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """
You are a programming tutor embedded in a coding practice site.
- Guide the learner toward the answer; never hand over a complete solution.
- Keep answers short, concrete, and specific to the code shown.
- Use plain text with small code fragments only where they help.
""".strip()

_LOCAL_REPLIES: Dict[str, str] = {
	"completion": "// Consider finishing the current statement, then check the loop bounds before returning.",
	"explanation": "The code walks the input once and keeps track of what it has seen so far. Check how the result is returned when no match is found.",
	"optimization": "Look for repeated work inside nested loops. A hash map can often replace an inner scan and bring the time complexity down to O(n).",
	"hint": "Think about what information you need to remember as you scan the input, and which data structure lets you look it up quickly.",
	"chatMessage": "Let's work through it step by step. What does your current approach do on the smallest input?",
	"test": "OK",
}


class ProviderUnconfigured(Exception):
	pass


class ProviderResponseError(Exception):
	def __init__(self, message: str, *, status_code: Optional[int] = None):
		super().__init__(message)
		self.status_code = status_code


@dataclass
class ProviderResponse:
	content: str
	provider: str
	model: str
	output_tokens: int = 0

	def as_dict(self) -> Dict[str, Any]:
		return {
			"content": self.content,
			"provider": self.provider,
			"model": self.model,
			"output_tokens": self.output_tokens,
		}


class Provider(Protocol):
	name: str
	model: str

	async def complete(self, prompt: str, request_type: str) -> ProviderResponse:
		...


class LocalProvider:
	"""Deterministic offline provider used when no API key is configured."""

	name = "local"
	model = "local-tutor"

	async def complete(self, prompt: str, request_type: str) -> ProviderResponse:
		content = _LOCAL_REPLIES.get(request_type, _LOCAL_REPLIES["chatMessage"])
		return ProviderResponse(
			content=content,
			provider=self.name,
			model=self.model,
			output_tokens=len(content.split()),
		)


class OpenAIProvider:
	def __init__(
		self,
		*,
		api_key: str,
		model: str,
		timeout_s: float,
		base_url: Optional[str] = None,
		max_tokens: int = 1000,
		temperature: float = 0.7,
		name: str = "openai",
	):
		self.name = name
		self.model = model
		self._max_tokens = max_tokens
		self._temperature = temperature
		self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout_s, max_retries=0)

	async def complete(self, prompt: str, request_type: str) -> ProviderResponse:
		response = await self._client.responses.create(
			model=self.model,
			input=_openai_input(prompt),
			max_output_tokens=self._max_tokens,
			temperature=self._temperature,
		)
		content = _extract_response_text(response)
		if not content:
			raise ProviderResponseError("AI provider returned an empty response", status_code=502)
		usage = getattr(response, "usage", None)
		output_tokens = getattr(usage, "output_tokens", None) or 0
		return ProviderResponse(
			content=content,
			provider=self.name,
			model=self.model,
			output_tokens=int(output_tokens),
		)


def _openai_input(prompt: str) -> List[Dict[str, Any]]:
	return [
		{
			"role": "system",
			"content": [{"type": "input_text", "text": _SYSTEM_PROMPT}],
		},
		{
			"role": "user",
			"content": [{"type": "input_text", "text": prompt}],
		},
	]


def _extract_response_text(response: Any) -> str:
	output_text = getattr(response, "output_text", None)
	if isinstance(output_text, str) and output_text.strip():
		return output_text.strip()

	output = getattr(response, "output", None)
	if not isinstance(output, list):
		return ""
	parts: List[str] = []
	for item in output:
		content = getattr(item, "content", None)
		if content is None and isinstance(item, dict):
			content = item.get("content")
		if not isinstance(content, list):
			continue
		for chunk in content:
			text = getattr(chunk, "text", None)
			if text is None and isinstance(chunk, dict):
				text = chunk.get("text")
			if isinstance(text, str) and text.strip():
				parts.append(text.strip())
	return "\n".join(parts).strip()


def provider_from_config(stored: ProviderConfig, gateway: GatewayConfig) -> Provider:
	if stored.provider == "local":
		return LocalProvider()
	return OpenAIProvider(
		api_key=stored.api_key or "",
		model=stored.model or gateway.openai_model,
		timeout_s=gateway.openai_timeout_s,
		base_url=stored.custom_api_url if stored.provider == "custom" else None,
		max_tokens=stored.max_tokens,
		temperature=stored.temperature,
		name=stored.provider,
	)


def resolve_provider(stored: Optional[ProviderConfig], gateway: GatewayConfig) -> Provider:
	"""Pick the provider for one request.

	A saved configuration wins; otherwise ``ASSISTANT_PROVIDER_MODE`` decides,
	with ``auto`` falling back to the local provider when no key is set.
	"""
	if stored is not None:
		return provider_from_config(stored, gateway)
	mode = gateway.provider_mode
	if mode not in {"auto", "openai", "local"}:
		raise ProviderUnconfigured("AI provider not configured: ASSISTANT_PROVIDER_MODE must be one of auto, openai, local")
	if mode == "local" or (mode == "auto" and not gateway.openai_api_key):
		return LocalProvider()
	if not gateway.openai_api_key:
		raise ProviderUnconfigured("AI provider not configured. Set OPENAI_API_KEY or save a configuration first.")
	return OpenAIProvider(
		api_key=gateway.openai_api_key,
		model=gateway.openai_model,
		timeout_s=gateway.openai_timeout_s,
	)
