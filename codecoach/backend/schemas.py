from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Type
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ApiEnvelope(BaseModel):
	model_config = ConfigDict(extra="allow", populate_by_name=True)

	ok: bool
	generated_at: str
	request_id: Optional[str] = None
	result: Optional[Dict[str, Any]] = None
	error: Optional[str] = None
	error_category: Optional[str] = Field(default=None, alias="errorCategory")
	should_retry: Optional[bool] = Field(default=None, alias="shouldRetry")
	retry_delay_ms: Optional[int] = Field(default=None, alias="retryDelayMs")
	code: Optional[str] = None
	evidence: Optional[List[str]] = None


_CONTEXT_FIELDS = {
	"problemTitle": "problem_title",
	"problemDescription": "problem_description",
	"currentCode": "current_code",
	"language": "language",
	"cursorPosition": "cursor_position",
	"selectedText": "selected_text",
}


class InboundMessage(BaseModel):
	"""Common envelope fields of every inbound message."""

	model_config = ConfigDict(extra="allow", populate_by_name=True, str_strip_whitespace=True)

	type: str = Field(..., min_length=1)
	caller_identity: Optional[str] = Field(default=None, alias="callerIdentity")
	origin: Optional[str] = None
	request_id: Optional[str] = Field(default=None, alias="requestId")


class ProblemMessage(InboundMessage):
	problem_title: str = Field(default="", alias="problemTitle")
	problem_description: str = Field(default="", alias="problemDescription")
	current_code: str = Field(default="", alias="currentCode")
	language: str = "javascript"
	cursor_position: int = Field(default=0, alias="cursorPosition", ge=0)
	selected_text: str = Field(default="", alias="selectedText")
	is_auto_triggered: bool = Field(default=False, alias="isAutoTriggered")

	@model_validator(mode="before")
	@classmethod
	def _merge_nested_context(cls, data: Any) -> Any:
		if not isinstance(data, dict):
			return data
		nested = data.get("context")
		if not isinstance(nested, dict):
			return data
		merged = dict(data)
		for alias in _CONTEXT_FIELDS:
			value = nested.get(alias)
			if value:
				merged[alias] = value
		return merged

	def problem_context(self) -> Dict[str, Any]:
		return {
			"problem_title": self.problem_title,
			"problem_description": self.problem_description,
			"current_code": self.current_code,
			"language": self.language or "javascript",
			"cursor_position": self.cursor_position,
			"selected_text": self.selected_text,
		}


class CompletionMessage(ProblemMessage):
	type: Literal["completion", "explanation", "optimization"]


class HintMessage(ProblemMessage):
	type: Literal["hint"]


class ChatMessage(ProblemMessage):
	type: Literal["chatMessage"]
	message: str = Field(..., min_length=1)


class ConfigurationMessage(InboundMessage):
	type: Literal["saveConfiguration", "testAPIConnection"]
	config: Dict[str, Any]

	@field_validator("config")
	@classmethod
	def _config_not_empty(cls, value: Dict[str, Any]) -> Dict[str, Any]:
		if not value:
			raise ValueError("Configuration is required")
		return value


class ResetHintsMessage(InboundMessage):
	type: Literal["resetHints"]
	problem_title: str = Field(..., alias="problemTitle", min_length=1)


class UpdateSettingMessage(InboundMessage):
	type: Literal["updateSetting"]
	setting: str = Field(..., min_length=1)
	value: Any = None


MESSAGE_MODELS: Dict[str, Type[InboundMessage]] = {
	"completion": CompletionMessage,
	"explanation": CompletionMessage,
	"optimization": CompletionMessage,
	"hint": HintMessage,
	"chatMessage": ChatMessage,
	"saveConfiguration": ConfigurationMessage,
	"testAPIConnection": ConfigurationMessage,
	"resetHints": ResetHintsMessage,
	"updateSetting": UpdateSettingMessage,
}


def model_for(message_type: str) -> Type[InboundMessage]:
	return MESSAGE_MODELS.get(message_type, InboundMessage)


ProviderName = Literal["openai", "custom", "local"]


class ProviderConfig(BaseModel):
	model_config = ConfigDict(extra="ignore", populate_by_name=True, str_strip_whitespace=True)

	provider: ProviderName
	api_key: Optional[str] = Field(default=None, alias="apiKey")
	model: Optional[str] = None
	max_tokens: int = Field(default=1000, alias="maxTokens", ge=1, le=4000)
	temperature: float = Field(default=0.7, ge=0.0, le=2.0)
	custom_api_url: Optional[str] = Field(default=None, alias="customApiUrl")
	token_total_budget: Optional[int] = Field(default=None, alias="tokenTotalBudget", ge=0)

	@model_validator(mode="after")
	def _check_provider_requirements(self) -> "ProviderConfig":
		if self.provider == "local":
			return self
		key = self.api_key or ""
		if not key:
			raise ValueError("API key is required")
		if self.provider == "openai":
			if len(key) < 20:
				raise ValueError("API key too short for OpenAI")
			if not key.startswith("sk-"):
				raise ValueError("Invalid API key format for OpenAI")
		if self.provider == "custom":
			if len(key) < 10:
				raise ValueError("API key too short for custom provider")
			if not self.custom_api_url:
				raise ValueError("Custom API URL is required for custom providers")
			parsed = urlparse(self.custom_api_url)
			if parsed.scheme != "https" or not parsed.netloc:
				raise ValueError("Custom API URL must use HTTPS")
		return self

	def public_dict(self, *, masked_key: str) -> Dict[str, Any]:
		return {
			"provider": self.provider,
			"apiKey": masked_key,
			"model": self.model,
			"maxTokens": self.max_tokens,
			"temperature": self.temperature,
			"customApiUrl": self.custom_api_url,
			"tokenTotalBudget": self.token_total_budget,
		}


class RateLimitOverride(BaseModel):
	model_config = ConfigDict(extra="forbid")

	requests: int = Field(..., ge=1)
	window_s: float = Field(default=60.0, gt=0)


class RetryPolicyOverride(BaseModel):
	model_config = ConfigDict(extra="forbid")

	max_retries: int = Field(..., ge=0)
	base_delay_s: float = Field(default=0.0, ge=0)
	max_delay_s: float = Field(default=0.0, ge=0)
