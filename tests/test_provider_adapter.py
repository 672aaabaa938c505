from unittest import IsolatedAsyncioTestCase
from unittest.mock import patch

from codecoach.backend.adapters import provider_adapter
from codecoach.backend.config import GatewayConfig
from codecoach.backend.core.resilience import classify
from codecoach.backend.schemas import ProviderConfig


class _FakeUsage:
	output_tokens = 17


class _FakeResponses:
	def __init__(self, *, output_text: str | None = None, error: Exception | None = None):
		self._output_text = output_text
		self._error = error
		self.kwargs = None

	async def create(self, **kwargs):
		self.kwargs = kwargs
		if self._error is not None:
			raise self._error
		return type("FakeResponse", (), {"output_text": self._output_text, "usage": _FakeUsage()})()


class _FakeClient:
	def __init__(self, *, output_text: str | None = None, error: Exception | None = None):
		self.responses = _FakeResponses(output_text=output_text, error=error)


class ProviderAdapterTests(IsolatedAsyncioTestCase):
	def test_auto_mode_without_key_uses_local_provider(self) -> None:
		provider = provider_adapter.resolve_provider(None, GatewayConfig(provider_mode="auto"))
		self.assertIsInstance(provider, provider_adapter.LocalProvider)

	def test_openai_mode_without_key_is_unconfigured(self) -> None:
		with self.assertRaises(provider_adapter.ProviderUnconfigured) as ctx:
			provider_adapter.resolve_provider(None, GatewayConfig(provider_mode="openai"))
		self.assertEqual(classify(ctx.exception).category, "configuration")

	def test_invalid_mode_is_unconfigured(self) -> None:
		with self.assertRaises(provider_adapter.ProviderUnconfigured):
			provider_adapter.resolve_provider(None, GatewayConfig(provider_mode="bogus"))

	def test_saved_local_configuration_wins(self) -> None:
		stored = ProviderConfig(provider="local")
		gateway = GatewayConfig(provider_mode="openai", openai_api_key="sk-env-key-000000000000")
		provider = provider_adapter.resolve_provider(stored, gateway)
		self.assertIsInstance(provider, provider_adapter.LocalProvider)

	async def test_local_provider_is_deterministic(self) -> None:
		provider = provider_adapter.LocalProvider()
		first = await provider.complete("prompt", "hint")
		second = await provider.complete("other prompt", "hint")
		self.assertEqual(first.content, second.content)
		self.assertEqual(first.provider, "local")
		self.assertGreater(first.output_tokens, 0)

	async def test_openai_provider_reads_text_and_usage(self) -> None:
		client = _FakeClient(output_text="  Consider sorting first.  ")
		with patch("codecoach.backend.adapters.provider_adapter.AsyncOpenAI", return_value=client) as factory:
			provider = provider_adapter.resolve_provider(
				None,
				GatewayConfig(provider_mode="openai", openai_api_key="sk-env-key-000000000000", openai_model="gpt-4.1-mini"),
			)
			response = await provider.complete("How do I start?", "hint")

		self.assertEqual(response.content, "Consider sorting first.")
		self.assertEqual(response.output_tokens, 17)
		self.assertEqual(response.model, "gpt-4.1-mini")
		self.assertEqual(client.responses.kwargs["model"], "gpt-4.1-mini")
		self.assertEqual(factory.call_args.kwargs["max_retries"], 0)

	async def test_custom_provider_uses_base_url(self) -> None:
		client = _FakeClient(output_text="ok")
		stored = ProviderConfig(
			provider="custom",
			apiKey="custom-key-123",
			customApiUrl="https://llm.example.com/v1",
			model="local-model",
		)
		with patch("codecoach.backend.adapters.provider_adapter.AsyncOpenAI", return_value=client) as factory:
			provider = provider_adapter.resolve_provider(stored, GatewayConfig())
			response = await provider.complete("ping", "test")

		self.assertEqual(factory.call_args.kwargs["base_url"], "https://llm.example.com/v1")
		self.assertEqual(response.provider, "custom")

	async def test_empty_response_is_an_upstream_error(self) -> None:
		client = _FakeClient(output_text="   ")
		with patch("codecoach.backend.adapters.provider_adapter.AsyncOpenAI", return_value=client):
			provider = provider_adapter.resolve_provider(
				None,
				GatewayConfig(provider_mode="openai", openai_api_key="sk-env-key-000000000000"),
			)
			with self.assertRaises(provider_adapter.ProviderResponseError) as ctx:
				await provider.complete("How do I start?", "hint")
		self.assertEqual(classify(ctx.exception).category, "upstream_server_error")
