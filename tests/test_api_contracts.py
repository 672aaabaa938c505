import os
import tempfile
from unittest import TestCase
from unittest.mock import patch

from fastapi.testclient import TestClient

from codecoach.backend.main import create_app


class ApiContractsTests(TestCase):
	def setUp(self) -> None:
		self._tmp = tempfile.TemporaryDirectory()
		self._env = patch.dict(
			os.environ,
			{
				"ASSISTANT_PROVIDER_MODE": "local",
				"CODECOACH_DB_PATH": os.path.join(self._tmp.name, "state.db"),
				"OPENAI_API_KEY": "",
			},
			clear=False,
		)
		self._env.start()
		self.client = TestClient(create_app())

	def tearDown(self) -> None:
		self._env.stop()
		self._tmp.cleanup()

	def _post(self, payload, **headers):
		return self.client.post("/api/messages", json=payload, headers=headers)

	def test_ping_returns_success_envelope(self) -> None:
		response = self._post({"type": "ping"})
		self.assertEqual(response.status_code, 200)
		payload = response.json()
		self.assertTrue(payload["ok"])
		self.assertEqual(payload["result"]["status"], "ok")
		self.assertIn("generated_at", payload)
		self.assertEqual(payload["request_id"], response.headers["X-Request-ID"])

	def test_missing_type_is_malformed(self) -> None:
		response = self._post({"problemTitle": "Two Sum"})
		self.assertEqual(response.status_code, 400)
		payload = response.json()
		self.assertFalse(payload["ok"])
		self.assertEqual(payload["code"], "malformed_request")
		self.assertEqual(payload["errorCategory"], "validation")
		self.assertFalse(payload["shouldRetry"])

	def test_non_json_body_is_malformed(self) -> None:
		response = self.client.post("/api/messages", content=b"not json", headers={"Content-Type": "application/json"})
		self.assertEqual(response.status_code, 400)
		self.assertEqual(response.json()["code"], "malformed_request")

	def test_missing_chat_message_is_invalid_payload(self) -> None:
		response = self._post({"type": "chatMessage"})
		self.assertEqual(response.status_code, 400)
		payload = response.json()
		self.assertEqual(payload["code"], "invalid_payload")
		self.assertEqual(payload["error"], "Message is required for chat")
		self.assertGreaterEqual(len(payload["evidence"]), 1)

	def test_unknown_type_returns_404(self) -> None:
		response = self._post({"type": "teleport"})
		self.assertEqual(response.status_code, 404)
		self.assertEqual(response.json()["code"], "unknown_route")

	def test_unknown_origin_is_rejected(self) -> None:
		response = self._post({"type": "ping"}, Origin="https://evil.example")
		self.assertEqual(response.status_code, 403)
		self.assertEqual(response.json()["code"], "unknown_origin")

	def test_cors_origin_can_dispatch(self) -> None:
		response = self._post({"type": "ping"}, Origin="http://localhost:3000")
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.headers["access-control-allow-origin"], "http://localhost:3000")

		lookalike = self._post({"type": "ping"}, Origin="https://leetcode.com.evil.example")
		self.assertEqual(lookalike.status_code, 403)

	def test_dangerous_content_is_blocked(self) -> None:
		response = self._post({"type": "chatMessage", "message": "javascript:alert(1)"})
		self.assertEqual(response.status_code, 403)
		payload = response.json()
		self.assertEqual(payload["errorCategory"], "security")

		status = self._post({"type": "securityStatus"}).json()["result"]["securityStats"]
		self.assertEqual(status["blocked_by_category"], {"security": 1})

	def test_eleventh_completion_is_rate_limited(self) -> None:
		body = {"type": "completion", "callerIdentity": "T1", "problemTitle": "Two Sum", "currentCode": "x = 1"}
		for _ in range(10):
			response = self._post(body)
			self.assertEqual(response.status_code, 200)
			self.assertIn("suggestion", response.json()["result"])

		response = self._post(body)
		self.assertEqual(response.status_code, 429)
		payload = response.json()
		self.assertEqual(payload["errorCategory"], "rate_limited")
		self.assertGreater(payload["retryDelayMs"], 0)
		self.assertIn("Retry-After", response.headers)

		other_caller = dict(body, callerIdentity="T2")
		self.assertEqual(self._post(other_caller).status_code, 200)

	def test_progressive_hints_cap_at_level_four(self) -> None:
		body = {"type": "hint", "callerIdentity": "T1", "context": {"problemTitle": "Two Sum", "currentCode": "def f(): pass"}}
		levels = [self._post(body).json()["result"]["hintLevel"] for _ in range(5)]
		self.assertEqual(levels, [1, 2, 3, 4, 4])

		stats = self._post({"type": "getStats"}).json()["result"]["stats"]
		self.assertEqual(stats["hints"]["total_sessions"], 1)
		self.assertGreater(stats["usage"]["output_tokens"], 0)

		reset = self._post({"type": "resetHints", "callerIdentity": "T1", "problemTitle": "Two Sum"})
		self.assertTrue(reset.json()["result"]["reset"])
		self.assertEqual(self._post(body).json()["result"]["hintLevel"], 1)

	def test_caller_header_scopes_hint_sessions(self) -> None:
		body = {"type": "hint", "problemTitle": "Two Sum"}
		self.assertEqual(self._post(body, **{"X-Caller-ID": "A"}).json()["result"]["hintLevel"], 1)
		self.assertEqual(self._post(body, **{"X-Caller-ID": "B"}).json()["result"]["hintLevel"], 1)
		self.assertEqual(self._post(body, **{"X-Caller-ID": "A"}).json()["result"]["hintLevel"], 2)

	def test_delete_caller_drops_sessions(self) -> None:
		self._post({"type": "hint", "callerIdentity": "T1", "problemTitle": "Two Sum"})
		response = self.client.delete("/api/callers/T1")
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.json()["result"]["hint_sessions_cleared"], 1)

	def test_configuration_round_trip(self) -> None:
		saved = self._post({"type": "saveConfiguration", "config": {"provider": "local", "tokenTotalBudget": 0}})
		self.assertEqual(saved.status_code, 200)
		self.assertTrue(saved.json()["result"]["success"])

		config = self._post({"type": "getConfiguration"}).json()["result"]["config"]
		self.assertEqual(config["provider"], "local")
		self.assertEqual(config["apiKey"], "")

		tested = self._post({"type": "testAPIConnection", "config": {"provider": "local"}}).json()["result"]
		self.assertTrue(tested["success"])

	def test_invalid_configuration_returns_400(self) -> None:
		response = self._post({"type": "saveConfiguration", "config": {"provider": "openai", "apiKey": "nope"}})
		self.assertEqual(response.status_code, 400)
		self.assertIn("Configuration validation failed", response.json()["error"])

	def test_disabled_auto_feature_is_skipped(self) -> None:
		self._post({"type": "updateSetting", "setting": "autoComplete", "value": False})
		response = self._post({"type": "completion", "isAutoTriggered": True, "currentCode": "x"})
		self.assertEqual(response.status_code, 200)
		self.assertTrue(response.json()["result"]["skipped"])

		manual = self._post({"type": "completion", "currentCode": "x"}).json()["result"]
		self.assertNotIn("skipped", manual)
		self.assertEqual(
			self._post({"type": "getSettings"}).json()["result"]["settings"],
			{"autoComplete": False},
		)

	def test_chat_message_returns_reply(self) -> None:
		response = self._post({"type": "chatMessage", "message": "Where do I start?"})
		self.assertEqual(response.status_code, 200)
		result = response.json()["result"]
		self.assertTrue(result["success"])
		self.assertEqual(result["provider"], "local")
		self.assertTrue(result["reply"])

	def test_unconfigured_provider_returns_503(self) -> None:
		with patch.dict(os.environ, {"ASSISTANT_PROVIDER_MODE": "openai"}, clear=False):
			client = TestClient(create_app())
		response = client.post("/api/messages", json={"type": "explanation", "currentCode": "x = 1"})
		self.assertEqual(response.status_code, 503)
		payload = response.json()
		self.assertEqual(payload["errorCategory"], "configuration")
		self.assertFalse(payload["shouldRetry"])
		self.assertEqual(payload["code"], "provider_configuration")

	def test_health_reports_component_state(self) -> None:
		with TestClient(create_app()) as client:
			response = client.get("/api/health")
		self.assertEqual(response.status_code, 200)
		result = response.json()["result"]
		self.assertEqual(result["status"], "ok")
		self.assertTrue(result["sweeper_running"])
		self.assertGreater(result["routes"], 0)

	def test_unknown_http_route_uses_error_envelope(self) -> None:
		response = self.client.get("/api/nope")
		self.assertEqual(response.status_code, 404)
		payload = response.json()
		self.assertFalse(payload["ok"])
		self.assertEqual(payload["code"], "http_404")
