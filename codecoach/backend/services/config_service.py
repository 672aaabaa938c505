from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from pydantic import ValidationError

from codecoach.backend.adapters import provider_adapter, sqlite_adapter
from codecoach.backend.core import policies
from codecoach.backend.core.errors import InvalidPayload, ResilienceError
from codecoach.backend.core.types import RoutingMetadata
from codecoach.backend.schemas import ConfigurationMessage, InboundMessage, ProviderConfig, UpdateSettingMessage

if TYPE_CHECKING:
	from codecoach.backend.gateway import Gateway


logger = logging.getLogger(__name__)

_TEST_PROMPT = "Reply with the single word OK."


def stored_provider_config(db_path: Optional[str] = None) -> Optional[ProviderConfig]:
	payload = sqlite_adapter.get_provider_config(db_path)
	if payload is None:
		return None
	try:
		return ProviderConfig.model_validate(payload)
	except ValidationError:
		logger.warning("Stored provider configuration is invalid; ignoring it")
		return None


def parse_provider_config(raw: Dict[str, Any]) -> ProviderConfig:
	try:
		return ProviderConfig.model_validate(raw)
	except ValidationError as exc:
		reasons = [str(issue.get("msg", "invalid value")).removeprefix("Value error, ") for issue in exc.errors()]
		raise InvalidPayload(
			"Configuration validation failed: " + ", ".join(reasons),
			evidence=reasons,
		) from exc


def feature_enabled(feature: str, db_path: Optional[str] = None) -> bool:
	return sqlite_adapter.get_settings(db_path).get(feature) is not False


def get_configuration(db_path: Optional[str] = None) -> Dict[str, Any]:
	raw = sqlite_adapter.get_provider_config(db_path)
	stored = stored_provider_config(db_path) if raw is not None else None
	if stored is None:
		return {"success": True, "config": None}
	payload = stored.public_dict(masked_key=policies.mask_secret(stored.api_key))
	payload["timestamp"] = raw.get("timestamp")
	return {"success": True, "config": payload}


def save_configuration(raw: Dict[str, Any], db_path: Optional[str] = None) -> Dict[str, Any]:
	config = parse_provider_config(raw)
	sqlite_adapter.save_provider_config(config.model_dump(by_alias=True), db_path)
	logger.info("Saved %s provider configuration", config.provider)
	return {"success": True, "message": "Configuration saved successfully"}


async def test_connection(gateway: "Gateway", raw: Dict[str, Any], request_id: Optional[str]) -> Dict[str, Any]:
	config = parse_provider_config(raw)
	provider = provider_adapter.provider_from_config(config, gateway.config)

	async def probe() -> provider_adapter.ProviderResponse:
		return await provider.complete(_TEST_PROMPT, "test")

	try:
		response = await gateway.executor.execute_with_retry(
			probe,
			request_id,
			context={"type": "testAPIConnection", "provider": config.provider},
		)
	except ResilienceError as exc:
		return {
			"success": False,
			"error": exc.user_message,
			"errorCategory": exc.category,
			"provider": config.provider,
		}
	return {
		"success": True,
		"message": f"Connected to {response.provider} ({response.model})",
		"provider": response.provider,
		"model": response.model,
	}


def update_setting(setting: str, value: Any, db_path: Optional[str] = None) -> Dict[str, Any]:
	sqlite_adapter.upsert_setting(setting, value, db_path)
	logger.info("Updated setting %s", setting)
	return {"success": True, "message": f"Setting {setting} updated to {value}"}


def get_settings(db_path: Optional[str] = None) -> Dict[str, Any]:
	return {"success": True, "settings": sqlite_adapter.get_settings(db_path)}


async def handle(gateway: "Gateway", message: InboundMessage, routing: RoutingMetadata) -> Dict[str, Any]:
	db_path = gateway.config.db_path
	if message.type == "getConfiguration":
		return get_configuration(db_path)
	if message.type == "saveConfiguration" and isinstance(message, ConfigurationMessage):
		return save_configuration(message.config, db_path)
	if message.type == "testAPIConnection" and isinstance(message, ConfigurationMessage):
		return await test_connection(gateway, message.config, message.request_id)
	if message.type == "updateSetting" and isinstance(message, UpdateSettingMessage):
		return update_setting(message.setting, message.value, db_path)
	if message.type == "getSettings":
		return get_settings(db_path)
	raise InvalidPayload(f"Unknown config request: {message.type}")
