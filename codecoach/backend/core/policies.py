from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse


_DANGEROUS_REQUEST_PATTERNS = [
	r"eval\s*\(",
	r"javascript:",
	r"<script",
	r"document\.write",
]

_SECRET_PATTERNS: List[tuple[str, str]] = [
	(r"sk-ant-[A-Za-z0-9-]+", "[API_KEY_REDACTED]"),
	(r"sk-[A-Za-z0-9_-]+", "[API_KEY_REDACTED]"),
	(r"AIza[A-Za-z0-9_-]{35}", "[API_KEY_REDACTED]"),
	(r"Bearer\s+[A-Za-z0-9._-]+", "[AUTH_TOKEN_REDACTED]"),
	(r"api[_-]?key[:\s=]+[A-Za-z0-9_-]+", "api_key=[REDACTED]"),
	(r"password[:\s=]+\S+", "password=[REDACTED]"),
	(r"authorization[:\s=]+\S+", "authorization=[REDACTED]"),
]

_SENSITIVE_CONTEXT_KEYS = {"apiKey", "api_key", "authorization", "password", "token"}
_TRUNCATED_CONTEXT_KEYS = {"currentCode", "current_code", "problemDescription", "problem_description"}


def find_dangerous_pattern(text: str) -> Optional[str]:
	for pattern in _DANGEROUS_REQUEST_PATTERNS:
		if re.search(pattern, text, re.IGNORECASE):
			return pattern
	return None


def _origin_matches(origin: str, entry: str) -> bool:
	parsed = urlparse(origin.strip().lower())
	wanted = urlparse(entry.strip().lower())
	if not parsed.scheme or parsed.scheme != wanted.scheme:
		return False
	# scheme-only entries such as "chrome-extension://" accept any host
	if not wanted.netloc:
		return True
	try:
		if wanted.port is not None and parsed.port != wanted.port:
			return False
	except ValueError:
		return False
	return bool(parsed.hostname) and parsed.hostname == wanted.hostname


def origin_allowed(origin: Optional[str], allowed: Iterable[str]) -> bool:
	if not origin:
		return False
	return any(_origin_matches(origin, entry) for entry in allowed)


def sanitize_for_logging(message: Optional[str]) -> str:
	if not message:
		return "Unknown error"
	result = message
	for pattern, replacement in _SECRET_PATTERNS:
		result = re.sub(pattern, replacement, result, flags=re.IGNORECASE)
	return result


def sanitize_context(context: Optional[Dict[str, Any]], *, max_chars: int = 200) -> Dict[str, Any]:
	if not isinstance(context, dict):
		return {}
	sanitized: Dict[str, Any] = {}
	for key, value in context.items():
		if key in _SENSITIVE_CONTEXT_KEYS:
			continue
		if key in _TRUNCATED_CONTEXT_KEYS and isinstance(value, str) and len(value) > max_chars:
			value = value[:max_chars] + "..."
		sanitized[key] = value
	return sanitized


def mask_secret(value: Optional[str]) -> str:
	if not value:
		return ""
	if len(value) <= 8:
		return "*" * len(value)
	return f"{value[:3]}...{value[-4:]}"
