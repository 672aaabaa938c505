from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from codecoach.backend import constants


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _get_db_path(db_path: Optional[str]) -> str:
	if db_path:
		return db_path
	return constants.DEFAULT_DB_PATH


def _connect(path: str) -> sqlite3.Connection:
	conn = sqlite3.connect(path, timeout=constants.SQLITE_BUSY_TIMEOUT_MS / 1000)
	conn.execute("PRAGMA journal_mode=WAL")
	conn.execute("PRAGMA synchronous=NORMAL")
	conn.execute(f"PRAGMA busy_timeout={constants.SQLITE_BUSY_TIMEOUT_MS}")
	return conn


def init_db(db_path: Optional[str] = None) -> None:
	path = _get_db_path(db_path)
	Path(path).parent.mkdir(parents=True, exist_ok=True)
	conn = _connect(path)
	try:
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS provider_config (
				id INTEGER PRIMARY KEY CHECK (id = 1),
				payload TEXT NOT NULL,
				updated_at TEXT NOT NULL
			)
			"""
		)
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS settings (
				name TEXT PRIMARY KEY,
				value TEXT,
				updated_at TEXT NOT NULL
			)
			"""
		)
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS token_usage (
				id INTEGER PRIMARY KEY CHECK (id = 1),
				output_tokens INTEGER NOT NULL DEFAULT 0,
				request_count INTEGER NOT NULL DEFAULT 0,
				warning TEXT,
				updated_at TEXT NOT NULL
			)
			"""
		)
		conn.commit()
	finally:
		conn.close()


def save_provider_config(payload: Dict[str, Any], db_path: Optional[str] = None) -> str:
	init_db(db_path)
	path = _get_db_path(db_path)
	updated_at = _now_iso()
	conn = _connect(path)
	try:
		conn.execute(
			"""
			INSERT INTO provider_config (id, payload, updated_at)
			VALUES (1, ?, ?)
			ON CONFLICT(id)
			DO UPDATE SET payload=excluded.payload, updated_at=excluded.updated_at
			""",
			(json.dumps(payload), updated_at),
		)
		conn.commit()
	finally:
		conn.close()
	return updated_at


def get_provider_config(db_path: Optional[str] = None) -> Optional[Dict[str, Any]]:
	init_db(db_path)
	path = _get_db_path(db_path)
	conn = _connect(path)
	try:
		row = conn.execute("SELECT payload, updated_at FROM provider_config WHERE id = 1").fetchone()
	finally:
		conn.close()
	if row is None:
		return None
	payload = json.loads(row[0])
	if not isinstance(payload, dict):
		return None
	payload["timestamp"] = row[1]
	return payload


def upsert_setting(name: str, value: Any, db_path: Optional[str] = None) -> Dict[str, Any]:
	init_db(db_path)
	path = _get_db_path(db_path)
	updated_at = _now_iso()
	conn = _connect(path)
	try:
		conn.execute(
			"""
			INSERT INTO settings (name, value, updated_at)
			VALUES (?, ?, ?)
			ON CONFLICT(name)
			DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
			""",
			(name, json.dumps(value), updated_at),
		)
		conn.commit()
	finally:
		conn.close()
	return {"setting": name, "value": value, "updated_at": updated_at}


def get_settings(db_path: Optional[str] = None) -> Dict[str, Any]:
	init_db(db_path)
	path = _get_db_path(db_path)
	conn = _connect(path)
	try:
		conn.row_factory = sqlite3.Row
		rows = conn.execute("SELECT name, value FROM settings").fetchall()
	finally:
		conn.close()
	return {row["name"]: json.loads(row["value"]) for row in rows}


def add_output_tokens(output_tokens: int, db_path: Optional[str] = None) -> Dict[str, Any]:
	init_db(db_path)
	path = _get_db_path(db_path)
	updated_at = _now_iso()
	conn = _connect(path)
	try:
		conn.execute(
			"""
			INSERT INTO token_usage (id, output_tokens, request_count, updated_at)
			VALUES (1, ?, 1, ?)
			ON CONFLICT(id)
			DO UPDATE SET
				output_tokens=token_usage.output_tokens + excluded.output_tokens,
				request_count=token_usage.request_count + 1,
				updated_at=excluded.updated_at
			""",
			(output_tokens, updated_at),
		)
		conn.commit()
	finally:
		conn.close()
	return get_usage(db_path)


def set_token_warning(warning: Optional[Dict[str, Any]], db_path: Optional[str] = None) -> None:
	init_db(db_path)
	path = _get_db_path(db_path)
	conn = _connect(path)
	try:
		conn.execute(
			"UPDATE token_usage SET warning = ?, updated_at = ? WHERE id = 1",
			(json.dumps(warning) if warning is not None else None, _now_iso()),
		)
		conn.commit()
	finally:
		conn.close()


def get_usage(db_path: Optional[str] = None) -> Dict[str, Any]:
	init_db(db_path)
	path = _get_db_path(db_path)
	conn = _connect(path)
	try:
		conn.row_factory = sqlite3.Row
		row = conn.execute("SELECT output_tokens, request_count, warning, updated_at FROM token_usage WHERE id = 1").fetchone()
	finally:
		conn.close()
	if row is None:
		return {"output_tokens": 0, "request_count": 0, "warning": None, "updated_at": None}
	return {
		"output_tokens": row["output_tokens"],
		"request_count": row["request_count"],
		"warning": json.loads(row["warning"]) if row["warning"] else None,
		"updated_at": row["updated_at"],
	}
