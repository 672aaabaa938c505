from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from codecoach.backend import constants
from codecoach.backend.core.types import CodeSnapshot, HintEntry, HintSession, HintType


logger = logging.getLogger(__name__)

SessionKey = Tuple[str, str]

HINT_PROGRESSION: Dict[int, Dict[str, Any]] = {
	1: {
		"type": "conceptual",
		"description": "High-level approach and problem understanding",
		"max_length": 200,
		"keywords": ["approach", "strategy", "think about", "consider", "pattern"],
	},
	2: {
		"type": "structural",
		"description": "Algorithm structure and data organization",
		"max_length": 300,
		"keywords": ["structure", "organize", "steps", "breakdown", "components"],
	},
	3: {
		"type": "implementation",
		"description": "Specific implementation guidance",
		"max_length": 400,
		"keywords": ["implement", "code", "function", "method", "technique"],
	},
	4: {
		"type": "optimization",
		"description": "Edge cases and optimization hints",
		"max_length": 500,
		"keywords": ["edge case", "optimize", "improve", "efficiency", "corner case"],
	},
}

CONCEPT_KEYWORDS = (
	"recursion",
	"iteration",
	"dynamic programming",
	"greedy",
	"backtracking",
	"binary search",
	"two pointers",
	"sliding window",
	"hash map",
	"hash table",
	"stack",
	"queue",
	"heap",
	"tree",
	"graph",
	"dfs",
	"bfs",
	"sorting",
	"searching",
	"divide and conquer",
	"memoization",
	"time complexity",
	"space complexity",
	"optimization",
)

_TITLE_MAX_CHARS = 50


def normalize_title(title: Optional[str]) -> str:
	if not title:
		return "unknown"
	normalized = re.sub(r"[^a-z0-9]", "_", title.lower())
	normalized = re.sub(r"_+", "_", normalized).strip("_")
	return normalized[:_TITLE_MAX_CHARS] or "unknown"


def hint_type_for(level: int) -> HintType:
	entry = HINT_PROGRESSION.get(level)
	return entry["type"] if entry else "general"


def extract_concepts(content: Optional[str]) -> List[str]:
	if not content:
		return []
	lowered = content.lower()
	return [concept for concept in CONCEPT_KEYWORDS if concept in lowered]


def code_complexity(code: Optional[str]) -> int:
	if not code:
		return 0
	score = len(re.findall(r"function|def|class", code)) * 2
	score += len(re.findall(r"if|else|elif", code))
	score += len(re.findall(r"for|while", code)) * 2
	score += len(re.findall(r"try|catch|except", code))
	score += len(code) // 100
	return min(score, 20)


class HintSessionManager:
	"""Per-(caller, problem) progressive hint state.

	Sessions move from level 1 to ``max_level`` one step per ``advance`` and
	never skip a level whose hint was not recorded. Expiry is checked lazily
	on every read and write; an expired or corrupt session is discarded and
	the caller restarts at level 1.
	"""

	def __init__(
		self,
		*,
		max_level: int = constants.HINT_MAX_LEVEL,
		ttl_s: float = constants.HINT_SESSION_TTL_S,
		max_sessions_per_caller: int = constants.HINT_MAX_SESSIONS_PER_CALLER,
		evolution_limit: int = constants.HINT_CODE_EVOLUTION_LIMIT,
		clock: Callable[[], float] = time.time,
	):
		self.max_level = max_level
		self.ttl_s = ttl_s
		self.max_sessions_per_caller = max_sessions_per_caller
		self.evolution_limit = evolution_limit
		self._clock = clock
		self._sessions: Dict[SessionKey, HintSession] = {}

	def __len__(self) -> int:
		return len(self._sessions)

	def advance(self, caller_id: str, problem_title: str, context: Optional[Mapping[str, Any]] = None) -> int:
		key = (caller_id, normalize_title(problem_title))
		session = self._live_session(key)
		now = self._clock()
		if session is None:
			session = self._new_session(problem_title, context or {}, now)
			session.current_level = 1
			self._sessions[key] = session
			self._evict(caller_id)
			return 1
		next_level = min(session.current_level + 1, self.max_level, len(session.hints) + 1)
		session.current_level = max(session.current_level, next_level)
		session.last_updated = now
		self._evict(caller_id)
		return next_level

	def record_hint(
		self,
		caller_id: str,
		problem_title: str,
		level: int,
		content: str,
		context: Optional[Mapping[str, Any]] = None,
	) -> Optional[HintSession]:
		ctx = context or {}
		key = (caller_id, normalize_title(problem_title))
		now = self._clock()
		session = self._live_session(key)
		if session is None:
			session = self._new_session(problem_title, ctx, now)
			self._sessions[key] = session

		if level != len(session.hints) + 1:
			logger.debug(
				"Ignoring hint level %d for %s; expected %d",
				level,
				key[1],
				len(session.hints) + 1,
			)
			return session

		code = str(ctx.get("current_code") or "")
		session.current_level = max(session.current_level, level)
		session.last_updated = now
		session.hints.append(
			HintEntry(
				level=level,
				content=content,
				timestamp=now,
				hint_type=hint_type_for(level),
				code_length=len(code),
				has_function="function" in code or "def" in code,
				has_loop="for" in code or "while" in code,
				has_conditional="if" in code,
				code_complexity=code_complexity(code),
			)
		)
		session.concepts.update(extract_concepts(content))

		previous_code = session.code_evolution[-1].code if session.code_evolution else session.initial_code
		if code and code != previous_code:
			session.code_evolution.append(CodeSnapshot(code=code, timestamp=now, hint_level=level))
			if len(session.code_evolution) > self.evolution_limit:
				del session.code_evolution[: len(session.code_evolution) - self.evolution_limit]

		session.progress_score = self._progress_score(session, now)
		self._evict(caller_id)
		return session

	def get_context(self, caller_id: str, problem_title: str) -> Optional[Dict[str, Any]]:
		session = self._live_session((caller_id, normalize_title(problem_title)))
		if session is None:
			return None
		now = self._clock()
		return {
			"previous_hints": [hint.as_dict() for hint in session.hints],
			"current_level": session.current_level,
			"context": {
				"initial_code": session.initial_code,
				"language": session.language,
				"problem_description": session.problem_description,
			},
			"progression": {
				"concepts_introduced": sorted(session.concepts),
				"code_evolution": [snapshot.as_dict() for snapshot in session.code_evolution[-3:]],
				"progress_score": self._progress_score(session, now),
				"session_duration_s": now - session.created_at,
			},
			"next_hint_guidance": self.guidance_for(session.current_level + 1),
		}

	def guidance_for(self, level: int) -> Optional[Dict[str, Any]]:
		entry = HINT_PROGRESSION.get(level)
		return dict(entry) if entry else None

	def get_session(self, caller_id: str, problem_title: str) -> Optional[HintSession]:
		return self._live_session((caller_id, normalize_title(problem_title)))

	def reset(self, caller_id: str, problem_title: str) -> bool:
		session = self._sessions.pop((caller_id, normalize_title(problem_title)), None)
		if session is not None:
			logger.info("Reset hint session for %s (%d hints)", session.problem_title, len(session.hints))
		return session is not None

	def clear_tab(self, caller_id: str) -> int:
		keys = [key for key in self._sessions if key[0] == caller_id]
		for key in keys:
			del self._sessions[key]
		if keys:
			logger.info("Cleared %d hint sessions for caller %s", len(keys), caller_id)
		return len(keys)

	def purge_expired(self) -> int:
		now = self._clock()
		expired = [key for key, session in self._sessions.items() if self._is_expired(session, now)]
		for key in expired:
			del self._sessions[key]
		if expired:
			logger.debug("Purged %d expired hint sessions", len(expired))
		return len(expired)

	def stats(self) -> Dict[str, object]:
		now = self._clock()
		sessions_by_tab: Dict[str, int] = {}
		concepts: set = set()
		total_level = 0
		total_score = 0.0
		for (caller_id, _), session in self._sessions.items():
			sessions_by_tab[caller_id] = sessions_by_tab.get(caller_id, 0) + 1
			total_level += session.current_level
			total_score += self._progress_score(session, now)
			concepts.update(session.concepts)
		count = len(self._sessions)
		return {
			"total_sessions": count,
			"sessions_by_tab": sessions_by_tab,
			"average_hint_level": round(total_level / count, 1) if count else 0,
			"average_progress_score": round(total_score / count, 1) if count else 0,
			"concepts_tracked": sorted(concepts),
		}

	def _new_session(self, problem_title: str, context: Mapping[str, Any], now: float) -> HintSession:
		return HintSession(
			problem_title=problem_title,
			initial_code=str(context.get("current_code") or ""),
			language=str(context.get("language") or "javascript"),
			problem_description=str(context.get("problem_description") or ""),
			created_at=now,
			last_updated=now,
		)

	def _live_session(self, key: SessionKey) -> Optional[HintSession]:
		session = self._sessions.get(key)
		if session is None:
			return None
		if self._is_expired(session, self._clock()):
			logger.info("Hint session %s expired; starting fresh", key[1])
			del self._sessions[key]
			return None
		if not self._is_intact(session):
			logger.warning("Discarding corrupt hint session %s", key[1])
			del self._sessions[key]
			return None
		return session

	def _is_expired(self, session: HintSession, now: float) -> bool:
		return now - session.last_updated > self.ttl_s

	def _is_intact(self, session: HintSession) -> bool:
		if session.current_level < 0 or session.current_level > self.max_level:
			return False
		return all(hint.level == index + 1 for index, hint in enumerate(session.hints))

	def _progress_score(self, session: HintSession, now: float) -> float:
		score = session.current_level * 2
		score += min(len(session.code_evolution), 5)
		score += len(session.concepts)
		minutes = (now - session.created_at) / 60.0
		score += min(minutes / 5.0, 3.0)
		return round(score, 1)

	def _evict(self, caller_id: str) -> None:
		now = self._clock()
		owned = [(key, session) for key, session in self._sessions.items() if key[0] == caller_id]
		for key, session in owned:
			if self._is_expired(session, now):
				del self._sessions[key]
		live = [(key, session) for key, session in owned if key in self._sessions]
		if len(live) <= self.max_sessions_per_caller:
			return
		live.sort(key=lambda item: item[1].last_updated, reverse=True)
		for key, _ in live[self.max_sessions_per_caller :]:
			logger.debug("Evicting hint session %s to stay within the per-caller limit", key[1])
			del self._sessions[key]
