from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Optional

from codecoach.backend import constants


_MAX_CONTENT_CHARS = 5000
_REMOVED_IMPLEMENTATION = "[Implementation details removed for educational purposes]"
_FILTERED_FALLBACK = "Let me guide you through the approach step by step instead of providing the complete solution."
_INAPPROPRIATE_REPLY = (
	"I apologize, but I cannot provide that type of response. "
	"Let me help you with your coding problem in an educational way."
)

_COMPLETION_TEMPLATE = """
You are an educational coding assistant helping a student learn to solve coding problems.

Problem: {PROBLEM_TITLE}
Description: {PROBLEM_DESCRIPTION}
Language: {LANGUAGE}
Current Code:
{CURRENT_CODE}

Provide a helpful code suggestion that guides the student's learning. Focus on:
1. Educational value over complete solutions
2. Explaining the reasoning behind suggestions
3. Encouraging good coding practices
4. Building understanding step by step

Do not provide complete solutions. Instead, suggest the next logical step or improvement.
""".strip()

_EXPLANATION_TEMPLATE = """
You are an educational coding assistant. Explain the following code in a clear, educational manner.

Problem: {PROBLEM_TITLE}
Language: {LANGUAGE}
Code to explain:
{CURRENT_CODE}

Provide a clear explanation that covers:
1. What the code does
2. How it works step by step
3. Key concepts and patterns used
4. Potential improvements or considerations

Focus on helping the student understand the underlying concepts.
""".strip()

_OPTIMIZATION_TEMPLATE = """
You are an educational coding assistant helping a student optimize their code.

Problem: {PROBLEM_TITLE}
Language: {LANGUAGE}
Current Code:
{CURRENT_CODE}

Analyze the code and suggest optimizations focusing on:
1. Time and space complexity improvements
2. Code readability and maintainability
3. Best practices for {LANGUAGE}
4. Edge case handling

Explain your suggestions educationally, helping the student understand why each optimization matters.
""".strip()

_PROGRESSIVE_HINT_TEMPLATE = """
You are an educational coding assistant providing progressive hints to help a student solve a coding problem.

Problem: {PROBLEM_TITLE}
Description: {PROBLEM_DESCRIPTION}
Language: {LANGUAGE}
Current Code:
{CURRENT_CODE}

This is hint level {HINT_LEVEL} of {MAX_LEVEL}. Provide an educational hint that:
1. Builds on previous understanding
2. Guides toward the solution without giving it away
3. Encourages critical thinking
4. Explains key concepts relevant to this level

Keep the hint concise but educational, appropriate for this progression level.
""".strip()

_LEVEL_GUIDANCE = {
	1: "Focus on high-level problem understanding and general approach. Help the user understand what the problem is asking and what strategy might work.",
	2: "Provide guidance on algorithm structure and data organization. Suggest what data structures or algorithmic patterns might be useful.",
	3: "Give more specific implementation guidance. Help with the actual coding approach and key implementation details.",
	4: "Address edge cases, optimizations, and advanced considerations. Help refine the solution for completeness and efficiency.",
}

_SOLUTION_PATTERNS = [
	re.compile(r"function\s+\w+\s*\([^)]*\)\s*\{[\s\S]*return[\s\S]*\}", re.IGNORECASE),
	re.compile(r"def\s+\w+\s*\([^)]*\):[\s\S]*return", re.IGNORECASE),
	re.compile(r"class\s+Solution[\s\S]*def[\s\S]*return", re.IGNORECASE),
	re.compile(r"var\s+\w+\s*=\s*function[\s\S]*return", re.IGNORECASE),
]

_INAPPROPRIATE_PATTERNS = [
	re.compile(r"\b(hack|cheat|steal|copy)\b", re.IGNORECASE),
	re.compile(r"<script", re.IGNORECASE),
	re.compile(r"javascript:", re.IGNORECASE),
	re.compile(r"eval\s*\(", re.IGNORECASE),
]


def _fill(template: str, context: Mapping[str, Any], **extra: Any) -> str:
	values = {
		"PROBLEM_TITLE": context.get("problem_title") or "Coding Problem",
		"PROBLEM_DESCRIPTION": context.get("problem_description") or "No description available",
		"CURRENT_CODE": context.get("current_code") or "",
		"LANGUAGE": context.get("language") or "Python",
	}
	values.update({key: str(value) for key, value in extra.items()})
	rendered = template
	for key, value in values.items():
		rendered = rendered.replace("{" + key + "}", str(value))
	return rendered


def level_guidance(level: int) -> str:
	return _LEVEL_GUIDANCE.get(level, _LEVEL_GUIDANCE[1])


def completion_prompt(context: Mapping[str, Any]) -> str:
	return _fill(_COMPLETION_TEMPLATE, context)


def explanation_prompt(context: Mapping[str, Any]) -> str:
	return _fill(_EXPLANATION_TEMPLATE, context)


def optimization_prompt(context: Mapping[str, Any]) -> str:
	return _fill(_OPTIMIZATION_TEMPLATE, context)


def hint_prompt(
	context: Mapping[str, Any],
	hint_level: int,
	hint_context: Optional[Mapping[str, Any]] = None,
	*,
	max_level: int = constants.HINT_MAX_LEVEL,
) -> str:
	prompt = _fill(_PROGRESSIVE_HINT_TEMPLATE, context, HINT_LEVEL=hint_level, MAX_LEVEL=max_level)
	previous = (hint_context or {}).get("previous_hints") or []
	if previous:
		previous_text = "\n\n".join(f"Hint {hint['level']}: {hint['content']}" for hint in previous)
		prompt += f"\n\nPrevious hints given:\n{previous_text}"
	return f"{prompt}\n\n{level_guidance(hint_level)}"


def build_prompt(
	request_type: str,
	context: Mapping[str, Any],
	*,
	message: Optional[str] = None,
	hint_level: int = 1,
	hint_context: Optional[Mapping[str, Any]] = None,
) -> str:
	if request_type == "completion":
		return completion_prompt(context)
	if request_type == "explanation":
		return explanation_prompt(context)
	if request_type == "optimization":
		return optimization_prompt(context)
	if request_type == "hint":
		return hint_prompt(context, hint_level, hint_context)
	if request_type == "chatMessage":
		return message or ""
	raise ValueError(f"Unknown AI request type: {request_type}")


def contains_complete_solution(content: str) -> bool:
	return any(pattern.search(content) for pattern in _SOLUTION_PATTERNS)


def contains_inappropriate_content(content: str) -> bool:
	return any(pattern.search(content) for pattern in _INAPPROPRIATE_PATTERNS)


def extract_educational_content(content: str) -> str:
	educational = re.sub(
		r"function\s+\w+\s*\([^)]*\)\s*\{[\s\S]*?\}",
		_REMOVED_IMPLEMENTATION,
		content,
		flags=re.IGNORECASE,
	)
	educational = re.sub(
		r"def\s+\w+\s*\([^)]*\):[\s\S]*?(?=\n\n|\n[A-Z]|$)",
		_REMOVED_IMPLEMENTATION,
		educational,
		flags=re.IGNORECASE,
	)
	return educational.strip() or _FILTERED_FALLBACK


def filter_response(content: str) -> Dict[str, Any]:
	result: Dict[str, Any] = {"content": content, "filtered": False, "reason": None}
	if contains_complete_solution(content):
		result["filtered"] = True
		result["reason"] = "Contains complete solution - filtered for educational purposes"
		result["content"] = extract_educational_content(content)
	if contains_inappropriate_content(content):
		result["filtered"] = True
		result["reason"] = "Contains inappropriate content"
		result["content"] = _INAPPROPRIATE_REPLY
	return result


def sanitize_content(content: Optional[str]) -> str:
	if not content or not isinstance(content, str):
		return ""
	sanitized = re.sub(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", "", content, flags=re.IGNORECASE)
	sanitized = re.sub(r"<iframe\b[^<]*(?:(?!</iframe>)<[^<]*)*</iframe>", "", sanitized, flags=re.IGNORECASE)
	sanitized = re.sub(r"javascript:", "", sanitized, flags=re.IGNORECASE)
	sanitized = re.sub(r"on\w+\s*=", "", sanitized, flags=re.IGNORECASE)
	sanitized = sanitized.replace("\x00", "")
	if len(sanitized) > _MAX_CONTENT_CHARS:
		sanitized = sanitized[: _MAX_CONTENT_CHARS - 3] + "..."
	return sanitized.strip()
