"""Decide whether the agent should keep going without new user input.

Three heuristics are OR-ed: lexical cues in the reply, tool results that
imply pending work, and the shape of the task itself. The task intent can
override them: exploration always continues, explanation only listens to
the lexical cues.
"""

import re
from enum import Enum

from .tools import TAG_NAMES, ToolName, ToolResult

CONTINUE_PHRASES = (
    "next i",
    "now i",
    "let me",
    "i need to",
    "i should",
    "i will",
    "i'll",
    "continuing",
    "continue",
    "next step",
    "also need",
    "still need",
    "explore",
    "analyze",
)

COMPLETION_KEYWORDS = (
    "done",
    "complete",
    "finished",
    "all set",
    "ready",
    "summary",
    "successfully",
)

SETUP_COMMANDS = ("npm install", "npm init", "git init")
DIR_COMMANDS = ("mkdir",)

TRUNCATION_THRESHOLD = 200

_TOOL_TAG_OPEN_RE = re.compile(rf"<({'|'.join(TAG_NAMES)})\b", re.IGNORECASE)

_EXPLORE_RE = re.compile(
    r"\b(explore|exploring|exploration|investigate|look around|dig into)\b", re.I
)
_EXPLAIN_RE = re.compile(
    r"\b(explain|describe|what does|what is|how does|tell me about)\b", re.I
)
_BUILD_RE = re.compile(r"\b(create|build|make)\b", re.I)
_SITE_RE = re.compile(r"\b(portfolio|website|site)\b", re.I)


class TaskIntent(Enum):
    EXPLORE = "explore"
    EXPLAIN = "explain"
    BUILD = "build"
    GENERAL = "general"


def classify_task(task: str | None) -> TaskIntent:
    if not task:
        return TaskIntent.GENERAL
    if _EXPLORE_RE.search(task):
        return TaskIntent.EXPLORE
    if _EXPLAIN_RE.search(task):
        return TaskIntent.EXPLAIN
    if _BUILD_RE.search(task) or _SITE_RE.search(task):
        return TaskIntent.BUILD
    return TaskIntent.GENERAL


# ---------------------------------------------------------------------------
# Heuristics. Each returns a short reason, or None.
# ---------------------------------------------------------------------------


def lexical_reason(text: str) -> str | None:
    if not text:
        return None
    lower = text.lower()
    for phrase in CONTINUE_PHRASES:
        if phrase in lower:
            return f'response says "{phrase}"'
    if _TOOL_TAG_OPEN_RE.search(text):
        return "response still contains tool tags"
    return None


def _bash_ran(results: list[ToolResult], needles: tuple[str, ...]) -> bool:
    for r in results:
        if r.tool_name == ToolName.BASH.value and r.success:
            command = (r.get("command") or "").lower()
            if any(n in command for n in needles):
                return True
    return False


def _succeeded(results: list[ToolResult], *names: ToolName) -> bool:
    wanted = {n.value for n in names}
    return any(r.success and r.tool_name in wanted for r in results)


def tool_result_reason(results: list[ToolResult]) -> str | None:
    for r in results:
        if not r.success:
            return f"{r.tool_name} failed"
    for r in results:
        if r.tool_name in (ToolName.GLOB.value, ToolName.GREP.value) and (
            r.get("count") or r.get("matches")
        ):
            return f"{r.tool_name} found matches to follow up on"
    if _bash_ran(results, SETUP_COMMANDS):
        return "project setup command ran"
    if _succeeded(results, ToolName.WRITE):
        return "file written, more files may follow"
    return None


def task_shape_reason(
    text: str,
    results: list[ToolResult],
    task: str | None,
    truncation_threshold: int = TRUNCATION_THRESHOLD,
) -> str | None:
    if task:
        if (
            _SITE_RE.search(task)
            and not _succeeded(results, ToolName.WRITE)
            and not _bash_ran(results, DIR_COMMANDS)
        ):
            return "site requested but no files written yet"
        if (
            _BUILD_RE.search(task)
            and _bash_ran(results, SETUP_COMMANDS)
            and not _succeeded(results, ToolName.WRITE, ToolName.EDIT)
        ):
            return "project set up but no code written yet"

    stripped = (text or "").strip()
    if not _TOOL_TAG_OPEN_RE.search(stripped) and len(stripped) < truncation_threshold:
        lower = stripped.lower()
        if not any(k in lower for k in COMPLETION_KEYWORDS):
            return "response looks truncated"
    return None


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------


def continuation_reason(
    text: str,
    results: list[ToolResult],
    task: str | None,
    truncation_threshold: int = TRUNCATION_THRESHOLD,
) -> str | None:
    """Why the loop should run another turn, or None to hand back control."""
    intent = classify_task(task)
    if intent is TaskIntent.EXPLORE:
        return "exploration task"

    reason = lexical_reason(text)
    if reason or intent is TaskIntent.EXPLAIN:
        return reason
    return tool_result_reason(results) or task_shape_reason(
        text, results, task, truncation_threshold
    )


def should_continue(
    text: str,
    results: list[ToolResult],
    task: str | None,
    truncation_threshold: int = TRUNCATION_THRESHOLD,
) -> bool:
    return continuation_reason(text, results, task, truncation_threshold) is not None


def has_more_work_to_do(results: list[ToolResult], task: str | None) -> bool:
    """Whether tool results alone imply follow-up work for this task."""
    intent = classify_task(task)
    if intent is TaskIntent.EXPLORE:
        return True
    if intent is TaskIntent.EXPLAIN:
        return False
    return tool_result_reason(results) is not None
