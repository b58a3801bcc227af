"""Bounded conversation history.

The log is a plain list of `{"role", "content"}` dicts. Every operation
returns a new list; callers rebind rather than mutate. The system prompt is
never stored here, it is prepended fresh on each model call.
"""

import tiktoken

_encoder = tiktoken.get_encoding("cl100k_base")

ROLES = ("user", "assistant", "system")

HISTORY_LIMIT = 50
KEEP_RECENT = 30
KEEP_SUMMARIES = 10

TOOL_SUMMARY_PREFIX = "Tool execution results:"


def make_turn(role: str, content: str) -> dict:
    if role not in ROLES:
        raise ValueError(f"unknown role {role!r}, expected one of {', '.join(ROLES)}")
    return {"role": role, "content": content or ""}


def is_tool_summary(turn: dict) -> bool:
    return turn.get("role") == "system" and (turn.get("content") or "").startswith(
        TOOL_SUMMARY_PREFIX
    )


def estimate_tokens(messages: list) -> int:
    """Count tokens across all messages using tiktoken."""
    total = 0
    for m in messages:
        total += len(_encoder.encode(m.get("content") or ""))
    # Per-message overhead (role, separators): ~4 tokens each
    total += 4 * len(messages)
    return total


class HistoryManager:
    """Appends turns and prunes once the log grows past `limit`.

    Pruning keeps the `keep_recent` newest turns verbatim. From the discarded
    prefix it carries forward up to `keep_summaries` of the newest tool
    summary turns, plus the user turn that opened the current task (which
    counts against the same allowance). Relative order is preserved.
    """

    def __init__(
        self,
        limit: int = HISTORY_LIMIT,
        keep_recent: int = KEEP_RECENT,
        keep_summaries: int = KEEP_SUMMARIES,
    ):
        if keep_recent < 1 or keep_recent >= limit:
            raise ValueError("keep_recent must be between 1 and limit - 1")
        if keep_summaries < 1:
            raise ValueError("keep_summaries must be at least 1")
        self.limit = limit
        self.keep_recent = keep_recent
        self.keep_summaries = keep_summaries

    def append(
        self,
        history: list[dict],
        role: str,
        content: str,
        task_turn: dict | None = None,
    ) -> list[dict]:
        """Return *history* plus one new turn, pruned if it now exceeds the limit."""
        return self.prune([*history, make_turn(role, content)], task_turn=task_turn)

    def prune(self, history: list[dict], task_turn: dict | None = None) -> list[dict]:
        if len(history) <= self.limit:
            return list(history)

        prefix = history[: -self.keep_recent]
        recent = history[-self.keep_recent :]

        pinned = task_turn is not None and any(t is task_turn for t in prefix)
        allowance = self.keep_summaries - 1 if pinned else self.keep_summaries
        summaries = [t for t in prefix if is_tool_summary(t) and t is not task_turn]
        carried = summaries[len(summaries) - allowance :] if allowance > 0 else []

        keep = {id(t) for t in carried}
        if pinned:
            keep.add(id(task_turn))
        return [t for t in prefix if id(t) in keep] + recent
