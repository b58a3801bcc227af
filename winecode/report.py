"""Error types and JSON run reports."""

import json
from datetime import datetime, timezone


class AgentError(Exception):
    """Raised by the agent loop or setup helpers for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (bad TOML, wrong value types, etc.)."""


class TransportError(AgentError):
    """Raised when the chat endpoint cannot be reached or returns an error."""


class ReportCollector:
    """Accumulates events during an agent run for JSON report output."""

    def __init__(self):
        self.events: list[dict] = []
        self.tool_stats: dict[str, dict[str, int]] = {}
        self.model_calls = 0
        self.continuations = 0
        self.total_model_time = 0.0
        self.total_tool_time = 0.0
        self.max_turn_seen = 0

    def record_model_call(
        self, turn: int, duration: float, token_est: int, kind: str = "primary"
    ):
        self.model_calls += 1
        self.total_model_time += duration
        if turn > self.max_turn_seen:
            self.max_turn_seen = turn
        self.events.append(
            {
                "turn": turn,
                "type": "model_call",
                "kind": kind,
                "duration_s": round(duration, 3),
                "prompt_tokens_est": token_est,
            }
        )

    def record_tool_call(
        self,
        turn: int,
        name: str,
        params: dict | None,
        succeeded: bool,
        duration: float,
        error: str | None = None,
    ):
        self.total_tool_time += duration
        stats = self.tool_stats.setdefault(name, {"succeeded": 0, "failed": 0})
        if succeeded:
            stats["succeeded"] += 1
        else:
            stats["failed"] += 1
        event: dict = {
            "turn": turn,
            "type": "tool_call",
            "name": name,
            "params": params,
            "succeeded": succeeded,
            "duration_s": round(duration, 3),
        }
        if error is not None:
            event["error"] = error
        self.events.append(event)

    def record_continuation(self, turn: int, reason: str):
        self.continuations += 1
        self.events.append({"turn": turn, "type": "continuation", "reason": reason})

    def build_report(
        self,
        *,
        task: str,
        model: str,
        outcome: str,
        answer: str | None,
        exit_code: int,
        error_message: str | None = None,
    ) -> dict:
        succeeded = sum(s["succeeded"] for s in self.tool_stats.values())
        failed = sum(s["failed"] for s in self.tool_stats.values())

        result: dict = {
            "outcome": outcome,
            "answer": answer,
            "exit_code": exit_code,
        }
        if error_message is not None:
            result["error_message"] = error_message

        return {
            "version": 1,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "task": task,
            "model": model,
            "result": result,
            "stats": {
                "turns": self.max_turn_seen,
                "model_calls": self.model_calls,
                "continuations": self.continuations,
                "tool_calls_total": succeeded + failed,
                "tool_calls_succeeded": succeeded,
                "tool_calls_failed": failed,
                "tool_calls_by_name": dict(self.tool_stats),
                "total_model_time_s": round(self.total_model_time, 3),
                "total_tool_time_s": round(self.total_tool_time, 3),
            },
            "timeline": self.events,
        }

    def write(self, path: str, report: dict):
        with open(path, "w", encoding="utf-8") as f:
            json.dump(report, f, indent=2)
            f.write("\n")
