"""Tool registry, executor, and the built-in tool implementations."""

import fnmatch
import json
import os
import re
import subprocess
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any


class ToolName(str, Enum):
    """Canonical tool names. Both response shapes converge on these."""

    READ = "Read"
    WRITE = "Write"
    EDIT = "Edit"
    BASH = "Bash"
    LS = "LS"
    GLOB = "Glob"
    GREP = "Grep"


# Inline tag name -> canonical tool
TAG_NAMES: dict[str, ToolName] = {
    "read": ToolName.READ,
    "write": ToolName.WRITE,
    "edit": ToolName.EDIT,
    "bash": ToolName.BASH,
    "ls": ToolName.LS,
    "glob": ToolName.GLOB,
    "grep": ToolName.GREP,
}

# Structured function name -> canonical tool
STRUCTURED_NAMES: dict[str, ToolName] = {
    "read_file": ToolName.READ,
    "write_file": ToolName.WRITE,
    "edit_file": ToolName.EDIT,
    "execute_bash": ToolName.BASH,
    "list_directory": ToolName.LS,
    "search_files": ToolName.GLOB,
    "search_content": ToolName.GREP,
}

REQUIRED_PARAMS: dict[ToolName, tuple[str, ...]] = {
    ToolName.READ: ("file_path",),
    ToolName.WRITE: ("file_path", "content"),
    ToolName.EDIT: ("file_path", "old_string", "new_string"),
    ToolName.BASH: ("command",),
    ToolName.LS: ("path",),
    ToolName.GLOB: ("pattern",),
    ToolName.GREP: ("pattern",),
}


def _function(name: str, description: str, properties: dict, required: list) -> dict:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        },
    }


_PATH_PROP = {
    "type": "string",
    "description": "Directory to search in. Defaults to the working directory.",
}

TOOLS = [
    _function(
        "read_file",
        "Read a text file. Returns lines prefixed with 1-based line numbers.",
        {
            "file_path": {"type": "string", "description": "Path to the file."},
            "offset": {
                "type": "integer",
                "description": "Number of lines to skip from the start. Defaults to 0.",
            },
            "limit": {
                "type": "integer",
                "description": "Maximum number of lines to return.",
            },
        },
        ["file_path"],
    ),
    _function(
        "write_file",
        "Create or overwrite a file, creating parent directories as needed.",
        {
            "file_path": {"type": "string", "description": "Path to the file."},
            "content": {"type": "string", "description": "Full file content."},
        },
        ["file_path", "content"],
    ),
    _function(
        "edit_file",
        "Replace old_string with new_string in an existing file.",
        {
            "file_path": {"type": "string", "description": "Path to the file."},
            "old_string": {"type": "string", "description": "Exact text to find."},
            "new_string": {"type": "string", "description": "Replacement text."},
            "expected_replacements": {
                "type": "integer",
                "description": "Number of occurrences expected. Defaults to 1.",
            },
            "replace_all": {
                "type": "boolean",
                "description": "Replace every occurrence regardless of count.",
            },
        },
        ["file_path", "old_string", "new_string"],
    ),
    _function(
        "execute_bash",
        "Run a shell command in the working directory and return its output.",
        {
            "command": {"type": "string", "description": "Shell command to run."},
            "description": {
                "type": "string",
                "description": "Short description of what the command does.",
            },
            "timeout": {
                "type": "integer",
                "description": "Timeout in seconds. Defaults to 120.",
            },
        },
        ["command"],
    ),
    _function(
        "list_directory",
        "List the files and directories inside a directory.",
        {
            "path": {"type": "string", "description": "Directory to list."},
            "ignore": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Glob patterns of names to skip.",
            },
        },
        ["path"],
    ),
    _function(
        "search_files",
        "Find files matching a glob pattern, newest first.",
        {
            "pattern": {
                "type": "string",
                "description": 'Glob pattern, e.g. "**/*.py".',
            },
            "path": _PATH_PROP,
        },
        ["pattern"],
    ),
    _function(
        "search_content",
        "Find files whose contents match a regular expression, newest first.",
        {
            "pattern": {"type": "string", "description": "Python regex."},
            "path": _PATH_PROP,
            "include": {
                "type": "string",
                "description": 'Filename glob to filter on, e.g. "*.js".',
            },
        },
        ["pattern"],
    ),
]

MAX_OUTPUT_BYTES = 50 * 1024  # 50 KB
MAX_LINE_LENGTH = 2000
BINARY_CHECK_BYTES = 8 * 1024  # 8 KB
MAX_GREP_LINES = 100
MAX_PARAMS_ECHO = 500
IGNORED_DIRS = frozenset({"node_modules", ".git", "dist", "build"})

DEFAULT_BASH_TIMEOUT = 120
MAX_BASH_TIMEOUT = 600
_KILL_WAIT_TIMEOUT = 5  # seconds to wait for process to die after kill signals


class ToolValidationError(ValueError):
    """A tool call is missing a required parameter or carries a bad value."""


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one executed tool call.

    `error` is set if and only if `success` is False. Tool-specific fields
    (path, content, matches, ...) live in `data`.
    """

    tool_name: str
    success: bool
    data: dict = field(default_factory=dict)
    error: str | None = None

    def __post_init__(self):
        if self.success and self.error is not None:
            raise ValueError("a successful ToolResult cannot carry an error")
        if not self.success and not self.error:
            raise ValueError("a failed ToolResult must carry an error")

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.data[key]


def resolve_path(file_path: str, base_dir: str) -> Path:
    """Resolve file_path as-is when absolute, else against base_dir."""
    p = Path(file_path).expanduser()
    if p.is_absolute():
        return p.resolve()
    return (Path(base_dir) / p).resolve()


def _as_int(params: dict, key: str, default: int | None = None) -> int | None:
    value = params.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ToolValidationError(f"{key} must be an integer, got bool")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ToolValidationError(f"{key} must be an integer, got {value!r}")


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0


def _is_binary(path: Path) -> bool:
    with open(path, "rb") as f:
        return b"\x00" in f.read(BINARY_CHECK_BYTES)


# ---------------------------------------------------------------------------
# Tool implementations
# ---------------------------------------------------------------------------


class Tool:
    """Base class: a named capability with validate() and execute()."""

    name: ToolName

    def __init__(self, base_dir: str = "."):
        self.base_dir = base_dir

    @property
    def required(self) -> tuple[str, ...]:
        return REQUIRED_PARAMS[self.name]

    def validate(self, params: dict) -> None:
        """Raise ToolValidationError when a required parameter is missing."""
        for key in self.required:
            if params.get(key) is None:
                raise ToolValidationError(f"{key} parameter is required")

    def execute(self, params: dict) -> dict:
        raise NotImplementedError


class ReadTool(Tool):
    name = ToolName.READ

    def validate(self, params):
        super().validate(params)
        offset = _as_int(params, "offset", 0)
        if offset < 0:
            raise ToolValidationError("offset must not be negative")
        limit = _as_int(params, "limit")
        if limit is not None and limit < 1:
            raise ToolValidationError("limit must be at least 1")

    def execute(self, params):
        path = resolve_path(params["file_path"], self.base_dir)
        offset = _as_int(params, "offset", 0)
        limit = _as_int(params, "limit")

        if not path.exists():
            raise FileNotFoundError(f"file does not exist: {params['file_path']}")
        if path.is_dir():
            raise IsADirectoryError(f"{params['file_path']} is a directory, use ls")
        if _is_binary(path):
            raise ValueError(f"binary file detected: {params['file_path']}")

        text = path.read_text(encoding="utf-8")
        lines = text.split("\n")
        if lines and lines[-1] == "":
            lines.pop()

        end = len(lines) if limit is None else min(len(lines), offset + limit)
        selected = lines[offset:end]

        output = []
        total_bytes = 0
        for i, line in enumerate(selected, start=offset + 1):
            if len(line) > MAX_LINE_LENGTH:
                line = line[:MAX_LINE_LENGTH]
            numbered = f"{i}: {line}"
            total_bytes += len(numbered.encode("utf-8")) + 1
            if total_bytes > MAX_OUTPUT_BYTES:
                break
            output.append(numbered)

        return {
            "path": str(path),
            "content": "\n".join(output),
            "total_lines": len(lines),
            "displayed_lines": len(output),
        }


class WriteTool(Tool):
    name = ToolName.WRITE

    def validate(self, params):
        super().validate(params)
        if not isinstance(params["content"], str):
            raise ToolValidationError("content must be a string")

    def execute(self, params):
        path = resolve_path(params["file_path"], self.base_dir)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = params["content"].encode("utf-8")
        path.write_bytes(data)
        return {"path": str(path), "bytes_written": len(data)}


class EditTool(Tool):
    name = ToolName.EDIT

    def validate(self, params):
        super().validate(params)
        if not params["old_string"]:
            raise ToolValidationError("old_string must not be empty")
        if params["old_string"] == params["new_string"]:
            raise ToolValidationError("old_string and new_string cannot be the same")
        expected = _as_int(params, "expected_replacements", 1)
        if expected < 1:
            raise ToolValidationError("expected_replacements must be at least 1")

    def execute(self, params):
        from .edit import replace

        path = resolve_path(params["file_path"], self.base_dir)
        if not path.is_file():
            raise FileNotFoundError(f"file does not exist: {params['file_path']}")

        content = path.read_text(encoding="utf-8")
        new_content, count = replace(
            content,
            params["old_string"],
            params["new_string"],
            expected_replacements=_as_int(params, "expected_replacements", 1),
            replace_all=_as_bool(params.get("replace_all", False)),
        )
        path.write_text(new_content, encoding="utf-8")
        return {"path": str(path), "replacements": count}


def _kill_process_tree(proc: subprocess.Popen) -> None:
    """Kill a process and its descendants, then wait for exit.

    On Unix the child runs in its own session, so killing the process group
    takes the whole tree down. On Windows, taskkill /T does the same.
    """
    if sys.platform != "win32":
        import signal

        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except OSError:
            pass  # already exited
    else:
        try:
            subprocess.run(
                ["taskkill", "/T", "/F", "/PID", str(proc.pid)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=5,
            )
        except (OSError, subprocess.TimeoutExpired):
            pass  # best-effort
    try:
        proc.kill()
    except OSError:
        pass  # already dead
    try:
        proc.wait(timeout=_KILL_WAIT_TIMEOUT)
    except subprocess.TimeoutExpired:
        pass  # unkillable


def _decode_capped(raw: bytes) -> str:
    text = raw[:MAX_OUTPUT_BYTES].decode("utf-8", errors="replace")
    if len(raw) > MAX_OUTPUT_BYTES:
        text += f"\n[output truncated at {MAX_OUTPUT_BYTES // 1024}KB]"
    return text.strip()


class BashTool(Tool):
    name = ToolName.BASH

    def __init__(self, base_dir: str = ".", default_timeout: int = DEFAULT_BASH_TIMEOUT):
        super().__init__(base_dir)
        self.default_timeout = default_timeout

    def validate(self, params):
        super().validate(params)
        if not isinstance(params["command"], str) or not params["command"].strip():
            raise ToolValidationError("command must be a non-empty string")
        _as_int(params, "timeout", self.default_timeout)

    def execute(self, params):
        command = params["command"]
        description = params.get("description")
        timeout = _as_int(params, "timeout", self.default_timeout)
        timeout = max(1, min(timeout, MAX_BASH_TIMEOUT))

        if sys.platform == "win32":
            shell_cmd = ["cmd.exe", "/c", command]
        else:
            shell_cmd = ["/bin/sh", "-c", command]

        popen_kwargs: dict = dict(
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            cwd=self.base_dir,
        )
        if sys.platform != "win32":
            popen_kwargs["start_new_session"] = True

        t0 = time.monotonic()
        proc = subprocess.Popen(shell_cmd, **popen_kwargs)
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_process_tree(proc)
            proc.communicate()
            return {
                "success": False,
                "command": command,
                "description": description,
                "error": f"command timed out after {timeout}s",
                "execution_time": time.monotonic() - t0,
            }

        result = {
            "command": command,
            "description": description,
            "stdout": _decode_capped(stdout),
            "stderr": _decode_capped(stderr),
            "exit_code": proc.returncode,
            "execution_time": time.monotonic() - t0,
        }
        if proc.returncode != 0:
            detail = result["stderr"] or result["stdout"]
            error = f"command exited with code {proc.returncode}"
            result["success"] = False
            result["error"] = f"{error}: {detail}" if detail else error
        return result


class LSTool(Tool):
    name = ToolName.LS

    def execute(self, params):
        path = resolve_path(params["path"], self.base_dir)
        ignore = params.get("ignore") or []
        if isinstance(ignore, str):
            ignore = [p.strip() for p in ignore.split(",") if p.strip()]

        if not path.exists():
            raise FileNotFoundError(f"path does not exist: {params['path']}")
        if not path.is_dir():
            raise NotADirectoryError(f"path is not a directory: {params['path']}")

        items = []
        for child in path.iterdir():
            if any(fnmatch.fnmatch(child.name, pattern) for pattern in ignore):
                continue
            try:
                stat = child.stat()
            except OSError:
                continue
            items.append(
                {
                    "name": child.name,
                    "path": str(child),
                    "type": "directory" if child.is_dir() else "file",
                    "size": stat.st_size,
                }
            )

        items.sort(key=lambda item: (item["type"] != "directory", item["name"].lower()))
        return {"path": str(path), "items": items}


def _split_absolute_glob(pattern: str) -> tuple[str, str]:
    """Split an absolute glob into (directory_root, relative_pattern).

    "/opt/lib/**/*.py" -> ("/opt/lib", "**/*.py").
    """
    if (
        PureWindowsPath(pattern).is_absolute()
        and not PurePosixPath(pattern).is_absolute()
    ):
        cls = PureWindowsPath
    else:
        cls = PurePosixPath

    parts = cls(pattern).parts
    root_parts: list[str] = []
    glob_start = len(parts)
    for i, part in enumerate(parts):
        if any(c in part for c in ("*", "?", "[", "]")):
            glob_start = i
            break
        root_parts.append(part)
    root = str(cls(*root_parts)) if root_parts else str(cls(parts[0]))
    rel = str(PurePosixPath(*parts[glob_start:])) if glob_start < len(parts) else "*"
    return root, rel


def _search_root(params: dict, base_dir: str) -> Path:
    root = resolve_path(params.get("path") or ".", base_dir)
    if not root.exists():
        raise FileNotFoundError(f"path does not exist: {root}")
    if not root.is_dir():
        raise NotADirectoryError(f"path is not a directory: {root}")
    return root


class GlobTool(Tool):
    name = ToolName.GLOB

    def execute(self, params):
        pattern = params["pattern"]
        if PurePosixPath(pattern).is_absolute() or PureWindowsPath(pattern).is_absolute():
            root_str, pattern = _split_absolute_glob(pattern)
            params = {**params, "path": root_str}
        root = _search_root(params, self.base_dir)

        found = []
        for p in root.glob(pattern):
            if not p.is_file():
                continue
            if IGNORED_DIRS.intersection(p.relative_to(root).parts[:-1]):
                continue
            found.append(p)
        found.sort(key=_mtime, reverse=True)

        return {
            "pattern": params["pattern"],
            "search_path": str(root),
            "matches": [str(p) for p in found],
            "count": len(found),
        }


class GrepTool(Tool):
    name = ToolName.GREP

    def validate(self, params):
        super().validate(params)
        try:
            re.compile(params["pattern"])
        except re.error as exc:
            raise ToolValidationError(f"invalid regex {params['pattern']!r}: {exc}")

    def execute(self, params):
        regex = re.compile(params["pattern"])
        include = params.get("include")
        if include and include.startswith("**/"):
            include = include[3:]
        root = _search_root(params, self.base_dir)

        hits: list[tuple[Path, float, list[tuple[int, str]]]] = []
        for dirpath, dirs, files in os.walk(root):
            dirs[:] = [d for d in dirs if d not in IGNORED_DIRS]
            for filename in files:
                if include and not fnmatch.fnmatch(filename, include):
                    continue
                filepath = Path(dirpath) / filename
                try:
                    if _is_binary(filepath):
                        continue
                    text = filepath.read_text(encoding="utf-8")
                except (UnicodeDecodeError, OSError):
                    continue
                lines = [
                    (n, line)
                    for n, line in enumerate(text.splitlines(), start=1)
                    if regex.search(line)
                ]
                if lines:
                    hits.append((filepath, _mtime(filepath), lines))

        hits.sort(key=lambda h: h[1], reverse=True)

        line_hits = []
        for filepath, _, lines in hits:
            for line_no, line in lines:
                if len(line_hits) >= MAX_GREP_LINES:
                    break
                line_hits.append((str(filepath), line_no, line[:MAX_LINE_LENGTH]))

        return {
            "pattern": params["pattern"],
            "search_path": str(root),
            "include": params.get("include"),
            "matches": [str(h[0]) for h in hits],
            "count": len(hits),
            "lines": line_hits,
        }


# ---------------------------------------------------------------------------
# Registry / executor
# ---------------------------------------------------------------------------


def _echo_params(params) -> str:
    try:
        text = json.dumps(params, default=str)
    except (TypeError, ValueError):
        text = repr(params)
    if len(text) > MAX_PARAMS_ECHO:
        text = text[:MAX_PARAMS_ECHO] + "..."
    return text


class ToolExecutor:
    """Owns the closed set of tools and turns every call into a ToolResult."""

    def __init__(self, base_dir: str = ".", bash_timeout: int = DEFAULT_BASH_TIMEOUT):
        self.base_dir = base_dir
        self.tools: dict[ToolName, Tool] = {
            ToolName.READ: ReadTool(base_dir),
            ToolName.WRITE: WriteTool(base_dir),
            ToolName.EDIT: EditTool(base_dir),
            ToolName.BASH: BashTool(base_dir, default_timeout=bash_timeout),
            ToolName.LS: LSTool(base_dir),
            ToolName.GLOB: GlobTool(base_dir),
            ToolName.GREP: GrepTool(base_dir),
        }

    def available_tools(self) -> list[str]:
        return [name.value for name in self.tools]

    def _lookup(self, name) -> ToolName | None:
        if isinstance(name, ToolName):
            return name
        try:
            return ToolName(name)
        except ValueError:
            return None

    def execute(self, name, params: dict | None) -> ToolResult:
        """Validate and run one tool call. Never raises."""
        params = dict(params or {})
        tool_name = self._lookup(name)
        tool = self.tools.get(tool_name) if tool_name else None
        if tool is None:
            return ToolResult(
                tool_name=str(getattr(name, "value", name)),
                success=False,
                error=(
                    f"Unknown tool: {getattr(name, 'value', name)}. "
                    f"Available tools: {', '.join(self.available_tools())}"
                ),
            )

        try:
            tool.validate(params)
            fields = tool.execute(params)
        except Exception as exc:
            return ToolResult(
                tool_name=tool_name.value,
                success=False,
                data={"params": params},
                error=f"{exc} (params: {_echo_params(params)})",
            )

        fields = dict(fields)
        success = fields.pop("success", True)
        error = fields.pop("error", None)
        if success:
            return ToolResult(tool_name=tool_name.value, success=True, data=fields)
        return ToolResult(
            tool_name=tool_name.value,
            success=False,
            data=fields,
            error=error or "tool reported failure without a message",
        )


# ---------------------------------------------------------------------------
# Summaries fed back to the model
# ---------------------------------------------------------------------------

MAX_SUMMARY_MATCHES = 20


def format_tool_result(result: ToolResult) -> str:
    """One model-facing summary for a single ToolResult."""
    name = result.tool_name
    if not result.success:
        return f"{name}: Failed - {result.error}"

    if name == ToolName.READ.value:
        summary = (
            f"{name}: Successfully read {result.get('path')} "
            f"({result.get('displayed_lines', 0)} lines)"
        )
        content = result.get("content")
        return f"{summary}\n{content}" if content else summary
    if name == ToolName.WRITE.value:
        return (
            f"{name}: Successfully wrote {result.get('bytes_written', 0)} bytes "
            f"to {result.get('path')}"
        )
    if name == ToolName.EDIT.value:
        return (
            f"{name}: Successfully made {result.get('replacements', 0)} replacements "
            f"in {result.get('path')}"
        )
    if name == ToolName.BASH.value:
        output = result.get("stdout") or "(no output)"
        return f'{name}: Command "{result.get("command")}" executed successfully. Output: {output}'
    if name == ToolName.LS.value:
        items = result.get("items") or []
        listing = ", ".join(f"{item['name']} ({item['type']})" for item in items)
        return f"{name}: Found {len(items)} items in {result.get('path')}: {listing}"
    if name in (ToolName.GLOB.value, ToolName.GREP.value):
        matches = result.get("matches") or []
        count = result.get("count", len(matches))
        summary = f"{name}: Found {count} results"
        if matches:
            shown = "\n".join(f"  {m}" for m in matches[:MAX_SUMMARY_MATCHES])
            summary += f"\n{shown}"
            if len(matches) > MAX_SUMMARY_MATCHES:
                summary += f"\n  ... and {len(matches) - MAX_SUMMARY_MATCHES} more"
        return summary
    return f"{name}: Succeeded"


def format_tool_results(results: list[ToolResult]) -> str:
    return "\n".join(format_tool_result(r) for r in results)
