"""Enrich a user request with the working directory and the files it names."""

import re
from dataclasses import dataclass, field
from pathlib import Path

from rich.markup import escape

from .tools import ToolExecutor, ToolName

CONTEXT_READ_LINES = 50

_FILE_PATTERNS = (
    re.compile(r"([A-Za-z0-9_-]+\.[A-Za-z0-9]{1,4})\b"),
    re.compile(r"((?:\.{1,2}/|~/|/)[A-Za-z0-9_/.-]+)"),
    re.compile(r'"([^"]+\.[A-Za-z0-9]{1,4})"'),
    re.compile(r"'([^']+\.[A-Za-z0-9]{1,4})'"),
)

_LISTING_REQUEST_RE = re.compile(
    r"^\s*(ls|dir)\b|\blist (the |all )?(files|directory|dir|contents)\b|\bwhat files\b",
    re.IGNORECASE,
)


@dataclass
class EnhancedInput:
    enhanced_input: str
    display_input: str
    files_read: list[str] = field(default_factory=list)


def find_candidate_files(text: str) -> list[str]:
    """Filename-shaped tokens in *text*, first occurrence order, deduplicated."""
    seen: dict[str, None] = {}
    for pattern in _FILE_PATTERNS:
        for m in pattern.finditer(text):
            candidate = m.group(1).rstrip(".")
            if candidate and candidate not in ("/", ".", ".."):
                seen.setdefault(candidate, None)
    return list(seen)


def _highlight_re(name: str) -> re.Pattern:
    return re.compile(rf"(?<![\w*/.]){re.escape(name)}(?![\w/])")


def _listing_block(executor: ToolExecutor, base_dir: str) -> list[str]:
    result = executor.execute(ToolName.LS, {"path": base_dir})
    if not result.success:
        return ["Could not list current directory"]
    lines = ["Files and directories:"]
    for item in result.get("items") or []:
        suffix = "/" if item["type"] == "directory" else ""
        lines.append(f"  {item['name']}{suffix}")
    return lines


def enhance_input(
    text: str,
    executor: ToolExecutor,
    base_dir: str,
    read_lines: int = CONTEXT_READ_LINES,
) -> EnhancedInput:
    """Append a `--- CONTEXT ---` block to *text*.

    The block holds the working directory, its listing (unless the request
    is itself a listing request), and the first *read_lines* lines of each
    file the request mentions. Files that cannot be read are skipped.
    The display copy is Rich markup with the auto-read names highlighted.
    """
    base = Path(base_dir).resolve()
    enhanced = text
    display = escape(text)

    context = ["", "", "--- CONTEXT ---", f"Current directory: {base}"]
    if not _LISTING_REQUEST_RE.search(text):
        context.extend(_listing_block(executor, str(base)))

    found: list[str] = []
    contents: list[tuple[str, str]] = []
    read_paths: set[str] = set()
    for candidate in find_candidate_files(text):
        path = Path(candidate).expanduser()
        if not path.is_absolute():
            path = base / path
        if not path.is_file():
            continue
        key = str(path.resolve())
        if key in read_paths:
            continue
        result = executor.execute(
            ToolName.READ, {"file_path": key, "limit": read_lines}
        )
        if not result.success:
            continue
        read_paths.add(key)
        found.append(candidate)
        contents.append((candidate, result.get("content") or ""))

        pattern = _highlight_re(candidate)
        enhanced = pattern.sub(lambda _m: f"**{candidate}**", enhanced)
        display = _highlight_re(escape(candidate)).sub(
            lambda _m: f"[bold yellow]{escape(candidate)}[/bold yellow]", display
        )

    if contents:
        context.extend(["", "Referenced files:"])
        for name, content in contents:
            context.extend(["", f"--- {name} ---", content, f"--- End of {name} ---"])

    if found:
        display += f" [dim](auto-read: {escape(', '.join(found))})[/dim]"

    return EnhancedInput(
        enhanced_input=enhanced + "\n".join(context) + "\n",
        display_input=display,
        files_read=found,
    )
