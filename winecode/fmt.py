"""ANSI-formatted stderr output using Rich."""

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.text import Text

_console = Console(stderr=True)

MAX_PREVIEW_LINES = 30
MAX_PREVIEW_LINE_LENGTH = 120
MAX_PREVIEW_MATCHES = 10


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level console from CLI flags.

    Call once at startup, before any output.
    """
    global _console
    kwargs: dict = {"stderr": True}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(**kwargs)


# -- Turn structure ----------------------------------------------------------


def turn_header(n: int, max_n: int, token_est: int) -> None:
    title = f"Turn {n}/{max_n} (~{token_est} tokens)"
    _console.print(Rule(title, style="cyan"))


def llm_timing(elapsed: float, kind: str = "primary") -> None:
    style = "green" if kind == "primary" else "dim"
    _console.print(Text(f"  Model responded in {elapsed:.1f}s ({kind})", style=style))


def llm_spinner(label: str = "Waiting for model"):
    """Return a Rich Status context manager that spins on stderr."""
    return _console.status(f"  {label}", spinner="dots")


def continuation(turn: int, reason: str) -> None:
    line = Text()
    line.append("  ↻ Continuing", style="bold cyan")
    line.append(f" (turn {turn}): {reason}", style="cyan")
    _console.print(line)


def completion(turns: int, exit_code: str) -> None:
    if exit_code == "ok":
        _console.print(
            Text(f"  ✓ Agent finished: {turns} turns", style="bold green")
        )
    else:
        _console.print(
            Text(f"  Agent finished: {turns} turns, exit={exit_code}", style="bold red")
        )


# -- Input -------------------------------------------------------------------


def enhanced_prompt(markup: str) -> None:
    """Show the context-enhanced user input. *markup* is Rich markup."""
    _console.print(Text("  Enhanced prompt:", style="bold magenta"))
    _console.print(Text.from_markup(f"    {markup}"))


# -- Tool calls --------------------------------------------------------------


def tool_call(name: str, params_json: str) -> None:
    header = Text()
    header.append("  ▶ ", style="bold magenta")
    header.append(name, style="bold magenta")
    _console.print(header)
    if params_json:
        for line in params_json.splitlines():
            _console.print(Text(f"    {line}", style="dim"))


def tool_error(name: str, msg: str) -> None:
    header = Text()
    header.append(f"  ✗ {name}", style="bold red")
    header.append(f"  {msg}", style="red")
    _console.print(header)


def tool_result(result, elapsed: float) -> None:
    """Render a successful or failed ToolResult for the human reader."""
    name = result.tool_name
    if not result.success:
        tool_error(name, result.error or "unknown error")
        return

    header = Text()
    header.append(f"  ✓ {name}", style="green")
    header.append(f"  {elapsed:.1f}s", style="green")

    if name == "Bash":
        header.append(f"  {result.get('command', '')}", style="white")
        _console.print(header)
        stdout = result.get("stdout") or ""
        if stdout:
            _console.print(Text("    ┌─ Output:", style="dim"))
            for line in stdout.splitlines():
                _console.print(Text(f"    │ {line}"))
            _console.print(Text("    └─", style="dim"))
        stderr = result.get("stderr") or ""
        if stderr:
            warning(stderr)
    elif name in ("Read", "Write", "Edit"):
        header.append(f"  {result.get('path', '')}", style="white")
        _console.print(header)
        if name == "Read":
            _content_preview(result.get("content") or "")
    elif name == "LS":
        items = result.get("items") or []
        header.append(f"  {len(items)} items", style="white")
        _console.print(header)
        for item in items:
            suffix = "/" if item["type"] == "directory" else ""
            _console.print(Text(f"    {item['name']}{suffix}", style="dim"))
    elif name in ("Glob", "Grep"):
        matches = result.get("matches") or []
        header.append(f"  {result.get('count', len(matches))} results", style="white")
        _console.print(header)
        for match in matches[:MAX_PREVIEW_MATCHES]:
            _console.print(Text(f"    • {match}", style="dim"))
        if len(matches) > MAX_PREVIEW_MATCHES:
            _console.print(
                Text(
                    f"    ... and {len(matches) - MAX_PREVIEW_MATCHES} more",
                    style="dim",
                )
            )
    else:
        _console.print(header)


def _content_preview(content: str) -> None:
    if not content:
        return
    lines = content.split("\n")
    _console.print(Text("    ┌─ Content:", style="dim"))
    for line in lines[:MAX_PREVIEW_LINES]:
        text = Text("    ", style="dim")
        if len(line) > MAX_PREVIEW_LINE_LENGTH:
            text.append(line[:MAX_PREVIEW_LINE_LENGTH], style="dim")
            text.append("... [truncated]", style="yellow")
        else:
            text.append(line, style="dim")
        _console.print(text)
    if len(lines) > MAX_PREVIEW_LINES:
        _console.print(
            Text(
                f"    ... [{len(lines) - MAX_PREVIEW_LINES} more lines truncated]",
                style="yellow",
            )
        )
    _console.print(Text("    └─", style="dim"))


# -- Assistant text ----------------------------------------------------------


def assistant_text(text: str) -> None:
    line = Text()
    line.append("  [assistant] ", style="blue")
    line.append(text)
    _console.print(line)


# -- Diagnostics -------------------------------------------------------------


def model_info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def context_stats(label: str, tokens: int) -> None:
    _console.print(Text(f"  {label}: ~{tokens} tokens", style="dim"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  ⚠ Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)


def repl_banner(model: str) -> None:
    _console.print(Rule(f"winecode • {escape(model)}", style="magenta"))
    _console.print(Text("Interactive mode. Type /exit or Ctrl-D to quit.", style="dim"))
