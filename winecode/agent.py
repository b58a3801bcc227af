import argparse
import json
import os
import sys
import time
from dataclasses import dataclass, field
from importlib import metadata
from pathlib import Path

from . import fmt
from .client import DEFAULT_MODEL, ChatClient, resolve_model
from .config import TOOL_MODES, _UNSET, apply_config_to_args, generate_config, load_config
from .context import CONTEXT_READ_LINES, enhance_input
from .history import TOOL_SUMMARY_PREFIX, HistoryManager, estimate_tokens, make_turn
from .parser import ParsedResponse, ToolCall, parse_response, strip_tool_tags
from .policy import TRUNCATION_THRESHOLD, continuation_reason
from .report import AgentError, ReportCollector, TransportError
from .tools import DEFAULT_BASH_TIMEOUT, TOOLS, ToolExecutor, ToolResult, format_tool_results

DEFAULT_SYSTEM_PROMPT_FILE = Path(__file__).parent / "system_prompt.txt"
INSTRUCTIONS_FILE = "WINECODE.md"
MAX_INSTRUCTIONS_CHARS = 10_000
MAX_ARG_LOG = 1000

DEFAULT_MAX_TURNS = 25
DEFAULT_CONTINUATION_DELAY = 0.5

CONTINUE_PROMPT = (
    "Continue with the next step to complete the user's request. "
    "What should you do next?"
)
FOLLOW_UP_PROMPT = (
    "Provide a helpful response based on these results. "
    "Do not use any tool calls in your response."
)
CONTINUATION_FOLLOW_UP_PROMPT = (
    "Provide a helpful response based on these results. "
    "Continue with next steps if needed."
)

INLINE_TOOLS_PROMPT = """\
You have access to these tools, invoked with XML-style tags:

- <read file_path="/path/to/file" offset="0" limit="100"></read>
- <write file_path="/path/to/file">content goes here with actual newlines</write>
- <edit file_path="/path/to/file" old_string="text to replace" new_string="replacement text"></edit>
- <bash command="command to execute" description="what this does"></bash>
- <ls path="/path/to/directory"></ls>
- <glob pattern="**/*.py" path="/optional/search/path"></glob>
- <grep pattern="search regex" path="/optional/search/path" include="*.py"></grep>

Rules:
- Prefer one tool call per response; several are run in order if you emit them.
- Use absolute paths, or paths relative to the working directory.
- For multi-line content in <write>, put actual newlines inside the tag.
- For <edit>, the old_string must match the file exactly and be unique unless
  expected_replacements or replace_all="true" is given.
- For ls, use the working directory path when listing "this directory"."""

STRUCTURED_TOOLS_PROMPT = """\
You have access to tools exposed as functions (read_file, write_file, edit_file,
execute_bash, list_directory, search_files, search_content). Call them to
inspect and change the project; several calls in one reply run in order."""


def load_instructions(base_dir: str, verbose: bool) -> str:
    """Load WINECODE.md from base_dir, if present.

    Returns the file text (or "" if absent or unreadable), truncated to
    MAX_INSTRUCTIONS_CHARS with a note.
    """
    path = Path(base_dir).resolve() / INSTRUCTIONS_FILE
    if not path.is_file():
        return ""
    try:
        file_size = path.stat().st_size
        with path.open(encoding="utf-8", errors="replace") as f:
            content = f.read(MAX_INSTRUCTIONS_CHARS + 1)
    except OSError:
        return ""
    if len(content) > MAX_INSTRUCTIONS_CHARS:
        content = (
            content[:MAX_INSTRUCTIONS_CHARS]
            + f"\n[truncated: {INSTRUCTIONS_FILE} exceeds {MAX_INSTRUCTIONS_CHARS} character limit]"
        )
    if verbose:
        fmt.info(f"Loaded {INSTRUCTIONS_FILE} ({file_size} bytes) from {path.parent}")
    return content


def build_system_prompt(base_dir: str, structured: bool, instructions: str = "") -> str:
    prompt = DEFAULT_SYSTEM_PROMPT_FILE.read_text(encoding="utf-8").strip()
    prompt += "\n\n" + (STRUCTURED_TOOLS_PROMPT if structured else INLINE_TOOLS_PROMPT)
    prompt += f"\n\nCurrent working directory: {Path(base_dir).resolve()}"
    if instructions:
        prompt += "\n\n" + instructions
    return prompt


def describe_calls(parsed: ParsedResponse) -> str:
    """Textual record of a structured reply, for plain role/content history."""
    lines = [parsed.text] if parsed.text else []
    for call in parsed.calls:
        lines.append(f"[tool call] {call.name.value} {json.dumps(call.params, default=str)}")
    return "\n".join(lines)


def _pretty_params(params: dict) -> str:
    pretty = json.dumps(params, indent=2, default=str)
    if len(pretty) > MAX_ARG_LOG:
        pretty = pretty[:MAX_ARG_LOG] + "\n... (truncated)"
    return pretty


@dataclass
class TurnOutcome:
    answer: str
    reason: str | None = None
    results: list[ToolResult] = field(default_factory=list)


class Agent:
    """The orchestration loop.

    One user request runs as a bounded series of turns. Each turn calls the
    model, executes any tool calls in order, asks the model to respond to
    the results, and consults the continuation policy. The loop stops when
    the policy says so, when a turn carries no tool calls, or after
    `max_turns` turns.
    """

    def __init__(
        self,
        client: ChatClient,
        model: str = DEFAULT_MODEL,
        *,
        base_dir: str = ".",
        executor: ToolExecutor | None = None,
        tool_mode: str = "inline",
        max_turns: int = DEFAULT_MAX_TURNS,
        continuation_delay: float = DEFAULT_CONTINUATION_DELAY,
        history_manager: HistoryManager | None = None,
        truncation_threshold: int = TRUNCATION_THRESHOLD,
        context_read_lines: int = CONTEXT_READ_LINES,
        use_context: bool = True,
        bash_timeout: int = DEFAULT_BASH_TIMEOUT,
        instructions: str = "",
        verbose: bool = True,
        on_output=None,
        report: ReportCollector | None = None,
        sleep=time.sleep,
    ):
        if tool_mode not in TOOL_MODES:
            raise AgentError(f"unknown tool mode {tool_mode!r}")
        if max_turns < 1:
            raise AgentError("max_turns must be at least 1")

        self.client = client
        self.model = model
        self.base_dir = str(Path(base_dir).resolve())
        self.executor = executor or ToolExecutor(self.base_dir, bash_timeout=bash_timeout)
        self.max_turns = max_turns
        self.continuation_delay = continuation_delay
        self.history_manager = history_manager or HistoryManager()
        self.truncation_threshold = truncation_threshold
        self.context_read_lines = context_read_lines
        self.use_context = use_context
        self.verbose = verbose
        self.on_output = on_output
        self.report = report
        self._sleep = sleep

        self.structured = self._resolve_structured(tool_mode)
        self.instructions = instructions
        self.system_prompt = build_system_prompt(
            self.base_dir, self.structured, instructions
        )

        self.history: list[dict] = []
        self.task: str | None = None
        self._task_turn: dict | None = None
        self.closed = False

    def _resolve_structured(self, tool_mode: str) -> bool:
        if tool_mode != "auto":
            return tool_mode == "structured"
        try:
            return bool(self.client.get_model_capabilities(self.model)["supports_function"])
        except TransportError as e:
            fmt.warning(f"could not query model capabilities, using inline tools: {e}")
            return False

    # -- Session state -------------------------------------------------------

    def set_instructions(self, instructions: str) -> None:
        self.instructions = instructions
        self.system_prompt = build_system_prompt(
            self.base_dir, self.structured, instructions
        )

    def clear(self) -> int:
        """Forget the conversation. Returns the number of turns dropped."""
        dropped = len(self.history)
        self.history = []
        self.task = None
        self._task_turn = None
        return dropped

    def _append(self, role: str, content: str) -> None:
        self.history = self.history_manager.append(
            self.history, role, content, task_turn=self._task_turn
        )

    def _emit(self, text: str) -> None:
        if self.on_output is not None and text:
            self.on_output(text)

    # -- Input ---------------------------------------------------------------

    def handle_input(self, line: str) -> str | None:
        """Process one line from the user. Returns the final answer, if any.

        Transport and other agent errors abort the request and are shown to
        the user; the session stays usable.
        """
        text = line.strip()
        if not text:
            return None
        if text.lower() in ("exit", "quit"):
            self.closed = True
            return None
        try:
            answer, exhausted = self.run_task(text)
        except AgentError as e:
            fmt.error(str(e))
            return None
        if exhausted:
            fmt.warning("max turns reached for this request.")
        return answer

    def run_task(self, text: str) -> tuple[str | None, bool]:
        """Run a new top-level request to completion.

        Returns (answer, exhausted). Raises AgentError on transport failure.
        """
        self.task = text
        content = text
        if self.use_context:
            enhanced = enhance_input(
                text, self.executor, self.base_dir, read_lines=self.context_read_lines
            )
            content = enhanced.enhanced_input
            if self.verbose and enhanced.files_read:
                fmt.enhanced_prompt(enhanced.display_input)

        self._task_turn = make_turn("user", content)
        self.history = self.history_manager.prune(
            [*self.history, self._task_turn], task_turn=self._task_turn
        )
        if self.verbose and self.use_context:
            fmt.context_stats("Request with context", estimate_tokens([self._task_turn]))

        answer = None
        for turn in range(1, self.max_turns + 1):
            outcome = self._run_turn(turn, continuation=turn > 1)
            answer = outcome.answer
            if outcome.reason is None:
                if self.verbose:
                    fmt.completion(turn, "ok")
                return answer, False

            if turn == self.max_turns:
                break
            if self.verbose:
                if answer:
                    fmt.assistant_text(answer)
                fmt.continuation(turn, outcome.reason)
            if self.report is not None:
                self.report.record_continuation(turn, outcome.reason)
            self._sleep(self.continuation_delay)

        if self.verbose:
            fmt.completion(self.max_turns, "max_turns")
        return answer, True

    # -- Turns ---------------------------------------------------------------

    def _messages(self, continuation: bool) -> list[dict]:
        messages = [make_turn("system", self.system_prompt), *self.history]
        if continuation:
            messages.append(make_turn("system", CONTINUE_PROMPT))
        return messages

    def _call(self, turn: int, messages: list, tools: list | None, kind: str):
        token_est = estimate_tokens(messages)
        t0 = time.monotonic()
        if self.verbose:
            with fmt.llm_spinner():
                response = self.client.send_message(self.model, messages, tools=tools)
        else:
            response = self.client.send_message(self.model, messages, tools=tools)
        elapsed = time.monotonic() - t0
        if self.verbose:
            fmt.llm_timing(elapsed, kind)
        if self.report is not None:
            self.report.record_model_call(turn, elapsed, token_est, kind=kind)
        return response

    def _execute(self, turn: int, call: ToolCall) -> ToolResult:
        if self.verbose:
            fmt.tool_call(call.name.value, _pretty_params(call.params))
        t0 = time.monotonic()
        result = self.executor.execute(call.name, call.params)
        elapsed = time.monotonic() - t0
        if self.verbose:
            fmt.tool_result(result, elapsed)
        if self.report is not None:
            self.report.record_tool_call(
                turn,
                result.tool_name,
                call.params,
                result.success,
                elapsed,
                error=result.error,
            )
        return result

    def _run_turn(self, turn: int, continuation: bool) -> TurnOutcome:
        messages = self._messages(continuation)
        if self.verbose:
            fmt.turn_header(turn, self.max_turns, estimate_tokens(messages))

        response = self._call(
            turn, messages, TOOLS if self.structured else None, kind="primary"
        )
        parsed = parse_response(response)

        if not parsed.calls:
            self._append("assistant", parsed.text)
            answer = strip_tool_tags(parsed.text)
            self._emit(answer)
            return TurnOutcome(answer=answer)

        results = [self._execute(turn, call) for call in parsed.calls]
        summary = format_tool_results(results)
        for line in summary.splitlines():
            self._emit(line)

        assistant_record = describe_calls(parsed) if parsed.structured else parsed.text
        summary_turn = f"{TOOL_SUMMARY_PREFIX}\n{summary}"
        instruction = CONTINUATION_FOLLOW_UP_PROMPT if continuation else FOLLOW_UP_PROMPT
        follow_up = [
            *messages,
            make_turn("assistant", assistant_record),
            make_turn("system", f"{summary_turn}\n\n{instruction}"),
        ]
        final = self._call(turn, follow_up, None, kind="follow-up")
        if isinstance(final, dict):
            final_text = final.get("content") or ""
        else:
            final_text = final or ""

        self._append("assistant", assistant_record)
        self._append("system", summary_turn)
        self._append("assistant", final_text)

        answer = strip_tool_tags(final_text)
        self._emit(answer)
        reason = continuation_reason(
            final_text, results, self.task, self.truncation_threshold
        )
        return TurnOutcome(answer=answer, reason=reason, results=results)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def build_parser():
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="winecode",
        usage="%(prog)s [options] [question]",
        description="A CLI development assistant that drives local tools through an "
        "OpenAI-compatible chat endpoint.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "question",
        nargs="?",
        default=None,
        help="The question or task for the model. Without one, an interactive session starts.",
    )
    parser.add_argument(
        "--repl",
        action="store_true",
        help="Start an interactive session (after answering the question, if one is given).",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a commented configuration template and exit.",
    )
    parser.add_argument(
        "-m",
        "--model",
        default=_UNSET,
        help="Model to use (default: grok-3-mini).",
    )
    parser.add_argument(
        "-k",
        "--api-key",
        default=_UNSET,
        help="API key for the endpoint (default: $WINECODE_API_KEY).",
    )
    parser.add_argument(
        "--base-url",
        default=_UNSET,
        help="Endpoint base URL (default: https://api.llm.vin/v1).",
    )
    parser.add_argument(
        "--base-dir",
        default=".",
        help="Project directory tools operate in (default: current directory).",
    )
    parser.add_argument(
        "--tool-mode",
        choices=TOOL_MODES,
        default=_UNSET,
        help="How the model calls tools: inline tags, structured function calls, "
        "or auto-detect from the model's capabilities (default: inline).",
    )
    parser.add_argument(
        "--max-turns",
        type=int,
        default=_UNSET,
        help="Maximum turns per request, automatic continuations included (default: 25).",
    )
    parser.add_argument(
        "--no-instructions",
        action="store_true",
        default=_UNSET,
        help=f"Don't load {INSTRUCTIONS_FILE} from the base directory.",
    )
    parser.add_argument(
        "--no-context",
        action="store_true",
        default=_UNSET,
        help="Don't add the directory listing and mentioned files to requests.",
    )
    parser.add_argument(
        "--report",
        type=str,
        default=None,
        metavar="FILE",
        help="Write a JSON run report to FILE. Requires a question; incompatible with --repl.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=_UNSET,
        help="Only print the final answer.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Force ANSI color even when stderr is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Disable ANSI color even when stderr is a TTY.",
    )
    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        try:
            version = metadata.version("winecode")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        print(generate_config())
        sys.exit(0)

    if args.report and (args.repl or args.question is None):
        parser.error("--report requires a question and is incompatible with --repl")

    report = ReportCollector() if args.report else None
    model_id = args.model if isinstance(args.model, str) else DEFAULT_MODEL

    def _write_report(outcome, answer=None, exit_code=0, error_message=None):
        if not report:
            return
        data = report.build_report(
            task=args.question or "",
            model=model_id,
            outcome=outcome,
            answer=answer,
            exit_code=exit_code,
            error_message=error_message,
        )
        try:
            report.write(args.report, data)
        except OSError as e:
            fmt.error(f"Failed to write report to {args.report}: {e}")
            return
        if getattr(args, "verbose", True):
            fmt.info(f"Report written to {args.report}")

    try:
        config = load_config(Path(args.base_dir))
        apply_config_to_args(args, config)
        args.verbose = not args.quiet
        fmt.init(color=args.color, no_color=args.no_color)
        model_id, answer, exhausted = _run_main(args, report)
    except AgentError as e:
        fmt.error(str(e))
        _write_report("error", exit_code=1, error_message=str(e))
        sys.exit(1)

    if args.question is not None and not args.repl:
        _write_report("exhausted" if exhausted else "success", answer=answer, exit_code=0)


def _run_main(args, report):
    base_dir = str(Path(args.base_dir).resolve())
    if not Path(base_dir).is_dir():
        raise AgentError(f"base directory does not exist: {args.base_dir}")

    client = ChatClient(args.base_url, args.api_key)
    model_id = resolve_model(client, args.model, args.verbose)
    if args.verbose:
        fmt.model_info(f"Using model {model_id} at {client.base_url}")

    instructions = "" if args.no_instructions else load_instructions(base_dir, args.verbose)

    agent = Agent(
        client,
        model_id,
        base_dir=base_dir,
        tool_mode=args.tool_mode,
        max_turns=args.max_turns,
        continuation_delay=args.continuation_delay,
        history_manager=HistoryManager(
            limit=args.history_limit,
            keep_recent=args.history_keep_recent,
            keep_summaries=args.history_keep_summaries,
        ),
        truncation_threshold=args.truncation_threshold,
        context_read_lines=args.context_read_lines,
        use_context=not args.no_context,
        bash_timeout=args.bash_timeout,
        instructions=instructions,
        verbose=args.verbose,
        report=report,
    )

    answer, exhausted = None, False
    if args.question is not None:
        answer, exhausted = agent.run_task(args.question)
        if answer:
            print(answer)
        if exhausted:
            fmt.warning("max turns reached for this request.")

    if args.repl or args.question is None:
        repl_loop(agent, no_instructions=args.no_instructions)

    return model_id, answer, exhausted


# ---------------------------------------------------------------------------
# REPL
# ---------------------------------------------------------------------------


def _repl_help() -> None:
    """Print available REPL commands."""
    fmt.info(
        "Available commands:\n"
        "  /help              Show this help message\n"
        "  /clear             Reset the conversation\n"
        f"  /reload            Re-read {INSTRUCTIONS_FILE}\n"
        "  /exit, /quit       Exit the REPL (also: exit, quit)"
    )


def _repl_reload(agent: Agent, no_instructions: bool) -> None:
    if no_instructions:
        fmt.warning("instructions are disabled (--no-instructions)")
        return
    instructions = load_instructions(agent.base_dir, agent.verbose)
    agent.set_instructions(instructions)
    if not instructions:
        fmt.info(f"no {INSTRUCTIONS_FILE} found, instructions cleared")


def repl_loop(agent: Agent, no_instructions: bool = False) -> None:
    """Interactive read-eval-print loop."""
    from prompt_toolkit import PromptSession
    from prompt_toolkit.formatted_text import FormattedText
    from prompt_toolkit.history import FileHistory

    history_path = os.path.join(agent.base_dir, ".winecode", "repl_history")
    os.makedirs(os.path.dirname(history_path), exist_ok=True)
    session = PromptSession(
        history=FileHistory(history_path),
        enable_history_search=True,
    )
    prompt_text = FormattedText([("bold fg:ansimagenta", "wine@code> ")])

    if agent.verbose:
        fmt.repl_banner(agent.model)

    while not agent.closed:
        try:
            print(file=sys.stderr)  # blank line before prompt
            line = session.prompt(prompt_text)
        except (EOFError, KeyboardInterrupt):
            print(file=sys.stderr)  # newline after ^D / ^C
            break

        line = line.strip()
        if not line:
            continue

        if line in ("/exit", "/quit"):
            break

        cmd = line.split(None, 1)[0].lower()
        if cmd == "/help":
            _repl_help()
            continue
        elif cmd == "/clear":
            dropped = agent.clear()
            fmt.info(f"context cleared ({dropped} messages removed)")
            continue
        elif cmd == "/reload":
            _repl_reload(agent, no_instructions)
            continue

        try:
            answer = agent.handle_input(line)
        except KeyboardInterrupt:
            fmt.warning("interrupted, request aborted.")
            continue
        if answer:
            print(answer)
