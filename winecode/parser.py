"""Turn model output into an ordered list of tool calls.

Two shapes are understood: inline pseudo-XML tags embedded in the reply text
(`<read file_path="a.txt"></read>`), and structured function-call lists as
returned by OpenAI-compatible endpoints. Both converge on ToolCall with a
canonical ToolName. A malformed call is reported and dropped; the rest of the
batch is still returned.
"""

import json
import re
from dataclasses import dataclass, field

from . import fmt
from .tools import REQUIRED_PARAMS, STRUCTURED_NAMES, TAG_NAMES, ToolName

_TAG_ALTERNATION = "|".join(TAG_NAMES)

# Attribute region; a quoted value may contain ">".
_ATTRS = r"""((?:[^>"']|"[^"]*"|'[^']*')*?)"""

# <tag .../> or <tag ...>body</tag>; group 3 is None for the self-closing form.
_INLINE_TAG_RE = re.compile(
    rf"<({_TAG_ALTERNATION})\b{_ATTRS}(?:/>|>(.*?)</\1\s*>)",
    re.IGNORECASE | re.DOTALL,
)
_ANY_TAG_RE = re.compile(rf"<([A-Za-z][\w-]*)\b{_ATTRS}/?>", re.DOTALL)
_ATTR_RE = re.compile(r"(\w+)\s*=\s*(?:\"([^\"]*)\"|'([^']*)')")
_EDIT_BODY_RE = re.compile(
    r"old_?string\s*:\s*(.*?)\s*new_?string\s*:\s*(.*)",
    re.IGNORECASE | re.DOTALL,
)

PARAM_ALIASES = {
    "filePath": "file_path",
    "filepath": "file_path",
    "oldString": "old_string",
    "newString": "new_string",
    "replaceAll": "replace_all",
    "expectedReplacements": "expected_replacements",
}

INTEGER_PARAMS = ("offset", "limit")

_PATH_TOOLS = (ToolName.READ, ToolName.WRITE, ToolName.EDIT)


@dataclass
class ToolCall:
    name: ToolName
    params: dict = field(default_factory=dict)
    call_id: str | None = None


@dataclass
class ParsedResponse:
    """A model reply reduced to its text and the calls it asks for."""

    text: str
    calls: list[ToolCall]
    structured: bool = False


# ---------------------------------------------------------------------------
# Shared normalization
# ---------------------------------------------------------------------------


def _canonical_params(params: dict, name: ToolName) -> dict:
    out = {}
    for key, value in params.items():
        out[PARAM_ALIASES.get(key, key)] = value
    if name in _PATH_TOOLS and "file_path" not in out and "path" in out:
        out["file_path"] = out.pop("path")
    for key in INTEGER_PARAMS:
        if isinstance(out.get(key), str):
            try:
                out[key] = int(out[key].strip())
            except ValueError:
                pass  # left as-is, the tool reports it
    return out


def _check_call(call: ToolCall) -> str | None:
    """Return why *call* must be dropped, or None if it can be queued."""
    missing = [k for k in REQUIRED_PARAMS[call.name] if call.params.get(k) is None]
    if missing:
        return f"{call.name.value} call missing required parameter(s): {', '.join(missing)}"
    if call.name is ToolName.EDIT and call.params["old_string"] == call.params["new_string"]:
        return "Edit call has identical old_string and new_string"
    return None


def _accept(calls: list[ToolCall], call: ToolCall) -> None:
    reason = _check_call(call)
    if reason:
        fmt.warning(f"Skipping tool call: {reason}")
        return
    calls.append(call)


# ---------------------------------------------------------------------------
# Inline tags
# ---------------------------------------------------------------------------


def _parse_attrs(raw: str) -> dict:
    attrs = {}
    for m in _ATTR_RE.finditer(raw):
        key, dq, sq = m.groups()
        attrs[key] = dq if dq is not None else sq
    return attrs


def _report_unknown_tags(text: str) -> None:
    """Diagnose tag-shaped tokens that look like tool calls but aren't ours.

    A tag counts when it carries quoted attributes or has a matching
    closing tag.
    """
    for m in _ANY_TAG_RE.finditer(text):
        tag = m.group(1)
        if tag.lower() in TAG_NAMES:
            continue
        closed = re.search(rf"</{re.escape(tag)}\s*>", text[m.end() :])
        if closed or _ATTR_RE.search(m.group(2) or ""):
            fmt.warning(f"Unknown tool tag <{tag}>, skipping")


def parse_inline_tags(text: str) -> list[ToolCall]:
    """Extract tool calls from inline tags, in source order."""
    if not text:
        return []
    _report_unknown_tags(_INLINE_TAG_RE.sub("", text))

    calls: list[ToolCall] = []
    for m in _INLINE_TAG_RE.finditer(text):
        name = TAG_NAMES[m.group(1).lower()]
        params = _parse_attrs(m.group(2) or "")
        body = m.group(3)

        if body is not None:
            if name is ToolName.WRITE and "content" not in params:
                content = body.strip("\r\n")
                if content:
                    params["content"] = content
            elif name is ToolName.EDIT and not (
                {"old_string", "oldString"} & params.keys()
                or {"new_string", "newString"} & params.keys()
            ):
                em = _EDIT_BODY_RE.search(body)
                if em:
                    params["old_string"] = em.group(1)
                    params["new_string"] = em.group(2).rstrip()

        _accept(calls, ToolCall(name=name, params=_canonical_params(params, name)))
    return calls


def has_tool_tags(text: str) -> bool:
    return bool(text) and _INLINE_TAG_RE.search(text) is not None


def strip_tool_tags(text: str) -> str:
    """Remove inline tool tags, leaving the prose around them."""
    if not text:
        return ""
    cleaned = _INLINE_TAG_RE.sub("", text)
    return re.sub(r"\n{3,}", "\n\n", cleaned).strip()


# ---------------------------------------------------------------------------
# Structured calls
# ---------------------------------------------------------------------------


def _call_fields(entry) -> tuple[str | None, object, str | None]:
    """Read (name, arguments, id) from a dict or a litellm tool-call object."""
    if isinstance(entry, dict):
        fn = entry.get("function")
        if isinstance(fn, dict):
            return fn.get("name"), fn.get("arguments"), entry.get("id")
        return entry.get("name"), entry.get("arguments"), entry.get("id")
    fn = getattr(entry, "function", None)
    if fn is not None:
        return getattr(fn, "name", None), getattr(fn, "arguments", None), getattr(entry, "id", None)
    return getattr(entry, "name", None), getattr(entry, "arguments", None), getattr(entry, "id", None)


def parse_structured_calls(tool_calls) -> list[ToolCall]:
    """Convert `{name, arguments}` entries into ToolCalls.

    A bad entry (unknown name, undecodable arguments, missing parameters)
    is reported and skipped without affecting its neighbours.
    """
    calls: list[ToolCall] = []
    for entry in tool_calls or []:
        fn_name, raw_args, call_id = _call_fields(entry)
        name = STRUCTURED_NAMES.get(fn_name or "")
        if name is None:
            fmt.warning(f"Unknown function {fn_name!r}, skipping")
            continue

        if isinstance(raw_args, dict):
            args = raw_args
        else:
            try:
                args = json.loads(raw_args or "{}")
            except (json.JSONDecodeError, TypeError) as e:
                fmt.warning(f"Invalid JSON arguments for {fn_name}: {e}")
                continue
            if not isinstance(args, dict):
                fmt.warning(f"Arguments for {fn_name} are not a JSON object, skipping")
                continue

        params = {k: v for k, v in args.items() if v is not None}
        _accept(
            calls,
            ToolCall(name=name, params=_canonical_params(params, name), call_id=call_id),
        )
    return calls


# ---------------------------------------------------------------------------
# Unified entry point
# ---------------------------------------------------------------------------


def parse_response(response) -> ParsedResponse:
    """Normalize a client response (string or `{content, tool_calls}`)."""
    if isinstance(response, dict):
        text = response.get("content") or ""
        raw_calls = response.get("tool_calls")
        if raw_calls:
            return ParsedResponse(
                text=text, calls=parse_structured_calls(raw_calls), structured=True
            )
        return ParsedResponse(text=text, calls=parse_inline_tags(text))
    text = response or ""
    return ParsedResponse(text=text, calls=parse_inline_tags(text))
