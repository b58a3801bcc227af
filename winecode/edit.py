"""String replacement engine for the Edit tool.

`replace()` locates old_string in file content with three passes: exact,
then line-trimmed, then Unicode-normalized. The first pass that finds
anything decides the occurrence count.
"""

from __future__ import annotations

import re

_UNICODE_SINGLE_QUOTES = re.compile(r"[\u2018\u2019\u201a\u201b]")
_UNICODE_DOUBLE_QUOTES = re.compile(r"[\u201c\u201d\u201e\u201f]")
_UNICODE_DASHES = re.compile(r"[\u2010\u2011\u2012\u2013\u2014\u2015]")


def _normalize_unicode(s: str) -> str:
    """Normalize Unicode punctuation to ASCII equivalents."""
    s = _UNICODE_SINGLE_QUOTES.sub("'", s)
    s = _UNICODE_DOUBLE_QUOTES.sub('"', s)
    s = _UNICODE_DASHES.sub("-", s)
    s = s.replace("\u2026", "...")
    s = s.replace("\u00a0", " ")
    return s


def _trimmed(line: str) -> str:
    return line.strip()


def _normalized(line: str) -> str:
    return _normalize_unicode(line.strip())


def _find_line_spans(content: str, old_string: str, key) -> list[tuple[int, int]]:
    """Return non-overlapping (start, end) spans where old_string matches line-wise.

    Lines are compared after applying *key* to both sides.
    """
    trailing_newline = old_string.endswith("\n")
    body = old_string[:-1] if trailing_newline else old_string
    content_lines = content.split("\n")
    wanted = [key(line) for line in body.split("\n")]
    n = len(wanted)

    offsets = []
    pos = 0
    for line in content_lines:
        offsets.append(pos)
        pos += len(line) + 1

    spans: list[tuple[int, int]] = []
    i = 0
    while i <= len(content_lines) - n:
        if all(key(content_lines[i + j]) == wanted[j] for j in range(n)):
            start = offsets[i]
            end = offsets[i + n - 1] + len(content_lines[i + n - 1])
            if trailing_newline and i + n < len(content_lines):
                end += 1
            spans.append((start, end))
            i += n
        else:
            i += 1
    return spans


def _splice(content: str, spans: list[tuple[int, int]], new_string: str) -> str:
    parts = []
    last = 0
    for start, end in spans:
        parts.append(content[last:start])
        parts.append(new_string)
        last = end
    parts.append(content[last:])
    return "".join(parts)


def replace(
    content: str,
    old_string: str,
    new_string: str,
    expected_replacements: int = 1,
    replace_all: bool = False,
) -> tuple[str, int]:
    """Replace old_string with new_string in content.

    Returns (new_content, replacements).

    Raises ValueError:
      - "no changes" if old_string == new_string
      - "string not found in file" if no pass matches
      - "expected N occurrences but found M" when the count differs from
        expected_replacements and replace_all is False
    """
    if old_string == new_string:
        raise ValueError("no changes")
    if not old_string:
        raise ValueError("old_string must not be empty")

    exact = content.count(old_string)
    if exact:
        if not replace_all and exact != expected_replacements:
            raise ValueError(
                f"expected {expected_replacements} occurrences but found {exact}"
            )
        return content.replace(old_string, new_string), exact

    for key in (_trimmed, _normalized):
        spans = _find_line_spans(content, old_string, key)
        if not spans:
            continue
        if not replace_all and len(spans) != expected_replacements:
            raise ValueError(
                f"expected {expected_replacements} occurrences but found {len(spans)}"
            )
        return _splice(content, spans, new_string), len(spans)

    raise ValueError(f"string not found in file: {old_string!r}")
