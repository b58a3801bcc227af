"""Tests for the tool registry, executor, tool implementations, and summaries."""

import os
import sys
import time

import pytest

from winecode.tools import (
    STRUCTURED_NAMES,
    TOOLS,
    Tool,
    ToolExecutor,
    ToolName,
    ToolResult,
    _split_absolute_glob,
    format_tool_result,
    format_tool_results,
)


def _executor(tmp_path, **kwargs):
    return ToolExecutor(str(tmp_path), **kwargs)


# ---------------------------------------------------------------------------
# ToolResult
# ---------------------------------------------------------------------------


class TestToolResult:
    def test_success_without_error(self):
        r = ToolResult("Read", True, {"path": "a"})
        assert r.get("path") == "a"
        assert r["path"] == "a"
        assert r.error is None

    def test_success_with_error_rejected(self):
        with pytest.raises(ValueError):
            ToolResult("Read", True, error="boom")

    def test_failure_requires_error(self):
        with pytest.raises(ValueError):
            ToolResult("Read", False)

    def test_immutable(self):
        r = ToolResult("Read", True)
        with pytest.raises(AttributeError):
            r.success = False


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class TestExecutor:
    def test_unknown_tool_lists_available(self, tmp_path):
        r = _executor(tmp_path).execute("Delete", {"path": "x"})
        assert not r.success
        assert "Unknown tool: Delete" in r.error
        for name in ("Read", "Write", "Edit", "Bash", "LS", "Glob", "Grep"):
            assert name in r.error

    def test_accepts_string_names(self, tmp_path):
        (tmp_path / "a.txt").write_text("hi\n")
        r = _executor(tmp_path).execute("Read", {"file_path": "a.txt"})
        assert r.success
        assert r.tool_name == "Read"

    def test_missing_required_param(self, tmp_path):
        r = _executor(tmp_path).execute(ToolName.WRITE, {"file_path": "a.txt"})
        assert not r.success
        assert "content parameter is required" in r.error
        assert not (tmp_path / "a.txt").exists()

    def test_execution_error_is_captured_with_params(self, tmp_path):
        r = _executor(tmp_path).execute(ToolName.READ, {"file_path": "missing.txt"})
        assert not r.success
        assert "does not exist" in r.error
        assert '"file_path": "missing.txt"' in r.error

    def test_unexpected_exception_is_captured(self, tmp_path):
        class Exploding(Tool):
            name = ToolName.LS

            def execute(self, params):
                raise RuntimeError("kaboom")

        ex = _executor(tmp_path)
        ex.tools[ToolName.LS] = Exploding()
        r = ex.execute(ToolName.LS, {"path": "."})
        assert not r.success
        assert "kaboom" in r.error


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


class TestRead:
    def test_numbers_lines(self, tmp_path):
        (tmp_path / "f.txt").write_text("alpha\nbeta\ngamma\n")
        r = _executor(tmp_path).execute(ToolName.READ, {"file_path": "f.txt"})
        assert r["content"] == "1: alpha\n2: beta\n3: gamma"
        assert r["total_lines"] == 3
        assert r["displayed_lines"] == 3
        assert r["path"] == str(tmp_path / "f.txt")

    def test_offset_and_limit(self, tmp_path):
        (tmp_path / "f.txt").write_text("".join(f"line{i}\n" for i in range(1, 11)))
        r = _executor(tmp_path).execute(
            ToolName.READ, {"file_path": "f.txt", "offset": 2, "limit": 3}
        )
        assert r["content"] == "3: line3\n4: line4\n5: line5"
        assert r["displayed_lines"] == 3
        assert r["total_lines"] == 10

    def test_non_integer_offset(self, tmp_path):
        (tmp_path / "f.txt").write_text("x\n")
        r = _executor(tmp_path).execute(
            ToolName.READ, {"file_path": "f.txt", "offset": "abc"}
        )
        assert not r.success
        assert "offset must be an integer" in r.error

    def test_directory_rejected(self, tmp_path):
        (tmp_path / "sub").mkdir()
        r = _executor(tmp_path).execute(ToolName.READ, {"file_path": "sub"})
        assert not r.success
        assert "is a directory" in r.error

    def test_binary_rejected(self, tmp_path):
        (tmp_path / "bin.dat").write_bytes(b"abc\x00def")
        r = _executor(tmp_path).execute(ToolName.READ, {"file_path": "bin.dat"})
        assert not r.success
        assert "binary" in r.error

    def test_long_line_cut(self, tmp_path):
        (tmp_path / "long.txt").write_text("x" * 5000 + "\n")
        r = _executor(tmp_path).execute(ToolName.READ, {"file_path": "long.txt"})
        assert len(r["content"]) == len("1: ") + 2000

    def test_absolute_path(self, tmp_path):
        target = tmp_path / "abs.txt"
        target.write_text("ok\n")
        r = ToolExecutor("/").execute(ToolName.READ, {"file_path": str(target)})
        assert r.success
        assert r["content"] == "1: ok"


# ---------------------------------------------------------------------------
# Write / Edit
# ---------------------------------------------------------------------------


class TestWrite:
    def test_creates_parents(self, tmp_path):
        r = _executor(tmp_path).execute(
            ToolName.WRITE, {"file_path": "a/b/c.txt", "content": "héllo"}
        )
        assert r.success
        assert (tmp_path / "a" / "b" / "c.txt").read_text(encoding="utf-8") == "héllo"
        assert r["bytes_written"] == len("héllo".encode("utf-8"))

    def test_overwrites(self, tmp_path):
        (tmp_path / "f.txt").write_text("old")
        _executor(tmp_path).execute(ToolName.WRITE, {"file_path": "f.txt", "content": "new"})
        assert (tmp_path / "f.txt").read_text() == "new"


class TestEdit:
    def test_replaces(self, tmp_path):
        (tmp_path / "f.py").write_text("x = 1\n")
        r = _executor(tmp_path).execute(
            ToolName.EDIT,
            {"file_path": "f.py", "old_string": "x = 1", "new_string": "x = 2"},
        )
        assert r.success
        assert r["replacements"] == 1
        assert (tmp_path / "f.py").read_text() == "x = 2\n"

    def test_same_strings_rejected(self, tmp_path):
        (tmp_path / "f.py").write_text("x = 1\n")
        r = _executor(tmp_path).execute(
            ToolName.EDIT,
            {"file_path": "f.py", "old_string": "x", "new_string": "x"},
        )
        assert not r.success
        assert "cannot be the same" in r.error

    def test_replace_all_string_flag(self, tmp_path):
        (tmp_path / "f.txt").write_text("a a a")
        r = _executor(tmp_path).execute(
            ToolName.EDIT,
            {
                "file_path": "f.txt",
                "old_string": "a",
                "new_string": "b",
                "replace_all": "true",
            },
        )
        assert r.success
        assert r["replacements"] == 3
        assert (tmp_path / "f.txt").read_text() == "b b b"

    def test_missing_file(self, tmp_path):
        r = _executor(tmp_path).execute(
            ToolName.EDIT,
            {"file_path": "nope.txt", "old_string": "a", "new_string": "b"},
        )
        assert not r.success
        assert "does not exist" in r.error

    def test_ambiguous_match_leaves_file(self, tmp_path):
        (tmp_path / "f.txt").write_text("a a")
        r = _executor(tmp_path).execute(
            ToolName.EDIT,
            {"file_path": "f.txt", "old_string": "a", "new_string": "b"},
        )
        assert not r.success
        assert "expected 1 occurrences but found 2" in r.error
        assert (tmp_path / "f.txt").read_text() == "a a"


# ---------------------------------------------------------------------------
# Bash
# ---------------------------------------------------------------------------


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell")
class TestBash:
    def test_stdout(self, tmp_path):
        r = _executor(tmp_path).execute(ToolName.BASH, {"command": "echo hello"})
        assert r.success
        assert r["stdout"] == "hello"
        assert r["exit_code"] == 0
        assert r["execution_time"] >= 0

    def test_runs_in_base_dir(self, tmp_path):
        r = _executor(tmp_path).execute(ToolName.BASH, {"command": "pwd"})
        assert os.path.realpath(r["stdout"]) == os.path.realpath(tmp_path)

    def test_nonzero_exit_is_failure(self, tmp_path):
        r = _executor(tmp_path).execute(
            ToolName.BASH, {"command": "echo oops >&2; exit 3"}
        )
        assert not r.success
        assert "exited with code 3" in r.error
        assert "oops" in r.error
        assert r["exit_code"] == 3

    def test_timeout_kills(self, tmp_path):
        t0 = time.monotonic()
        r = _executor(tmp_path).execute(
            ToolName.BASH, {"command": "sleep 30", "timeout": "1"}
        )
        assert not r.success
        assert "timed out after 1s" in r.error
        assert time.monotonic() - t0 < 15

    def test_bad_timeout(self, tmp_path):
        r = _executor(tmp_path).execute(
            ToolName.BASH, {"command": "true", "timeout": "soon"}
        )
        assert not r.success
        assert "timeout must be an integer" in r.error


# ---------------------------------------------------------------------------
# LS / Glob / Grep
# ---------------------------------------------------------------------------


class TestLS:
    def test_directories_first(self, tmp_path):
        (tmp_path / "b.txt").write_text("b")
        (tmp_path / "a.txt").write_text("a")
        (tmp_path / "zdir").mkdir()
        r = _executor(tmp_path).execute(ToolName.LS, {"path": "."})
        names = [(i["name"], i["type"]) for i in r["items"]]
        assert names == [("zdir", "directory"), ("a.txt", "file"), ("b.txt", "file")]

    def test_ignore_patterns(self, tmp_path):
        (tmp_path / "keep.py").write_text("")
        (tmp_path / "skip.log").write_text("")
        r = _executor(tmp_path).execute(ToolName.LS, {"path": ".", "ignore": "*.log"})
        assert [i["name"] for i in r["items"]] == ["keep.py"]

    def test_does_not_mutate(self, tmp_path):
        (tmp_path / "a").write_text("x")
        before = sorted(os.listdir(tmp_path))
        _executor(tmp_path).execute(ToolName.LS, {"path": "."})
        assert sorted(os.listdir(tmp_path)) == before

    def test_not_a_directory(self, tmp_path):
        (tmp_path / "f").write_text("x")
        r = _executor(tmp_path).execute(ToolName.LS, {"path": "f"})
        assert not r.success
        assert "not a directory" in r.error


class TestGlob:
    def test_newest_first_and_ignored_dirs(self, tmp_path):
        old = tmp_path / "old.py"
        new = tmp_path / "pkg" / "new.py"
        new.parent.mkdir()
        old.write_text("")
        new.write_text("")
        os.utime(old, (1_000_000, 1_000_000))
        (tmp_path / "node_modules").mkdir()
        (tmp_path / "node_modules" / "dep.py").write_text("")

        r = _executor(tmp_path).execute(ToolName.GLOB, {"pattern": "**/*.py"})
        assert r["matches"] == [str(new), str(old)]
        assert r["count"] == 2

    def test_absolute_pattern(self, tmp_path):
        (tmp_path / "x.md").write_text("")
        r = ToolExecutor("/").execute(ToolName.GLOB, {"pattern": f"{tmp_path}/*.md"})
        assert r["matches"] == [str(tmp_path / "x.md")]

    def test_split_absolute(self):
        assert _split_absolute_glob("/opt/lib/**/*.py") == ("/opt/lib", "**/*.py")
        assert _split_absolute_glob("/opt/lib") == ("/opt/lib", "*")


class TestGrep:
    def test_finds_lines(self, tmp_path):
        (tmp_path / "a.js").write_text("const x = 1;\nfunction foo() {}\n")
        (tmp_path / "b.txt").write_text("function bar\n")
        r = _executor(tmp_path).execute(
            ToolName.GREP, {"pattern": r"function \w+", "include": "*.js"}
        )
        assert r["matches"] == [str(tmp_path / "a.js")]
        assert r["lines"] == [(str(tmp_path / "a.js"), 2, "function foo() {}")]

    def test_skips_binary_and_ignored(self, tmp_path):
        (tmp_path / "bin").write_bytes(b"needle\x00")
        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "config").write_text("needle\n")
        (tmp_path / "real.txt").write_text("needle\n")
        r = _executor(tmp_path).execute(ToolName.GREP, {"pattern": "needle"})
        assert r["matches"] == [str(tmp_path / "real.txt")]

    def test_invalid_regex(self, tmp_path):
        r = _executor(tmp_path).execute(ToolName.GREP, {"pattern": "("})
        assert not r.success
        assert "invalid regex" in r.error


# ---------------------------------------------------------------------------
# Schemas and summaries
# ---------------------------------------------------------------------------


class TestSchemas:
    def test_every_structured_name_has_schema(self):
        names = {t["function"]["name"] for t in TOOLS}
        assert names == set(STRUCTURED_NAMES)


class TestSummaries:
    def test_read(self):
        r = ToolResult(
            "Read", True, {"path": "a.txt", "content": "hello", "displayed_lines": 1}
        )
        out = format_tool_result(r)
        assert out.startswith("Read: Successfully read a.txt (1 lines)")
        assert out.endswith("hello")

    def test_failure(self):
        r = ToolResult("Bash", False, error="command exited with code 1")
        assert format_tool_result(r) == "Bash: Failed - command exited with code 1"

    def test_bash_no_output(self):
        r = ToolResult("Bash", True, {"command": "true", "stdout": ""})
        assert format_tool_result(r) == 'Bash: Command "true" executed successfully. Output: (no output)'

    def test_glob_caps_listing(self):
        matches = [f"/f{i}.py" for i in range(25)]
        r = ToolResult("Glob", True, {"matches": matches, "count": 25})
        out = format_tool_result(r)
        assert out.startswith("Glob: Found 25 results")
        assert "/f19.py" in out
        assert "/f20.py" not in out
        assert "and 5 more" in out

    def test_ls(self):
        r = ToolResult(
            "LS",
            True,
            {"path": "/p", "items": [{"name": "src", "type": "directory"}]},
        )
        assert format_tool_result(r) == "LS: Found 1 items in /p: src (directory)"

    def test_multiple_joined(self):
        rs = [
            ToolResult("Write", True, {"path": "/a", "bytes_written": 3}),
            ToolResult("Edit", True, {"path": "/a", "replacements": 1}),
        ]
        assert format_tool_results(rs) == (
            "Write: Successfully wrote 3 bytes to /a\n"
            "Edit: Successfully made 1 replacements in /a"
        )
