"""Tests for the context enhancer."""

from winecode.context import enhance_input, find_candidate_files
from winecode.tools import ToolExecutor


def _enhance(tmp_path, text, **kwargs):
    return enhance_input(text, ToolExecutor(str(tmp_path)), str(tmp_path), **kwargs)


class TestCandidates:
    def test_extension_path_and_quoted(self):
        text = "look at main.py, ./src/util.js and \"my notes.txt\""
        found = find_candidate_files(text)
        assert "main.py" in found
        assert "./src/util.js" in found
        assert "my notes.txt" in found

    def test_deduplicated(self):
        assert find_candidate_files("a.py and a.py") == ["a.py"]

    def test_trailing_period_dropped(self):
        assert "setup.cfg" in find_candidate_files("Please open setup.cfg.")


class TestEnhance:
    def test_listing_included(self, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "README.md").write_text("hi\n")
        out = _enhance(tmp_path, "what should I do next?")
        assert "--- CONTEXT ---" in out.enhanced_input
        assert f"Current directory: {tmp_path}" in out.enhanced_input
        assert "  src/" in out.enhanced_input
        assert "  README.md" in out.enhanced_input
        assert out.enhanced_input.startswith("what should I do next?")

    def test_listing_skipped_for_listing_request(self, tmp_path):
        (tmp_path / "thing.txt").write_text("x\n")
        out = _enhance(tmp_path, "list the files here")
        assert "Files and directories" not in out.enhanced_input
        assert "Current directory" in out.enhanced_input

    def test_mentioned_file_is_read_and_highlighted(self, tmp_path):
        (tmp_path / "app.py").write_text("print('hi')\n")
        out = _enhance(tmp_path, "fix the bug in app.py please")
        assert out.files_read == ["app.py"]
        assert "fix the bug in **app.py** please" in out.enhanced_input
        assert "--- app.py ---\n1: print('hi')\n--- End of app.py ---" in out.enhanced_input
        assert "[bold yellow]app.py[/bold yellow]" in out.display_input
        assert "(auto-read: app.py)" in out.display_input

    def test_read_capped(self, tmp_path):
        (tmp_path / "big.txt").write_text("".join(f"l{i}\n" for i in range(1, 200)))
        out = _enhance(tmp_path, "summarize big.txt", read_lines=5)
        assert "5: l5" in out.enhanced_input
        assert "6: l6" not in out.enhanced_input

    def test_missing_files_ignored(self, tmp_path):
        out = _enhance(tmp_path, "create index.html")
        assert out.files_read == []
        assert "Referenced files" not in out.enhanced_input
        assert out.display_input == "create index.html"

    def test_absolute_path(self, tmp_path):
        other = tmp_path / "elsewhere"
        other.mkdir()
        target = other / "conf.toml"
        target.write_text("a = 1\n")
        out = enhance_input(f"check {target}", ToolExecutor(str(tmp_path)), str(tmp_path))
        assert str(target) in out.files_read
        assert "1: a = 1" in out.enhanced_input

    def test_same_file_read_once(self, tmp_path):
        (tmp_path / "a.py").write_text("x\n")
        out = _enhance(tmp_path, "compare a.py with ./a.py")
        assert out.files_read == ["a.py"]
