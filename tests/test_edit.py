"""Tests for edit.py, the string replacement engine behind the Edit tool."""

import pytest

from winecode.edit import replace


# =========================================================================
# Exact match
# =========================================================================


class TestExactMatch:
    """Basic exact-match replacements."""

    def test_simple_replacement(self):
        assert replace("hello world", "hello", "goodbye") == ("goodbye world", 1)

    def test_multiline_replacement(self):
        content = "aaa\nbbb\nccc\n"
        new, count = replace(content, "bbb\nccc", "BBB\nCCC")
        assert new == "aaa\nBBB\nCCC\n"
        assert count == 1

    def test_replacement_at_end(self):
        new, _ = replace("first\nsecond\nthird", "third", "THIRD")
        assert new == "first\nsecond\nTHIRD"

    def test_replacement_preserves_surrounding(self):
        new, _ = replace("before\ntarget line\nafter\n", "target line", "new line")
        assert new == "before\nnew line\nafter\n"


# =========================================================================
# Occurrence counting
# =========================================================================


class TestOccurrences:
    def test_duplicate_without_expectation_fails(self):
        with pytest.raises(ValueError, match="expected 1 occurrences but found 3"):
            replace("foo bar foo baz foo", "foo", "qux")

    def test_expected_replacements_matches(self):
        new, count = replace("foo bar foo", "foo", "qux", expected_replacements=2)
        assert new == "qux bar qux"
        assert count == 2

    def test_expected_replacements_mismatch(self):
        with pytest.raises(ValueError, match="expected 3 occurrences but found 2"):
            replace("foo bar foo", "foo", "qux", expected_replacements=3)

    def test_replace_all_ignores_count(self):
        new, count = replace("x = 1\ny = 2\nx = 1\n", "x = 1", "x = 0", replace_all=True)
        assert new == "x = 0\ny = 2\nx = 0\n"
        assert count == 2


# =========================================================================
# Fuzzy passes
# =========================================================================


class TestLineTrimmed:
    """Second pass: lines compared after stripping surrounding whitespace."""

    def test_indentation_difference(self):
        content = "def f():\n    return 1\n"
        new, count = replace(content, "return 1", "return 2")
        # exact pass already finds this one
        assert new == "def f():\n    return 2\n"
        assert count == 1

    def test_trailing_whitespace_in_file(self):
        content = "alpha   \nbeta\ngamma\n"
        new, count = replace(content, "alpha\nbeta", "ALPHA\nBETA")
        assert new == "ALPHA\nBETA\ngamma\n"
        assert count == 1

    def test_model_adds_indentation(self):
        content = "if x:\n  do()\n  more()\n"
        new, _ = replace(content, "    do()\n    more()", "  done()")
        assert new == "if x:\n  done()\n"

    def test_trailing_newline_in_old_string(self):
        content = "one  \ntwo\nthree\n"
        new, _ = replace(content, "one\ntwo\n", "")
        assert new == "three\n"


class TestUnicodeNormalized:
    """Third pass: typographic punctuation folded to ASCII."""

    def test_smart_quotes(self):
        content = "print(\u201chello\u201d)\n"
        new, count = replace(content, 'print("hello")', 'print("bye")')
        assert new == 'print("bye")\n'
        assert count == 1

    def test_em_dash(self):
        content = "a \u2014 b\n"
        new, _ = replace(content, "a - b", "a + b")
        assert new == "a + b\n"

    def test_nbsp(self):
        content = "x\u00a0= 1\n"
        new, _ = replace(content, "x = 1", "x = 2")
        assert new == "x = 2\n"


# =========================================================================
# Errors
# =========================================================================


class TestErrors:
    def test_identical_strings(self):
        with pytest.raises(ValueError, match="no changes"):
            replace("abc", "abc", "abc")

    def test_empty_old_string(self):
        with pytest.raises(ValueError, match="must not be empty"):
            replace("abc", "", "x")

    def test_not_found(self):
        with pytest.raises(ValueError, match="string not found"):
            replace("abc", "xyz", "q")
