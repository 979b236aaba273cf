"""Tests for ignore rule matching."""

import logging

import pytest

from src.filewatcher.exceptions import MalformedWatchConfigError
from src.filewatcher.path_filter import PathFilter


class TestPathFilterEmpty:
    """Blacklist semantics."""

    @pytest.mark.parametrize("path", ["/", "/a", "/target/stuff", "/x/y/z.class"])
    def test_empty_rules_filter_nothing(self, path):
        path_filter = PathFilter()
        assert not path_filter.is_filtered_out_by_path(path)
        assert not path_filter.is_filtered_out_by_filename(path)
        assert not path_filter.is_filtered_out(path)


class TestPathRules:
    """Tests for whole-path rules."""

    def test_descendant_rule(self):
        path_filter = PathFilter(ignored_paths=["/target/*"])
        assert path_filter.is_filtered_out_by_path("/target/stuff")
        assert path_filter.is_filtered_out_by_path("/target/a/b")
        assert not path_filter.is_filtered_out_by_path("/target")

    def test_exact_rule_does_not_match_descendants(self):
        path_filter = PathFilter(ignored_paths=["/target"])
        assert path_filter.is_filtered_out_by_path("/target")
        assert not path_filter.is_filtered_out_by_path("/target/stuff")
        assert not path_filter.is_filtered_out_by_path("/dir/target/dir2")

    def test_rule_is_anchored(self):
        path_filter = PathFilter(ignored_paths=["/dir2/*"])
        assert not path_filter.is_filtered_out_by_path("/dir/dir2/dir3")

    def test_wildcard_spans_separators(self):
        path_filter = PathFilter(ignored_paths=["*/dir2/*"])
        assert path_filter.is_filtered_out_by_path("/dir/dir2/dir3")
        assert path_filter.is_filtered_out_by_path("/a/b/dir2/c")
        assert not path_filter.is_filtered_out_by_path("/dir/dir3/dir2")

    def test_regex_characters_are_literal(self):
        path_filter = PathFilter(ignored_paths=["/a.b/*"])
        assert path_filter.is_filtered_out_by_path("/a.b/c")
        assert not path_filter.is_filtered_out_by_path("/axb/c")

    def test_filename_rule_does_not_affect_path_filter(self):
        path_filter = PathFilter(ignored_filenames=["*.class"])
        assert not path_filter.is_filtered_out_by_path("/dir/Main.class")
        assert path_filter.is_filtered_out_by_filename("/dir/Main.class")

    def test_path_rule_does_not_affect_filename_filter(self):
        path_filter = PathFilter(ignored_paths=["/dir3"])
        assert not path_filter.is_filtered_out_by_filename("/a/dir3")

    def test_backslash_rule_rejected(self):
        with pytest.raises(MalformedWatchConfigError):
            PathFilter(ignored_paths=["\\target\\*"])


class TestFilenameRules:
    """Tests for per-segment rules."""

    def test_segment_anywhere(self):
        path_filter = PathFilter(ignored_filenames=["dir3"])
        assert path_filter.is_filtered_out_by_filename("/dir/dir2/dir3")
        assert path_filter.is_filtered_out_by_filename("/dir/dir3/dir2")
        assert not path_filter.is_filtered_out_by_filename("/dir/dir4/dir2")

    def test_wildcards(self):
        assert PathFilter(ignored_filenames=["*dir*"]).is_filtered_out_by_filename("/a/mydir2")
        assert PathFilter(ignored_filenames=["*dir"]).is_filtered_out_by_filename("/a/dir")
        assert not PathFilter(ignored_filenames=["*dir"]).is_filtered_out_by_filename("/a/dir2")

    def test_extension(self):
        path_filter = PathFilter(ignored_filenames=["*.class"])
        assert path_filter.is_filtered_out_by_filename("/bin/a/B.class")
        assert not path_filter.is_filtered_out_by_filename("/src/B.java")

    def test_whole_segment_match(self):
        path_filter = PathFilter(ignored_filenames=["inner"])
        assert path_filter.is_filtered_out_by_filename("/outer/inner/file")
        assert not path_filter.is_filtered_out_by_filename("/outer/inner2/file")

    @pytest.mark.parametrize("rule", ["a/b", "a\\b"])
    def test_separator_in_filename_rule_rejected(self, rule):
        with pytest.raises(MalformedWatchConfigError):
            PathFilter(ignored_filenames=[rule])


class TestCombined:
    """Tests for is_filtered_out and non canonical input."""

    def test_either_rule_excludes(self):
        path_filter = PathFilter(ignored_paths=["/target/*"], ignored_filenames=["*.log"])
        assert path_filter.is_filtered_out("/target/x")
        assert path_filter.is_filtered_out("/src/debug.log")
        assert not path_filter.is_filtered_out("/src/main.py")

    def test_backslash_input_is_not_filtered(self, caplog):
        path_filter = PathFilter(ignored_paths=["*"], ignored_filenames=["*"])
        with caplog.at_level(logging.ERROR):
            assert not path_filter.is_filtered_out("\\dir\\file")
        assert "not canonical" in caplog.text
