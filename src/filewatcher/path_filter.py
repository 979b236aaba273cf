"""Glob based ignore rules for project-relative canonical paths."""

import logging
import re
from typing import Iterable, List, Pattern

from .exceptions import MalformedWatchConfigError

logger = logging.getLogger(__name__)


def compile_glob(rule: str) -> Pattern:
    """Compile a glob where ``*`` matches any run of characters, ``/`` included."""
    return re.compile(re.escape(rule).replace(r"\*", ".*"))


class PathFilter:
    """
    Blacklist filter built from a project's ignore rules.
    
    Path rules are matched against the whole canonical path. Filename rules
    are matched against each path segment on its own. Both are anchored at
    both ends, and an empty rule set filters nothing.
    """

    def __init__(
        self,
        ignored_paths: Iterable[str] = (),
        ignored_filenames: Iterable[str] = (),
    ):
        """
        Args:
            ignored_paths: Rules such as ``/target/*`` or ``*/build/*``
            ignored_filenames: Rules such as ``*.class`` or ``node_modules``
            
        Raises:
            MalformedWatchConfigError: If a rule contains a forbidden separator
        """
        self.ignored_paths = tuple(ignored_paths)
        self.ignored_filenames = tuple(ignored_filenames)

        for rule in self.ignored_filenames:
            if "/" in rule or "\\" in rule:
                raise MalformedWatchConfigError(f"Filename rule may not contain a separator: {rule!r}")
        for rule in self.ignored_paths:
            if "\\" in rule:
                raise MalformedWatchConfigError(f"Path rule may not contain a backslash: {rule!r}")

        self._path_patterns: List[Pattern] = [compile_glob(r) for r in self.ignored_paths]
        self._filename_patterns: List[Pattern] = [compile_glob(r) for r in self.ignored_filenames]

    @classmethod
    def from_config(cls, config) -> "PathFilter":
        """Build a filter from a ProjectWatchConfig."""
        return cls(config.ignored_paths, config.ignored_filenames)

    def _check_canonical(self, path: str) -> bool:
        if "\\" in path:
            logger.error("SEVERE: path passed to filter is not canonical: %s", path)
            return False
        return True

    def is_filtered_out_by_path(self, path: str) -> bool:
        if not self._path_patterns or not self._check_canonical(path):
            return False
        return any(p.fullmatch(path) for p in self._path_patterns)

    def is_filtered_out_by_filename(self, path: str) -> bool:
        if not self._filename_patterns or not self._check_canonical(path):
            return False
        for segment in path.split("/"):
            if not segment:
                continue
            if any(p.fullmatch(segment) for p in self._filename_patterns):
                return True
        return False

    def is_filtered_out(self, path: str) -> bool:
        """Whether either rule set excludes the path."""
        return self.is_filtered_out_by_filename(path) or self.is_filtered_out_by_path(path)
