from __future__ import annotations

import re
import unittest
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from testdaemon.constants import TITLE_SEPARATOR
from testdaemon.services.paths import normalize_path, path_segments, segments_match

FileMap = Dict[str, List[str]]

_REGEX_METACHARACTERS = re.compile(r"[.*+?^${}()|\[\]\\]")
_LEADING_FLAGS = re.compile(r"\(\?([aiLmsux]+)\)")


@dataclass
class SuiteNode:
    """A node of the suite tree.

    ``source_file`` is only set where a file registered the node; descendants
    inherit it during traversal and never store a parent link. ``tests`` holds
    loaded ``unittest.TestCase`` instances.
    """

    title: Optional[str] = None
    source_file: Optional[str] = None
    children: List["SuiteNode"] = field(default_factory=list)
    tests: List[unittest.TestCase] = field(default_factory=list)

    def add_suite(self, child: "SuiteNode") -> "SuiteNode":
        self.children.append(child)
        return child

    def add_test(self, test: unittest.TestCase) -> unittest.TestCase:
        self.tests.append(test)
        return test

    def reset_transient_state(self) -> None:
        """Clear what a previous run left on cases and their classes; structure and file tags stay."""
        for test in self.tests:
            if getattr(type(test), "_classSetupFailed", False):
                type(test)._classSetupFailed = False
            test._outcome = None
        for child in self.children:
            child.reset_transient_state()


def case_title(test: unittest.TestCase) -> str:
    return getattr(test, "_testMethodName", None) or test.id()


def join_title(parent: str, title: Optional[str]) -> str:
    if not title:
        return parent
    if not parent:
        return title
    return f"{parent}{TITLE_SEPARATOR}{title}"


def escape_title(title: str) -> str:
    return _REGEX_METACHARACTERS.sub(lambda match: "\\" + match.group(0), title)


def walk_suites(
    node: SuiteNode,
    inherited_file: Optional[str] = None,
    parent_title: str = "",
) -> Iterator[Tuple[SuiteNode, str, Optional[str]]]:
    """Yield ``(node, full_title, resolved_file)`` depth-first, pre-order."""
    resolved_file = node.source_file or inherited_file
    full_title = join_title(parent_title, node.title)
    yield node, full_title, resolved_file
    for child in node.children:
        yield from walk_suites(child, resolved_file, full_title)


def build_file_map(root: SuiteNode) -> FileMap:
    file_map: FileMap = {}
    for node, full_title, resolved_file in walk_suites(root):
        if not resolved_file or not node.title:
            continue
        file_map.setdefault(normalize_path(resolved_file), []).append(full_title)
    return file_map


def find_suites_for_file(root: SuiteNode, pattern: str) -> List[str]:
    """Escaped full titles of every titled suite whose file matches ``pattern``."""
    pattern_segments = path_segments(pattern)
    matches: List[str] = []
    for node, full_title, resolved_file in walk_suites(root):
        if not resolved_file or not node.title:
            continue
        if segments_match(path_segments(resolved_file), pattern_segments):
            matches.append(escape_title(full_title))
    return matches


def _scoped(grep: str) -> str:
    # Global flags such as (?i) are only legal at the very start of a pattern.
    flags = ""
    body = grep
    match = _LEADING_FLAGS.match(body)
    while match:
        flags += match.group(1)
        body = body[match.end() :]
        match = _LEADING_FLAGS.match(body)
    if flags:
        return f"(?{flags}:{body})"
    return f"(?:{body})"


def compose_name_filter(grep: Optional[str], file_titles: Optional[List[str]]) -> str:
    """Build the regex source handed to the runner.

    With both a file filter and a name pattern the result is two lookaheads on
    the same title, so each condition must hold independently. The anchor does
    not capture, so group numbers in ``grep`` keep their meaning.
    """
    if file_titles is None:
        return grep or ".*"
    anchor = "^(?:" + "|".join(file_titles) + ")"
    if not grep:
        return anchor
    return f"^(?={anchor})(?=.*?{_scoped(grep)})"


def count_top_level_suites(root: SuiteNode) -> int:
    """Titled suites with no titled ancestor; untitled file nodes are looked through."""
    count = 0
    for child in root.children:
        count += 1 if child.title else count_top_level_suites(child)
    return count
