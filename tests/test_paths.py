from __future__ import annotations

import pytest

from testdaemon.services.paths import normalize_path, path_matches, path_segments


@pytest.mark.unit
def test_normalize_path_converts_separators_and_strips_slashes() -> None:
    assert normalize_path("\\tests\\unit\\test_a.py/") == "tests/unit/test_a.py"
    assert path_segments("/") == []


@pytest.mark.unit
@pytest.mark.parametrize(
    "file_path, pattern, expected",
    [
        ("x/abc/def/file.py", "abc/def", True),
        ("x/abc/defg/file.py", "abc/def", False),
        ("x/abcd/def/file.py", "abc/def", False),
        ("tests/test_a.py", "test_a.py", True),
        ("tests/test_a.py", "test_a", False),
        ("tests/test_a.py", "tests/test_a.py", True),
        ("tests\\unit\\test_a.py", "unit/test_a.py", True),
        ("tests/unit/test_a.py", "\\unit\\", True),
        ("a.py", "tests/a.py", False),
        ("tests/a.py", "", False),
        ("tests/a.py", "/", False),
    ],
)
def test_path_matches_whole_contiguous_segments(file_path: str, pattern: str, expected: bool) -> None:
    assert path_matches(file_path, pattern) is expected
