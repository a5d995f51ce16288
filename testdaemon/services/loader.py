from __future__ import annotations

import hashlib
import importlib.util
import logging
import sys
import unittest
from pathlib import Path
from types import ModuleType
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from testdaemon.services.registry import SuiteNode, count_top_level_suites

LOGGER = logging.getLogger("testdaemon.loader")


class TestLoadError(RuntimeError):
    __test__ = False


def discover_test_files(patterns: Iterable[str], root_dir: Path) -> List[Path]:
    found = set()
    for pattern in patterns:
        for path in root_dir.glob(pattern):
            if path.is_file():
                found.add(path.resolve())
    return sorted(found)


def _module_name(path: Path) -> str:
    digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()[:12]
    return f"testdaemon_suite_{path.stem.replace('.', '_')}_{digest}"


def _relative(path: Path, root_dir: Path) -> str:
    try:
        return path.resolve().relative_to(root_dir.resolve()).as_posix()
    except ValueError:
        return path.resolve().as_posix()


def import_test_file(path: Path, root_dir: Path) -> Tuple[ModuleType, str]:
    """Import one test file under a unique module name; returns the module and its relative path."""
    relative = _relative(path, root_dir)
    module_name = _module_name(path.resolve())
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise TestLoadError(f"Cannot import test file {relative}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        sys.modules.pop(module_name, None)
        raise TestLoadError(f"Failed to load test file {relative}: {exc}") from exc
    return module, relative


def _iter_cases(suite: unittest.TestSuite) -> Iterator[unittest.TestCase]:
    for item in suite:
        if isinstance(item, unittest.TestSuite):
            yield from _iter_cases(item)
        else:
            yield item


def build_module_node(
    module: ModuleType,
    relative: str,
    loader: Optional[unittest.TestLoader] = None,
) -> SuiteNode:
    """One untitled node per file, holding a titled node per ``TestCase`` class."""
    loader = loader or unittest.TestLoader()
    node = SuiteNode(source_file=relative)
    classes: Dict[type, SuiteNode] = {}
    for case in _iter_cases(loader.loadTestsFromModule(module)):
        cls = type(case)
        child = classes.get(cls)
        if child is None:
            child = classes[cls] = node.add_suite(SuiteNode(title=cls.__qualname__))
        child.add_test(case)
    LOGGER.debug("Loaded %s (%d test classes)", relative, len(classes))
    return node


def load_test_files(
    patterns: Iterable[str],
    root_dir: Path,
    loader: Optional[unittest.TestLoader] = None,
) -> SuiteNode:
    loader = loader or unittest.TestLoader()
    root = SuiteNode()
    files = discover_test_files(patterns, root_dir)
    for path in files:
        module, relative = import_test_file(path, root_dir)
        root.add_suite(build_module_node(module, relative, loader))
    for error in loader.errors:
        LOGGER.warning("unittest reported a loading problem: %s", error.strip())
    LOGGER.info(
        "Loaded %d test files with %d top-level suites",
        len(files),
        count_top_level_suites(root),
    )
    return root
