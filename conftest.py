"""Root conftest.py for hwtest-ieee488.

Puts the package source directory on the import path, registers the custom
markers and tags tests that replace real instruments with mocks.
"""

from __future__ import annotations

import ast
import inspect
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from _pytest.config import Config
    from _pytest.nodes import Item


PROJECT_ROOT = Path(__file__).parent
for pkg_dir in PROJECT_ROOT.glob("hwtest-*/src"):
    if str(pkg_dir) not in sys.path:
        sys.path.insert(0, str(pkg_dir))

# Names whose use means the test talks to a stand-in rather than a transport.
MOCK_NAMES = frozenset(
    {"MagicMock", "Mock", "patch", "MockTransport", "TimedMockTransport", "FakeQuerySession"}
)


def pytest_configure(config: Config) -> None:
    """Register custom markers.

    Args:
        config: pytest configuration object.
    """
    config.addinivalue_line("markers", "uses_mock: Test uses mocking (auto-detected)")
    config.addinivalue_line("markers", "integration: Test requiring a real instrument")
    config.addinivalue_line("markers", "slow: Slow-running test")


def _uses_mock(item: Item) -> bool:
    obj = getattr(item, "obj", None)
    if obj is None:
        return False
    try:
        tree = ast.parse(inspect.getsource(obj).strip())
    except (OSError, TypeError, SyntaxError):
        return False
    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and node.id in MOCK_NAMES:
            return True
        if isinstance(node, ast.Attribute) and node.attr in MOCK_NAMES:
            return True
        if isinstance(node, ast.arg) and "mock" in node.arg.lower():
            return True
    return False


def pytest_collection_modifyitems(config: Config, items: list[Item]) -> None:
    """Mark tests that use mocking.

    Args:
        config: pytest configuration object.
        items: List of collected test items.
    """
    for item in items:
        if not item.get_closest_marker("uses_mock") and _uses_mock(item):
            item.add_marker(pytest.mark.uses_mock)


def pytest_report_header(config: Config) -> list[str]:
    """Add a project line to the pytest header.

    Args:
        config: pytest configuration object.

    Returns:
        List of header lines.
    """
    lines = ["hwtest-ieee488 test suite"]
    if getattr(config.option, "cov_source", None):
        lines.append("Coverage: enabled")
    return lines
