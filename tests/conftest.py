"""Pytest configuration and fixtures."""

import logging
import sys
from collections.abc import Generator
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for recording_mocks imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from mockengine import settings  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_engine() -> Generator[None, None, None]:
    """Reset process-wide mock settings and root logging around each test."""
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level

    settings.reset()
    yield
    settings.reset()

    root_logger.handlers = handlers
    root_logger.setLevel(level)
