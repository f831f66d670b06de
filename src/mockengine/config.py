"""Configuration for the mock engine with validation.

Project and stack names are written verbatim into every URN the mock engine
synthesizes, so they are validated at construction time rather than when the
first malformed URN shows up in a test failure.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

# Defaults used when a test activates mocks without naming a project or stack
DEFAULT_PROJECT = "project"
DEFAULT_STACK = "stack"
DEFAULT_PREVIEW = False

# URN component separator; may not appear inside a project or stack name
URN_NAME_DELIMITER = "::"

# Environment variables read by MockConfig.from_env()
ENV_PROJECT = "MOCKENGINE_PROJECT"
ENV_STACK = "MOCKENGINE_STACK"
ENV_PREVIEW = "MOCKENGINE_PREVIEW"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass(frozen=True)
class MockConfig:
    """Mock engine configuration.

    Fixes the project name, stack name and preview flag for one activation.
    Invalid configurations raise ConfigurationError immediately.
    """

    project: str = DEFAULT_PROJECT
    stack: str = DEFAULT_STACK
    preview: bool = DEFAULT_PREVIEW

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        for label, value in (("project", self.project), ("stack", self.stack)):
            if not value:
                errors.append(f"{label} name is required")
                continue
            if URN_NAME_DELIMITER in value:
                errors.append(f"{label} name must not contain '{URN_NAME_DELIMITER}': {value}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def create(
        cls,
        project: str | None = None,
        stack: str | None = None,
        preview: bool | None = None,
    ) -> MockConfig:
        """Build a configuration, substituting defaults for omitted values."""
        return cls(
            project=DEFAULT_PROJECT if project is None else project,
            stack=DEFAULT_STACK if stack is None else stack,
            preview=DEFAULT_PREVIEW if preview is None else preview,
        )

    @classmethod
    def from_env(cls) -> MockConfig:
        """Load configuration from environment variables.

        Environment Variables:
            MOCKENGINE_PROJECT: Project name used in URNs (default: project)
            MOCKENGINE_STACK: Stack name used in URNs (default: stack)
            MOCKENGINE_PREVIEW: If "true", the program runs as a preview (default: false)
        """

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").strip().lower()
            if not value:
                return default
            if value in ("true", "1", "yes"):
                return True
            if value in ("false", "0", "no"):
                return False
            raise ConfigurationError(f"{key} must be a boolean: {value}")

        return cls(
            project=os.environ.get(ENV_PROJECT, DEFAULT_PROJECT),
            stack=os.environ.get(ENV_STACK, DEFAULT_STACK),
            preview=get_bool(ENV_PREVIEW, DEFAULT_PREVIEW),
        )
