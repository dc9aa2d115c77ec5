"""Pytest configuration for agentspec tests."""

import os

import pytest


def pytest_configure(config: pytest.Config) -> None:
    """Configure test environment before collection.

    Sets up environment variables to:
    - Disable Braintrust tracing
    - Redirect run metadata and stored specifications to /tmp to avoid
      polluting ~/.config/agentspec/
    - Disable the per-run debug log file
    """
    # Remove BRAINTRUST_API_KEY to disable Braintrust tracing
    os.environ.pop("BRAINTRUST_API_KEY", None)

    # Redirect run metadata and the store to /tmp to avoid polluting user config
    os.environ["AGENTSPEC_RUNS_DIR"] = "/tmp/agentspec-test-runs"
    os.environ["AGENTSPEC_STORE_DIR"] = "/tmp/agentspec-test-specs"

    os.environ["AGENTSPEC_DISABLE_DEBUG_LOG"] = "1"


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Default unmarked tests to unit category."""
    for item in items:
        if any(marker in item.keywords for marker in ("unit", "integration", "e2e")):
            continue
        item.add_marker(pytest.mark.unit)
