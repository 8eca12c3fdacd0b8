"""Smoke tests for package layout."""

import importlib


def test_version_importable() -> None:
    """from docs_sync import __version__ works."""
    from docs_sync import __version__

    assert isinstance(__version__, str)
    assert __version__ == "0.1.0"


def test_default_config_loadable() -> None:
    """Default configuration carries the documented intervals."""
    from docs_sync.config import SYNC_CONFIG

    assert SYNC_CONFIG.scheduler.check_interval_seconds == 3600
    assert SYNC_CONFIG.scheduler.max_backoff_seconds == 4 * 3600
    assert SYNC_CONFIG.webhook.debounce_window_seconds == 300
    assert SYNC_CONFIG.history_limit == 100


def test_subpackages_importable() -> None:
    """All subpackages are importable."""
    subpackages = [
        "docs_sync.memory",
        "docs_sync.mcp",
        "docs_sync.sync",
    ]
    for pkg in subpackages:
        mod = importlib.import_module(pkg)
        assert mod is not None
