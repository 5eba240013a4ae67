"""Pytest configuration.

The worker tests run an `ExtractWorkerHost`, whose QThread and queued signals
need a Qt application object. We create a single `QApplication` for the
entire session as early as possible and cleanly shut it down at the end.
"""

from __future__ import annotations

from typing import Any

import pytest

from grid_extract.extract_engine import store as store_module
from grid_extract.extract_engine.metrics import metrics
from tests.helpers.images import FakeDecoder, describe_region, gradient_image

_APP: Any | None = None


def pytest_configure(config) -> None:  # noqa: ARG001
    """Ensure a QApplication exists before collecting/running tests."""

    # Import lazily so non-Qt environments can still import this conftest.
    try:
        from PySide6.QtWidgets import QApplication
    except ImportError:
        return

    global _APP

    app = QApplication.instance()
    if app is None:
        # Keep a strong ref so it isn't GC'd mid-session.
        _APP = QApplication([])
    else:
        _APP = app


def pytest_sessionfinish(session, exitstatus) -> None:  # noqa: ARG001
    """Attempt a clean Qt shutdown to avoid lingering threads at interpreter exit."""

    try:
        from PySide6.QtWidgets import QApplication
    except ImportError:
        return

    app = QApplication.instance()
    if app is None:
        return

    app.quit()
    app.processEvents()


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield


@pytest.fixture
def fake_decoder() -> FakeDecoder:
    return FakeDecoder(
        {
            "mem://sheet": gradient_image(800, 600),
            "mem://small": gradient_image(40, 30),
        }
    )


@pytest.fixture
def describe_regions(monkeypatch):
    """Make the store return region descriptions instead of encoded images."""
    monkeypatch.setattr(store_module, "extract_region", describe_region)
