from __future__ import annotations

import pytest

from codestream.events import ProgressReporter


@pytest.fixture
def reporter() -> ProgressReporter:
    return ProgressReporter()
