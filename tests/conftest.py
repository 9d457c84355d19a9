from __future__ import annotations

import sys

import pytest
from loguru import logger


@pytest.fixture(autouse=True)
def _loguru_to_current_stderr():
    # The CLI rebinds loguru to whatever sys.stderr is during the test; point it
    # back at the live stream afterwards.
    yield
    logger.remove()
    logger.add(lambda msg: sys.stderr.write(msg), level="DEBUG")
