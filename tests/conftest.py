from __future__ import annotations

import pytest
from loguru import logger


@pytest.fixture(autouse=True)
def reset_logging():
    """The CLI swaps loguru sinks; drop them so later tests don't write to closed streams."""
    yield
    logger.remove()
