import logging

import pytest

from dojoqr.circular import CircularRenderer
from dojoqr.identity import CheckinIdentity
from dojoqr.logging import ROOT_LOGGER

ORIGIN = "https://dojo-control.app"


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    root = logging.getLogger(ROOT_LOGGER)
    root.handlers.clear()
    root.setLevel(logging.NOTSET)


@pytest.fixture
def origin():
    return ORIGIN


@pytest.fixture
def identity():
    return CheckinIdentity(
        location_id="loc-central",
        checkin_token="abc-123",
        display_name="Dojo Central",
        primary_color="#6d28d9",
    )


@pytest.fixture
def renderer():
    return CircularRenderer(ORIGIN)
