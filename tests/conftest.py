"""Shared pytest fixtures."""

import pytest

from src.bootstrap import set_engine

from helpers import DispatchWorld, ManualClock


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def world():
    """Fully wired engine installed as the process-wide engine."""
    dispatch_world = DispatchWorld()
    set_engine(dispatch_world.engine)
    yield dispatch_world
    set_engine(None)
    dispatch_world.close()
