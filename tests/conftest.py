"""Pytest configuration and fixtures for fiberflow tests."""

import pytest
from fiberflow import EventLoop, set_event_loop


@pytest.fixture(autouse=True)
def event_loop():
    """Install a fresh EventLoop as the thread's default for each test.

    Top-level awaits and timers use the default loop, so a loop left over
    from a previous test would leak its pending callbacks into the next one.
    """
    loop = EventLoop()
    set_event_loop(loop)

    yield loop

    set_event_loop(None)
