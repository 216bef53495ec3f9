"""Shared pytest fixtures."""

import pytest

from tests.fakes import NOW, FakeCalendar


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def calendar():
    return FakeCalendar()
