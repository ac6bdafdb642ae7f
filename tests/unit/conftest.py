"""Shared pytest fixtures for AcrPullBinding operator tests."""

import pytest

from tests.unit.factories import FakeAuthorizer, FakeObjectStore


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def authorizer() -> FakeAuthorizer:
    return FakeAuthorizer()
