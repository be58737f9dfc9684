from __future__ import annotations

import pytest

from cnat_operator.cache import ObjectCache

from factories import FakeStore


@pytest.fixture
def at_cache() -> ObjectCache:
    return ObjectCache()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()
