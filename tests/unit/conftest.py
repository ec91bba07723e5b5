"""Shared fixtures for edgescan unit tests."""

import pytest

from factories import build_edge, build_market


@pytest.fixture
def make_market():
    return build_market


@pytest.fixture
def make_edge():
    return build_edge
