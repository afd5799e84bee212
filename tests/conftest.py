"""Shared fixtures for the pyjeo tests."""

import pytest

from classbytes import foo_class, sample_class


@pytest.fixture
def foo_bytes():
    return foo_class()


@pytest.fixture
def sample_bytes():
    return sample_class()
