"""Shared fixtures for swimlane tests."""

import os
from typing import Generator

import pytest

from swimlane.config.settings import Settings, load_settings
from swimlane.core.defaults import create_empty_diagram
from swimlane.core.diagram import Diagram, Orientation
from swimlane.store.store import DiagramStore


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep SWIMLANE_* variables from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("SWIMLANE_"):
            monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture
def settings() -> Settings:
    """Default settings, ignoring any local .env file."""
    return load_settings(_env_file=None)


@pytest.fixture
def store(settings: Settings) -> DiagramStore:
    """Store holding the default three-lane vertical diagram."""
    return DiagramStore(settings=settings)


@pytest.fixture
def horizontal_store(settings: Settings) -> DiagramStore:
    store = DiagramStore(settings=settings)
    store.initialize_diagram(Orientation.HORIZONTAL)
    return store


@pytest.fixture
def diagram() -> Diagram:
    return create_empty_diagram()